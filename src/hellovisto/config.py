"""Settings: one object built from the environment and passed to whatever needs it."""
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from hellovisto.domain import CommissionPolicy
from hellovisto.domain.value_object import to_decimal
from hellovisto.errors import ValidationFailed

ENV_PREFIX = "HELLOVISTO_"


class Config:
    @classmethod
    def load_from_env(cls, prefix: str = ENV_PREFIX, **defaults: Any) -> dict[str, Any]:
        """Load from os.environ with prefix and defaults. HELLOVISTO_LOG_LEVEL -> {"log_level": ...}."""
        result = dict(defaults)
        for key, value in os.environ.items():
            if key.startswith(prefix):
                name = key[len(prefix):].lower()
                result[name] = value
        return result


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    commission_rate: Decimal = Decimal("0.05")
    commission_policy_version: str = "2024-01"
    log_level: str = "INFO"
    json_logs: bool = False
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> Settings:
        values = Config.load_from_env(prefix)
        known = {name: values[name] for name in cls.__dataclass_fields__ if name in values}
        settings = cls()
        if "commission_rate" in known:
            settings.commission_rate = to_decimal(known["commission_rate"], "commission_rate")
        if "commission_policy_version" in known:
            settings.commission_policy_version = known["commission_policy_version"]
        if "log_level" in known:
            settings.log_level = str(known["log_level"]).upper()
        if "json_logs" in known:
            settings.json_logs = _as_bool(known["json_logs"])
        if "host" in known:
            settings.host = known["host"]
        if "port" in known:
            try:
                settings.port = int(known["port"])
            except ValueError:
                raise ValidationFailed("port", f"not an integer: {known['port']!r}") from None
        return settings

    def commission_policy(self) -> CommissionPolicy:
        return CommissionPolicy(rate=self.commission_rate, version=self.commission_policy_version)
