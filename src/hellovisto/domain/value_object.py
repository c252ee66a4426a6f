"""ValueObject: value without identity; equality by fields. Money helpers live here too."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from hellovisto.errors import ValidationFailed

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ValueObject:
    """Value object: equality by all fields (via dataclass)."""
    pass


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Coerce int/str/float/Decimal into Decimal. Floats go through str to keep 299.0 exact."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationFailed(field, "must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailed(field, f"not a number: {value!r}") from exc
    if not number.is_finite():
        raise ValidationFailed(field, f"not a finite number: {value!r}")
    return number


def round2(value: Decimal) -> Decimal:
    """Round money to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class GuestDetail(ValueObject):
    """One traveller on a booking. Order on the booking is significant."""

    name: str
    age: int
    id_type: str
    id_number: str

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationFailed("guest_details.name", "must not be empty")
        if isinstance(self.age, bool) or not isinstance(self.age, int) or self.age < 0:
            raise ValidationFailed("guest_details.age", "must be a non-negative integer")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuestDetail:
        try:
            return cls(
                name=data["name"],
                age=int(data["age"]),
                id_type=data.get("id_type", data.get("idType", "")),
                id_number=data.get("id_number", data.get("idNumber", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationFailed("guest_details", f"malformed entry {data!r}") from exc
