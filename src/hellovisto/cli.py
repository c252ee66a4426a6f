"""
Command line: plan table, commission preview and the HTTP server.
"""
from decimal import Decimal, InvalidOperation
from typing import Optional

import typer

from hellovisto.commission import commission_amount
from hellovisto.config import Settings
from hellovisto.domain import PLANS, CommissionPolicy
from hellovisto.errors import ValidationFailed
from hellovisto.logging_config import configure_logging

app = typer.Typer(help="Hello Visto booking core.")


def _number(value: str) -> Decimal:
    try:
        number = Decimal(value)
    except InvalidOperation:
        raise ValidationFailed("amount", f"not a number: {value}") from None
    if not number.is_finite():
        raise ValidationFailed("amount", f"not a finite number: {value}")
    return number


@app.command()
def plans() -> None:
    """List subscription plans with their tour limits and prices."""
    for plan_type, plan in PLANS.items():
        typer.echo(f"{plan_type.value:<11} {plan.name:<11} tours={plan.tour_limit:<4} price={plan.price}")


@app.command()
def commission(
    amount: str = typer.Argument(..., help="Booking total, e.g. 299.00"),
    rate: Optional[str] = typer.Option(None, "--rate", "-r", help="Override the configured rate, e.g. 0.05"),
) -> None:
    """Show the platform commission for a booking total."""
    try:
        settings = Settings.from_env()
        total = _number(amount)
        policy = CommissionPolicy(rate=_number(rate)) if rate else settings.commission_policy()
    except ValidationFailed as exc:
        typer.echo(exc.message, err=True)
        raise typer.Exit(1)
    if total <= 0:
        typer.echo("Amount must be greater than 0", err=True)
        raise typer.Exit(1)
    typer.echo(f"{commission_amount(total, policy)} ({policy.rate} of {total}, policy {policy.version})")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Run the HTTP API with an in-memory store."""
    import uvicorn

    from hellovisto.api import create_app
    from hellovisto.facade import Marketplace

    try:
        settings = Settings.from_env()
        policy = settings.commission_policy()
    except ValidationFailed as exc:
        typer.echo(exc.message, err=True)
        raise typer.Exit(1)
    configure_logging(settings.log_level, settings.json_logs)
    marketplace = Marketplace(policy=policy)
    uvicorn.run(create_app(marketplace), host=host or settings.host, port=port or settings.port)


def main() -> None:
    """Entry point for the hellovisto console command."""
    app()


if __name__ == "__main__":
    main()
