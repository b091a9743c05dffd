"""CLI entry point for receipt-lira."""

from __future__ import annotations

import asyncio
import json
import logging
import re

import click
from pydantic import ValidationError

from receipt_lira.adapters.postgres import PostgresBillSource
from receipt_lira.config import get_state_path
from receipt_lira.extraction import create_extraction_engine
from receipt_lira.models import ReminderSettings
from receipt_lira.scheduler import count_upcoming_bills, list_upcoming_bills
from receipt_lira.settings import ReminderStorage
from receipt_lira.store import LocalKeyValueStore

_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")


def _storage() -> ReminderStorage:
    return ReminderStorage(LocalKeyValueStore(get_state_path()))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Receipt Lira: read bills and get reminded before they are due."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


@cli.command()
@click.argument("image")
def extract(image: str) -> None:
    """Extract bill fields from an image path or URL."""
    engine = create_extraction_engine()
    result = asyncio.run(engine.extract(image))
    click.echo(result.model_dump_json(indent=2))


@cli.group()
def settings() -> None:
    """Show or change reminder settings."""


@settings.command("show")
def settings_show() -> None:
    """Print the current reminder settings."""
    current = asyncio.run(_storage().get_reminder_settings())
    click.echo(current.model_dump_json(indent=2))


@settings.command("set")
@click.option("--enable/--disable", "enabled", default=None, help="Turn reminders on or off.")
@click.option("--days", help="Comma-separated days before due, e.g. 1,3,7.")
@click.option("--time", "at", help="Local reminder time as HH:MM.")
def settings_set(enabled: bool | None, days: str | None, at: str | None) -> None:
    """Update reminder settings. Run a refresh afterwards to reschedule."""
    storage = _storage()
    current = asyncio.run(storage.get_reminder_settings())
    update = current.model_dump()

    if enabled is not None:
        update["enabled"] = enabled
    if days is not None:
        try:
            update["reminder_days"] = [int(part) for part in days.split(",") if part.strip()]
        except ValueError:
            msg = f"not a list of integers: {days}"
            raise click.BadParameter(msg, param_hint="--days") from None
    if at is not None:
        match = _TIME.match(at)
        if not match:
            raise click.BadParameter(f"expected HH:MM, got {at}", param_hint="--time")
        update["reminder_time"] = {"hour": int(match.group(1)), "minute": int(match.group(2))}

    try:
        new_settings = ReminderSettings.model_validate(update)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    asyncio.run(storage.save_reminder_settings(new_settings))
    click.echo(new_settings.model_dump_json(indent=2))


@cli.command()
@click.argument("user_id")
@click.option("--days", default=30, show_default=True, help="Look-ahead window in days.")
def upcoming(user_id: str, days: int) -> None:
    """List bills due in the next DAYS days."""
    bills = asyncio.run(list_upcoming_bills(PostgresBillSource(), user_id, days))
    if not bills:
        click.echo("No upcoming bills.")
        return
    click.echo(json.dumps([bill.model_dump(mode="json") for bill in bills], indent=2))


@cli.command()
@click.argument("user_id")
@click.option("--days", default=7, show_default=True, help="Look-ahead window in days.")
def count(user_id: str, days: int) -> None:
    """Print how many bills are due in the next DAYS days."""
    click.echo(asyncio.run(count_upcoming_bills(PostgresBillSource(), user_id, days)))
