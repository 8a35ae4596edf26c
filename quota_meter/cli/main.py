"""
CLI interface for Quota Meter.

Provides command-line access to quota checks, usage recording and summaries.
"""

import logging
import sqlite3
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from quota_meter.config.loader import load_tier_catalog
from quota_meter.core.billing import billing_month, utc_now
from quota_meter.core.manager import SubscriptionManager
from quota_meter.core.recorder import ServiceNotAllowedError, UsageRecordingError
from quota_meter.core.tiers import TIER_CATALOG, TierCatalog
from quota_meter.storage.db import DEFAULT_DB_PATH
from quota_meter.storage.models import ServiceType
from quota_meter.storage.repository import UsageLedger, initialize_schema
from quota_meter.storage.users import UserNotFoundError, UserStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DB_OPTION = typer.Option(
    DEFAULT_DB_PATH,
    "--db",
    envvar="QUOTA_METER_DB",
    help="Path to the SQLite database"
)
CATALOG_OPTION = typer.Option(
    None,
    "--catalog",
    "-c",
    help="YAML tier catalog overriding the built-in tiers"
)


def _catalog(path: Optional[str]) -> TierCatalog:
    return load_tier_catalog(path) if path else TIER_CATALOG


def _format_cents(cents: int) -> str:
    """Format an amount in cents as dollars."""
    return f"${cents / 100:,.2f}"


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Quota Meter CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("Quota Meter - Use --help to see available commands")


@app.command()
def init(db: str = DB_OPTION):
    """Initialize the Quota Meter database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("add-user")
def add_user(
    user_id: str = typer.Argument(..., help="Account identifier"),
    email: str = typer.Argument(..., help="Account email"),
    tier: str = typer.Option("free", "--tier", "-t", help="Subscription tier"),
    privileged: bool = typer.Option(
        False, "--privileged", help="Grant unlimited, zero-cost access"
    ),
    catalog: Optional[str] = CATALOG_OPTION,
    db: str = DB_OPTION
):
    """Provision an account."""
    try:
        user = UserStore(db).create_user(
            user_id, email, tier, is_privileged=privileged, catalog=_catalog(catalog)
        )
    except (ValueError, FileNotFoundError, yaml.YAMLError, sqlite3.Error) as e:
        _fail(str(e))
    suffix = " (privileged)" if user.is_privileged else ""
    console.print(f"[green]✓[/] Created {user.id} on tier '{user.subscription_tier}'{suffix}")


@app.command("set-tier")
def set_tier(
    user_id: str = typer.Argument(..., help="Account identifier"),
    tier: str = typer.Argument(..., help="Subscription tier"),
    catalog: Optional[str] = CATALOG_OPTION,
    db: str = DB_OPTION
):
    """Move an account to another subscription tier."""
    try:
        user = UserStore(db).set_tier(user_id, tier, catalog=_catalog(catalog))
    except (UserNotFoundError, ValueError, FileNotFoundError, yaml.YAMLError, sqlite3.Error) as e:
        _fail(str(e))
    console.print(f"[green]✓[/] {user.id} is now on tier '{user.subscription_tier}'")


@app.command("set-privileged")
def set_privileged(
    user_id: str = typer.Argument(..., help="Account identifier"),
    revoke: bool = typer.Option(False, "--revoke", help="Revoke instead of grant"),
    db: str = DB_OPTION
):
    """Grant or revoke unlimited, zero-cost access."""
    try:
        user = UserStore(db).set_privileged(user_id, not revoke)
    except (UserNotFoundError, sqlite3.Error) as e:
        _fail(str(e))
    state = "granted" if user.is_privileged else "revoked"
    console.print(f"[green]✓[/] Privileged access {state} for {user.id}")


@app.command()
def tiers(catalog: Optional[str] = CATALOG_OPTION):
    """List subscription tiers."""
    try:
        tier_catalog = _catalog(catalog)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(str(e))

    table = Table(title="Subscription Tiers")
    table.add_column("Tier")
    table.add_column("Price", justify="right")
    table.add_column("Audio quota", justify="right")
    table.add_column("Translation quota", justify="right")
    table.add_column("Audio overage (¢/1k)", justify="right")
    table.add_column("Translation overage (¢/1k)", justify="right")

    for tier in tier_catalog.tiers.values():
        table.add_row(
            tier.name,
            f"${tier.price}/mo",
            f"{tier.audio_character_limit:,}",
            f"{tier.translation_character_limit:,}",
            str(tier.overage_rate_audio),
            str(tier.overage_rate_translation),
        )
    console.print(table)


@app.command("check-usage")
def check_usage(
    user_id: str = typer.Argument(..., help="Account identifier"),
    service: str = typer.Argument(..., help="audiobook or translation"),
    characters: int = typer.Argument(..., help="Characters the action will consume"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if the action is not allowed"
    ),
    catalog: Optional[str] = CATALOG_OPTION,
    db: str = DB_OPTION
):
    """
    Check whether a user may perform a metered action.

    This is a read-only operation: nothing is recorded.
    """
    try:
        manager = SubscriptionManager(db, _catalog(catalog))
        decision = manager.can_perform_action(user_id, service, characters)
    except (UserNotFoundError, ValueError, FileNotFoundError, yaml.YAMLError, sqlite3.Error) as e:
        _fail(str(e))

    console.print("\n[bold]Quota Check[/bold]")
    console.print("-" * 40)
    verdict = "[green]ALLOWED[/]" if decision.can_proceed else "[red]NOT AVAILABLE ON PLAN[/]"
    console.print(f"Verdict: {verdict}")
    console.print(f"Within limit: {'yes' if decision.within_limit else 'no'}")
    console.print(f"Remaining quota: {decision.remaining_quota:,} characters")
    console.print(f"In-quota characters: {decision.within_limit_characters:,}")
    console.print(f"Overage characters: {decision.overage_characters:,}")
    console.print(f"Overage cost: {_format_cents(decision.overage_cost)}")

    if enforced and not decision.can_proceed:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command("record-usage")
def record_usage(
    user_id: str = typer.Argument(..., help="Account identifier"),
    service: str = typer.Argument(..., help="audiobook or translation"),
    resource_id: str = typer.Argument(..., help="What the usage is billed against"),
    characters: int = typer.Argument(..., help="Characters consumed"),
    catalog: Optional[str] = CATALOG_OPTION,
    db: str = DB_OPTION
):
    """Price and record completed usage."""
    try:
        manager = SubscriptionManager(db, _catalog(catalog))
        commit = manager.commit_usage(user_id, service, resource_id, characters)
    except (
        ServiceNotAllowedError, UserNotFoundError, UsageRecordingError,
        ValueError, FileNotFoundError, yaml.YAMLError
    ) as e:
        _fail(str(e))

    record = commit.record
    console.print(
        f"[green]✓[/] Recorded {record.character_count:,} {record.service_type.value} "
        f"characters for {record.user_id} ({record.billing_month}), "
        f"cost {_format_cents(record.cost_cents)}"
    )


@app.command("usage-summary")
def usage_summary(
    user_id: str = typer.Argument(..., help="Account identifier"),
    catalog: Optional[str] = CATALOG_OPTION,
    db: str = DB_OPTION
):
    """Show a user's plan and month-to-date usage."""
    try:
        manager = SubscriptionManager(db, _catalog(catalog))
        summary = manager.get_user_usage_summary(user_id)
        month = billing_month(utc_now())
        billed = UsageLedger(db).total_cost_cents(user_id, month)
    except (UserNotFoundError, ValueError, FileNotFoundError, yaml.YAMLError, sqlite3.Error) as e:
        _fail(str(e))

    table = Table(title=f"Usage for {user_id} ({summary.tier.name})")
    table.add_column("Service")
    table.add_column("Used", justify="right")
    table.add_column("Quota", justify="right")
    table.add_row("Audiobook", f"{summary.audio_usage:,}", f"{summary.audio_limit:,}")
    table.add_row(
        "Translation",
        f"{summary.translation_usage:,}",
        f"{summary.translation_limit:,}"
    )
    console.print(table)
    console.print(f"Current overage charges: {_format_cents(summary.current_overage_charges)}")
    console.print(f"Billed in {month}: {_format_cents(billed)}")


@app.command()
def history(
    user_id: str = typer.Argument(..., help="Account identifier"),
    month: Optional[str] = typer.Option(None, "--month", "-m", help="Billing month YYYY-MM"),
    service: Optional[str] = typer.Option(None, "--service", "-s", help="Service filter"),
    db: str = DB_OPTION
):
    """List ledger records for a user, newest first."""
    try:
        service_type = ServiceType.parse(service) if service else None
        records = UsageLedger(db).records_for(user_id, billing_month=month, service_type=service_type)
        total = None
        if month and service_type is None:
            total = UsageLedger(db).total_cost_cents(user_id, month)
    except (ValueError, sqlite3.Error) as e:
        _fail(str(e))

    if not records:
        console.print("\n[dim]No usage records found.[/]")
        return

    table = Table(title=f"Usage ledger for {user_id}")
    table.add_column("Month")
    table.add_column("Service")
    table.add_column("Resource")
    table.add_column("Characters", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Overage")
    for record in records:
        table.add_row(
            record.billing_month,
            record.service_type.value,
            record.resource_id,
            f"{record.character_count:,}",
            _format_cents(record.cost_cents),
            "yes" if record.was_overage else "no",
        )
    console.print(table)
    if total is not None:
        console.print(f"Total billed for {month}: {_format_cents(total)}")


if __name__ == "__main__":
    app()
