"""CLI entry point for Timber."""

from __future__ import annotations

import json
import logging
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple, NoReturn

import click

from timber.accounting import duration_minutes, format_minutes
from timber.config import load_config
from timber.db import Store
from timber.errors import (
    AlreadyActiveError,
    ClientNotFoundError,
    ConfigError,
    TimberError,
)
from timber.models import Session, parse_timestamp, utc_now
from timber.periods import current_week_range, day_range, month_range
from timber.sessions import end_session, patch_session, start_session, switch_session
from timber.summary import Summary, summarize

DISPLAY_FORMAT = "%b %d, %Y %I:%M %p"


class ClientRef(NamedTuple):
    """A client given on the command line, either by id or by name."""

    id: int | None = None
    name: str | None = None

    def __str__(self) -> str:
        return str(self.id) if self.id is not None else str(self.name)


class ClientRefType(click.ParamType):
    """Numeric values are ids; anything else is a name."""

    name = "client"

    def convert(self, value, param, ctx) -> ClientRef:
        if isinstance(value, ClientRef):
            return value
        try:
            return ClientRef(id=int(value))
        except ValueError:
            return ClientRef(name=value)


CLIENT = ClientRefType()


def resolve_client(store: Store, ref: ClientRef) -> int:
    """Turn a ClientRef into an existing client id.

    Raises:
        ClientNotFoundError: Nothing matches.
    """
    if ref.id is not None:
        if store.get_client(ref.id) is None:
            raise ClientNotFoundError(ref.id)
        return ref.id
    client_id = store.find_client_by_name(ref.name)
    if client_id is None:
        raise ClientNotFoundError(ref.name)
    return client_id


def _fail(message: str) -> NoReturn:
    click.echo(message, err=True)
    sys.exit(1)


def error_message(error: TimberError, store: Store | None = None) -> str:
    """Stable user-facing message for each error category."""
    if isinstance(error, AlreadyActiveError):
        name = store.get_client_name(error.session.client_id) if store else None
        return (
            "Cannot start a session because a session for "
            f"{name or 'Unknown'} is already active"
        )
    if error.category == "no_active_session":
        return "No active session was found"
    if error.category in ("not_found", "referenced"):
        return str(error)
    if error.category == "migration":
        return f"Database could not be upgraded: {error}"
    if error.category == "storage":
        return f"Database error: {error}"
    if error.category == "config":
        return f"Configuration error: {error}"
    return f"Error: {error}"


def format_local(ts: str) -> str:
    """Format a stored UTC timestamp in local time."""
    return parse_timestamp(ts).astimezone().strftime(DISPLAY_FORMAT)


def format_session(session: Session, client_name: str | None, *, now: datetime | None = None) -> str:
    """Multi-line description of a session for display."""
    end = format_local(session.end_timestamp) if session.end_timestamp else "In progress"
    lines = [
        f"Session {session.id} for client '{client_name or 'Unknown'}'",
        f"Start: {format_local(session.start_timestamp)}",
        f"End: {end}",
        f"Duration: {format_minutes(duration_minutes(session, now))}",
    ]
    if session.offset_minutes:
        lines.append(f"Offset: {session.offset_minutes:+d}m")
    if session.note:
        lines.append(f"Note: {session.note}")
    return "\n".join(lines)


def format_period(start: datetime, end: datetime, period: str) -> str:
    """Report header like 'Jan 25, 2025' or 'Jan 25 - Jan 31, 2025'."""
    if period == "day":
        return start.strftime("%b %d, %Y")
    if start.year == end.year:
        return f"{start.strftime('%b %d')} - {end.strftime('%b %d')}, {start.year}"
    return f"{start.strftime('%b %d, %Y')} - {end.strftime('%b %d, %Y')}"


def _open_store(ctx: click.Context) -> Store:
    try:
        return Store.open(ctx.obj["db"])
    except TimberError as e:
        _fail(error_message(e))
    except sqlite3.Error as e:
        _fail(f"Database error: {e}")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    envvar="TIMBER_DB",
    default=None,
    help="Path to SQLite database (default: from config.toml)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to config.toml",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def main(ctx: click.Context, db: Path | None, config_path: Path | None, verbose: bool) -> None:
    """Timber: a simple time tracker."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if db is None:
        try:
            db = load_config(config_path).database_path
        except ConfigError as e:
            _fail(error_message(e))
    ctx.obj = {"db": db}


@main.group("client")
def client_group() -> None:
    """Manage clients (alias: project)."""


main.add_command(client_group, "project")


@main.group("session")
def session_group() -> None:
    """Manage sessions."""


@client_group.command("add")
@click.argument("name")
@click.option("-n", "--note", help="Free-text note")
@click.pass_context
def client_add(ctx: click.Context, name: str, note: str | None) -> None:
    """Add a client. Adding an existing name does nothing."""
    with _open_store(ctx) as store:
        try:
            client_id = store.add_client(name, note)
        except ValueError as e:
            _fail(str(e))
        except TimberError as e:
            _fail(error_message(e, store))
    if client_id is None:
        click.echo(f"Client '{name}' already exists")
    else:
        click.echo(f"Client added with id {client_id}")


@client_group.command("remove")
@click.argument("client", type=CLIENT)
@click.pass_context
def client_remove(ctx: click.Context, client: ClientRef) -> None:
    """Remove a client by id or name."""
    with _open_store(ctx) as store:
        try:
            client_id = resolve_client(store, client)
            store.remove_client(client_id)
        except TimberError as e:
            _fail(error_message(e, store))
    click.echo(f"Successfully removed client {client_id}")


@client_group.command("list")
@click.pass_context
def client_list(ctx: click.Context) -> None:
    """List clients."""
    with _open_store(ctx) as store:
        clients = store.list_clients()
    if not clients:
        click.echo("No clients")
        return
    click.echo("Clients (Name, Id):")
    for client in clients:
        click.echo(f"({client.name}, {client.id})")


@session_group.command("start")
@click.argument("client", type=CLIENT)
@click.argument("note", required=False)
@click.pass_context
def session_start(ctx: click.Context, client: ClientRef, note: str | None) -> None:
    """Start a session for a client, given by id or name."""
    with _open_store(ctx) as store:
        try:
            client_id = resolve_client(store, client)
            session = start_session(store, client_id, note)
        except TimberError as e:
            _fail(error_message(e, store))
    click.echo(f"Started logging session {session.id}")


@session_group.command("end")
@click.pass_context
def session_end(ctx: click.Context) -> None:
    """End the active session."""
    with _open_store(ctx) as store:
        try:
            session, _ = end_session(store)
        except TimberError as e:
            _fail(error_message(e, store))
    click.echo(f"Finished logging: {format_minutes(duration_minutes(session))}")


@session_group.command("patch")
@click.argument("minutes", type=int)
@click.pass_context
def session_patch(ctx: click.Context, minutes: int) -> None:
    """Adjust the active session by MINUTES (negative to subtract).

    Use `--` before negative values, e.g. `timber session patch -- -15`.
    """
    with _open_store(ctx) as store:
        try:
            session = patch_session(store, minutes)
        except TimberError as e:
            _fail(error_message(e, store))
    click.echo(
        f"Patched session {session.id} by {minutes:+d}m "
        f"(offset now {session.offset_minutes:+d}m)"
    )


@session_group.command("switch")
@click.argument("client", type=CLIENT)
@click.argument("note", required=False)
@click.pass_context
def session_switch(ctx: click.Context, client: ClientRef, note: str | None) -> None:
    """End the active session (if any) and start one for CLIENT."""
    with _open_store(ctx) as store:
        try:
            client_id = resolve_client(store, client)
            result = switch_session(store, client_id, note)
        except TimberError as e:
            _fail(error_message(e, store))
        name = store.get_client_name(client_id)
    if result.ended is not None:
        click.echo(
            f"Finished logging session {result.ended.id}: "
            f"{format_minutes(duration_minutes(result.ended))}"
        )
    click.echo(f"Started logging session {result.started.id} for {name}")


@session_group.command("remove")
@click.argument("session_id", type=int)
@click.pass_context
def session_remove(ctx: click.Context, session_id: int) -> None:
    """Remove a session by id."""
    with _open_store(ctx) as store:
        try:
            removed = store.remove_session(session_id)
        except TimberError as e:
            _fail(error_message(e, store))
    if not removed:
        _fail(f"Session {session_id} could not be found")
    click.echo(f"Removed session {session_id}")


@session_group.command("list")
@click.option("-c", "--client", type=CLIENT, help="Only sessions for this client")
@click.pass_context
def session_list(ctx: click.Context, client: ClientRef | None) -> None:
    """List sessions, newest first."""
    now = utc_now()
    with _open_store(ctx) as store:
        try:
            client_id = resolve_client(store, client) if client else None
        except TimberError as e:
            _fail(error_message(e, store))
        sessions = store.list_sessions(client_id)
        names = {c.id: c.name for c in store.list_clients()}
    if not sessions:
        click.echo("No sessions")
        return
    click.echo("Sessions:")
    for session in sessions:
        click.echo()
        click.echo(format_session(session, names.get(session.client_id), now=now))


@session_group.command("current")
@click.pass_context
def session_current(ctx: click.Context) -> None:
    """Show the active session."""
    with _open_store(ctx) as store:
        session = store.get_active_session()
        name = store.get_client_name(session.client_id) if session else None
    if session is None:
        click.echo("No active session found!")
        return
    click.echo(format_session(session, name))


@main.command("report")
@click.option("--day", "period", flag_value="day", default=True, help="Daily report (default)")
@click.option("--week", "period", flag_value="week", help="Pay-week report (Sat-Fri)")
@click.option("--month", "period", flag_value="month", help="Monthly report")
@click.option(
    "--date",
    "ref_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Any date inside the period (YYYY-MM-DD, default: today)",
)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def report_command(
    ctx: click.Context, period: str, ref_date: datetime | None, output_json: bool
) -> None:
    """Show time logged per client for a day, pay week or month (UTC)."""
    ranges = {"day": day_range, "week": current_week_range, "month": month_range}
    if ref_date is not None:
        ref_date = ref_date.replace(tzinfo=timezone.utc)
    start, end = ranges[period](ref_date)

    with _open_store(ctx) as store:
        summary = summarize(store, start, end)

    if output_json:
        _output_json_report(period, summary)
    else:
        _output_human_report(period, start, end, summary)


def _output_json_report(period: str, summary: Summary) -> None:
    """Output JSON report."""
    output = {
        "report_type": {"day": "daily", "week": "weekly", "month": "monthly"}[period],
        **summary.model_dump(),
    }
    click.echo(json.dumps(output, indent=2))


def _output_human_report(period: str, start: datetime, end: datetime, summary: Summary) -> None:
    """Output human-readable report."""
    click.echo(f"Time Report: {format_period(start, end, period)}")
    click.echo()
    if not summary.clients:
        click.echo("No time tracked for this period.")
        return
    for total in summary.clients:
        name = total.name or "Unknown"
        if len(name) > 20:
            name = name[:17] + "..."
        click.echo(f"  {name:<20} {format_minutes(total.minutes):>9}")
    click.echo()
    click.echo(f"Total: {format_minutes(summary.total_minutes)}")


if __name__ == "__main__":
    main()
