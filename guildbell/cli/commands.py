"""guildbell CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from guildbell import __version__
from guildbell.core.cron.errors import GuildbellError, ValidationError

app = typer.Typer(
    name="guildbell",
    help="guildbell - reminders and weekly local-event announcements for Discord",
    no_args_is_help=True,
)

console = Console()

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config.yaml")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"guildbell v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """guildbell - reminders and weekly local-event announcements for Discord."""


def _load(config_path: str | None):
    from guildbell.core.config.loader import load_config

    try:
        return load_config(config_path)
    except GuildbellError as e:
        _fail(str(e))


def _open_store(config):
    from guildbell.memory.store import ReminderStore

    return ReminderStore(config.database.path, default_timezone=config.scheduler.default_timezone)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


def _fmt(value: datetime | None) -> str:
    return value.isoformat(timespec="minutes") if value else "-"


# ════════════════════════════════════════════════════════════
# run — start the scheduler
# ════════════════════════════════════════════════════════════


@app.command()
def run(config_path: str | None = _CONFIG_OPTION) -> None:
    """Load reminders and announcement configs and run until interrupted."""
    config = _load(config_path)
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level.upper())

    if not config.discord_enabled:
        console.print("[yellow]No Discord token configured; deliveries will fail.[/yellow]")

    console.print(f"[green]Starting guildbell v{__version__}[/green] (db: {config.database.path})")
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        console.print("Stopped.")


def _build_scheduler(config):
    from guildbell.core.channels.discord import DiscordNotifier
    from guildbell.core.cron.scheduler import Scheduler
    from guildbell.core.events.service import build_events_service

    store = _open_store(config)
    notifier = DiscordNotifier(
        config.discord.token,
        api_base=config.discord.api_base,
        timeout_s=config.discord.timeout_s,
    )
    events = build_events_service(config)
    return Scheduler.from_config(config, store, notifier, events)


def _schedule_table(scheduler) -> Table:
    table = Table(title="Scheduled jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Next Run", style="green")
    for key in scheduler.scheduled_keys():
        table.add_row(key, _fmt(scheduler.next_run_time(key)))
    return table


async def _serve(config) -> None:
    scheduler = _build_scheduler(config)
    summary = await scheduler.initialize()
    console.print(
        f"Scheduled {summary['reminders']} reminder(s) and "
        f"{summary['announcements']} announcement(s)"
    )
    console.print(_schedule_table(scheduler))
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.shutdown()


# ════════════════════════════════════════════════════════════
# status — config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status(config_path: str | None = _CONFIG_OPTION) -> None:
    """Show configuration and database status."""
    config = _load(config_path)
    store = _open_store(config)

    reminders = store.load_active_reminders()
    configs = store.list_announcement_configs()
    enabled = sum(1 for c in configs if c.is_enabled)

    table = Table(title="guildbell status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("DB Path", config.database.path)
    table.add_row("Default Timezone", config.scheduler.default_timezone)
    table.add_row("Events Provider", config.events.provider)
    table.add_row("Discord Token", "set" if config.discord_enabled else "missing")
    table.add_row("Active Reminders", str(len(reminders)))
    table.add_row("Event Configs", f"{enabled} enabled / {len(configs)} total")

    console.print(table)


# ════════════════════════════════════════════════════════════
# reminder — reminder management (sub-command group)
# ════════════════════════════════════════════════════════════

reminder_app = typer.Typer(help="Manage reminders")
app.add_typer(reminder_app, name="reminder")


@reminder_app.command("add")
def reminder_add(
    message: str = typer.Argument(help="Reminder text"),
    tenant: str = typer.Option(..., "--tenant", help="Guild ID"),
    channel: str = typer.Option(..., "--channel", help="Channel ID"),
    user: str = typer.Option(..., "--user", help="User ID to mention"),
    cadence: str = typer.Option("once", "--cadence", help="once | daily | weekly | monthly | yearly"),
    time: str = typer.Option("09:00", "--time", help="HH:MM (recurring reminders)"),
    at: str | None = typer.Option(None, "--at", help="ISO date-time (one-time reminders)"),
    day: str | None = typer.Option(None, "--day", help="Day name (weekly)"),
    day_of_month: int | None = typer.Option(None, "--day-of-month", help="1-31 (monthly, yearly)"),
    month: int | None = typer.Option(None, "--month", help="1-12 (yearly)"),
    timezone: str | None = typer.Option(None, "--timezone", "--tz", help="IANA timezone"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Add a reminder. A running scheduler arms it on its next store sync."""
    from guildbell.core.cron.expressions import get_zone, parse_day_name, parse_time_string

    config = _load(config_path)
    store = _open_store(config)
    tz = timezone or config.scheduler.default_timezone

    try:
        if cadence == "once":
            if not at:
                _fail("--at is required for one-time reminders")
            trigger_at = datetime.fromisoformat(at)
            if trigger_at.tzinfo is None:
                trigger_at = trigger_at.replace(tzinfo=get_zone(tz))
            hour, minute = trigger_at.hour, trigger_at.minute
        else:
            trigger_at = None
            hour, minute = parse_time_string(time)
        job = store.add_reminder(
            tenant_id=tenant,
            channel_id=channel,
            user_id=user,
            message=message,
            cadence=cadence,
            hour=hour,
            minute=minute,
            day_of_week=parse_day_name(day) if day else None,
            day_of_month=day_of_month,
            month=month,
            next_trigger_at=trigger_at,
            timezone=timezone,
        )
    except (GuildbellError, ValueError) as e:
        _fail(str(e))

    console.print(f"[green]Reminder created:[/green] {job.id}")
    console.print(f"  [dim]{job.cadence.value}, next: {_fmt(job.next_trigger_at)}[/dim]")


@reminder_app.command("list")
def reminder_list(
    tenant: str | None = typer.Option(None, "--tenant", help="Only this guild"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """List active reminders."""
    config = _load(config_path)
    store = _open_store(config)

    jobs = store.list_reminders(tenant)
    if not jobs:
        console.print("[dim]No reminders found.[/dim]")
        return

    table = Table(title="Reminders")
    table.add_column("ID", style="cyan")
    table.add_column("Guild", style="blue")
    table.add_column("Cadence", style="yellow")
    table.add_column("Next", style="green")
    table.add_column("Message", style="white")

    for job in jobs:
        table.add_row(job.id, job.tenant_id, job.cadence.value, _fmt(job.next_trigger_at), job.message)

    console.print(table)


@reminder_app.command("remove")
def reminder_remove(
    reminder_id: str = typer.Argument(help="Reminder ID"),
    tenant: str = typer.Option(..., "--tenant", help="Guild ID"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Remove a reminder."""
    config = _load(config_path)
    store = _open_store(config)

    if not store.delete_reminder(reminder_id, tenant):
        _fail(f"Reminder not found: {reminder_id}")
    console.print(f"[green]Removed reminder:[/green] {reminder_id}")


# ════════════════════════════════════════════════════════════
# events — weekly local events announcements (sub-command group)
# ════════════════════════════════════════════════════════════

events_app = typer.Typer(help="Manage weekly local-events announcements")
app.add_typer(events_app, name="events")


@events_app.command("set")
def events_set(
    tenant: str = typer.Argument(help="Guild ID"),
    channel: str = typer.Option(..., "--channel", help="Channel ID"),
    location: str = typer.Option(..., "--location", help='e.g. "Seattle, WA"'),
    user: str = typer.Option("", "--user", help="User who configured it"),
    day: str | None = typer.Option(None, "--day", help="Day name (default Monday)"),
    time: str | None = typer.Option(None, "--time", help="HH:MM (default 12:00)"),
    timezone: str | None = typer.Option(None, "--timezone", "--tz", help="IANA timezone"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Create or update a guild's announcement config."""
    from guildbell.core.cron.expressions import parse_day_name, parse_time_string

    config = _load(config_path)
    store = _open_store(config)

    try:
        hour, minute = parse_time_string(time) if time else (None, None)
        cfg = store.upsert_announcement_config(
            tenant,
            channel,
            location,
            user_id=user,
            schedule_day=parse_day_name(day) if day else None,
            schedule_hour=hour,
            schedule_minute=minute,
            timezone=timezone,
        )
    except GuildbellError as e:
        _fail(str(e))

    console.print(f"[green]Events configured for[/green] {tenant}: {cfg.describe_schedule()}")


@events_app.command("show")
def events_show(
    tenant: str = typer.Argument(help="Guild ID"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Show a guild's announcement config."""
    config = _load(config_path)
    store = _open_store(config)

    cfg = store.get_announcement_config(tenant)
    if cfg is None:
        _fail(f"No events config for {tenant}")

    table = Table(title=f"Events: {tenant}")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Location", cfg.location)
    table.add_row("Channel", cfg.channel_id)
    table.add_row("Schedule", cfg.describe_schedule())
    table.add_row("Enabled", str(cfg.is_enabled))
    table.add_row("Next Run", _fmt(cfg.next_run_time()) if cfg.is_enabled else "-")
    table.add_row("Last Announced", _fmt(cfg.last_announced_at))
    console.print(table)


@events_app.command("disable")
def events_disable(
    tenant: str = typer.Argument(help="Guild ID"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Pause announcements for a guild."""
    _set_enabled(tenant, False, config_path)


@events_app.command("enable")
def events_enable(
    tenant: str = typer.Argument(help="Guild ID"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Resume announcements for a guild."""
    _set_enabled(tenant, True, config_path)


def _set_enabled(tenant: str, enabled: bool, config_path: str | None) -> None:
    config = _load(config_path)
    store = _open_store(config)
    if store.set_announcement_enabled(tenant, enabled) is None:
        _fail(f"No events config for {tenant}")
    state = "enabled" if enabled else "disabled"
    console.print(f"[green]Announcements {state} for[/green] {tenant}")


@events_app.command("remove")
def events_remove(
    tenant: str = typer.Argument(help="Guild ID"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Delete a guild's announcement config."""
    config = _load(config_path)
    store = _open_store(config)
    if not store.remove_announcement_config(tenant):
        _fail(f"No events config for {tenant}")
    console.print(f"[green]Removed events config for[/green] {tenant}")


@events_app.command("announce")
def events_announce(
    tenant: str = typer.Argument(help="Guild ID"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Post this week's events for a guild right now."""
    config = _load(config_path)
    try:
        found = asyncio.run(_announce_now(config, tenant))
    except GuildbellError as e:
        _fail(str(e))
    if not found:
        _fail(f"No events config for {tenant}")
    console.print(f"[green]Announced events for[/green] {tenant}")


async def _announce_now(config, tenant: str) -> bool:
    scheduler = _build_scheduler(config)
    return await scheduler.run_announcement_now(tenant)


@events_app.command("window")
def events_window(
    timezone: str | None = typer.Option(None, "--timezone", "--tz", help="IANA timezone"),
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Show the Monday-noon to Monday-11:59 window the next announcement covers."""
    from guildbell.core.cron.windows import event_window

    config = _load(config_path)
    tz = timezone or config.scheduler.default_timezone
    try:
        window = event_window(tz)
    except ValidationError as e:
        _fail(str(e))
    console.print(f"{tz}: {_fmt(window.start)} → {_fmt(window.end)}")


# ════════════════════════════════════════════════════════════
# cron — expression tools (sub-command group)
# ════════════════════════════════════════════════════════════

cron_app = typer.Typer(help="Cron expression tools")
app.add_typer(cron_app, name="cron")


@cron_app.command("preview")
def cron_preview(
    expression: str = typer.Argument(help='Crontab expression, e.g. "0 12 * * 1"'),
    timezone: str = typer.Option("UTC", "--timezone", "--tz", help="IANA timezone"),
    count: int = typer.Option(5, "--count", "-n", help="Number of fire times"),
) -> None:
    """Print the next fire times of an expression."""
    from guildbell.core.cron.expressions import crontab_trigger, get_zone

    try:
        trigger = crontab_trigger(expression, timezone)
        now = datetime.now(get_zone(timezone))
    except ValidationError as e:
        _fail(str(e))

    previous = None
    for _ in range(count):
        fire = trigger.get_next_fire_time(previous, now)
        if fire is None:
            break
        console.print(fire.strftime("%a %Y-%m-%d %H:%M %Z"))
        previous = now = fire
