"""Command-line interface for DESS Harvest."""

import asyncio
import contextlib
import csv
import json
import signal
from datetime import date, datetime, timedelta

import click
from rich.console import Console
from rich.table import Table

console = Console()


def run_async(coro):
    """Run an async coroutine."""
    return asyncio.run(coro)


def load_settings(config_path: str | None = None):
    """Load and validate settings.

    Args:
        config_path: Optional path to .env file.

    Returns:
        Validated Settings object.
    """
    from dessharvest.config.settings import Settings, get_settings

    try:
        from dessharvest.config.logging import configure_logging

        if config_path:
            settings = Settings(_env_file=config_path)
        else:
            # Clear cached settings to pick up environment changes
            get_settings.cache_clear()
            settings = get_settings()
        configure_logging(settings)
        return settings
    except Exception as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("\n[yellow]Hint:[/yellow] Create a .env file with DESS_DATABASE_URL=...")
        console.print("See .env.example for all available options.")
        raise SystemExit(1) from None


def open_engine(settings):
    """Create the engine and make sure all tables exist."""
    from dessharvest.db.engine import create_engine, create_tables

    engine = create_engine(settings)
    create_tables(engine)
    return engine


def select_devices(store, pn: str | None) -> list:
    """Tracked devices, optionally narrowed to one product number."""
    devices = store.tracked_devices()
    if pn:
        devices = [d for d in devices if d.pn == pn]
    return devices


def print_cycle_stats(title: str, stats_list: list) -> None:
    """Render cycle statistics as a table."""
    table = Table(title=title)
    table.add_column("Device", style="cyan")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Operations")
    table.add_column("Records")
    table.add_column("Duration")

    for stats in stats_list:
        status = "[green]Success[/green]" if stats.success else "[red]Failed[/red]"
        table.add_row(
            stats.device_pn or "-",
            stats.category,
            status,
            f"{stats.operations_ok}/{stats.operations_total}",
            str(stats.records_written),
            f"{stats.duration_seconds:.1f}s",
        )

    console.print(table)

    for stats in stats_list:
        if stats.errors:
            console.print(f"\n[red]Errors for {stats.device_pn} ({stats.category}):[/red]")
            for error in stats.errors:
                console.print(f"  - {error}")


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to .env configuration file",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None) -> None:
    """DESS Harvest - Download DESS Monitor inverter data to a database."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


@cli.command()
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Initialize the database schema."""
    from dessharvest.config.logging import get_logger
    from dessharvest.db.engine import create_engine, create_tables

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    console.print("[bold]Initializing database...[/bold]")

    try:
        engine = create_engine(settings)
        create_tables(engine)
        console.print("[green]Database initialized successfully![/green]")
        logger.info("Database initialized")
    except Exception as e:
        console.print(f"[red]Failed to initialize database:[/red] {e}")
        logger.error("Database initialization failed", error=str(e))
        raise SystemExit(1) from None


# Credentials


@cli.command()
@click.option("--username", "-u", prompt=True, help="Account name (email)")
@click.option("--password", "-p", prompt=True, hide_input=True, help="Account password")
@click.option("--company-key", "-k", prompt=True, hide_input=True, help="Company key")
@click.option("--base-url", help="API base URL")
@click.option("--pn", help="Device product number")
@click.option("--sn", help="Device serial number")
@click.option("--devcode", help="Device code")
@click.option("--devaddr", help="Device address")
@click.pass_context
def login(
    ctx: click.Context,
    username: str,
    password: str,
    company_key: str,
    base_url: str | None,
    pn: str | None,
    sn: str | None,
    devcode: str | None,
    devaddr: str | None,
) -> None:
    """Log in with account credentials and store the session."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session import DeviceRef
    from dessharvest.auth.session_store import SessionStore
    from dessharvest.config.logging import get_logger
    from dessharvest.utils.exceptions import DessHarvestError

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)
    device = DeviceRef(pn=pn, sn=sn, devcode=devcode, devaddr=devaddr) if pn else None

    async def _login():
        engine = open_engine(settings)
        async with DessClient(settings) as client:
            store = SessionStore(engine, settings, client)
            session = await store.login(username, password, company_key, base_url, device)
            return session, store.list_devices()

    try:
        session, devices = run_async(_login())
    except DessHarvestError as e:
        console.print(f"[red]Login failed:[/red] {e}")
        logger.error("Login failed", error=str(e))
        raise SystemExit(1) from None

    console.print("[green]Logged in, session stored.[/green]")
    current = session.device()
    if current:
        console.print(f"  Device: {current.pn} (sn {current.sn or '-'})")
    if devices:
        console.print(f"  {len(devices)} device(s) on the account")


@cli.command("capture-url")
@click.argument("url")
@click.pass_context
def capture_url(ctx: click.Context, url: str) -> None:
    """Store a session captured from a signed browser request URL."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore
    from dessharvest.utils.exceptions import ConfigurationError

    settings = load_settings(ctx.obj.get("config_path"))
    engine = open_engine(settings)

    try:
        session = SessionStore(engine, settings, DessClient(settings)).store_from_url(url.strip())
    except ConfigurationError as e:
        console.print(f"[red]Invalid URL:[/red] {e}")
        raise SystemExit(1) from None

    console.print("[green]Captured session stored.[/green]")
    device = session.device()
    if device:
        console.print(f"  Device: {device.pn}")
    else:
        console.print("[yellow]URL has no pn; set it with 'dessharvest device-params'.[/yellow]")


@cli.command()
@click.confirmation_option(prompt="Delete the stored session and device list?")
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Delete the stored session and forget all devices."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore

    settings = load_settings(ctx.obj.get("config_path"))
    engine = open_engine(settings)
    SessionStore(engine, settings, DessClient(settings)).clear()
    console.print("[green]Session deleted.[/green]")


@cli.command("device-params")
@click.option("--pn", help="Device product number")
@click.option("--sn", help="Device serial number")
@click.option("--devcode", help="Device code")
@click.option("--devaddr", help="Device address")
@click.pass_context
def device_params(
    ctx: click.Context,
    pn: str | None,
    sn: str | None,
    devcode: str | None,
    devaddr: str | None,
) -> None:
    """Set the device identifiers of the stored session."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore

    params = {
        k: v
        for k, v in {"pn": pn, "sn": sn, "devcode": devcode, "devaddr": devaddr}.items()
        if v is not None
    }
    if not params:
        console.print("[yellow]Nothing to update.[/yellow]")
        return

    settings = load_settings(ctx.obj.get("config_path"))
    engine = open_engine(settings)
    session = SessionStore(engine, settings, DessClient(settings)).update_device_params(**params)

    if session is None:
        console.print("[red]No session stored.[/red] Run 'dessharvest login' first.")
        raise SystemExit(1)
    console.print("[green]Device parameters updated.[/green]")


@cli.command()
@click.option("--refresh", is_flag=True, help="Fetch the device list from the API first")
@click.pass_context
def devices(ctx: click.Context, refresh: bool) -> None:
    """List tracked devices."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore
    from dessharvest.utils.exceptions import DessHarvestError

    settings = load_settings(ctx.obj.get("config_path"))
    engine = open_engine(settings)

    async def _refresh():
        async with DessClient(settings) as client:
            return await SessionStore(engine, settings, client).refresh_devices()

    if refresh:
        try:
            run_async(_refresh())
        except DessHarvestError as e:
            console.print(f"[red]Device refresh failed:[/red] {e}")
            raise SystemExit(1) from None

    tracked = SessionStore(engine, settings, DessClient(settings)).tracked_devices()
    if not tracked:
        console.print("[yellow]No devices tracked. Log in or set device parameters.[/yellow]")
        return

    table = Table(title="Devices")
    table.add_column("PN", style="cyan")
    table.add_column("SN")
    table.add_column("Devcode")
    table.add_column("Devaddr")
    table.add_column("Alias", style="green")

    for device in tracked:
        table.add_row(
            device.pn,
            device.sn or "-",
            device.devcode or "-",
            device.devaddr or "-",
            device.alias or "-",
        )

    console.print(table)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show session, devices and stored data."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore
    from dessharvest.query import DataQueryService

    settings = load_settings(ctx.obj.get("config_path"))
    engine = open_engine(settings)
    store = SessionStore(engine, settings, DessClient(settings))
    query = DataQueryService(engine, settings)

    session = store.get()
    if session is None:
        console.print("[yellow]No session stored.[/yellow]")
        if settings.has_fallback_credentials():
            console.print("  Fallback credentials are configured; 'run' will log in.")
    else:
        updated = session.updated_at.strftime("%Y-%m-%d %H:%M") if session.updated_at else "-"
        console.print(f"[bold]Session:[/bold] {session.mode.value} (updated {updated})")

    table = Table(title="Latest Snapshots")
    table.add_column("Device", style="cyan")
    table.add_column("Generated")
    table.add_column("Fetched")

    for device in store.tracked_devices():
        snapshot = query.get_latest(device.pn, device.storage_sn)
        table.add_row(
            f"{device.pn}/{device.sn}" if device.sn else device.pn,
            snapshot.gts if snapshot and snapshot.gts else "-",
            snapshot.fetched_at.strftime("%Y-%m-%d %H:%M") if snapshot else "-",
        )
    console.print(table)

    summary = query.chart_summary()
    if summary:
        chart_table = Table(title="Chart Data")
        chart_table.add_column("Device", style="cyan")
        chart_table.add_column("Field")
        chart_table.add_column("Points")
        chart_table.add_column("First")
        chart_table.add_column("Last")
        for row in summary:
            chart_table.add_row(
                f"{row['pn']}/{row['sn']}" if row["sn"] else row["pn"],
                row["field"],
                str(row["points"]),
                row["first"].strftime("%Y-%m-%d %H:%M") if row["first"] else "-",
                row["last"].strftime("%Y-%m-%d %H:%M") if row["last"] else "-",
            )
        console.print(chart_table)


# One-shot fetches


@cli.group()
@click.pass_context
def fetch(ctx: click.Context) -> None:
    """Fetch data once for the tracked devices."""
    pass


async def _run_for_devices(settings, pn: str | None, work) -> list:
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore
    from dessharvest.sync.ingestion import IngestionService

    engine = open_engine(settings)
    async with DessClient(settings) as client:
        store = SessionStore(engine, settings, client)
        await store.ensure_from_fallback()
        ingestion = IngestionService(client, store, engine, settings)
        results = []
        for device in select_devices(store, pn):
            results.extend(await work(ingestion, device))
        return results


def _fetch(settings, pn: str | None, work, title: str) -> None:
    from dessharvest.config.logging import get_logger

    logger = get_logger(__name__)
    try:
        results = run_async(_run_for_devices(settings, pn, work))
    except Exception as e:
        console.print(f"[red]Fetch failed:[/red] {e}")
        logger.error("Fetch failed", error=str(e))
        raise SystemExit(1) from None

    if not results:
        console.print("[yellow]No devices to fetch. Log in or set device parameters.[/yellow]")
        return
    print_cycle_stats(title, results)
    if not any(stats.success for stats in results):
        raise SystemExit(1)


@fetch.command("latest")
@click.option("--pn", help="Only this device")
@click.pass_context
def fetch_latest(ctx: click.Context, pn: str | None) -> None:
    """Fetch the latest parameter snapshot."""
    settings = load_settings(ctx.obj.get("config_path"))

    async def work(ingestion, device):
        return [await ingestion.run_latest_cycle(device)]

    _fetch(settings, pn, work, "Latest Snapshot")


@fetch.command("chart")
@click.option("--pn", help="Only this device")
@click.option("--start", type=click.DateTime(["%Y-%m-%d"]), help="Start date (default: yesterday)")
@click.option("--end", type=click.DateTime(["%Y-%m-%d"]), help="End date (default: today)")
@click.pass_context
def fetch_chart(
    ctx: click.Context, pn: str | None, start: datetime | None, end: datetime | None
) -> None:
    """Fetch the configured chart fields."""
    settings = load_settings(ctx.obj.get("config_path"))
    end_date = end.date() if end else date.today()
    start_date = start.date() if start else end_date - timedelta(days=1)
    if end_date < start_date:
        raise click.BadParameter("end is before start", param_hint="--end")

    async def work(ingestion, device):
        return [await ingestion.run_chart_cycle(device, start_date, end_date)]

    _fetch(settings, pn, work, "Chart Fields")


@fetch.command("key-params")
@click.option("--pn", help="Only this device")
@click.option("--date", "day", type=click.DateTime(["%Y-%m-%d"]), help="Day (default: today and yesterday)")
@click.pass_context
def fetch_key_params(ctx: click.Context, pn: str | None, day: datetime | None) -> None:
    """Fetch the configured daily key parameters."""
    settings = load_settings(ctx.obj.get("config_path"))
    today = date.today()
    days = [day.date()] if day else [today, today - timedelta(days=1)]

    async def work(ingestion, device):
        return [await ingestion.run_key_param_cycle(device, d) for d in days]

    _fetch(settings, pn, work, "Key Parameters")


# Scheduler


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the polling scheduler until interrupted."""
    from dessharvest.api.client import DessClient
    from dessharvest.auth.session_store import SessionStore
    from dessharvest.config.logging import get_logger
    from dessharvest.sync.ingestion import IngestionService
    from dessharvest.sync.scheduler import HarvestScheduler

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    async def _run():
        engine = open_engine(settings)
        shutdown_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, shutdown_event.set)

        async with DessClient(settings) as client:
            store = SessionStore(engine, settings, client)
            ingestion = IngestionService(client, store, engine, settings)
            await HarvestScheduler(ingestion, store, settings).run(shutdown_event)

    console.print("[bold]Starting scheduler (Ctrl+C to stop)...[/bold]")
    try:
        run_async(_run())
    except KeyboardInterrupt:
        pass
    logger.info("Scheduler exited")


# Export


@cli.group()
@click.pass_context
def export(ctx: click.Context) -> None:
    """Export data to CSV or JSON files."""
    pass


def write_output(data: list[dict], output: str | None, format: str, name: str) -> None:
    """Write data to file.

    Args:
        data: List of dictionaries to export.
        output: Output file path or None for auto-generated.
        format: Output format (csv or json).
        name: Data name for auto-generated filename.
    """
    if not data:
        console.print("[yellow]No data to export.[/yellow]")
        return

    if output is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output = f"dess_{name}_{timestamp}.{format}"

    if format == "json":
        with open(output, "w") as f:
            json.dump(data, f, indent=2, default=str)
    else:
        with open(output, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=data[0].keys())
            writer.writeheader()
            writer.writerows(data)

    console.print(f"[green]Exported {len(data)} records to {output}[/green]")


@export.command("latest")
@click.option("--pn", required=True, help="Device product number")
@click.option("--sn", help="Device serial number (default: any)")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.pass_context
def export_latest(ctx: click.Context, pn: str, sn: str | None, output: str | None) -> None:
    """Export the latest snapshot as JSON."""
    from dessharvest.query import DataQueryService

    settings = load_settings(ctx.obj.get("config_path"))
    snapshot = DataQueryService(open_engine(settings), settings).get_latest(pn, sn)
    write_output([snapshot.to_dict()] if snapshot else [], output, "json", "latest")


@export.command("chart")
@click.option("--pn", required=True, help="Device product number")
@click.option("--sn", help="Device serial number (default: any)")
@click.option("--field", required=True, help="Chart field name")
@click.option("--format", "-f", type=click.Choice(["csv", "json"]), default="csv", help="Output format")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.option("--start", type=click.DateTime(), help="Start datetime (YYYY-MM-DD HH:MM:SS)")
@click.option("--end", type=click.DateTime(), help="End datetime (YYYY-MM-DD HH:MM:SS)")
@click.pass_context
def export_chart(ctx: click.Context, pn: str, sn: str | None, field: str, format: str, output: str | None, start: datetime | None, end: datetime | None) -> None:
    """Export chart points of one field."""
    from dessharvest.query import DataQueryService
    from dessharvest.utils.exceptions import QueryError

    settings = load_settings(ctx.obj.get("config_path"))
    query = DataQueryService(open_engine(settings), settings)

    try:
        points = query.get_chart_points(pn, field, start, end, sn=sn)
    except QueryError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from None

    write_output([{"field": field, **p.to_dict()} for p in points], output, format, field)


@export.command("key-param")
@click.option("--pn", required=True, help="Device product number")
@click.option("--sn", help="Device serial number (default: any)")
@click.option("--parameter", required=True, help="Key parameter name (e.g. BATTERY_SOC)")
@click.option("--format", "-f", type=click.Choice(["csv", "json"]), default="csv", help="Output format")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.option("--start", type=click.DateTime(), help="Start datetime (YYYY-MM-DD HH:MM:SS)")
@click.option("--end", type=click.DateTime(), help="End datetime (YYYY-MM-DD HH:MM:SS)")
@click.pass_context
def export_key_param(ctx: click.Context, pn: str, sn: str | None, parameter: str, format: str, output: str | None, start: datetime | None, end: datetime | None) -> None:
    """Export key parameter points."""
    from dessharvest.query import DataQueryService
    from dessharvest.utils.exceptions import QueryError

    settings = load_settings(ctx.obj.get("config_path"))
    query = DataQueryService(open_engine(settings), settings)

    try:
        points = query.get_key_param_points(pn, parameter, start, end, sn=sn)
    except QueryError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from None

    write_output([{"parameter": parameter, **p.to_dict()} for p in points], output, format, parameter.lower())


if __name__ == "__main__":
    cli()
