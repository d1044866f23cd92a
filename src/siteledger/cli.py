"""Command-line interface for siteledger."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable

import click

from siteledger import __version__


@click.group()
@click.version_option(version=__version__, prog_name="siteledger")
def main() -> None:
    """siteledger -- asset records kept in per-category spreadsheets."""


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

_data_dir_option = click.option(
    "--data-dir",
    "data_dir",
    default=".",
    type=click.Path(file_okay=False),
    help="Data directory.",
)


def _service(data_dir: str):
    from siteledger.logging.events import set_data_dir
    from siteledger.ui.service import LedgerService

    path = Path(data_dir)
    set_data_dir(path)
    return LedgerService(path)


def _run(awaitable: Awaitable[dict[str, Any]]) -> Any:
    """Run a service call and unwrap its envelope."""
    result = asyncio.run(awaitable)
    if not result["success"]:
        raise click.ClickException(f"{result['message']} [{result.get('error', 'internal')}]")
    return result["data"]


def _parse_attributes(items: tuple[str, ...]) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for item in items:
        if "=" not in item:
            raise click.ClickException(
                f"Invalid --attr format: {item!r}. Use 'Section - Field=value'."
            )
        k, v = item.split("=", 1)
        attrs[k.strip()] = v
    return attrs


def _echo_events(events: list[dict[str, Any]]) -> None:
    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = evt.get("message", "")
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(file_okay=False))
@click.option("--region", "regions", multiple=True, help="Region to register (repeatable).")
def init(directory: str, regions: tuple[str, ...]) -> None:
    """Create a data directory at DIRECTORY."""
    from siteledger.project import scaffold_data_dir

    try:
        path = scaffold_data_dir(Path(directory), list(regions) or None)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Initialised data directory at {path}")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


@main.group()
def regions() -> None:
    """Region lookup commands."""


@regions.command("list")
@_data_dir_option
def regions_list(data_dir: str) -> None:
    """List known regions."""
    for name in _run(_service(data_dir).list_regions()):
        click.echo(name)


@regions.command("add")
@click.argument("name")
@_data_dir_option
def regions_add(name: str, data_dir: str) -> None:
    """Register region NAME."""
    data = _run(_service(data_dir).add_region(name))
    click.echo(f"Added region {data['name']}" if data["added"] else f"Region {data['name']} already exists")


@main.group()
def categories() -> None:
    """Category lookup commands."""


@categories.command("list")
@_data_dir_option
def categories_list(data_dir: str) -> None:
    """List known categories."""
    for name in _run(_service(data_dir).list_categories()):
        click.echo(name)


@categories.command("add")
@click.argument("name")
@_data_dir_option
def categories_add(name: str, data_dir: str) -> None:
    """Register category NAME and create its file."""
    data = _run(_service(data_dir).add_category(name))
    click.echo(
        f"Added category {data['name']}" if data["added"] else f"Category {data['name']} already exists"
    )


@main.group()
def colors() -> None:
    """Map colour commands."""


@colors.command("list")
@_data_dir_option
def colors_list(data_dir: str) -> None:
    """List every stored colour."""
    stored = _run(_service(data_dir).get_colors())
    if not stored:
        click.echo("No colours stored.")
        return
    for key, value in sorted(stored.items()):
        click.echo(f"{key}  {value}")


@colors.command("get")
@click.argument("category")
@click.argument("region")
@_data_dir_option
def colors_get(category: str, region: str, data_dir: str) -> None:
    """Show the colour for CATEGORY in REGION."""
    value = _run(_service(data_dir).get_color(category, region))
    click.echo(value if value is not None else "(none)")


@colors.command("set")
@click.argument("category")
@click.argument("region")
@click.argument("color")
@_data_dir_option
def colors_set(category: str, region: str, color: str, data_dir: str) -> None:
    """Set the colour for CATEGORY in REGION."""
    _run(_service(data_dir).set_color(category, region, color))
    click.echo(f"{category}|{region} = {color}")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@main.group()
def records() -> None:
    """Record commands."""


@records.command("list")
@_data_dir_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--consistent", is_flag=True, help="Wait for queued writes per category.")
def records_list(data_dir: str, as_json: bool, consistent: bool) -> None:
    """List every record in the data directory."""
    rows = _run(_service(data_dir).get_all_records(consistent=consistent))
    if as_json:
        click.echo(json.dumps(rows, indent=2, default=str))
        return
    if not rows:
        click.echo("No records found.")
        return
    for r in rows:
        rank = r["repair_rank"] if r["repair_rank"] is not None else "-"
        click.echo(
            f"{r['record_key']}  {r['category']}/{r['region']}  "
            f"({r['latitude']}, {r['longitude']})  {r['status']}  rank={rank}  {r['site_name']}"
        )


@records.command("add")
@_data_dir_option
@click.option("--key", "record_key", required=True, help="Record ID.")
@click.option("--category", required=True, help="Category.")
@click.option("--region", required=True, help="Region.")
@click.option("--lat", "latitude", required=True, type=float, help="Latitude.")
@click.option("--lon", "longitude", required=True, type=float, help="Longitude.")
@click.option("--site-name", default="", help="Site name.")
@click.option("--status", default=None, help="Active, Inactive, Mothballed or Unknown.")
@click.option("--rank", "repair_rank", default=None, help="Repair rank 1-5.")
@click.option("--attr", "attrs", multiple=True, help="Attribute as 'Section - Field=value'.")
def records_add(
    data_dir: str,
    record_key: str,
    category: str,
    region: str,
    latitude: float,
    longitude: float,
    site_name: str,
    status: str | None,
    repair_rank: str | None,
    attrs: tuple[str, ...],
) -> None:
    """Create a record."""
    payload: dict[str, Any] = {
        "record_key": record_key,
        "category": category,
        "region": region,
        "latitude": latitude,
        "longitude": longitude,
        "site_name": site_name,
        "status": status,
        "repair_rank": repair_rank,
    }
    payload.update(_parse_attributes(attrs))
    data = _run(_service(data_dir).create_record(payload))
    click.echo(f"Created {data['record_key']} in {data['category']}/{data['region']}")


# ---------------------------------------------------------------------------
# Import / export
# ---------------------------------------------------------------------------


@main.command("sheets")
@click.argument("xlsx_file", type=click.Path(exists=True, dir_okay=False))
def sheets_cmd(xlsx_file: str) -> None:
    """List the worksheet names of XLSX_FILE."""
    from siteledger.importer import list_sheet_names

    try:
        names = list_sheet_names(Path(xlsx_file))
    except Exception as e:
        raise click.ClickException(str(e))
    for name in names:
        click.echo(name)


@main.command("import")
@click.argument("xlsx_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("sheet_name")
@_data_dir_option
@click.option("--json", "as_json", is_flag=True, help="Output the summary as JSON.")
def import_cmd(xlsx_file: str, sheet_name: str, data_dir: str, as_json: bool) -> None:
    """Import SHEET_NAME of XLSX_FILE into the data directory."""
    summary = _run(_service(data_dir).import_sheet(xlsx_file, sheet_name))
    if as_json:
        click.echo(json.dumps(summary, indent=2))
        return

    click.echo(f"Imported {summary['imported']} record(s) into {summary['category']}")
    if summary["skipped"]:
        click.echo(f"  skipped: {summary['skipped']} row(s) without key or coordinates")
    if summary["duplicates"]:
        click.echo(f"  duplicates ({len(summary['duplicates'])}): {', '.join(summary['duplicates'])}")
    for err in summary["errors"]:
        click.echo(f"  row {err['row']}: {err['message']}")
    if summary.get("report_path"):
        click.echo(f"Report: {summary['report_path']}")


@main.command("export")
@click.argument("output", type=click.Path(dir_okay=False))
@_data_dir_option
@click.option("--format", "fmt", default="csv", type=click.Choice(["csv", "parquet"]), help="Output format.")
def export_cmd(output: str, data_dir: str, fmt: str) -> None:
    """Write every record to OUTPUT."""
    data = _run(_service(data_dir).export_records(output, fmt))
    click.echo(f"Wrote {data['rows']} record(s) to {data['path']}")


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@main.command("purge")
@_data_dir_option
@click.option("--yes", is_flag=True, help="Confirm deletion.")
def purge_cmd(data_dir: str, yes: bool) -> None:
    """Delete every spreadsheet in the data directory."""
    if not yes:
        raise click.ClickException("Refusing to delete data files without --yes")
    data = _run(_service(data_dir).delete_all_data_files())
    click.echo(f"Deleted {data['removed']} file(s)")


@main.command()
@_data_dir_option
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--port", type=int, default=None, help="Port (auto-select if omitted).")
def serve(data_dir: str, host: str, port: int | None) -> None:
    """Serve the JSON API for the data directory."""
    import socket

    import uvicorn

    from siteledger.ui.server import create_app

    app = create_app(Path(data_dir))

    if port is None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, 0))
            port = s.getsockname()[1]

    click.echo(f"Serving API at http://{host}:{port}/api")
    click.echo("Press Ctrl+C to stop")

    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    except KeyboardInterrupt:
        click.echo("\nStopped.")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@_data_dir_option
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--category", default=None, help="Filter by category.")
@click.option("--key", "record_key", default=None, help="Filter by record ID.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
def events_cmd(
    data_dir: str,
    level: str | None,
    event_type: str | None,
    category: str | None,
    record_key: str | None,
    limit: int,
) -> None:
    """Show the structured event log."""
    from siteledger.logging.sink import EventSink

    sink = EventSink(Path(data_dir))
    events = sink.read_global(
        level=level,
        event_type=event_type,
        category=category,
        record_key=record_key,
        limit=limit,
    )

    if not events:
        click.echo("No events found.")
        return
    _echo_events(events)


@main.command("import-log")
@click.argument("import_id")
@_data_dir_option
def import_log_cmd(import_id: str, data_dir: str) -> None:
    """Show the event log of one import."""
    from siteledger.logging.sink import EventSink

    events = EventSink(Path(data_dir)).read_import_log(import_id)
    if not events:
        click.echo(f"No events found for import {import_id}.")
        return
    _echo_events(events)
