"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, List, Optional

import pendulum
import typer
from pendulum import Date
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.mock_store import MockSchedulingStore
from ..adapters.rest_store import RestSchedulingStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import PersistenceFailure, SchedulingError
from ..domain.layout_engine import ColumnLayout, LayoutEngine
from ..domain.models import DateRange, ScheduleItem, as_time
from ..domain.view_aggregator import ViewAggregator
from ..services.schedule_board import ScheduleBoardService

app = typer.Typer(
    name="salonboard",
    help="Salon schedule board: bookings, shifts and double-booking warnings",
    add_completion=False
)

console = Console()

WEEKDAY_LABELS = ["Mo", "Di", "Mi", "Do", "Fr", "Sa", "So"]
CONFLICT_MARK = "[bold red]⚠[/bold red]"

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
MockOption = Annotated[bool, typer.Option("--mock", help="Mock-Daten nutzen statt Backend.")]
DataOption = Annotated[Optional[Path], typer.Option("--data", help="Mock JSON file; changes are written back (implies --mock).")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path], offline: bool) -> AppConfig:
    """Load the config file; in mock mode a missing default file falls back to defaults."""
    config_path = config_file or get_default_config_path()
    if offline and config_file is None and not config_path.exists():
        return AppConfig()
    return AppConfig.load_from_yaml(config_path)


def _build_service(config: AppConfig, mock: bool, data: Optional[Path]) -> ScheduleBoardService:
    if mock or data:
        store = MockSchedulingStore(data_file=data, timezone=config.timezone, write_back=data is not None)
    else:
        store = RestSchedulingStore(
            base_url=config.store.base_url,
            api_token=config.store.api_token,
            timeout=config.store.timeout_seconds,
            timezone=config.timezone,
        )
    return ScheduleBoardService(
        store,
        config.grid.get_time_grid(),
        row_height=config.grid.row_height,
        layout_engine=LayoutEngine(min_visible_slots=config.grid.min_visible_slots),
        palette=config.palette,
    )


def _parse_day(value: Optional[str], tz: str) -> Date:
    if not value:
        return pendulum.today(tz).date()
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        console.print(f"[red]Fehler beim Parsen des Datums: {e}[/red]")
        raise typer.Exit(1)


def _time_range(item: ScheduleItem) -> str:
    return f"{item.start_time:%H:%M}–{item.end_time:%H:%M}"


def _stylist_label(service: ScheduleBoardService, resource_id: str) -> str:
    resource = service.roster.get(resource_id)
    return f"[{resource.color}]●[/] {resource.name}"


def _print_item_result(service: ScheduleBoardService, action: str, item: ScheduleItem) -> None:
    console.print(f"[green]✓ {action}:[/green] {_stylist_label(service, item.resource_id)}  {item}")
    conflicts = service.conflicts().get(item.id, set())
    if conflicts:
        console.print(
            f"{CONFLICT_MARK} [yellow]Überschneidung mit {', '.join(sorted(conflicts))} "
            f"(Doppelbuchung wird nicht blockiert)[/yellow]"
        )


def _run_mutation(service: ScheduleBoardService, week: Date, coro_factory):
    async def run():
        await service.load_week(week)
        return await coro_factory()

    try:
        return asyncio.run(run())
    except PersistenceFailure as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        console.print("[yellow]Die lokale Änderung wurde zurückgenommen. Bitte erneut versuchen.[/yellow]")
        raise typer.Exit(1)


def _render_columns(columns: List[ColumnLayout], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Stylist", style="bold")
    table.add_column("Zeit")
    table.add_column("Kunde / Schicht")
    table.add_column("Leistung", style="dim")
    table.add_column("", justify="center")

    for column in columns:
        name = f"[{column.resource.color}]●[/] {column.resource.name}"
        if not column.entries:
            table.add_row(name, "[dim]—[/dim]", "", "", "")
            continue
        for index, entry in enumerate(column.entries):
            item = entry.item
            table.add_row(
                name if index == 0 else "",
                _time_range(item),
                item.label or item.kind.value,
                item.subtitle,
                CONFLICT_MARK if entry.conflict else "",
            )
    return table


@app.command()
def day(
    date: Annotated[Optional[str], typer.Argument(help="Datum (YYYY-MM-DD), default: heute")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the day calendar: one column per stylist.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        target = _parse_day(date, config.timezone)

        asyncio.run(service.load_day(target))
        columns = service.day_layout(target)

        console.print()
        console.print(_render_columns(columns, f"Tagesansicht {target.format('dddd, DD.MM.YYYY', locale='de')}"))
        start, end = service.grid.visible_range()
        console.print(f"[dim]Öffnungszeiten {start:%H:%M}–{end:%H:%M}, Raster {service.grid.slot_minutes} Min.[/dim]\n")

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def week(
    date: Annotated[Optional[str], typer.Argument(help="Ein Tag der Woche (YYYY-MM-DD), default: heute")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the week board: stylists as rows, Monday to Sunday as columns.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        anchor = _parse_day(date, config.timezone)

        asyncio.run(service.load_week(anchor))
        columns = service.week_layout(anchor)
        days = ViewAggregator.week_dates(anchor)

        table = Table(
            title=f"Wochenplan {DateRange.week_of(anchor)}",
            show_header=True,
            header_style="bold cyan",
            show_lines=True,
        )
        table.add_column("Stylist", style="bold")
        for weekday, current in zip(WEEKDAY_LABELS, days):
            table.add_column(f"{weekday} {current.format('DD.MM.')}")

        cells = {(column.resource.id, column.date): column for column in columns}
        for resource in service.roster:
            row = [f"[{resource.color}]●[/] {resource.name}"]
            for current in days:
                lines = []
                for entry in cells[(resource.id, current)].entries:
                    hours = entry.item.duration_minutes / 60
                    mark = f" {CONFLICT_MARK}" if entry.conflict else ""
                    lines.append(f"{entry.item.start_time:%H:%M} {hours:.1f}h [dim]{entry.item.id}[/dim]{mark}")
                row.append("\n".join(lines))
            table.add_row(*row)

        console.print()
        console.print(table)
        console.print()

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def month(
    month: Annotated[Optional[str], typer.Argument(help="Monat (YYYY-MM), default: aktueller Monat")] = None,
    detail: Annotated[Optional[str], typer.Option("--day", help="Tagesdetails für ein Datum (YYYY-MM-DD) anzeigen.")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the month overview with booking dots per stylist.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        tz = config.timezone

        if month:
            try:
                focused = pendulum.from_format(month, "YYYY-MM", tz=tz).date()
            except ValueError as e:
                console.print(f"[red]Fehler beim Parsen des Monats: {e}[/red]")
                raise typer.Exit(1)
        else:
            focused = pendulum.today(tz).date()

        asyncio.run(service.load_month(focused.year, focused.month))
        summary = service.month_summary(focused.year, focused.month)
        aggregator = ViewAggregator()

        table = Table(
            title=focused.format("MMMM YYYY", locale="de"),
            show_header=True,
            header_style="bold cyan",
            show_lines=True,
        )
        for weekday in WEEKDAY_LABELS:
            table.add_column(weekday, justify="center")

        for week_cells in summary.weeks:
            row = []
            for cell in week_cells:
                if cell is None:
                    row.append("")
                    continue
                dots = "".join(
                    f"[{service.roster.get(resource_id).color}]{'●' * count}[/]"
                    for resource_id, count in aggregator.dots_for_date(summary.counts, cell, service.roster)
                )
                row.append(f"{cell.day}\n{dots}")
            table.add_row(*row)

        console.print()
        console.print(table)
        legend = "  ".join(f"[{r.color}]●[/] {r.name}" for r in service.roster)
        console.print(f"[dim]Legende:[/dim] {legend}\n")

        if detail:
            target = _parse_day(detail, tz)
            items = service.day_detail(target)
            console.print(f"[bold]Termine am {target.format('DD.MM.YYYY')}:[/bold]")
            if not items:
                console.print("  [dim]Keine Termine[/dim]")
            for item in items:
                console.print(f"  {_stylist_label(service, item.resource_id)}  {_time_range(item)}  {item.label} {item.subtitle}")
            console.print()

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def stylists(
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    List the stylist roster with display colours.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        asyncio.run(service.load_day(pendulum.today(config.timezone).date()))

        table = Table(title="Stylisten", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Name", style="bold yellow")
        table.add_column("ID", style="dim")
        table.add_column("Farbe")
        for index, resource in enumerate(service.roster):
            table.add_row(str(index + 1), resource.name, resource.id, f"[{resource.color}]■[/] {resource.color}")

        console.print()
        console.print(table)
        console.print()

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def move(
    item_id: Annotated[str, typer.Argument(help="ID des Termins / der Schicht")],
    stylist: Annotated[str, typer.Argument(help="Ziel-Stylist (ID)")],
    start: Annotated[str, typer.Argument(help="Neue Startzeit (HH:MM)")],
    to_date: Annotated[Optional[str], typer.Option("--date", help="Auf anderen Tag verschieben (YYYY-MM-DD).")] = None,
    week_of: Annotated[Optional[str], typer.Option("--week", help="Woche, in der der Eintrag liegt (YYYY-MM-DD).")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Move an item to another stylist and/or start time.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        tz = config.timezone
        page = _parse_day(week_of, tz)
        target_day = _parse_day(to_date, tz) if to_date else None
        # snap to the grid the same way a drop on the board does
        start_time = service.grid.snap(as_time(start))

        item = _run_mutation(
            service,
            page,
            lambda: service.move_item(item_id, stylist, start_time, day=target_day),
        )
        _print_item_result(service, "Verschoben", item)

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def duplicate(
    item_id: Annotated[str, typer.Argument(help="ID des Termins / der Schicht")],
    week_of: Annotated[Optional[str], typer.Option("--week", help="Woche, in der der Eintrag liegt (YYYY-MM-DD).")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Duplicate an item directly after itself.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        page = _parse_day(week_of, config.timezone)

        item = _run_mutation(service, page, lambda: service.duplicate_item(item_id))
        _print_item_result(service, "Dupliziert", item)

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def delete(
    item_id: Annotated[str, typer.Argument(help="ID des Termins / der Schicht")],
    week_of: Annotated[Optional[str], typer.Option("--week", help="Woche, in der der Eintrag liegt (YYYY-MM-DD).")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    data: DataOption = None,
    verbose: VerboseOption = False,
):
    """
    Delete an item. Deleting an unknown id is not an error.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file, mock or data is not None)
        service = _build_service(config, mock, data)
        page = _parse_day(week_of, config.timezone)

        deleted = _run_mutation(service, page, lambda: service.delete_item(item_id))
        if deleted:
            console.print(f"[green]✓ Gelöscht:[/green] {item_id}")
        else:
            console.print(f"[yellow]⊘ {item_id} nicht gefunden (bereits gelöscht?)[/yellow]")

    except (FileNotFoundError, SchedulingError) as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]salonboard[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
