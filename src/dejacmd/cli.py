"""
CLI entry points for dejacmd.

This module provides the Typer-based command-line interface. There are two
programs:

    dejacmd-log     Called by the shell hook after every prompt; logs one command
    dejacmd         Search, query, import and export history; edit settings

Commands (dejacmd):
    search      Search command history, newest first
    query       Run SQL verbatim against one store, or show the table DDL
    import      Import a bash/zsh history file or a legacy SQLite database
    export      Export one store as a bash or zsh history file
    config      Show or change the database settings

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    coordinator, which owns all store selection and failure semantics.
"""

import json
import logging
import os
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from dejacmd import __version__
from dejacmd.coordinator import DualStore
from dejacmd.errors import DejacmdError
from dejacmd.history import open_history_source
from dejacmd.parser import parse_live_line, session_context
from dejacmd.schema import (
    ExportFormat,
    Settings,
    Shell,
    StoreRole,
    StoreSettings,
    load_settings,
    save_settings,
    settings_path,
)
from dejacmd.search import DEFAULT_LIMIT, SearchCriteria, parse_time_range

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="dejacmd",
    help="Search, import and export your shell command history.",
    add_completion=False,
    no_args_is_help=True,
)

log_app = typer.Typer(
    name="dejacmd-log",
    help="Log one shell command to the history databases.",
    add_completion=False,
)

# Rich console for formatted output
console = Console()
error_console = Console(stderr=True)

DISPLAY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
FILE_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


@dataclass
class CliState:
    """Options given on the root command, shared by every subcommand."""

    settings: Path | None = None
    debug: bool = False


def setup_logging(destination: str = "stderr", verbose: bool = False) -> None:
    """
    Route dejacmd's log records.

    Args:
        destination: "stderr", "stdout" or a file path (appended to)
        verbose: Log at DEBUG instead of WARNING
    """
    package_logger = logging.getLogger("dejacmd")
    for old in list(package_logger.handlers):
        package_logger.removeHandler(old)
        old.close()

    handler: logging.Handler
    if destination in ("stderr", "stdout"):
        handler = RichHandler(
            console=Console(stderr=destination == "stderr"),
            show_path=False,
            show_time=False,
        )
    else:
        path = Path(destination).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))

    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]dejacmd[/bold] version {__version__}")
        raise typer.Exit()


def _output_json_error(error: Exception, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    if isinstance(error, DejacmdError):
        output: dict[str, Any] = {"error": True, **error.to_dict()}
    else:
        output = {"error": True, "error_type": type(error).__name__, "message": str(error)}
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


def _fail(error: Exception, state: CliState, json_output: bool = False) -> NoReturn:
    """Report an error and exit with status 1."""
    if json_output:
        _output_json_error(error, state.debug)
    else:
        console.print(f"[red]Error: {escape(str(error))}[/red]")
        if state.debug:
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
    raise typer.Exit(code=1)


def _role(central: bool) -> StoreRole:
    return StoreRole.CENTRAL if central else StoreRole.LOCAL


def _format_time(value: Any) -> str:
    return value.strftime(DISPLAY_TIME_FORMAT) if value is not None else ""


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    settings: Annotated[
        Optional[Path],
        typer.Option(
            "--settings",
            help="Settings file (default: $DEJACMD_SETTINGS or ~/.dejacmd.yaml).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Enable verbose logging.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
) -> None:
    """
    dejacmd - Shell command history in SQLite, PostgreSQL or MySQL.

    Every command is logged to a local database and, optionally, to a central
    database shared between machines.
    """
    setup_logging("stderr", verbose)
    ctx.obj = CliState(settings=settings, debug=debug)


@app.command()
def search(
    ctx: typer.Context,
    text: Annotated[
        Optional[str],
        typer.Argument(help="Text to look for in commands (all commands if omitted)."),
    ] = None,
    central: Annotated[
        bool,
        typer.Option("--central", help="Search the central database instead of the local one."),
    ] = False,
    lines: Annotated[
        int,
        typer.Option("--lines", "-n", help="Maximum number of results (0 for all).", min=0),
    ] = DEFAULT_LIMIT,
    no_case: Annotated[
        bool,
        typer.Option("--no-case", "-i", help="Case-insensitive matching."),
    ] = False,
    regex: Annotated[
        bool,
        typer.Option("--regex", "-r", help="Treat TEXT as a regular expression."),
    ] = False,
    no_time: Annotated[
        bool,
        typer.Option("--no-time", "-t", help="Do not show timestamps."),
    ] = False,
    unique: Annotated[
        bool,
        typer.Option("--unique", "-u", help="Show each distinct command once (hides timestamps)."),
    ] = False,
    start: Annotated[
        Optional[str],
        typer.Option("--start", "-s", help="Only commands at or after YYYY-MM-DD_HH:MM:SS."),
    ] = None,
    end: Annotated[
        Optional[str],
        typer.Option("--end", "-e", help="Only commands at or before YYYY-MM-DD_HH:MM:SS."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Search command history, newest first.

    Example:
        $ dejacmd search docker -n 10 --start 2024-03-01
    """
    state: CliState = ctx.obj
    try:
        start_at, end_at = parse_time_range(start, end)
        criteria = SearchCriteria(
            text=text or None,
            regex=regex,
            ignore_case=no_case,
            start=start_at,
            end=end_at,
            limit=lines,
            unique=unique,
        )
        with DualStore.open(load_settings(state.settings), with_central=central) as stores:
            hits = stores.search(criteria, _role(central))
    except DejacmdError as e:
        _fail(e, state, json_output)

    if json_output:
        output = [
            {
                "command": hit.command,
                "command_timestamp": None
                if unique or hit.command_timestamp is None
                else hit.command_timestamp.isoformat(),
            }
            for hit in hits
        ]
        print(json.dumps(output, indent=2))
        return

    if not hits:
        console.print("[dim]No matching commands.[/dim]")
        return

    show_time = not (no_time or unique)
    for hit in hits:
        line = Text()
        if show_time:
            line.append(f"{_format_time(hit.command_timestamp):19}  ", style="dim")
        command = Text(hit.command)
        if text and not regex:
            command.highlight_words([text], style="bold yellow", case_sensitive=not no_case)
        line.append_text(command)
        console.print(line, soft_wrap=True)


@app.command()
def query(
    ctx: typer.Context,
    sql: Annotated[
        Optional[str],
        typer.Argument(help="SQL to execute verbatim."),
    ] = None,
    central: Annotated[
        bool,
        typer.Option("--central", help="Query the central database instead of the local one."),
    ] = False,
    ddl: Annotated[
        bool,
        typer.Option("--ddl", "-D", help="Show the history table definition."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Run SQL against one database.

    The SQL is passed to the database unchanged, so it must be written in
    that database's dialect. All rows are fetched before anything is printed.

    Example:
        $ dejacmd query "SELECT shell, COUNT(*) FROM history GROUP BY shell"
    """
    state: CliState = ctx.obj
    if not sql and not ddl:
        console.print("[red]Error: provide SQL to run or --ddl[/red]")
        raise typer.Exit(code=1)

    try:
        with DualStore.open(load_settings(state.settings), with_central=central) as stores:
            if ddl:
                definition = stores.describe_schema(_role(central))
            else:
                stream = stores.query(sql or "", _role(central))
                columns = stream.columns
                rows = stream.fetchall()
    except DejacmdError as e:
        _fail(e, state, json_output)

    if ddl:
        if json_output:
            print(json.dumps({"ddl": definition}, indent=2))
        else:
            console.print(definition, markup=False, highlight=False, soft_wrap=True)
        return

    if json_output:
        print(json.dumps(
            {"columns": columns, "rows": [list(row) for row in rows], "count": len(rows)},
            indent=2,
            default=str,
        ))
        return

    if not columns:
        console.print(f"{stream.rowcount} rows affected")
        return

    console.print(" | ".join(columns), style="bold", markup=False, highlight=False, soft_wrap=True)
    for row in rows:
        console.print(
            " | ".join("NULL" if value is None else str(value) for value in row),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
    console.print(f"[dim]({len(rows)} rows)[/dim]")


@app.command("import")
def import_history(
    ctx: typer.Context,
    file: Annotated[
        Path,
        typer.Argument(help="History file or legacy SQLite database to import."),
    ],
    truncate: Annotated[
        bool,
        typer.Option("--truncate", "-T", help="Delete existing history from the target database first."),
    ] = False,
    central: Annotated[
        bool,
        typer.Option("--central", help="Truncate the central database instead of the local one."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the summary in JSON format."),
    ] = False,
) -> None:
    """
    Import a history file.

    Bash (with or without timestamp comments), zsh extended history, files
    mixing both, and 'recent' SQLite databases are detected automatically.
    Records go to the local database, then to the central one if configured.

    Example:
        $ dejacmd import ~/.zsh_history
    """
    state: CliState = ctx.obj
    try:
        settings = load_settings(state.settings)
        source = open_history_source(file)
        with DualStore.open(settings) as stores:
            with Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                console=Console(stderr=True),
                transient=True,
            ) as progress:
                task = progress.add_task(f"Importing {file.name}", total=None)
                outcome = stores.import_source(
                    source,
                    truncate=truncate,
                    target=_role(central),
                    batch_size=settings.batch_size,
                    progress=lambda n: progress.update(task, description=f"Importing {file.name}: {n} records"),
                )
    except DejacmdError as e:
        _fail(e, state, json_output)

    if json_output:
        print(json.dumps({
            "file": str(file),
            "format": outcome.source_format,
            "imported": outcome.imported,
            "skipped": outcome.skipped,
            "truncated": outcome.truncated.value if outcome.truncated else None,
            "central_written": outcome.central_written,
            "central_missed": outcome.central_missed,
            "warnings": outcome.warnings,
        }, indent=2))
        return

    if outcome.truncated:
        console.print(f"[dim]Cleared the {outcome.truncated.value} history table[/dim]")
    console.print(
        f"[green]Imported {outcome.imported} commands[/green] from {escape(str(file))} "
        f"[dim]({outcome.source_format})[/dim]"
    )
    if outcome.skipped:
        console.print(f"[yellow]Skipped {outcome.skipped} unrecognized lines[/yellow]")
    for warning in outcome.warnings:
        console.print(f"[yellow]Warning: {escape(warning)}[/yellow]")
    if outcome.central_missed:
        console.print(f"[yellow]The central database missed {outcome.central_missed} commands[/yellow]")


@app.command()
def export(
    ctx: typer.Context,
    file: Annotated[
        Path,
        typer.Argument(help="History file to write."),
    ],
    fmt: Annotated[
        ExportFormat,
        typer.Option("--format", "-E", help="Output format.", case_sensitive=False),
    ] = ExportFormat.BASH,
    from_central: Annotated[
        bool,
        typer.Option("--from-central", "-F", help="Export the central database instead of the local one."),
    ] = False,
) -> None:
    """
    Export history as a bash or zsh history file, oldest first.

    Example:
        $ dejacmd export ~/history.zsh --format zsh
    """
    state: CliState = ctx.obj
    try:
        with DualStore.open(load_settings(state.settings), with_central=from_central) as stores:
            count = stores.export(file, fmt, _role(from_central))
    except (DejacmdError, OSError) as e:
        _fail(e, state)

    console.print(f"[green]Exported {count} commands[/green] to {escape(str(file))}")


@app.command()
def config(
    ctx: typer.Context,
    local_database: Annotated[
        Optional[str],
        typer.Option("--local-database", "-L", help="Local database URL."),
    ] = None,
    central_database: Annotated[
        Optional[str],
        typer.Option("--central-database", "-C", help="Central database URL (empty string to remove)."),
    ] = None,
    user: Annotated[
        Optional[str],
        typer.Option("--user", "-u", help="User name for the central database ({{user}} in its URL)."),
    ] = None,
    show: Annotated[
        bool,
        typer.Option("--show", help="Show the settings after applying changes."),
    ] = False,
) -> None:
    """
    Show or change the database settings.

    Passwords are not set here; they are read from DEJACMD_LOCAL_PASSWORD /
    DEJACMD_CENTRAL_PASSWORD or from an encrypted_password in the file.

    Example:
        $ dejacmd config -C "postgresql://{{user}}:{{password}}@db/history" -u alice
    """
    state: CliState = ctx.obj
    path = settings_path(state.settings)
    changed = local_database is not None or central_database is not None or user is not None

    try:
        settings = load_settings(path)
        if changed:
            settings = _apply_config(settings, local_database, central_database, user)
            save_settings(settings, path)
            console.print(f"[green]Saved settings to {escape(str(path))}[/green]")
    except (DejacmdError, ValueError) as e:
        _fail(e, state)

    if changed and not show:
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Database")
    table.add_column("URL", style="cyan")
    table.add_column("User")
    table.add_column("Password")
    for role in StoreRole:
        store = settings.store(role)
        if store is None:
            table.add_row(role.value, "[dim]not configured[/dim]", "", "")
            continue
        table.add_row(
            role.value,
            escape(store.url),
            escape(store.user or ""),
            "stored" if store.encrypted_password else "",
        )
    console.print(f"[dim]Settings file: {escape(str(path))}[/dim]")
    console.print(table)


def _apply_config(
    settings: Settings,
    local_database: str | None,
    central_database: str | None,
    user: str | None,
) -> Settings:
    """Return settings with the given URLs and user applied."""
    local = settings.local
    central = settings.central

    if local_database is not None:
        local = StoreSettings(**{**local.model_dump(), "url": local_database})
    if central_database is not None:
        if central_database.strip():
            existing = central.model_dump() if central else {}
            central = StoreSettings(**{**existing, "url": central_database})
        else:
            central = None
    if user is not None:
        if central is not None:
            central = StoreSettings(**{**central.model_dump(), "user": user or None})
        else:
            local = StoreSettings(**{**local.model_dump(), "user": user or None})

    return settings.model_copy(update={"local": local, "central": central})


# =============================================================================
# dejacmd-log
# =============================================================================


@log_app.command()
def log_command(
    history_line: Annotated[
        str,
        typer.Argument(help="Output of `history 1` (bash) or `fc -lt ... -1` (zsh)."),
    ],
    status: Annotated[
        int,
        typer.Option("--status", help="Exit status of the command (-1 if unknown)."),
    ] = -1,
    pid: Annotated[
        int,
        typer.Option("--pid", help="Process id of the shell (-1 if unknown)."),
    ] = -1,
    shell: Annotated[
        Optional[str],
        typer.Option("--shell", help="Shell name (default: basename of $SHELL)."),
    ] = None,
    log: Annotated[
        str,
        typer.Option("--log", help="Where to write log messages: stderr, stdout or a file."),
    ] = "stderr",
    settings: Annotated[
        Optional[Path],
        typer.Option("--settings", help="Settings file."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable verbose logging."),
    ] = False,
) -> None:
    """
    Log one command to the local database and, if configured, the central one.

    Exits 0 once the local write succeeded, even if the central write failed.
    Fatal errors always reach stderr, whatever --log says. The working
    directory, user and host of the shell are recorded with the command.

    Example (bash PROMPT_COMMAND):
        dejacmd-log --status $? --pid $$ "$(HISTTIMEFORMAT='%F %T ' history 1)"
    """
    setup_logging(log, verbose)
    tag = Shell.from_name(shell or os.environ.get("SHELL"))
    try:
        record = parse_live_line(
            history_line,
            shell=tag,
            exit_status=None if status == -1 else status,
            pid=None if pid == -1 else pid,
            **session_context(),
        )
        with DualStore.open(load_settings(settings)) as stores:
            outcome = stores.log(record)
    except DejacmdError as e:
        logger.error("%s", e)
        if log != "stderr":
            error_console.print(f"[red]dejacmd-log: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    logger.debug("Logged command as local row %s", outcome.local_id)


if __name__ == "__main__":
    app()
