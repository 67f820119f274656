"""relcache CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from ruamel.yaml import YAML

from relcache.catalog.errors import CatalogError
from relcache.config import CONFIG_FILE_NAME, ConfigError, load_config
from relcache.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from relcache.catalog.relations import EntityType
    from relcache.catalog.service import CatalogService, RebuildResult

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="relcache",
    help="relcache: keep denormalized catalog references consistent.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

# Global state for flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False
_config_path: Path = Path(CONFIG_FILE_NAME)

TokenOption = Annotated[
    str | None,
    typer.Option(
        "--token",
        "-t",
        help="Bearer token of an admin editor.",
        envvar="RELCACHE_TOKEN",
    ),
]
EntityTypeArg = Annotated[
    str,
    typer.Argument(help="Entity type: game, character, musicAlbum, music, staff."),
]


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_to_file: Annotated[
        bool,
        typer.Option("--log", help="Enable file logging to {catalog}/logs/debug.jsonl."),
    ] = False,
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="Catalog configuration file (default: ./catalog.yaml).",
            envvar="RELCACHE_CONFIG",
        ),
    ] = Path(CONFIG_FILE_NAME),
) -> None:
    """relcache: keep denormalized catalog references consistent."""
    global _verbose, _log_enabled, _config_path
    _verbose = verbose
    _log_enabled = log_to_file
    _config_path = config

    configure_logging(verbosity=verbose)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {escape(message)}")
    return typer.Exit(1)


def _parse_type(value: str) -> EntityType:
    from relcache.catalog.relations import parse_entity_type

    try:
        return parse_entity_type(value)
    except ValueError as e:
        raise _fail(str(e)) from None


def _open_service() -> CatalogService:
    """Load the catalog configuration and open its service.

    Raises:
        typer.Exit: If the configuration cannot be loaded.
    """
    from relcache.catalog.service import CatalogService

    try:
        config = load_config(_config_path)
    except ConfigError as e:
        raise _fail(f"{e}. Run 'relcache init' first.") from None

    catalog_dir = _config_path.parent
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, log_dir=catalog_dir / "logs")
        atexit.register(close_file_logging)

    return CatalogService.from_config(config, catalog_dir, cache_index=True)


def _run(action: Callable[[CatalogService], Any]) -> Any:
    """Run *action* against the catalog, mapping catalog errors to exit code 1."""
    service = _open_service()
    try:
        return action(service)
    except CatalogError as e:
        log.debug("command_failed", error=str(e), error_type=type(e).__name__)
        raise _fail(str(e)) from None
    finally:
        service.close()


def _print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]![/yellow] {escape(warning)}")


def _load_payload(path: Path) -> dict[str, Any]:
    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except OSError as e:
        raise _fail(f"Cannot read payload {path}: {e}") from None
    except Exception as e:
        raise _fail(f"Invalid payload {path}: {e}") from None
    if not isinstance(data, dict):
        raise _fail(f"Payload {path} must be a mapping with 'fields' and 'relations'")
    return data


@app.command()
def version() -> None:
    """Show version information."""
    from relcache import __version__

    console.print(f"relcache v{__version__}")


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Catalog name")],
    revalidate_url: Annotated[
        str | None,
        typer.Option("--revalidate-url", help="Public site base URL to notify after edits."),
    ] = None,
) -> None:
    """Create a catalog configuration file.

    Writes the file given by --config with default limits, the default
    category pages, and no tokens.
    """
    from relcache.config import create_default_config, write_config

    if _config_path.exists():
        raise _fail(f"Config '{_config_path}' already exists")

    config = create_default_config(name, revalidate_url=revalidate_url)
    write_config(config, _config_path)

    console.print(f"[green]✓[/green] Created catalog: [bold]{escape(name)}[/bold]")
    console.print(f"  Config: {_config_path.absolute()}")
    console.print(f"  Database: {config.database_path(_config_path.parent).absolute()}")
    console.print()
    console.print("Next steps:")
    console.print(f"  Add an admin token under auth.tokens in {_config_path.name}")


@app.command()
def show(
    entity_type: EntityTypeArg,
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
) -> None:
    """Print one entity document as JSON."""
    parsed = _parse_type(entity_type)

    def action(service: CatalogService) -> dict[str, Any] | None:
        return service.store.get(parsed.collection, entity_id)

    document = _run(action)
    if document is None:
        raise _fail(f"{parsed.collection}/{entity_id} does not exist")
    console.print_json(json.dumps(document))


@app.command()
def edit(
    entity_type: EntityTypeArg,
    entity_id: Annotated[str, typer.Argument(help="Entity id (created if absent)")],
    payload: Annotated[
        Path,
        typer.Option(
            "--payload",
            "-p",
            help="YAML or JSON file with 'fields', 'relations', 'releaseDatePrecision'.",
            exists=True,
            dir_okay=False,
        ),
    ],
    token: TokenOption = None,
    base_version: Annotated[
        int | None,
        typer.Option("--base-version", help="Version the edit was prepared against."),
    ] = None,
) -> None:
    """Apply an edit and update every denormalized copy it affects."""
    from relcache.catalog.models import EditPayload
    from relcache.catalog.planner import EditRequest

    parsed = _parse_type(entity_type)
    try:
        edit_payload = EditPayload.model_validate(_load_payload(payload))
        fields = edit_payload.normalized_fields()
    except ValidationError as e:
        raise _fail(f"Invalid payload {payload}: {e}") from None
    except ValueError as e:
        raise _fail(f"Invalid releaseDate in {payload}: {e}") from None

    request = EditRequest(
        entity_type=parsed,
        entity_id=entity_id,
        fields=fields,
        relations={k: list(v) for k, v in edit_payload.relations.items()},
    )

    result = _run(
        lambda service: asyncio.run(service.edit(token, request, base_version=base_version))
    )

    plan = result.plan
    console.print(
        f"[green]✓[/green] Saved {parsed.collection}/{entity_id} "
        f"({result.receipt.operations} writes)"
    )
    for diff in plan.diffs:
        if diff.added or diff.removed:
            console.print(
                f"  {diff.side.local_ids_field}: "
                f"+{len(diff.added)} -{len(diff.removed)} ={len(diff.retained)}"
            )
    if result.notification.delivered:
        console.print(f"  Revalidated {len(result.paths)} page(s)")
    _print_warnings(result.warnings)


def _report_rebuild(result: RebuildResult) -> None:
    rebuild = result.rebuild
    if rebuild.receipt is None:
        console.print(
            f"[yellow]![/yellow] {rebuild.entity_type.value} documents hold no caches; "
            "nothing to rebuild"
        )
        return
    for name, count in rebuild.caches.items():
        console.print(f"[green]✓[/green] Rebuilt {name} ({count} entries)")
    for ids_field, ids in rebuild.dropped.items():
        console.print(
            f"[yellow]![/yellow] Dropped {len(ids)} deleted id(s) from {ids_field}: "
            + escape(", ".join(ids))
        )
    _print_warnings(result.warnings)


@app.command("rebuild-cache")
def rebuild_cache(
    entity_type: EntityTypeArg,
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
    token: TokenOption = None,
) -> None:
    """Rebuild an entity's embedded caches from the referenced entities."""
    parsed = _parse_type(entity_type)
    result = _run(lambda service: asyncio.run(service.rebuild_cache(token, parsed, entity_id)))
    _report_rebuild(result)


@app.command("rebuild-index")
def rebuild_index(
    entity_type: EntityTypeArg,
    token: TokenOption = None,
) -> None:
    """Rewrite a type's aggregate cache document from its collection."""
    parsed = _parse_type(entity_type)
    result = _run(lambda service: asyncio.run(service.rebuild_aggregate(token, parsed)))
    _report_rebuild(result)


@app.command()
def audit(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Findings to list.")] = 50,
) -> None:
    """Report denormalized copies that drifted from their source.

    Exits with status 1 when drift is found.
    """
    from relcache.catalog.audit import find_drift

    report = _run(lambda service: find_drift(service.store))
    if report.clean:
        console.print(f"[green]✓[/green] {report.summary}")
        return

    table = Table(title="Catalog drift")
    table.add_column("Kind", style="bold")
    table.add_column("Document", style="cyan")
    table.add_column("Field")
    table.add_column("Reference", style="dim")
    for finding in report.findings[:limit]:
        table.add_row(
            finding.kind,
            f"{finding.entity_type.collection}/{finding.entity_id}",
            finding.field,
            finding.ref_id,
        )
    console.print(table)
    if len(report.findings) > limit:
        console.print(f"  ... and {len(report.findings) - limit} more")

    console.print(f"[yellow]![/yellow] {report.summary}")
    for rebuild_type, rebuild_id in report.entities_to_rebuild()[:10]:
        console.print(f"  relcache rebuild-cache {rebuild_type.value} {rebuild_id}")
    raise typer.Exit(1)


@app.command()
def history(
    entity_type: EntityTypeArg,
    entity_id: Annotated[str, typer.Argument(help="Entity id")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Entries to show.")] = 20,
) -> None:
    """Show the patches recorded for one document, most recent first."""
    from relcache.catalog.sqlite_store import SqliteDocumentStore

    parsed = _parse_type(entity_type)

    def action(service: CatalogService) -> list[dict[str, Any]]:
        if not isinstance(service.store, SqliteDocumentStore):
            return []
        return service.store.query_patch_log(
            collection=parsed.collection, doc_id=entity_id, limit=limit
        )

    entries = _run(action)
    if not entries:
        console.print(f"No patches recorded for {parsed.collection}/{entity_id}")
        return

    table = Table(title=f"History: {parsed.collection}/{entity_id}")
    table.add_column("Committed", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Reason", style="bold")
    table.add_column("Fields")
    for entry in entries:
        table.add_row(
            entry["committed_at"],
            entry["kind"],
            entry["reason"],
            escape(", ".join(sorted(entry["fields"]))),
        )
    console.print(table)


if __name__ == "__main__":
    app()
