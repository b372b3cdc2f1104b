"""tabular_import.import_tabular

Unified CLI entrypoint for spreadsheet imports.

Modes (--mode):
  import    — map, validate and commit a CSV into an entity table (default)
  suggest   — print the suggested column mapping only; no database access
  template  — emit the fill-in CSV template for an entity

Usage (import):
    python -m tabular_import.import_tabular \\
        --mode import \\
        --entity inventory \\
        --db-dsn "$IMPORT_DB_DSN" \\
        --tenant-id "b5a2c1d0-..." \\
        --csv-path "incoming/stock-take.csv" \\
        --map "Item No.=sku"

Usage (template):
    python -m tabular_import.import_tabular --mode template --entity assets \\
        --output-path assets-import-template.csv
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg

from tabular_import.entity_rules import rules_for
from tabular_import.importer import ImportProgress, run_import_batch
from tabular_import.match_engine import (
    BULK_THRESHOLD,
    INTERACTIVE_THRESHOLD,
    ColumnMapping,
    can_skip_mapping,
    missing_required_fields,
    override_mapping,
    require_complete_mapping,
    suggest_mappings,
)
from tabular_import.schema_registry import (
    BUILTIN_ENTITIES,
    SchemaRegistry,
    SchemaValidationError,
    load_alias_dictionary,
    load_builtin_schema,
    load_schema,
)
from tabular_import.shared import (
    FileParseError,
    ImportCounters,
    MappingIncompleteError,
    RejectWriter,
    read_csv_rows,
    write_run_report,
)
from tabular_import.store import PostgresRecordStore
from tabular_import.templates import render_template, template_filename
from tabular_import.validation import ParsedRow, validate_rows

MODES = ("import", "suggest", "template")


@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice(MODES),
    show_default=True,
    help="Pipeline mode",
)
@click.option("--entity", required=True, type=click.Choice(BUILTIN_ENTITIES), help="Target entity")
@click.option("--schema-file", default=None, type=click.Path(), help="Override the built-in schema YAML")
@click.option("--alias-file", default=None, type=click.Path(), help="Override the built-in alias dictionary")
@click.option("--db-dsn", default=None, envvar="IMPORT_DB_DSN", help="[import] PostgreSQL DSN")
@click.option("--tenant-id", default=None, help="[import] Tenant that owns the imported records")
@click.option("--csv-path", default=None, type=click.Path(), help="[import|suggest] Input CSV")
@click.option(
    "--map",
    "overrides",
    multiple=True,
    help="[import|suggest] SOURCE=FIELD mapping override; empty FIELD unmaps the column",
)
@click.option(
    "--auto-map",
    is_flag=True,
    default=False,
    help=f"[import|suggest] Accept weaker matches (threshold {BULK_THRESHOLD} instead of {INTERACTIVE_THRESHOLD})",
)
@click.option("--chunk-size", default=50, type=int, show_default=True, help="[import] Rows per progress chunk")
@click.option("--output-path", default=None, type=click.Path(), help="[template] Write the template here instead of stdout")
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default=None,
    type=click.Path(),
    help="CSV for rows failing validation (default ./artifacts/rejects/<run_id>.csv)",
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    entity: str,
    schema_file: str | None,
    alias_file: str | None,
    db_dsn: str | None,
    tenant_id: str | None,
    csv_path: str | None,
    overrides: tuple[str, ...],
    auto_map: bool,
    chunk_size: int,
    output_path: str | None,
    dry_run: bool,
    rejects_path: str | None,
    run_id: str | None,
    log_level: str,
) -> None:
    """Spreadsheet import CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    counters = ImportCounters()

    registry = _load_registry(entity, schema_file, run_id)

    if mode == "template":
        _run_template(registry, output_path, run_id)
        return

    click.echo(f"[{run_id}] Starting {mode} run for {entity} (dry_run={dry_run})")
    _validate_flags(mode, csv_path, db_dsn, tenant_id, chunk_size, run_id)

    try:
        headers, raw_rows = read_csv_rows(Path(csv_path))  # type: ignore[arg-type]
    except FileParseError as exc:
        click.echo(f"[{run_id}] FATAL: {FileParseError.user_message}: {exc}", err=True)
        sys.exit(1)
    counters.rows_read = len(raw_rows)

    try:
        aliases = load_alias_dictionary(Path(alias_file)) if alias_file else load_alias_dictionary()
    except (OSError, SchemaValidationError) as exc:
        click.echo(f"[{run_id}] FATAL: alias dictionary failed to load: {exc}", err=True)
        sys.exit(1)

    threshold = BULK_THRESHOLD if auto_map else INTERACTIVE_THRESHOLD
    mappings = suggest_mappings(headers, registry.fields, raw_rows, threshold, aliases)
    mappings = _apply_overrides(mappings, overrides, registry, run_id)
    _echo_mappings(mappings, run_id)
    counters.columns_mapped = sum(1 for m in mappings if m.target_field)
    counters.columns_unmapped = len(mappings) - counters.columns_mapped

    if mode == "suggest":
        missing = missing_required_fields(mappings, registry)
        if missing:
            click.echo(
                f"[{run_id}] Unmapped required fields: {', '.join(f.label for f in missing)}"
            )
        elif can_skip_mapping(headers, registry):
            click.echo(f"[{run_id}] Headers match the schema directly; no review needed.")
        return

    try:
        require_complete_mapping(mappings, registry)
    except MappingIncompleteError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}; use --map SOURCE=FIELD", err=True)
        sys.exit(1)

    parsed = validate_rows(raw_rows, mappings, registry, rules_for(entity))
    rejects = RejectWriter(Path(rejects_path or f"./artifacts/rejects/{run_id}.csv"))
    try:
        _collect_rejects(parsed, rejects, counters)
        click.echo(
            f"[{run_id}] Pre-scan: {counters.rows_read} rows read, "
            f"{counters.rows_rejected} rejected, {counters.rows_valid} valid"
        )
        _run_commit(
            db_dsn, tenant_id, entity, registry, parsed,  # type: ignore[arg-type]
            chunk_size, dry_run, run_id, counters,
        )
    finally:
        rejects.close()

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {
            "csv_path": str(csv_path),
            "entity": entity,
            "schema_version": registry.version,
            "schema_hash": registry.yaml_hash,
        },
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(json.dumps(counters.to_dict(), indent=2, default=str))

    if counters.diagnostic:
        click.echo(f"[{run_id}] {counters.diagnostic} — exiting non-zero", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] Done.")


# ---------------------------------------------------------------------------
# Mode helpers
# ---------------------------------------------------------------------------

def _load_registry(entity: str, schema_file: str | None, run_id: str) -> SchemaRegistry:
    try:
        registry = load_schema(Path(schema_file)) if schema_file else load_builtin_schema(entity)
    except (OSError, SchemaValidationError) as exc:
        click.echo(f"[{run_id}] FATAL: schema failed to load: {exc}", err=True)
        sys.exit(1)
    if registry.entity != entity:
        click.echo(
            f"[{run_id}] FATAL: schema entity {registry.entity!r} does not match --entity {entity!r}",
            err=True,
        )
        sys.exit(1)
    return registry


def _run_template(registry: SchemaRegistry, output_path: str | None, run_id: str) -> None:
    text = render_template(registry)
    if output_path is None:
        click.echo(text, nl=False)
        return
    dest = Path(output_path)
    if dest.is_dir():
        dest = dest / template_filename(registry)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(text, encoding="utf-8")
    click.echo(f"[{run_id}] Template written: {dest}")


def _apply_overrides(
    mappings: list[ColumnMapping],
    overrides: tuple[str, ...],
    registry: SchemaRegistry,
    run_id: str,
) -> list[ColumnMapping]:
    columns = {m.source_column for m in mappings}
    for spec in overrides:
        source, sep, target = spec.rpartition("=")
        source, target = source.strip(), target.strip()
        if not sep or source not in columns:
            click.echo(f"[{run_id}] FATAL: --map {spec!r} does not name a CSV column", err=True)
            sys.exit(1)
        if target and registry.lookup(target) is None:
            click.echo(
                f"[{run_id}] FATAL: --map {spec!r}: unknown field {target!r}; "
                f"expected one of {registry.keys}",
                err=True,
            )
            sys.exit(1)
        mappings = override_mapping(mappings, source, target or None)
    return mappings


def _echo_mappings(mappings: list[ColumnMapping], run_id: str) -> None:
    click.echo(f"[{run_id}] Column mapping:")
    for m in mappings:
        samples = ", ".join(m.sample_values) or "-"
        click.echo(
            f"[{run_id}]   {m.source_column!r:32} -> {m.target_field or '(unmapped)':20} "
            f"{m.confidence:.2f}  e.g. {samples}"
        )


def _collect_rejects(
    parsed: list[ParsedRow],
    rejects: RejectWriter,
    counters: ImportCounters,
) -> None:
    for row in parsed:
        for warning in row.warnings:
            counters.coercion_warnings += 1
            counters.warnings.append(f"row {row.row_number}: {warning}")
        if row.is_valid:
            counters.rows_valid += 1
            continue
        rejects.write(row.raw, "; ".join(row.errors))
    counters.rows_rejected = rejects.rows_written


def _run_commit(
    db_dsn: str,
    tenant_id: str,
    entity: str,
    registry: SchemaRegistry,
    parsed: list[ParsedRow],
    chunk_size: int,
    dry_run: bool,
    run_id: str,
    counters: ImportCounters,
) -> None:
    def on_progress(progress: ImportProgress) -> None:
        counters.chunks_processed += 1
        click.echo(
            f"[{run_id}] Progress: {progress.processed}/{progress.total} "
            f"({progress.failed} failed)"
        )

    # autocommit: each row's conn.transaction() is its own COMMIT, so rows
    # written before an interruption stay written.
    conn = psycopg.connect(db_dsn, autocommit=True)
    try:
        store = PostgresRecordStore(conn, entity, registry.natural_key)
        if dry_run:
            with conn.transaction(force_rollback=True):
                result = run_import_batch(
                    store, tenant_id, parsed, registry,
                    chunk_size=chunk_size, on_progress=on_progress,
                )
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            result = run_import_batch(
                store, tenant_id, parsed, registry,
                chunk_size=chunk_size, on_progress=on_progress,
            )
    finally:
        conn.close()

    counters.rows_added = result.added
    counters.rows_updated = result.updated
    counters.rows_failed = result.failed
    counters.cancelled = result.cancelled
    counters.diagnostic = result.diagnostic
    for message in result.error_messages():
        counters.warnings.append(message)
    click.echo(
        f"[{run_id}] Import: {result.added} added, {result.updated} updated, "
        f"{result.failed} failed"
    )


def _validate_flags(
    mode: str,
    csv_path: str | None,
    db_dsn: str | None,
    tenant_id: str | None,
    chunk_size: int,
    run_id: str,
) -> None:
    required = {"--csv-path": csv_path}
    if mode == "import":
        required.update({"--db-dsn": db_dsn, "--tenant-id": tenant_id})
    missing = [k for k, v in required.items() if v is None]
    if missing:
        click.echo(
            f"[{run_id}] FATAL: {mode} mode requires: {', '.join(missing)}",
            err=True,
        )
        sys.exit(1)
    if chunk_size < 1:
        click.echo(f"[{run_id}] FATAL: --chunk-size must be >= 1", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
