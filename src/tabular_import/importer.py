"""tabular_import.importer

Batch commit of validated rows against a record store.

Processing model:
  - Only valid ParsedRows are considered; invalid rows never reach the store.
  - Rows are split into fixed-size chunks (default 50).  Chunks run strictly
    in sequence and rows inside a chunk strictly one at a time, because the
    natural-key lookup followed by the write is not atomic.
  - Natural-key entities: a live record with the same key for the tenant is
    updated, otherwise a new record is inserted.  Entities without a natural
    key always insert.
  - A failing row is recorded and the batch continues.
  - Progress is pushed to the caller after every chunk.
  - If every attempted row fails with an access-denied error, a single
    permission diagnostic is reported instead of N copies.

Cancellation: `should_stop` is polled before each chunk.  Rows already
written stay written; re-running the same file is idempotent for them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol, Sequence

from tabular_import.schema_registry import SchemaRegistry
from tabular_import.validation import ParsedRow

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE = 50

ACTION_ADDED = "added"
ACTION_UPDATED = "updated"
ACTION_FAILED = "failed"

PERMISSION_DIAGNOSTIC = "insufficient permission to import"

_ACCESS_DENIED_RE = re.compile(
    r"permission denied|row[- ]level security|insufficient[_ ]privilege"
    r"|not authori[sz]ed|access denied|\b42501\b",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Persistence collaborator
# ---------------------------------------------------------------------------

class RecordStore(Protocol):
    def exists_by_natural_key(self, tenant_id: str, key: Any) -> str | None:
        """Return the id of the live record holding `key`, or None."""
        ...

    def upsert(self, tenant_id: str, record: dict[str, Any]) -> str:
        """Insert, or update when record carries 'id'.  Return the record id."""
        ...


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImportOutcome:
    natural_key: Any
    action: str
    error: str | None = None
    row_number: int | None = None


@dataclass(frozen=True)
class ImportProgress:
    processed: int
    total: int
    failed: int


@dataclass(frozen=True)
class ImportBatchResult:
    added: int
    updated: int
    failed: int
    failures: tuple[ImportOutcome, ...] = ()
    diagnostic: str | None = None
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return self.added + self.updated + self.failed

    def error_messages(self) -> list[str]:
        """One line per failed row, or the single diagnostic when set."""
        if self.diagnostic:
            return [self.diagnostic]
        return [
            f"row {o.row_number} ({o.natural_key}): {o.error}" for o in self.failures
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "failed": self.failed,
            "diagnostic": self.diagnostic,
            "cancelled": self.cancelled,
            "errors": self.error_messages()[:50],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def chunked(rows: Sequence[ParsedRow], size: int) -> Iterator[Sequence[ParsedRow]]:
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def is_access_denied(message: str | None) -> bool:
    return bool(message) and _ACCESS_DENIED_RE.search(message) is not None


def commit_row(
    store: RecordStore,
    tenant_id: str,
    row: ParsedRow,
    natural_key: str | None,
) -> ImportOutcome:
    """Write one row; any store error becomes a failed outcome."""
    key = row.data.get(natural_key) if natural_key else None
    try:
        record = dict(row.data)
        existing_id = (
            store.exists_by_natural_key(tenant_id, key) if key is not None else None
        )
        if existing_id is not None:
            record["id"] = existing_id
        store.upsert(tenant_id, record)
    except Exception as exc:  # noqa: BLE001
        log.warning("row %s (%s) failed: %s", row.row_number, key, exc)
        return ImportOutcome(key, ACTION_FAILED, str(exc), row.row_number)
    action = ACTION_UPDATED if existing_id is not None else ACTION_ADDED
    return ImportOutcome(key, action, None, row.row_number)


# ---------------------------------------------------------------------------
# Batch runner
# ---------------------------------------------------------------------------

def run_import_batch(
    store: RecordStore,
    tenant_id: str,
    rows: Sequence[ParsedRow],
    registry: SchemaRegistry,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: Callable[[ImportProgress], None] | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> ImportBatchResult:
    """Commit the valid rows and return the terminal batch result."""
    candidates = [r for r in rows if r.is_valid]
    total = len(candidates)
    added = updated = 0
    failures: list[ImportOutcome] = []
    cancelled = False

    log.info(
        "importing %d of %d rows into %s for tenant %s",
        total, len(rows), registry.entity, tenant_id,
    )

    processed = 0
    for idx, chunk in enumerate(chunked(candidates, chunk_size)):
        if should_stop is not None and should_stop():
            cancelled = True
            log.info("import cancelled after %d of %d rows", processed, total)
            break
        for row in chunk:
            outcome = commit_row(store, tenant_id, row, registry.natural_key)
            if outcome.action == ACTION_ADDED:
                added += 1
            elif outcome.action == ACTION_UPDATED:
                updated += 1
            else:
                failures.append(outcome)
        processed += len(chunk)
        log.debug("chunk %d done: %d/%d processed", idx, processed, total)
        if on_progress is not None:
            on_progress(ImportProgress(processed, total, len(failures)))

    diagnostic = None
    attempted = added + updated + len(failures)
    if failures and len(failures) == attempted and all(
        is_access_denied(o.error) for o in failures
    ):
        diagnostic = PERMISSION_DIAGNOSTIC
        log.error("%s: all %d rows were rejected by the store", diagnostic, attempted)

    return ImportBatchResult(
        added=added,
        updated=updated,
        failed=len(failures),
        failures=tuple(failures),
        diagnostic=diagnostic,
        cancelled=cancelled,
    )
