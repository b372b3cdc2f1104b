"""tabular_import.shared

Shared utilities used by every import mode.
Includes the error types, RejectWriter, ImportCounters, and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FileParseError(Exception):
    """Raised when raw input cannot be decoded into rows at all."""

    user_message = "could not read file"


class MappingIncompleteError(Exception):
    """Raised when required schema fields have no confirmed column mapping."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"unmapped required fields: {', '.join(self.missing)}")


class PersistenceError(Exception):
    """Raised by a record store when a single row cannot be written."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.rows_written = 0

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()
        self.rows_written += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# ImportCounters
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    rows_read: int = 0
    rows_valid: int = 0
    rows_rejected: int = 0
    rows_added: int = 0
    rows_updated: int = 0
    rows_failed: int = 0
    columns_mapped: int = 0
    columns_unmapped: int = 0
    coercion_warnings: int = 0
    chunks_processed: int = 0
    cancelled: bool = False
    diagnostic: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Header normalization + CSV decoding
# ---------------------------------------------------------------------------

def normalize_headers(raw: dict[str | None, Any]) -> dict[str, Any]:
    """Return a new dict with header keys whitespace-stripped.

    Drops the None key csv.DictReader uses for surplus cells.
    """
    return {k.strip(): v for k, v in raw.items() if k is not None}


def read_csv_rows(path: Path) -> tuple[list[str], list[dict[str, Any]]]:
    """Decode a delimited file into (headers, rows).

    Rows whose cells are all blank are skipped.

    Raises:
        FileParseError: The file is unreadable, not UTF-8, or has no header.
    """
    try:
        with path.open(newline="", encoding="utf-8-sig") as fh:
            reader = csv.DictReader(fh)
            headers = [h.strip() for h in (reader.fieldnames or [])]
            rows = [
                row for row in (normalize_headers(r) for r in reader)
                if any((v or "").strip() for v in row.values() if isinstance(v, str))
            ]
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise FileParseError(f"{path}: {exc}") from exc
    if not any(headers):
        raise FileParseError(f"{path}: no header row")
    return headers, rows


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: ImportCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
