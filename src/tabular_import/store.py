"""tabular_import.store

Record stores implementing the importer's RecordStore protocol.

PostgresRecordStore writes to the per-entity tables created by
migrations/0001_import_tables.sql.  Table and column names come from the
whitelists below, never from input.  Each lookup and each write runs
inside conn.transaction(), which is a SAVEPOINT when the caller already
holds a transaction, so one failed row does not abort the rows after it.

MemoryRecordStore keeps records in a dict; used by tests and by previews
that must not touch the database.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import psycopg

from tabular_import.shared import PersistenceError

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Table whitelists
# ---------------------------------------------------------------------------

_ENTITY_TABLES = {
    "inventory": "inventory_item",
    "employees": "employee",
    "assets":    "fixed_asset",
}

_TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "inventory_item": (
        "sku", "name", "current_stock", "unit_price", "cost_price",
        "reorder_level", "liters_per_unit", "category", "description",
    ),
    "employee": (
        "full_name", "employee_type", "department", "job_title",
        "phone", "email", "base_salary_zmw",
    ),
    "fixed_asset": (
        "name", "category", "serial_number", "purchase_date", "purchase_cost",
        "salvage_value", "useful_life_years", "depreciation_method",
        "location", "assigned_to", "description", "status",
    ),
}


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

class PostgresRecordStore:
    """Tenant-scoped upserts into one entity table."""

    def __init__(
        self,
        conn: psycopg.Connection,
        entity: str,
        natural_key: str | None = None,
    ) -> None:
        if entity not in _ENTITY_TABLES:
            raise ValueError(
                f"Unknown entity '{entity}'. Must be one of {sorted(_ENTITY_TABLES)}."
            )
        self._conn = conn
        self._table = _ENTITY_TABLES[entity]
        self._columns = _TABLE_COLUMNS[self._table]
        if natural_key is not None and natural_key not in self._columns:
            raise ValueError(f"natural_key '{natural_key}' is not a column of {self._table}")
        self._natural_key = natural_key
        self._warned_extra = False

    def exists_by_natural_key(self, tenant_id: str, key: Any) -> str | None:
        if self._natural_key is None:
            return None
        with self._conn.transaction():
            row = self._conn.execute(
                f"""
                SELECT id FROM {self._table}
                WHERE tenant_id = %s
                  AND {self._natural_key} = %s
                  AND archived_at IS NULL
                ORDER BY created_at ASC, id ASC
                LIMIT 1
                """,
                (tenant_id, key),
            ).fetchone()
        return str(row[0]) if row else None

    def upsert(self, tenant_id: str, record: dict[str, Any]) -> str:
        cols = [c for c in self._columns if c in record]
        self._warn_extra_keys(record)
        values = [record[c] for c in cols]
        with self._conn.transaction():
            if record.get("id") is not None:
                if not cols:
                    return str(record["id"])
                assignments = ", ".join(f"{c} = %s" for c in cols)
                row = self._conn.execute(
                    f"""
                    UPDATE {self._table}
                    SET {assignments}, updated_at = now()
                    WHERE id = %s AND tenant_id = %s
                    RETURNING id
                    """,
                    (*values, record["id"], tenant_id),
                ).fetchone()
                if row is None:
                    raise PersistenceError(
                        f"{self._table} id={record['id']} not found for tenant {tenant_id}"
                    )
            else:
                placeholders = ", ".join(["%s"] * (len(cols) + 1))
                row = self._conn.execute(
                    f"""
                    INSERT INTO {self._table} (tenant_id, {", ".join(cols)})
                    VALUES ({placeholders})
                    RETURNING id
                    """,
                    (tenant_id, *values),
                ).fetchone()
        return str(row[0])

    def _warn_extra_keys(self, record: dict[str, Any]) -> None:
        extra = set(record) - set(self._columns) - {"id"}
        if extra and not self._warned_extra:
            log.warning("%s ignores fields not in its table: %s", self._table, sorted(extra))
            self._warned_extra = True


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class MemoryRecordStore:
    """Dict-backed store with the same lookup semantics as the SQL one."""

    def __init__(self, natural_key: str | None = None) -> None:
        self.natural_key = natural_key
        self.records: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []

    def exists_by_natural_key(self, tenant_id: str, key: Any) -> str | None:
        self.calls.append(("exists", key))
        if self.natural_key is None:
            return None
        for record_id, rec in self.records.items():
            if (
                rec["tenant_id"] == tenant_id
                and rec.get(self.natural_key) == key
                and not rec.get("archived")
            ):
                return record_id
        return None

    def upsert(self, tenant_id: str, record: dict[str, Any]) -> str:
        self.calls.append(("upsert", record.get(self.natural_key) if self.natural_key else None))
        data = {k: v for k, v in record.items() if k != "id"}
        record_id = record.get("id")
        if record_id is not None:
            existing = self.records.get(record_id)
            if existing is None or existing["tenant_id"] != tenant_id:
                raise PersistenceError(f"record id={record_id} not found for tenant {tenant_id}")
            existing.update(data)
            return record_id
        record_id = str(uuid.uuid4())
        self.records[record_id] = {"tenant_id": tenant_id, "archived": False, **data}
        return record_id

    def archive(self, record_id: str) -> None:
        self.records[record_id]["archived"] = True

    def live_records(self, tenant_id: str) -> list[dict[str, Any]]:
        return [
            rec for rec in self.records.values()
            if rec["tenant_id"] == tenant_id and not rec.get("archived")
        ]
