"""Unit tests for tabular_import.shared."""

from __future__ import annotations

import csv
import json

import pytest

from tabular_import.shared import (
    FileParseError,
    ImportCounters,
    MappingIncompleteError,
    RejectWriter,
    normalize_headers,
    read_csv_rows,
    write_run_report,
)


# ---------------------------------------------------------------------------
# read_csv_rows
# ---------------------------------------------------------------------------

class TestReadCsvRows:
    def test_reads_headers_and_rows(self, tmp_path):
        p = tmp_path / "in.csv"
        p.write_text(" SKU ,Name\nA-1,Straw\n,\nA-2,Bottle\n", encoding="utf-8")
        headers, rows = read_csv_rows(p)
        assert headers == ["SKU", "Name"]
        assert rows == [{"SKU": "A-1", "Name": "Straw"}, {"SKU": "A-2", "Name": "Bottle"}]

    def test_utf8_bom_stripped(self, tmp_path):
        p = tmp_path / "bom.csv"
        p.write_bytes("\ufeffSKU\nA-1\n".encode("utf-8"))
        headers, _ = read_csv_rows(p)
        assert headers == ["SKU"]

    def test_surplus_cells_dropped(self, tmp_path):
        p = tmp_path / "wide.csv"
        p.write_text("SKU\nA-1,extra\n", encoding="utf-8")
        _, rows = read_csv_rows(p)
        assert rows == [{"SKU": "A-1"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileParseError):
            read_csv_rows(tmp_path / "absent.csv")

    def test_not_utf8(self, tmp_path):
        p = tmp_path / "latin1.csv"
        p.write_bytes("Name\nCaf\xe9\n".encode("latin-1"))
        with pytest.raises(FileParseError):
            read_csv_rows(p)

    def test_empty_file(self, tmp_path):
        p = tmp_path / "empty.csv"
        p.write_text("", encoding="utf-8")
        with pytest.raises(FileParseError, match="no header"):
            read_csv_rows(p)


class TestNormalizeHeaders:
    def test_strips_and_drops_none_key(self):
        assert normalize_headers({" A ": "1", None: ["x"]}) == {"A": "1"}


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class TestRejectWriter:
    def test_lazy_open(self, tmp_path):
        p = tmp_path / "rejects" / "r.csv"
        w = RejectWriter(p)
        w.close()
        assert not p.exists()

    def test_writes_reason_column(self, tmp_path):
        p = tmp_path / "rejects" / "r.csv"
        w = RejectWriter(p)
        w.write({"SKU": "", "Name": "Straw"}, "SKU is required")
        w.write({"SKU": "A", "Name": ""}, "Name is required")
        w.close()
        with p.open(newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert [r["_reject_reason"] for r in rows] == ["SKU is required", "Name is required"]
        assert w.rows_written == 2


# ---------------------------------------------------------------------------
# Counters + report
# ---------------------------------------------------------------------------

class TestImportCounters:
    def test_warnings_truncated(self):
        c = ImportCounters(warnings=[f"w{i}" for i in range(80)])
        d = c.to_dict()
        assert len(d["warnings"]) == 50
        assert d["rows_read"] == 0


class TestWriteRunReport:
    def test_writes_json(self, tmp_path):
        counters = ImportCounters(rows_read=3, rows_added=2, rows_rejected=1)
        path = write_run_report(
            "run-1", "2024-01-01T00:00:00", "import", False,
            {"csv_path": "in.csv", "entity": "inventory"}, counters,
            report_dir=tmp_path,
        )
        assert path == tmp_path / "run-1.json"
        report = json.loads(path.read_text())
        assert report["entity"] == "inventory"
        assert report["counters"]["rows_added"] == 2
        assert report["dry_run"] is False


class TestMappingIncompleteError:
    def test_message_lists_fields(self):
        exc = MappingIncompleteError(["SKU", "Name"])
        assert exc.missing == ["SKU", "Name"]
        assert "SKU, Name" in str(exc)
