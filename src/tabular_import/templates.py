"""tabular_import.templates

Fill-in templates: the canonical header row plus the schema's example rows
as CSV text.
"""

from __future__ import annotations

import csv
import io

from tabular_import.schema_registry import SchemaRegistry


def render_template(registry: SchemaRegistry) -> str:
    """Return CSV text with field keys in declared order and example rows."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=registry.keys, lineterminator="\n")
    writer.writeheader()
    for row in registry.template_rows:
        writer.writerow({k: "" if v is None else v for k, v in row.items()})
    return buf.getvalue()


def template_filename(registry: SchemaRegistry) -> str:
    return f"{registry.entity}-import-template.csv"
