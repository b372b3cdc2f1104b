"""tabular_import.validation

Row validation and type coercion.

A ParsedRow is a pure projection of (column mappings, raw row):

  1. Every mapped cell is coerced to its SchemaField type
     (string | number | boolean | date).  Blank cells are absent (None),
     except booleans, which read as False.
  2. Entity normalizers fill defaults and canonicalize values.
  3. Required-field rules (from the registry) run, then entity rules, in
     order.  Each failing rule appends one message to `errors`.

Unparsable numbers coerce to 0 without failing the row; a warning naming
the field and the raw text is attached so the zeroing is visible.  NaN
and infinite cells count as unparsable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable, Mapping, Sequence

from tabular_import.match_engine import ColumnMapping
from tabular_import.normalize import (
    cell_text,
    parse_bool,
    parse_calendar_date,
    parse_number,
)
from tabular_import.schema_registry import SchemaField, SchemaRegistry

RawRow = Mapping[str, "str | int | float | bool | None"]
Rule = Callable[[Mapping[str, Any]], "str | None"]
Normalizer = Callable[[dict[str, Any]], dict[str, Any]]

# Spreadsheet line of the first data row (line 1 is the header).
FIRST_DATA_ROW = 2


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ParsedRow:
    row_number: int
    data: dict[str, Any]
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class EntityRules:
    """Ordered normalizers and business rules for one entity."""

    normalizers: tuple[Normalizer, ...] = ()
    rules: tuple[Rule, ...] = ()


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def coerce_cell(value: Any, schema_field: SchemaField) -> tuple[Any, str | None]:
    """Return (typed value or None, optional warning) for one raw cell."""
    if schema_field.type == "boolean":
        return parse_bool(value), None

    text = cell_text(value)
    if text is None:
        return None, None

    if schema_field.type == "number":
        parsed = parse_number(value)
        if parsed is None:
            return 0.0, f"{schema_field.label}: could not read a number from {text!r}; using 0"
        return parsed, None

    if schema_field.type == "date":
        parsed_date = parse_calendar_date(value)
        if parsed_date is None:
            return None, f"{schema_field.label}: could not read a date from {text!r}"
        return parsed_date, None

    return text, None


# ---------------------------------------------------------------------------
# Rule factories
# ---------------------------------------------------------------------------

def _absent(value: Any) -> bool:
    return value is None or value == ""


def required(schema_field: SchemaField) -> Rule:
    message = f"{schema_field.label} is required"

    def rule(data: Mapping[str, Any]) -> str | None:
        return message if _absent(data.get(schema_field.key)) else None

    return rule


def min_value(key: str, bound: float, message: str, inclusive: bool = True) -> Rule:
    """Fail when a present value is below bound (or at it, if exclusive)."""

    def rule(data: Mapping[str, Any]) -> str | None:
        v = data.get(key)
        if v is None:
            return None
        ok = v >= bound if inclusive else v > bound
        return None if ok else message

    return rule


def max_value(key: str, bound: float, message: str) -> Rule:
    def rule(data: Mapping[str, Any]) -> str | None:
        v = data.get(key)
        if v is None:
            return None
        return message if v > bound else None

    return rule


def less_than(key: str, other_key: str, message: str) -> Rule:
    """Fail when data[key] >= data[other_key] and the other value is positive."""

    def rule(data: Mapping[str, Any]) -> str | None:
        v, other = data.get(key), data.get(other_key)
        if v is None or other is None or other <= 0:
            return None
        return message if v >= other else None

    return rule


def not_in_future(
    key: str,
    message: str,
    today: Callable[[], date] = date.today,
) -> Rule:
    def rule(data: Mapping[str, Any]) -> str | None:
        v = data.get(key)
        if v is None:
            return None
        return message if v > today() else None

    return rule


def one_of(key: str, allowed: Iterable[str], message: str) -> Rule:
    """Fail when a present value is outside `allowed`.

    `message` may reference the offending value as {value}.
    """
    allowed_set = frozenset(allowed)

    def rule(data: Mapping[str, Any]) -> str | None:
        v = data.get(key)
        if v is None or v in allowed_set:
            return None
        return message.format(value=v)

    return rule


# ---------------------------------------------------------------------------
# Normalizer factories
# ---------------------------------------------------------------------------

def set_defaults(**defaults: Any) -> Normalizer:
    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        for key, default in defaults.items():
            if _absent(out.get(key)):
                out[key] = default
        return out

    return normalize


def truncate_to_int(*keys: str) -> Normalizer:
    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        for key in keys:
            if out.get(key) is not None:
                out[key] = int(out[key])
        return out

    return normalize


def lowercase(*keys: str) -> Normalizer:
    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        for key in keys:
            if isinstance(out.get(key), str):
                out[key] = out[key].lower()
        return out

    return normalize


def canonical_choice(key: str, choices: Sequence[str], fallback: str) -> Normalizer:
    """Map a value onto the choice it equals, else the first it contains.

    Exact matches are checked across all choices first so 'Furniture'
    is not captured by the 'it' inside it.
    """

    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        lower = str(out.get(key) or fallback).lower().strip()
        exact = next((c for c in choices if c.lower() == lower), None)
        out[key] = exact or next((c for c in choices if c.lower() in lower), fallback)
        return out

    return normalize


def choice_or_default(key: str, allowed: Iterable[str], default: str) -> Normalizer:
    allowed_set = frozenset(allowed)

    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        v = str(out.get(key) or "").lower()
        out[key] = v if v in allowed_set else default
        return out

    return normalize


def constant(key: str, value: Any) -> Normalizer:
    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        out[key] = value
        return out

    return normalize


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------

def validate_row(
    raw_row: RawRow,
    mappings: Sequence[ColumnMapping],
    registry: SchemaRegistry,
    entity_rules: EntityRules | None = None,
    row_number: int = FIRST_DATA_ROW,
) -> ParsedRow:
    """Project one raw row through the mapping into a typed, checked row."""
    data: dict[str, Any] = {}
    warnings: list[str] = []

    for m in mappings:
        if not m.target_field:
            continue
        schema_field = registry.lookup(m.target_field)
        if schema_field is None:
            warnings.append(f"column {m.source_column!r} maps to unknown field {m.target_field!r}")
            continue
        value, warning = coerce_cell(raw_row.get(m.source_column), schema_field)
        data[schema_field.key] = value
        if warning:
            warnings.append(warning)

    rules = entity_rules or EntityRules()
    for normalize in rules.normalizers:
        data = normalize(data)

    errors: list[str] = []
    for rule in [required(f) for f in registry.required_fields()] + list(rules.rules):
        message = rule(data)
        if message:
            errors.append(message)

    return ParsedRow(
        row_number=row_number,
        data=data,
        errors=errors,
        warnings=warnings,
        raw=dict(raw_row),
    )


def validate_rows(
    raw_rows: Iterable[RawRow],
    mappings: Sequence[ColumnMapping],
    registry: SchemaRegistry,
    entity_rules: EntityRules | None = None,
) -> list[ParsedRow]:
    return [
        validate_row(row, mappings, registry, entity_rules, row_number=idx + FIRST_DATA_ROW)
        for idx, row in enumerate(raw_rows)
    ]
