"""tabular_import.match_engine

Column → schema-field matching with confidence scoring.

Each source column is scored independently against every SchemaField:

    1.0   normalized column == field key
    0.95  normalized column is one of the field's aliases
    0.8   normalized column equals or contains the normalized label
    0.7   column and key (or any alias) are substrings of each other
    0     no rule matches

The best field wins; ties go to the field declared first.  A single
conflict-resolution pass then keeps at most one column per target field.

Two acceptance thresholds are applied by callers and must stay distinct:
INTERACTIVE_THRESHOLD for default per-column suggestions and BULK_THRESHOLD
for the bulk auto-map action.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Sequence

from tabular_import.normalize import cell_text, normalize_column
from tabular_import.schema_registry import SchemaField, SchemaRegistry
from tabular_import.shared import MappingIncompleteError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

INTERACTIVE_THRESHOLD = 0.5
BULK_THRESHOLD = 0.3

CONFIDENCE_EXACT = 1.0
CONFIDENCE_ALIAS = 0.95
CONFIDENCE_LABEL = 0.8
CONFIDENCE_PARTIAL = 0.7

SAMPLE_SIZE = 3

# Minimum direct header==key hits before a caller may skip mapping review.
DIRECT_MATCH_MINIMUM = 3


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchResult:
    field: str | None
    confidence: float


@dataclass(frozen=True)
class ColumnMapping:
    source_column: str
    target_field: str | None
    confidence: float
    sample_values: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def field_aliases(
    field: SchemaField,
    alias_dictionary: Mapping[str, frozenset[str]] | None = None,
) -> frozenset[str]:
    """Schema-declared aliases plus the shared dictionary entry for the key."""
    if not alias_dictionary:
        return field.aliases
    return field.aliases | alias_dictionary.get(field.key, frozenset())


def score_field(
    normalized: str,
    field: SchemaField,
    aliases: frozenset[str],
) -> float:
    """Return the highest confidence tier that applies to one field."""
    if not normalized:
        return 0.0
    if normalized == field.key:
        return CONFIDENCE_EXACT
    if normalized in aliases:
        return CONFIDENCE_ALIAS
    label = normalize_column(field.label)
    if label and (normalized == label or label in normalized):
        return CONFIDENCE_LABEL
    if field.key in normalized or normalized in field.key:
        return CONFIDENCE_PARTIAL
    if any(alias in normalized or normalized in alias for alias in aliases):
        return CONFIDENCE_PARTIAL
    return 0.0


def find_best_match(
    source_column: str,
    fields: Sequence[SchemaField],
    alias_dictionary: Mapping[str, frozenset[str]] | None = None,
) -> MatchResult:
    """Score source_column against every field and keep the best.

    Only a strictly higher score displaces the current best, so ties
    resolve to declaration order.
    """
    normalized = normalize_column(source_column)
    best = MatchResult(field=None, confidence=0.0)
    for f in fields:
        score = score_field(normalized, f, field_aliases(f, alias_dictionary))
        if score > best.confidence:
            best = MatchResult(field=f.key, confidence=score)
    return best


# ---------------------------------------------------------------------------
# Conflict resolution
# ---------------------------------------------------------------------------

def resolve_conflicts(mappings: Sequence[ColumnMapping]) -> list[ColumnMapping]:
    """Keep at most one column per target field.

    Within each group sharing a non-null target the highest confidence wins
    (earliest column on ties); the others are demoted to target=None,
    confidence=0.  Returns a new list in the original column order.
    """
    winners: dict[str, int] = {}
    for idx, m in enumerate(mappings):
        if m.target_field is None:
            continue
        current = winners.get(m.target_field)
        if current is None or m.confidence > mappings[current].confidence:
            winners[m.target_field] = idx

    resolved: list[ColumnMapping] = []
    for idx, m in enumerate(mappings):
        if m.target_field is not None and winners[m.target_field] != idx:
            resolved.append(replace(m, target_field=None, confidence=0.0))
        else:
            resolved.append(m)
    return resolved


# ---------------------------------------------------------------------------
# Suggestion passes
# ---------------------------------------------------------------------------

def sample_values(
    source_column: str,
    raw_rows: Iterable[Mapping[str, Any]],
    limit: int = SAMPLE_SIZE,
) -> tuple[str, ...]:
    """Non-empty preview values from the first `limit` rows."""
    samples: list[str] = []
    for idx, row in enumerate(raw_rows):
        if idx >= limit:
            break
        v = cell_text(row.get(source_column))
        if v:
            samples.append(v)
    return tuple(samples)


def suggest_mappings(
    source_columns: Sequence[str],
    fields: Sequence[SchemaField],
    raw_rows: Sequence[Mapping[str, Any]] = (),
    threshold: float = INTERACTIVE_THRESHOLD,
    alias_dictionary: Mapping[str, frozenset[str]] | None = None,
) -> list[ColumnMapping]:
    """Match every column, apply the acceptance threshold, resolve conflicts.

    A column scoring below the threshold keeps its confidence but is
    presented unmapped.
    """
    mappings = []
    for col in source_columns:
        match = find_best_match(col, fields, alias_dictionary)
        mappings.append(
            ColumnMapping(
                source_column=col,
                target_field=match.field if match.confidence >= threshold else None,
                confidence=match.confidence,
                sample_values=sample_values(col, raw_rows),
            )
        )
    return resolve_conflicts(mappings)


def auto_map_all(
    source_columns: Sequence[str],
    fields: Sequence[SchemaField],
    raw_rows: Sequence[Mapping[str, Any]] = (),
    alias_dictionary: Mapping[str, frozenset[str]] | None = None,
) -> list[ColumnMapping]:
    """Bulk remap of every column at the looser BULK_THRESHOLD."""
    return suggest_mappings(
        source_columns, fields, raw_rows,
        threshold=BULK_THRESHOLD,
        alias_dictionary=alias_dictionary,
    )


def override_mapping(
    mappings: Sequence[ColumnMapping],
    source_column: str,
    target_field: str | None,
) -> list[ColumnMapping]:
    """Return mappings with one column pinned to target_field.

    The pinned column gets confidence 1.0 (0 when cleared); any other column
    holding the same target is cleared.
    """
    updated: list[ColumnMapping] = []
    for m in mappings:
        if m.source_column == source_column:
            updated.append(
                replace(
                    m,
                    target_field=target_field,
                    confidence=CONFIDENCE_EXACT if target_field else 0.0,
                )
            )
        elif target_field and m.target_field == target_field:
            updated.append(replace(m, target_field=None, confidence=0.0))
        else:
            updated.append(m)
    return updated


# ---------------------------------------------------------------------------
# Mapping inspection
# ---------------------------------------------------------------------------

def mapping_dict(mappings: Iterable[ColumnMapping]) -> dict[str, str]:
    """{source_column: target_field} for mapped columns only."""
    return {m.source_column: m.target_field for m in mappings if m.target_field}


def missing_required_fields(
    mappings: Iterable[ColumnMapping],
    registry: SchemaRegistry,
) -> list[SchemaField]:
    mapped = {m.target_field for m in mappings if m.target_field}
    return [f for f in registry.required_fields() if f.key not in mapped]


def require_complete_mapping(
    mappings: Sequence[ColumnMapping],
    registry: SchemaRegistry,
) -> None:
    """Raise MappingIncompleteError if any required field is unmapped."""
    missing = missing_required_fields(mappings, registry)
    if missing:
        raise MappingIncompleteError([f.label for f in missing])


def direct_key_matches(
    source_columns: Iterable[str],
    registry: SchemaRegistry,
) -> list[str]:
    """Field keys that some header equals exactly once normalized."""
    normalized = {normalize_column(c) for c in source_columns}
    return [k for k in registry.keys if k in normalized]


def can_skip_mapping(
    source_columns: Iterable[str],
    registry: SchemaRegistry,
) -> bool:
    """True when headers already line up with the schema well enough.

    Requires at least DIRECT_MATCH_MINIMUM direct hits, including every
    required field.
    """
    direct = set(direct_key_matches(source_columns, registry))
    if len(direct) < DIRECT_MATCH_MINIMUM:
        return False
    return all(f.key in direct for f in registry.required_fields())
