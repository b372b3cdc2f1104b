"""tabular_import.schema_registry

YAML-based schema registry for tabular imports.

Responsibilities:
  - Load and validate per-entity schema files from schemas/*.yml
  - Expose the ordered SchemaField list, lookup-by-key and required fields
  - Load the shared alias dictionary (schemas/aliases.yml)
  - Hash YAML content for traceability in run reports

Usage:
    from tabular_import.schema_registry import load_alias_dictionary, load_builtin_schema

    registry = load_builtin_schema("inventory")
    aliases = load_alias_dictionary()
    registry.lookup("sku").label   # 'SKU'
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from tabular_import.normalize import normalize_column

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SCHEMA_DIR = Path(__file__).parent / "schemas"
ALIAS_FILE = SCHEMA_DIR / "aliases.yml"

VALID_FIELD_TYPES = frozenset({"string", "number", "boolean", "date"})

REQUIRED_YAML_KEYS = frozenset({"entity", "version", "fields"})
REQUIRED_FIELD_KEYS = frozenset({"key", "label", "type"})

BUILTIN_ENTITIES = ("inventory", "employees", "assets")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SchemaValidationError(ValueError):
    """Raised when a YAML schema file fails validation."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SchemaField:
    key: str
    label: str
    type: str = "string"
    required: bool = False
    aliases: frozenset[str] = frozenset()


@dataclass(frozen=True)
class SchemaRegistry:
    """Parsed, validated field list for one target entity."""

    entity: str
    version: str
    fields: tuple[SchemaField, ...]
    natural_key: str | None = None
    template_rows: tuple[Mapping[str, Any], ...] = ()
    yaml_hash: str = field(default="", compare=False)

    def lookup(self, key: str) -> SchemaField | None:
        for f in self.fields:
            if f.key == key:
                return f
        return None

    def required_fields(self) -> list[SchemaField]:
        return [f for f in self.fields if f.required]

    @property
    def keys(self) -> list[str]:
        return [f.key for f in self.fields]


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_schema(yaml_path: Path) -> SchemaRegistry:
    """Load, validate, and return a SchemaRegistry from a YAML file.

    Raises:
        SchemaValidationError: If any required key is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    validate_schema(data)
    yaml_hash = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return build_registry(data, yaml_hash=yaml_hash)


def load_builtin_schema(entity: str) -> SchemaRegistry:
    """Load one of the schemas shipped with the package."""
    if entity not in BUILTIN_ENTITIES:
        raise SchemaValidationError(
            f"Unknown entity '{entity}'. Must be one of {sorted(BUILTIN_ENTITIES)}."
        )
    return load_schema(SCHEMA_DIR / f"{entity}.yml")


def build_registry(data: dict[str, Any], yaml_hash: str = "") -> SchemaRegistry:
    """Build a registry from an already-validated mapping."""
    fields = tuple(
        SchemaField(
            key=str(f["key"]),
            label=str(f["label"]),
            type=str(f["type"]),
            required=bool(f.get("required", False)),
            aliases=frozenset(
                a for a in (normalize_column(str(x)) for x in (f.get("aliases") or [])) if a
            ),
        )
        for f in data["fields"]
    )
    template_rows = tuple(
        MappingProxyType(dict(row)) for row in (data.get("template_rows") or [])
    )
    return SchemaRegistry(
        entity=str(data["entity"]),
        version=str(data["version"]),
        fields=fields,
        natural_key=data.get("natural_key"),
        template_rows=template_rows,
        yaml_hash=yaml_hash,
    )


def validate_schema(data: Any) -> None:
    """Raise SchemaValidationError if data does not match the schema format.

    Validates:
      - Required top-level keys present, 'fields' a non-empty list
      - Each field has key/label/type, type is one of the allowed values
      - Field keys are unique
      - natural_key (when set) names a declared, required field
    """
    if not isinstance(data, dict):
        raise SchemaValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise SchemaValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    fields = data.get("fields")
    if not isinstance(fields, list) or not fields:
        raise SchemaValidationError("'fields' must be a non-empty list.")

    seen: set[str] = set()
    required_keys: set[str] = set()
    for idx, f in enumerate(fields):
        if not isinstance(f, dict):
            raise SchemaValidationError(f"Field #{idx} must be a mapping.")
        missing = REQUIRED_FIELD_KEYS - set(f.keys())
        if missing:
            raise SchemaValidationError(f"Field #{idx} missing keys: {sorted(missing)}")
        key = str(f["key"])
        if key != normalize_column(key):
            raise SchemaValidationError(
                f"Field key '{key}' must already be in normalized form."
            )
        if key in seen:
            raise SchemaValidationError(f"Duplicate field key '{key}'.")
        seen.add(key)
        if f["type"] not in VALID_FIELD_TYPES:
            raise SchemaValidationError(
                f"Field '{key}' has invalid type '{f['type']}'. "
                f"Must be one of {sorted(VALID_FIELD_TYPES)}."
            )
        aliases = f.get("aliases")
        if aliases is not None and not isinstance(aliases, list):
            raise SchemaValidationError(f"Field '{key}' aliases must be a list.")
        if f.get("required"):
            required_keys.add(key)

    natural_key = data.get("natural_key")
    if natural_key is not None:
        if natural_key not in seen:
            raise SchemaValidationError(
                f"natural_key '{natural_key}' is not a declared field."
            )
        if natural_key not in required_keys:
            raise SchemaValidationError(
                f"natural_key '{natural_key}' must be a required field."
            )

    template_rows = data.get("template_rows")
    if template_rows is not None:
        if not isinstance(template_rows, list) or not all(
            isinstance(r, dict) for r in template_rows
        ):
            raise SchemaValidationError("'template_rows' must be a list of mappings.")
        for r in template_rows:
            unknown = set(r.keys()) - seen
            if unknown:
                raise SchemaValidationError(
                    f"template_rows reference unknown fields: {sorted(unknown)}"
                )


# ---------------------------------------------------------------------------
# Alias dictionary
# ---------------------------------------------------------------------------

def load_alias_dictionary(yaml_path: Path = ALIAS_FILE) -> Mapping[str, frozenset[str]]:
    """Load field key → synonym set, normalized, as a read-only mapping."""
    data = yaml.safe_load(yaml_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise SchemaValidationError("Alias dictionary root must be a mapping.")
    aliases: dict[str, frozenset[str]] = {}
    for key, names in data.items():
        if not isinstance(names, list):
            raise SchemaValidationError(f"Aliases for '{key}' must be a list.")
        aliases[str(key)] = frozenset(
            a for a in (normalize_column(str(n)) for n in names) if a
        )
    return MappingProxyType(aliases)
