"""Unit tests for tabular_import.match_engine."""

from __future__ import annotations

import pytest

from tabular_import.match_engine import (
    BULK_THRESHOLD,
    INTERACTIVE_THRESHOLD,
    ColumnMapping,
    MatchResult,
    auto_map_all,
    can_skip_mapping,
    direct_key_matches,
    find_best_match,
    mapping_dict,
    missing_required_fields,
    override_mapping,
    require_complete_mapping,
    resolve_conflicts,
    sample_values,
    suggest_mappings,
)
from tabular_import.schema_registry import (
    SchemaField,
    SchemaRegistry,
    load_alias_dictionary,
    load_builtin_schema,
)
from tabular_import.shared import MappingIncompleteError

FIELDS = (
    SchemaField("sku", "SKU", "string", True, frozenset({"product_code"})),
    SchemaField("unit_price", "Unit Price", "number"),
    SchemaField("name", "Item Name", "string", True),
)
REGISTRY = SchemaRegistry(entity="widgets", version="v1", fields=FIELDS, natural_key="sku")


@pytest.fixture(scope="module")
def inventory():
    return load_builtin_schema("inventory")


@pytest.fixture(scope="module")
def aliases():
    return load_alias_dictionary()


# ---------------------------------------------------------------------------
# find_best_match: confidence tiers
# ---------------------------------------------------------------------------

class TestFindBestMatch:
    def test_exact_key(self):
        assert find_best_match("SKU", FIELDS) == MatchResult("sku", 1.0)

    def test_alias(self):
        assert find_best_match("Product Code", FIELDS) == MatchResult("sku", 0.95)

    def test_label_contained(self):
        assert find_best_match("Unit Price (ZMW)", FIELDS) == MatchResult("unit_price", 0.8)

    def test_label_equal(self):
        assert find_best_match("Item name", FIELDS) == MatchResult("name", 0.8)

    def test_partial_key(self):
        assert find_best_match("Price", FIELDS) == MatchResult("unit_price", 0.7)

    def test_no_match(self):
        assert find_best_match("Colour", FIELDS) == MatchResult(None, 0.0)

    def test_punctuation_only_header_never_matches(self):
        assert find_best_match("---", FIELDS) == MatchResult(None, 0.0)

    def test_dictionary_aliases_merged(self, inventory, aliases):
        assert find_best_match("Qty", inventory.fields, aliases) == MatchResult(
            "current_stock", 0.95
        )

    def test_tie_goes_to_first_declared(self):
        a = SchemaField("qty_a", "Qty", "number")
        b = SchemaField("qty_b", "Qty", "number")
        assert find_best_match("Qty", (a, b)).field == "qty_a"
        assert find_best_match("Qty", (b, a)).field == "qty_b"

    def test_alias_tie_across_dictionary(self, inventory, aliases):
        # 'cost' is an alias of both unit_price and cost_price
        assert find_best_match("Cost", inventory.fields, aliases).field == "unit_price"


# ---------------------------------------------------------------------------
# resolve_conflicts
# ---------------------------------------------------------------------------

class TestResolveConflicts:
    def test_highest_confidence_wins(self):
        mappings = [
            ColumnMapping("Name", "name", 0.8),
            ColumnMapping("Product Name", "name", 0.95),
            ColumnMapping("Title", "name", 0.7),
            ColumnMapping("SKU", "sku", 1.0),
        ]
        resolved = resolve_conflicts(mappings)
        assert [(m.target_field, m.confidence) for m in resolved] == [
            (None, 0.0), ("name", 0.95), (None, 0.0), ("sku", 1.0),
        ]

    def test_tie_keeps_first_column(self):
        resolved = resolve_conflicts([
            ColumnMapping("A", "sku", 0.95),
            ColumnMapping("B", "sku", 0.95),
        ])
        assert mapping_dict(resolved) == {"A": "sku"}

    def test_input_not_mutated(self):
        mappings = [ColumnMapping("A", "sku", 0.7), ColumnMapping("B", "sku", 1.0)]
        resolve_conflicts(mappings)
        assert mappings[0].target_field == "sku"

    def test_unmapped_untouched(self):
        m = ColumnMapping("Colour", None, 0.0)
        assert resolve_conflicts([m]) == [m]


# ---------------------------------------------------------------------------
# suggest_mappings / auto_map_all
# ---------------------------------------------------------------------------

class TestSuggestMappings:
    def test_inventory_spreadsheet(self, inventory, aliases):
        headers = ["Item Code", "Product Name", "Qty", "Selling Price", "Notes"]
        mappings = suggest_mappings(headers, inventory.fields, alias_dictionary=aliases)
        assert mapping_dict(mappings) == {
            "Item Code": "sku",
            "Product Name": "name",
            "Qty": "current_stock",
            "Selling Price": "unit_price",
            "Notes": "description",
        }

    def test_below_threshold_unmapped_but_keeps_confidence(self):
        mappings = suggest_mappings(["Price"], FIELDS, threshold=0.75)
        assert mappings[0].target_field is None
        assert mappings[0].confidence == 0.7

    def test_one_column_per_field(self):
        mappings = suggest_mappings(["Price", "Unit Price"], FIELDS)
        assert mapping_dict(mappings) == {"Unit Price": "unit_price"}

    def test_column_order_preserved(self):
        headers = ["Colour", "SKU", "Price"]
        assert [m.source_column for m in suggest_mappings(headers, FIELDS)] == headers

    def test_sample_values_attached(self):
        rows = [{"SKU": "A-1"}, {"SKU": "A-2"}]
        mappings = suggest_mappings(["SKU"], FIELDS, rows)
        assert mappings[0].sample_values == ("A-1", "A-2")

    def test_bulk_is_superset_of_interactive(self, inventory, aliases):
        headers = [
            "Item #", "Description", "Qty on hand", "Price (K)", "Cost",
            "Min Stock", "Litres", "Dept", "Misc", "Unit",
        ]
        interactive = suggest_mappings(
            headers, inventory.fields, threshold=INTERACTIVE_THRESHOLD, alias_dictionary=aliases
        )
        bulk = auto_map_all(headers, inventory.fields, alias_dictionary=aliases)
        assert set(mapping_dict(interactive).items()) <= set(mapping_dict(bulk).items())

    def test_auto_map_all_uses_bulk_threshold(self):
        assert auto_map_all(["Price"], FIELDS) == suggest_mappings(
            ["Price"], FIELDS, threshold=BULK_THRESHOLD
        )


class TestSampleValues:
    def test_skips_blanks_within_limit(self):
        rows = [{"P": "10"}, {"P": ""}, {"P": " 12 "}, {"P": "99"}]
        assert sample_values("P", rows) == ("10", "12")

    def test_missing_column(self):
        assert sample_values("P", [{"Q": "1"}]) == ()


# ---------------------------------------------------------------------------
# override_mapping
# ---------------------------------------------------------------------------

class TestOverrideMapping:
    def test_pins_column_and_clears_previous_holder(self):
        mappings = suggest_mappings(["Item Name", "Colour"], FIELDS)
        updated = override_mapping(mappings, "Colour", "name")
        assert mapping_dict(updated) == {"Colour": "name"}
        assert updated[1].confidence == 1.0
        assert updated[0].confidence == 0.0

    def test_clear(self):
        mappings = suggest_mappings(["SKU"], FIELDS)
        updated = override_mapping(mappings, "SKU", None)
        assert updated[0].target_field is None
        assert updated[0].confidence == 0.0

    def test_unknown_column_is_noop(self):
        mappings = suggest_mappings(["SKU"], FIELDS)
        assert override_mapping(mappings, "Nope", "name") == mappings


# ---------------------------------------------------------------------------
# Mapping completeness
# ---------------------------------------------------------------------------

class TestRequiredMapping:
    def test_missing_required(self):
        mappings = suggest_mappings(["SKU", "Price"], FIELDS)
        assert [f.key for f in missing_required_fields(mappings, REGISTRY)] == ["name"]

    def test_require_complete_raises_with_labels(self):
        mappings = suggest_mappings(["Price"], FIELDS)
        with pytest.raises(MappingIncompleteError) as excinfo:
            require_complete_mapping(mappings, REGISTRY)
        assert excinfo.value.missing == ["SKU", "Item Name"]

    def test_complete_passes(self):
        require_complete_mapping(suggest_mappings(["SKU", "Item Name"], FIELDS), REGISTRY)


class TestCanSkipMapping:
    def test_direct_matches_in_declared_order(self, inventory):
        assert direct_key_matches(["Unit Price", "SKU ", "name"], inventory) == [
            "sku", "name", "unit_price",
        ]

    def test_skip_when_required_and_three_direct(self, inventory):
        assert can_skip_mapping(["sku", "name", "current_stock"], inventory)

    def test_too_few_direct(self, inventory):
        assert not can_skip_mapping(["sku", "name", "Qty"], inventory)

    def test_required_missing(self, inventory):
        assert not can_skip_mapping(["name", "current_stock", "unit_price", "category"], inventory)
