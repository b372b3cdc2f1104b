"""tabular_import.entity_rules

Business rules for each built-in import entity.

Rules are built by factory functions rather than held as module state so
each import session (or test) gets its own instances, e.g. an asset rule
set pinned to a fixed `today`.
"""

from __future__ import annotations

from datetime import date
from typing import Callable

from tabular_import.validation import (
    EntityRules,
    canonical_choice,
    choice_or_default,
    constant,
    less_than,
    lowercase,
    min_value,
    not_in_future,
    one_of,
    set_defaults,
    truncate_to_int,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMPLOYEE_TYPES = (
    "driver", "cleaner", "security", "office_staff",
    "part_time", "temporary", "contract",
)
DEFAULT_EMPLOYEE_TYPE = "office_staff"

ASSET_CATEGORIES = ("IT", "Vehicles", "Machinery", "Furniture", "Buildings", "Other")
DEPRECIATION_METHODS = ("straight_line", "reducing_balance")
DEFAULT_USEFUL_LIFE_YEARS = 5


# ---------------------------------------------------------------------------
# Per-entity rule sets
# ---------------------------------------------------------------------------

def inventory_rules() -> EntityRules:
    return EntityRules(
        normalizers=(
            set_defaults(current_stock=0, unit_price=0.0, reorder_level=10, liters_per_unit=0),
            truncate_to_int("current_stock", "reorder_level", "liters_per_unit"),
        ),
        rules=(
            min_value("unit_price", 0, "Price cannot be negative"),
            min_value("current_stock", 0, "Stock cannot be negative"),
            min_value("cost_price", 0, "Cost price cannot be negative"),
        ),
    )


def employee_rules() -> EntityRules:
    return EntityRules(
        normalizers=(
            set_defaults(employee_type=DEFAULT_EMPLOYEE_TYPE, base_salary_zmw=0.0),
            lowercase("employee_type"),
        ),
        rules=(
            one_of("employee_type", EMPLOYEE_TYPES, "Invalid type: {value}"),
            min_value("base_salary_zmw", 0, "Salary cannot be negative"),
        ),
    )


def asset_rules(today: Callable[[], date] = date.today) -> EntityRules:
    return EntityRules(
        normalizers=(
            canonical_choice("category", ASSET_CATEGORIES, "Other"),
            choice_or_default("depreciation_method", DEPRECIATION_METHODS, "straight_line"),
            set_defaults(salvage_value=0.0, useful_life_years=DEFAULT_USEFUL_LIFE_YEARS),
            truncate_to_int("useful_life_years"),
            constant("status", "active"),
        ),
        rules=(
            not_in_future("purchase_date", "Purchase date cannot be in the future", today=today),
            min_value("purchase_cost", 0, "Purchase cost must be > 0", inclusive=False),
            min_value("salvage_value", 0, "Salvage value must be ≥ 0"),
            less_than("salvage_value", "purchase_cost", "Salvage value must be < purchase cost"),
            _useful_life_in_range,
        ),
    )


def _useful_life_in_range(data) -> str | None:
    life = data.get("useful_life_years")
    if life is None or 1 <= life <= 100:
        return None
    return "Useful life must be 1–100 years"


_FACTORIES: dict[str, Callable[[], EntityRules]] = {
    "inventory": inventory_rules,
    "employees": employee_rules,
    "assets":    asset_rules,
}


def rules_for(entity: str) -> EntityRules:
    """Fresh rule set for a built-in entity; unknown entities get none."""
    factory = _FACTORIES.get(entity)
    return factory() if factory else EntityRules()
