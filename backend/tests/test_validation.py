"""Schema validation and CSV parsing."""

from __future__ import annotations

from conftest import inventory_columns

from trackerhub.models.tracker import ColumnDefinition
from trackerhub.services.validation import (
    coerce_date,
    generate_slug,
    map_csv_to_tracker_data,
    parse_csv,
    validate_columns,
    validate_row_data,
)


def test_row_values_are_coerced_to_column_types() -> None:
    result = validate_row_data(
        inventory_columns(),
        {
            "sku": "A-1",
            "quantity": "1,200",
            "delivery_date": "2024-09-13",
            "status": "active",
            "in_stock": "yes",
        },
    )

    assert result.is_valid
    assert result.data == {
        "sku": "A-1",
        "quantity": 1200,
        "delivery_date": "2024-09-13T00:00:00Z",
        "status": "active",
        "in_stock": True,
    }


def test_invalid_values_report_one_error_per_field() -> None:
    result = validate_row_data(
        inventory_columns(),
        {"quantity": "lots", "status": "archived", "delivery_date": "someday"},
    )

    messages = {error.field: error.message for error in result.errors}
    assert messages == {
        "sku": "SKU is required",
        "quantity": "Quantity must be a number",
        "delivery_date": "Delivery Date must be a valid date",
        "status": "Status must be one of: active, discontinued",
    }
    assert not result.is_valid


def test_unknown_keys_are_dropped_and_explicit_none_is_kept() -> None:
    result = validate_row_data(
        inventory_columns(),
        {"sku": "A-1", "colour": "red", "product": None, "quantity": ""},
    )

    assert result.data == {"sku": "A-1", "product": None}


def test_boolean_and_numeric_edge_values() -> None:
    result = validate_row_data(
        inventory_columns(),
        {"sku": 42, "quantity": 2.5, "in_stock": "No"},
    )

    assert result.data == {"sku": "42", "quantity": 2.5, "in_stock": False}


def test_epoch_milliseconds_are_accepted_as_dates() -> None:
    assert coerce_date(0) == "1970-01-01T00:00:00Z"
    assert coerce_date("Sep 13 2024") == "2024-09-13T00:00:00Z"
    assert coerce_date("") is None


def test_column_definitions_are_checked_as_a_whole() -> None:
    columns = [
        ColumnDefinition(id="a", name="A", key="code"),
        ColumnDefinition(id="a", name="B", key="code"),
        ColumnDefinition(id="c", name="C", key="bad key"),
        ColumnDefinition(id="d", name="Kind", key="kind", type="select"),
    ]

    messages = [error.message for error in validate_columns(columns).errors]
    assert "Duplicate column ID: a" in messages
    assert "Duplicate column key: code" in messages
    assert any('"bad key"' in message for message in messages)
    assert 'Select column "Kind" must have options' in messages


def test_generate_slug_collapses_punctuation() -> None:
    assert generate_slug("  Inventory Tracker 2024! ") == "inventory-tracker-2024"
    assert len(generate_slug("x" * 80)) == 50


def test_parse_csv_neutralises_formula_cells() -> None:
    headers, rows = parse_csv('SKU,Product\nA-1,=SUM(A1:A2)\n\nA-2,"Hat, wool"\n')

    assert headers == ["SKU", "Product"]
    assert rows == [["A-1", "'=SUM(A1:A2)"], ["A-2", "Hat, wool"]]


def test_csv_headers_match_column_names_or_keys() -> None:
    mapped = map_csv_to_tracker_data(
        ["sku", "QUANTITY", "Notes"],
        [["A-1", "5", "ignored"], ["A-2"]],
        inventory_columns(),
    )

    assert mapped == [{"sku": "A-1", "quantity": "5"}, {"sku": "A-2"}]
