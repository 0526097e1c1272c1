"""Bulk and CSV import modes."""

from __future__ import annotations

import pytest

from trackerhub.core.config import AppSettings
from trackerhub.core.errors import TrackerValidationError, UnauthorizedError
from trackerhub.services import bulk_import, rows


@pytest.mark.asyncio
async def test_invalid_rows_are_reported_without_stopping_the_batch(session, inventory) -> None:
    batch = [
        {"sku": "A-1", "quantity": 1},
        {"quantity": 2},
        {"sku": "A-3", "quantity": 3},
        {"sku": "A-4", "quantity": "four"},
        {"sku": "A-5", "quantity": 5},
    ]

    result = await bulk_import.bulk_import(
        session,
        inventory,
        "user-1",
        batch,
        settings=AppSettings(import_batch_size=2),
    )

    assert result.imported == 3
    assert result.updated == 0
    assert [failure.row for failure in result.failed] == [2, 4]
    assert result.failed[0].error == "SKU is required"
    assert result.failed[1].error == "Quantity must be a number"

    page, total = await rows.list_rows(session, inventory.id)
    assert total == 3
    assert [row.row_id for row in page] == ["A-1", "A-3", "A-5"]


@pytest.mark.asyncio
async def test_append_mode_refuses_existing_rows(session, inventory) -> None:
    await rows.add_row(session, inventory, "user-1", {"sku": "A-1"})

    result = await bulk_import.bulk_import(session, inventory, "user-1", [{"sku": "A-1"}, {"sku": "A-2"}])

    assert result.imported == 1
    assert result.failed[0].row == 1
    assert result.failed[0].error == 'Row with sku "A-1" already exists'


@pytest.mark.asyncio
async def test_update_mode_replaces_row_data(session, inventory) -> None:
    await rows.add_row(session, inventory, "user-1", {"sku": "A-1", "product": "Widget", "quantity": 1})

    result = await bulk_import.bulk_import(
        session,
        inventory,
        "user-1",
        [{"sku": "A-1", "quantity": 9}, {"sku": "A-2"}],
        mode="update",
    )

    assert (result.imported, result.updated, result.failed) == (1, 1, [])
    row = await rows.get_row(session, inventory.id, "A-1")
    assert row.data == {"sku": "A-1", "quantity": 9}
    assert row.updated_by == "user-1"


@pytest.mark.asyncio
async def test_replace_mode_clears_existing_rows_first(session, inventory) -> None:
    await rows.add_row(session, inventory, "user-1", {"sku": "OLD-1"})
    await rows.add_row(session, inventory, "user-1", {"sku": "OLD-2"})

    result = await bulk_import.bulk_import(
        session,
        inventory,
        "user-1",
        [{"sku": "NEW-1"}, {"sku": "NEW-2"}],
        mode="replace",
    )

    assert result.imported == 2
    page, total = await rows.list_rows(session, inventory.id)
    assert total == 2
    assert {row.row_id for row in page} == {"NEW-1", "NEW-2"}


@pytest.mark.asyncio
async def test_import_limits_and_ownership(session, inventory) -> None:
    with pytest.raises(TrackerValidationError, match="Cannot import more than 2 rows at once"):
        await bulk_import.bulk_import(
            session,
            inventory,
            "user-1",
            [{"sku": "1"}, {"sku": "2"}, {"sku": "3"}],
            settings=AppSettings(max_import_rows=2),
        )

    with pytest.raises(UnauthorizedError, match="Not authorized to import to this tracker"):
        await bulk_import.bulk_import(session, inventory, "user-2", [{"sku": "1"}])


@pytest.mark.asyncio
async def test_csv_import_maps_headers_to_columns(session, inventory) -> None:
    csv_content = "SKU,Product,Quantity,Ignored\nA-1,Widget,5,x\nA-2,Gadget,many,y\n"

    result = await bulk_import.import_csv(session, inventory, "user-1", csv_content)

    assert result.imported == 1
    assert [(failure.row, failure.error) for failure in result.failed] == [(2, "Quantity must be a number")]
    row = await rows.get_row(session, inventory.id, "A-1")
    assert row.data == {"sku": "A-1", "product": "Widget", "quantity": 5}


@pytest.mark.asyncio
async def test_csv_import_rejects_oversized_content(session, inventory) -> None:
    with pytest.raises(TrackerValidationError, match="CSV file too large"):
        await bulk_import.import_csv(
            session,
            inventory,
            "user-1",
            "SKU\n" + "A-1\n" * 10,
            settings=AppSettings(max_csv_size_bytes=16),
        )
