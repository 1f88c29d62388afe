from decimal import Decimal

import pytest

from medshop.core.errors import AppError
from medshop.services.inventory import InventoryService, stock_percentage, stock_urgency


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def service(database, alerts):
    return InventoryService(database, alert_hook=alerts.append)


async def _quantity(db, warehouse_id, variant_id):
    row = await db.fetch_one(
        "SELECT quantity FROM inventory WHERE warehouse_id = %s AND variant_id = %s",
        (warehouse_id, variant_id),
    )
    return row["quantity"] if row else None


async def _variant_stock(db, variant_id):
    row = await db.fetch_one(
        "SELECT stock_quantity FROM product_variants WHERE id = %s", (variant_id,)
    )
    return row["stock_quantity"]


async def _transactions(db, variant_id):
    return await db.fetch_all(
        """
        SELECT warehouse_id, type, quantity, quantity_before, quantity_after,
               reference_type, reference_id, created_by
        FROM inventory_transactions WHERE variant_id = %s
        ORDER BY quantity_before
        """,
        (variant_id,),
    )


def test_urgency_levels():
    assert stock_urgency(0, 10) == "critical"
    assert stock_urgency(5, 10) == "high"
    assert stock_urgency(6, 10) == "medium"


def test_stock_percentage_handles_zero_threshold():
    assert stock_percentage(3, 0) == 0
    assert stock_percentage(1, 3) == 33


@pytest.mark.anyio
async def test_stock_in_updates_row_variant_and_ledger(service, database, catalogue):
    result = await service.adjust(
        warehouse_id=catalogue.north,
        variant_id=catalogue.variant,
        quantity=5,
        type="in",
        notes="Supplier delivery",
        user_id=catalogue.admin,
    )

    assert result["previousQuantity"] == 4
    assert result["newQuantity"] == 9
    assert await _quantity(database, catalogue.north, catalogue.variant) == 9
    assert await _variant_stock(database, catalogue.variant) == 15

    (entry,) = await _transactions(database, catalogue.variant)
    assert entry["type"] == "in"
    assert (entry["quantity"], entry["quantity_before"], entry["quantity_after"]) == (5, 4, 9)
    assert entry["created_by"] == catalogue.admin


@pytest.mark.anyio
async def test_stock_out_above_available_is_rejected(service, database, catalogue, alerts):
    with pytest.raises(AppError) as excinfo:
        await service.adjust(
            warehouse_id=catalogue.central,
            variant_id=catalogue.variant,
            quantity=7,
            type="out",
        )

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Insufficient inventory"
    assert await _quantity(database, catalogue.central, catalogue.variant) == 6
    assert await _variant_stock(database, catalogue.variant) == 10
    assert await _transactions(database, catalogue.variant) == []
    assert alerts == []


@pytest.mark.anyio
async def test_adjustment_sets_absolute_quantity_and_alerts(service, database, catalogue, alerts):
    result = await service.adjust(
        warehouse_id=catalogue.central,
        variant_id=catalogue.variant,
        quantity=2,
        type="adjustment",
    )

    assert result["newQuantity"] == 2
    assert await _variant_stock(database, catalogue.variant) == 6
    assert len(alerts) == 1
    alert = alerts[0]
    assert (alert.warehouse_id, alert.current_stock, alert.threshold) == (catalogue.central, 2, 3)


@pytest.mark.anyio
async def test_stock_in_creates_missing_warehouse_row(service, database, catalogue):
    await database.execute(
        "INSERT INTO warehouses (id, code, name) VALUES (%s, %s, %s)",
        ("wh-south", "WH-S", "South"),
    )

    await service.adjust(
        warehouse_id="wh-south", variant_id=catalogue.variant, quantity=3, type="in"
    )

    assert await _quantity(database, "wh-south", catalogue.variant) == 3
    assert await _variant_stock(database, catalogue.variant) == 13


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides, status_code",
    [
        ({"warehouse_id": "missing"}, 404),
        ({"variant_id": "missing"}, 404),
        ({"type": "teleport"}, 400),
        ({"quantity": -1}, 400),
    ],
)
async def test_adjust_validation(service, catalogue, overrides, status_code):
    arguments = {
        "warehouse_id": catalogue.central,
        "variant_id": catalogue.variant,
        "quantity": 1,
        "type": "in",
    }
    arguments.update(overrides)

    with pytest.raises(AppError) as excinfo:
        await service.adjust(**arguments)
    assert excinfo.value.status_code == status_code


@pytest.mark.anyio
async def test_transfer_moves_stock_between_warehouses(service, database, catalogue):
    result = await service.transfer(
        from_warehouse_id=catalogue.central,
        to_warehouse_id=catalogue.north,
        variant_id=catalogue.variant,
        quantity=3,
        user_id=catalogue.admin,
    )

    assert await _quantity(database, catalogue.central, catalogue.variant) == 3
    assert await _quantity(database, catalogue.north, catalogue.variant) == 7
    assert await _variant_stock(database, catalogue.variant) == 10

    entries = await _transactions(database, catalogue.variant)
    assert sorted(entry["type"] for entry in entries) == ["in", "out"]
    assert {entry["reference_type"] for entry in entries} == {"transfer"}
    assert {entry["reference_id"] for entry in entries} == {result["transferId"]}


@pytest.mark.anyio
async def test_transfer_beyond_source_stock_changes_nothing(service, database, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.transfer(
            from_warehouse_id=catalogue.north,
            to_warehouse_id=catalogue.central,
            variant_id=catalogue.variant,
            quantity=5,
        )

    assert excinfo.value.message == "Insufficient inventory in source warehouse"
    assert await _quantity(database, catalogue.north, catalogue.variant) == 4
    assert await _quantity(database, catalogue.central, catalogue.variant) == 6


@pytest.mark.anyio
async def test_transfer_to_same_warehouse_is_rejected(service, catalogue):
    with pytest.raises(AppError) as excinfo:
        await service.transfer(
            from_warehouse_id=catalogue.central,
            to_warehouse_id=catalogue.central,
            variant_id=catalogue.variant,
            quantity=1,
        )
    assert excinfo.value.status_code == 400


@pytest.mark.anyio
async def test_stock_count_records_discrepancies(service, database, catalogue):
    result = await service.stock_count(
        catalogue.central,
        [
            {"variant_id": catalogue.variant, "actual_count": 5},
            {"variant_id": "not-stocked-here", "actual_count": 1},
        ],
        user_id=catalogue.admin,
    )

    assert result["itemsCounted"] == 2
    assert result["discrepanciesFound"] == 1
    assert result["discrepancies"][0]["difference"] == -1
    assert await _variant_stock(database, catalogue.variant) == 9

    counted = await database.fetch_one(
        "SELECT last_counted_at FROM inventory WHERE id = %s", (catalogue.central_row,)
    )
    assert counted["last_counted_at"] is not None
    (entry,) = await _transactions(database, catalogue.variant)
    assert entry["reference_type"] == "stock_count"


@pytest.mark.anyio
async def test_low_stock_lists_rows_at_or_below_threshold(service, catalogue):
    await service.adjust(
        warehouse_id=catalogue.north, variant_id=catalogue.variant, quantity=1, type="adjustment"
    )

    rows = await service.low_stock()

    assert [row["warehouse_id"] for row in rows] == [catalogue.north]
    assert rows[0]["urgency"] == "high"
    assert rows[0]["stockPercentage"] == 33


@pytest.mark.anyio
async def test_valuation_totals(service, catalogue):
    valuation = await service.valuation()

    summary = valuation["summary"]
    assert summary["total_units"] == 10
    assert summary["total_cost_value"] == Decimal("600000")
    assert summary["total_retail_value"] == Decimal("1000000")
    assert valuation["potentialProfit"] == Decimal("400000")

    central_only = await service.valuation(warehouse_id=catalogue.central)
    assert central_only["summary"]["total_units"] == 6


@pytest.mark.anyio
async def test_list_inventory_flags_low_stock(service, catalogue):
    result = await service.list_inventory(warehouse_id=catalogue.north)

    assert result["pagination"]["totalCount"] == 1
    (row,) = result["inventory"]
    assert row["variant_sku"] == "THERM-01"
    assert row["isLowStock"] is False
