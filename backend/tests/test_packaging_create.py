import asyncio
import json
from datetime import date

import pytest

from backend.app.db.models.core_types import (
    AUDIT_LOGS,
    PACKAGING_ITEMS,
    PACKAGING_RECORDS,
    PRODUCTS,
)
from backend.app.db.store import DuplicateRow
from backend.services.errors import PackagingOperationError, PackagingValidationError
from backend.services.packaging import create_packaging


def _payload(**overrides):
    payload = {
        "packaging_date": "2024-01-15",
        "waybill_number": "WB-1",
        "items": [{"product_barcode": "A"}, {"product_barcode": "A"}, {"product_barcode": "X"}],
        "stock_updates": [
            {"product_id": "p-a", "deduct_amount": 2},
            {"product_id": "p-c1", "deduct_amount": 2},
            {"product_id": "p-c2", "deduct_amount": 1},
        ],
        "user_id": "u-1",
    }
    payload.update(overrides)
    return payload


def _create(store, payload, **kwargs):
    return asyncio.run(create_packaging(store, payload, database_id="test-db", **kwargs))


def _audits(store):
    return store.rows(AUDIT_LOGS)


def test_create_writes_record_items_stock_and_audit(store, catalog):
    response = _create(store, _payload())

    assert response.success is True
    assert response.record.waybill_number == "WB-1"
    assert response.record.packaging_date == date(2024, 1, 15)
    assert len(response.items) == 3
    assert response.item_errors == []
    assert response.stock_updates.success is True
    assert response.stock_updates.updated == 3

    assert len(store.rows(PACKAGING_RECORDS)) == 1
    assert sorted(i["product_barcode"] for i in store.rows(PACKAGING_ITEMS)) == ["A", "A", "X"]
    assert store.stock_of("p-a") == 8
    assert store.stock_of("p-c1") == 18
    assert store.stock_of("p-c2") == 19
    assert store.stock_of("p-x") == 0

    [audit] = _audits(store)
    assert audit["action_type"] == "packaging_record_create"
    assert audit["status"] == "success"
    assert audit["resource_id"] == response.record.id
    details = json.loads(audit["action_details"])
    assert details["item_count"] == 3
    assert details["stock_updates_count"] == 3


def test_create_without_stock_updates_leaves_stock_alone(store, catalog):
    response = _create(store, _payload(stock_updates=None))

    assert response.stock_updates.updated == 0
    assert store.count_calls("update_row", PRODUCTS) == 0
    assert store.stock_of("p-a") == 10


def test_duplicate_stock_updates_for_one_product_are_summed(store, catalog):
    updates = [{"product_id": "p-a", "deduct_amount": 1}, {"product_id": "p-a", "deduct_amount": 2}]

    _create(store, _payload(stock_updates=updates))

    assert store.stock_of("p-a") == 7
    assert store.count_calls("update_row", PRODUCTS) == 1


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"waybill_number": None}, "Missing required fields: packaging_date, waybill_number, items, user_id"),
        ({"packaging_date": None}, "Missing required fields: packaging_date, waybill_number, items, user_id"),
        ({"user_id": ""}, "Missing required fields: packaging_date, waybill_number, items, user_id"),
        ({"items": None}, "Missing required fields: packaging_date, waybill_number, items, user_id"),
        ({"items": []}, "Items must be a non-empty array"),
    ],
)
def test_validation_errors_have_no_side_effect(store, catalog, overrides, message):
    with pytest.raises(PackagingValidationError) as excinfo:
        _create(store, _payload(**overrides))

    assert excinfo.value.status_code == 400
    assert str(excinfo.value) == message
    assert store.calls == []


def test_malformed_body_is_a_validation_error(store, catalog):
    with pytest.raises(PackagingValidationError) as excinfo:
        _create(store, _payload(items="not-a-list"))

    assert str(excinfo.value).startswith("Invalid request body: items")
    assert store.calls == []


def test_record_failure_is_fatal_and_touches_nothing_else(store, catalog):
    store.fail("create_row", PACKAGING_RECORDS)

    with pytest.raises(PackagingOperationError) as excinfo:
        _create(store, _payload())

    error = excinfo.value
    assert error.status_code == 500
    assert str(error).startswith('Error during "creating record in packaging_records" [db: test-db, waybill: WB-1')
    assert error.context["operation"] == "creating record in packaging_records"
    assert store.rows(PACKAGING_ITEMS) == []
    assert store.stock_of("p-a") == 10

    [audit] = _audits(store)
    assert audit["status"] == "failure"
    assert audit["error_message"] == str(error)


def test_duplicate_waybill_on_same_date_is_fatal(store, catalog):
    store.seed(PACKAGING_RECORDS, packaging_date=date(2024, 1, 15), waybill_number="WB-1")

    with pytest.raises(PackagingOperationError) as excinfo:
        _create(store, _payload())

    assert isinstance(excinfo.value.__cause__, DuplicateRow)


def test_item_failure_is_reported_and_does_not_block_stock(store, catalog):
    """
    GIVEN 3 items dont le 2e échoue à l'écriture
    THEN 2 items créés, 1 message d'erreur, stock quand même déduit
    """
    store.fail("create_row", PACKAGING_ITEMS, when=lambda p: p["product_barcode"] == "X")

    response = _create(store, _payload())

    assert response.success is True
    assert len(response.items) == 2
    [error] = response.item_errors
    assert error.startswith("Failed to create item (barcode: X) in waybill WB-1:")
    assert store.stock_of("p-a") == 8
    assert response.stock_updates.success is True


def test_stock_write_failure_is_reported_not_raised(store, catalog):
    store.fail("update_row", PRODUCTS, when=lambda p: p["id"] == "p-c2")

    response = _create(store, _payload())

    assert response.success is True
    assert response.stock_updates.success is False
    assert response.stock_updates.updated == 2
    [error] = response.stock_updates.errors
    assert 'product "Sucre 1kg" (barcode: C2) in waybill WB-1' in error
    assert store.stock_of("p-c2") == 20


def test_stock_refetch_failure_is_fatal_after_items_written(store, catalog):
    store.fail("list_rows", PRODUCTS)

    with pytest.raises(PackagingOperationError) as excinfo:
        _create(store, _payload())

    assert '"updating stock in products"' in str(excinfo.value)
    # pas de rollback
    assert len(store.rows(PACKAGING_RECORDS)) == 1
    assert len(store.rows(PACKAGING_ITEMS)) == 3


def test_audit_failure_does_not_fail_create(store, catalog):
    store.fail("create_row", AUDIT_LOGS)

    response = _create(store, _payload())

    assert response.success is True
    assert store.stock_of("p-a") == 8


def test_items_are_written_in_batches(store, catalog):
    items = [{"product_barcode": "A"} for _ in range(45)]

    response = _create(store, _payload(items=items, stock_updates=None), batch_size=20)

    assert len(response.items) == 45
    assert store.max_in_flight <= 20
    assert store.count_calls("create_row", PACKAGING_ITEMS) == 45


def test_naive_scan_times_are_stored_as_utc(store, catalog):
    items = [{"product_barcode": "A", "scanned_at": "2024-01-15T08:30:00"}]

    response = _create(store, _payload(items=items, stock_updates=None))

    assert response.items[0].scanned_at.utcoffset().total_seconds() == 0
    assert response.items[0].scanned_at.hour == 8


def test_one_failed_item_out_of_ten_keeps_the_nine_others(store, catalog):
    items = [{"product_barcode": f"A{n}"} for n in range(10)]
    store.fail("create_row", PACKAGING_ITEMS, when=lambda p: p["product_barcode"] == "A4")

    response = _create(store, _payload(items=items, stock_updates=None))

    assert response.success is True
    assert len(response.items) == 9
    assert len(response.item_errors) == 1
    assert len(store.rows(PACKAGING_ITEMS)) == 9


def test_single_item_create_deducts_and_audits(store):
    store.seed(PRODUCTS, id="p1", barcode="A", name="Riz", stock_quantity=5)

    response = _create(
        store,
        {
            "packaging_date": "2024-01-15",
            "waybill_number": "WB-1",
            "items": [{"product_barcode": "A"}],
            "stock_updates": [{"product_id": "p1", "deduct_amount": 1}],
            "user_id": "u-1",
        },
    )

    assert len(response.items) == 1
    assert store.stock_of("p1") == 4
    assert [a["action_type"] for a in _audits(store)] == ["packaging_record_create"]
