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
from backend.services.errors import PackagingOperationError, PackagingValidationError
from backend.services.packaging import delete_packaging


def _delete(store, **payload):
    payload.setdefault("record_id", "rec-7")
    payload.setdefault("user_id", "u-1")
    return asyncio.run(delete_packaging(store, payload, database_id="test-db"))


def test_delete_restores_stock_through_bundles(store, packed_record):
    """
    GIVEN record WB-7 avec items [A, A, X], X = 2 x C1 + 1 x C2
    WHEN delete(restore_stock=True)
    THEN A +2, C1 +2, C2 +1, X inchangé ; record et items supprimés
    """
    response = _delete(store)

    assert store.stock_of("p-a") == 12
    assert store.stock_of("p-c1") == 22
    assert store.stock_of("p-c2") == 21
    assert store.stock_of("p-x") == 0

    assert store.rows(PACKAGING_ITEMS) == []
    assert store.rows(PACKAGING_RECORDS) == []

    deleted = response.deleted
    assert deleted.record_id == "rec-7"
    assert deleted.items_count == 3
    assert deleted.packaging_date == date(2024, 1, 15)
    assert deleted.waybill_number == "WB-7"
    assert deleted.record_deleted is True
    assert response.stock_restore.success is True
    assert response.stock_restore.updated == 3


def test_create_then_delete_restores_original_stock(store, catalog):
    from backend.services.packaging import create_packaging

    created = asyncio.run(
        create_packaging(
            store,
            {
                "packaging_date": "2024-02-01",
                "waybill_number": "WB-RT",
                "items": [{"product_barcode": "X"}, {"product_barcode": "B"}],
                "stock_updates": [
                    {"product_id": "p-c1", "deduct_amount": 2},
                    {"product_id": "p-c2", "deduct_amount": 1},
                    {"product_id": "p-b", "deduct_amount": 1},
                ],
                "user_id": "u-1",
            },
        )
    )
    before = {pid: store.stock_of(pid) for pid in ("p-b", "p-c1", "p-c2")}
    assert before == {"p-b": 4, "p-c1": 18, "p-c2": 19}

    _delete(store, record_id=created.record.id)

    assert {pid: store.stock_of(pid) for pid in ("p-b", "p-c1", "p-c2")} == {
        "p-b": 5,
        "p-c1": 20,
        "p-c2": 20,
    }


def test_delete_without_restore_leaves_stock(store, packed_record):
    response = _delete(store, restore_stock=False)

    assert store.count_calls("update_row", PRODUCTS) == 0
    assert store.stock_of("p-a") == 10
    assert response.deleted.items_count == 3
    assert response.stock_restore.updated == 0


def test_stock_is_restored_before_items_are_deleted(store, packed_record):
    _delete(store)

    first_stock_write = store.calls.index(("update_row", PRODUCTS))
    first_item_delete = store.calls.index(("delete_row", PACKAGING_ITEMS))
    assert first_stock_write < first_item_delete


def test_missing_record_still_cleans_orphan_items(store, catalog):
    for barcode in ("A", "B"):
        store.seed(PACKAGING_ITEMS, packaging_record_id="gone", product_barcode=barcode)

    response = _delete(store, record_id="gone")

    assert response.success is True
    assert store.rows(PACKAGING_ITEMS) == []
    assert store.stock_of("p-a") == 11
    assert store.stock_of("p-b") == 6
    deleted = response.deleted
    assert deleted.items_count == 2
    assert deleted.record_deleted is False
    assert deleted.packaging_date is None
    assert deleted.waybill_number is None


def test_missing_record_and_no_items_is_still_success(store, catalog):
    response = _delete(store, record_id="nothing")

    assert response.success is True
    assert response.deleted.items_count == 0
    assert response.deleted.record_deleted is False
    [audit] = store.rows(AUDIT_LOGS)
    assert json.loads(audit["action_details"])["record_found"] is False


def test_unknown_barcode_in_items_is_soft_error(store, packed_record):
    store.seed(PACKAGING_ITEMS, packaging_record_id="rec-7", product_barcode="ZZZ")

    response = _delete(store)

    assert response.stock_restore.success is False
    assert response.stock_restore.errors == ["Product not found: ZZZ"]
    assert store.stock_of("p-a") == 12
    assert response.deleted.items_count == 4


def test_item_delete_failure_is_reported(store, packed_record):
    x_item = next(i for i in store.rows(PACKAGING_ITEMS) if i["product_barcode"] == "X")
    store.fail("delete_row", PACKAGING_ITEMS, when=lambda p: p["id"] == x_item["id"])

    response = _delete(store)

    assert response.deleted.items_count == 2
    [error] = response.item_errors
    assert error.startswith("Failed to delete item (barcode: X) in waybill WB-7:")
    assert response.deleted.record_deleted is True


def test_record_delete_failure_is_soft(store, packed_record):
    store.fail("delete_row", PACKAGING_RECORDS)

    response = _delete(store)

    assert response.success is True
    assert response.deleted.record_deleted is False
    assert store.rows(PACKAGING_ITEMS) == []


def test_record_fetch_failure_other_than_not_found_is_fatal(store, packed_record):
    store.fail("get_row", PACKAGING_RECORDS)

    with pytest.raises(PackagingOperationError) as excinfo:
        _delete(store)

    assert str(excinfo.value).startswith('Error during "fetching record from packaging_records"')
    assert len(store.rows(PACKAGING_ITEMS)) == 3
    assert store.stock_of("p-a") == 10


def test_stock_refetch_failure_is_fatal_and_keeps_items(store, packed_record):
    store.fail("list_rows", PRODUCTS, when=lambda p: p["where"][0].field == "id")

    with pytest.raises(PackagingOperationError) as excinfo:
        _delete(store)

    assert '"restoring stock in products"' in str(excinfo.value)
    assert "waybill: WB-7" in str(excinfo.value)
    assert len(store.rows(PACKAGING_ITEMS)) == 3
    [audit] = store.rows(AUDIT_LOGS)
    assert audit["status"] == "failure"
    assert audit["action_type"] == "packaging_record_delete"


def test_missing_fields(store, packed_record):
    with pytest.raises(PackagingValidationError, match="Missing required fields: record_id, user_id"):
        _delete(store, user_id=None)

    assert store.calls == []


def test_second_delete_is_a_soft_no_op(store, packed_record):
    _delete(store)
    stock_after_first = {pid: store.stock_of(pid) for pid in ("p-a", "p-c1", "p-c2")}

    response = _delete(store)

    assert response.success is True
    assert response.deleted.items_count == 0
    assert response.deleted.record_deleted is False
    assert response.stock_restore.updated == 0
    assert {pid: store.stock_of(pid) for pid in ("p-a", "p-c1", "p-c2")} == stock_after_first
