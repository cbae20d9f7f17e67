from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from backend.app.api.deps import get_store
from backend.app.db.models.core_types import (
    PRODUCTS,
    PRODUCT_COMPONENTS,
    PACKAGING_RECORDS,
    PACKAGING_ITEMS,
)
from backend.app.main import app
from backend.tests.fakes import MemoryStore


@pytest.fixture(scope="function")
def store() -> MemoryStore:
    """Store en mémoire, neuf pour chaque test."""
    return MemoryStore()


@pytest.fixture(scope="function")
def catalog(store: MemoryStore) -> dict[str, dict]:
    """
    Catalogue de base :
    - A, B, C1, C2 : produits simples
    - X : bundle = 2 x C1 + 1 x C2
    """
    products = {
        "A": store.seed(PRODUCTS, id="p-a", barcode="A", name="Riz 5kg", stock_quantity=10),
        "B": store.seed(PRODUCTS, id="p-b", barcode="B", name="Farine 1kg", stock_quantity=5),
        "C1": store.seed(PRODUCTS, id="p-c1", barcode="C1", name="Huile 1L", stock_quantity=20),
        "C2": store.seed(PRODUCTS, id="p-c2", barcode="C2", name="Sucre 1kg", stock_quantity=20),
        "X": store.seed(PRODUCTS, id="p-x", barcode="X", name="Panier", type="bundle", stock_quantity=0),
    }
    store.seed(PRODUCT_COMPONENTS, parent_product_id="p-x", child_product_id="p-c1", quantity=2)
    store.seed(PRODUCT_COMPONENTS, parent_product_id="p-x", child_product_id="p-c2", quantity=1)
    return products


@pytest.fixture(scope="function")
def packed_record(store: MemoryStore, catalog: dict[str, dict]) -> dict:
    """Record WB-7 du 2024-01-15 avec items [A, A, X] (stock non déduit)."""
    record = store.seed(
        PACKAGING_RECORDS, id="rec-7", packaging_date=date(2024, 1, 15), waybill_number="WB-7"
    )
    for barcode in ("A", "A", "X"):
        store.seed(PACKAGING_ITEMS, packaging_record_id=record["id"], product_barcode=barcode)
    return record


@pytest.fixture(scope="function")
def client(store: MemoryStore):
    async def override_get_store():
        yield store

    app.dependency_overrides[get_store] = override_get_store
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
