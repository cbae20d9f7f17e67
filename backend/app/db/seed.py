from __future__ import annotations

import asyncio

from backend.app.db.models.core_types import ProductType
from backend.app.db.session import SessionLocal, engine
from backend.app.db.store import SqlDocumentStore
from backend.services.catalog import create_product, fetch_products_by_barcodes

SINGLES = [
    # barcode, nom, stock initial
    ("8850001000011", "Riz parfumé 5kg", 120),
    ("8850001000028", "Farine 1kg", 200),
    ("8850001000035", "Huile 1L", 80),
]

# Bundle "Panier" = 1 riz + 2 farines
BUNDLE = ("8850001000998", "Panier épicerie", [("8850001000011", 1), ("8850001000028", 2)])


async def run_seed() -> None:
    store = SqlDocumentStore(SessionLocal)
    try:
        existing = await fetch_products_by_barcodes(store, [b for b, _, _ in SINGLES] + [BUNDLE[0]])

        for barcode, name, stock in SINGLES:
            if barcode not in existing:
                existing[barcode] = await create_product(store, barcode=barcode, name=name, stock_quantity=stock)

        barcode, name, recipe = BUNDLE
        if barcode not in existing:
            await create_product(
                store,
                barcode=barcode,
                name=name,
                product_type=ProductType.bundle,
                components=[(existing[child]["id"], qty) for child, qty in recipe],
            )

        print(f"SEED OK: {len(SINGLES)} singles, bundle={barcode}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(run_seed())
