"""
Lectures catalogue / packaging partagées par le moteur.

Les requêtes "is one of" sont découpées en lots de ID_QUERY_BATCH_SIZE
valeurs (limite du store).
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from backend.app.db.models.core_types import (
    PRODUCTS,
    PRODUCT_COMPONENTS,
    PACKAGING_ITEMS,
    ProductType,
)
from backend.app.db.store import DocumentStore, DuplicateRow, ListResult, Where
from backend.services.batching import (
    ID_QUERY_BATCH_SIZE,
    WRITE_BATCH_SIZE,
    chunked,
    failures,
    run_batched,
    successes,
)
from backend.services.errors import (
    PackagingValidationError,
    ProductConflictError,
    ProductCreationError,
    ProductNotFoundError,
)

logger = logging.getLogger(__name__)

ITEM_PAGE_SIZE = 1000


def _unique(values: Iterable[str | None]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


async def _fetch_products_by(
    store: DocumentStore,
    field: str,
    values: Iterable[str | None],
    batch_size: int,
) -> dict[str, dict[str, Any]]:
    found: dict[str, dict[str, Any]] = {}
    for chunk in chunked(_unique(values), batch_size):
        result = await store.list_rows(PRODUCTS, [Where(field, list(chunk))], limit=len(chunk))
        for product in result.rows:
            found[product[field]] = product
    return found


async def fetch_products_by_ids(
    store: DocumentStore,
    product_ids: Iterable[str | None],
    *,
    batch_size: int = ID_QUERY_BATCH_SIZE,
) -> dict[str, dict[str, Any]]:
    """product_id -> product. Les ids inconnus sont simplement absents."""
    return await _fetch_products_by(store, "id", product_ids, batch_size)


async def fetch_products_by_barcodes(
    store: DocumentStore,
    barcodes: Iterable[str | None],
    *,
    batch_size: int = ID_QUERY_BATCH_SIZE,
) -> dict[str, dict[str, Any]]:
    """barcode -> product."""
    return await _fetch_products_by(store, "barcode", barcodes, batch_size)


async def fetch_components(store: DocumentStore, parent_product_id: str) -> list[dict[str, Any]]:
    result = await store.list_rows(PRODUCT_COMPONENTS, [Where("parent_product_id", parent_product_id)])
    return result.rows


async def list_record_items(
    store: DocumentStore,
    record_id: str,
    *,
    page_size: int = ITEM_PAGE_SIZE,
) -> list[dict[str, Any]]:
    """Tous les items d'un record, page par page (pas de troncature silencieuse)."""
    items: list[dict[str, Any]] = []
    offset = 0
    while True:
        page = await store.list_rows(
            PACKAGING_ITEMS,
            [Where("packaging_record_id", record_id)],
            order_by="scanned_at",
            limit=page_size,
            offset=offset,
        )
        items.extend(page.rows)
        offset += len(page.rows)
        if len(page.rows) < page_size or offset >= page.total:
            return items


# ---------- Saisie catalogue ----------
async def list_products(store: DocumentStore, *, limit: int = 100, offset: int = 0) -> ListResult:
    return await store.list_rows(PRODUCTS, order_by="barcode", limit=limit, offset=offset)


async def get_product_with_components(store: DocumentStore, barcode: str) -> dict[str, Any]:
    products = await fetch_products_by_barcodes(store, [barcode])
    product = products.get(barcode)
    if not product:
        raise ProductNotFoundError(f"Product not found: {barcode}")

    product = dict(product)
    if product["type"] == ProductType.bundle:
        components = await fetch_components(store, product["id"])
        children = await fetch_products_by_ids(store, [c["child_product_id"] for c in components])
        product["components"] = [
            {
                "product_id": c["child_product_id"],
                "barcode": children.get(c["child_product_id"], {}).get("barcode"),
                "name": children.get(c["child_product_id"], {}).get("name"),
                "quantity": c["quantity"],
            }
            for c in components
        ]
    return product


async def create_product(
    store: DocumentStore,
    *,
    barcode: str,
    name: str,
    product_type: ProductType = ProductType.single,
    stock_quantity: int = 0,
    sku_code: str | None = None,
    price: float = 0,
    components: list[tuple[str, int]] | None = None,
) -> dict[str, Any]:
    """
    Crée un produit. Pour un bundle, `components` = [(child_product_id, quantity), ...]
    et chaque composant doit exister.
    """
    components = components or []
    if stock_quantity < 0:
        raise PackagingValidationError("stock_quantity must be >= 0")
    if product_type == ProductType.bundle and not components:
        raise PackagingValidationError("A bundle needs at least one component")
    if product_type == ProductType.single and components:
        raise PackagingValidationError("Only bundles can have components")
    if any(qty < 1 for _, qty in components):
        raise PackagingValidationError("Component quantity must be >= 1")

    child_ids = [child_id for child_id, _ in components]
    if len(set(child_ids)) != len(child_ids):
        raise PackagingValidationError("Duplicate component product")

    children = await fetch_products_by_ids(store, child_ids)
    missing = [cid for cid in child_ids if cid not in children]
    if missing:
        raise PackagingValidationError(f"Component product not found: {', '.join(missing)}")
    if any(children[cid]["barcode"] == barcode for cid in child_ids):
        raise PackagingValidationError("A bundle cannot contain itself")

    try:
        product = await store.create_row(
            PRODUCTS,
            {
                "barcode": barcode,
                "name": name,
                "type": ProductType(product_type).value,
                "stock_quantity": stock_quantity,
                "sku_code": sku_code,
                "price": price,
            },
        )
    except DuplicateRow as exc:
        raise ProductConflictError(f"Barcode already exists: {barcode}") from exc

    if components:
        await _write_recipe(store, product, components)

    logger.info("Created %s product %s (%s)", product["type"], barcode, product["id"])
    return product


async def _write_recipe(
    store: DocumentStore,
    bundle: dict[str, Any],
    components: list[tuple[str, int]],
) -> None:
    """
    Écrit les composants d'un bundle tout juste créé.

    Tout ou rien : au moindre échec, les composants écrits puis le bundle
    sont supprimés et ProductCreationError est levée.
    """
    outcomes = await run_batched(
        components,
        lambda comp: store.create_row(
            PRODUCT_COMPONENTS,
            {"parent_product_id": bundle["id"], "child_product_id": comp[0], "quantity": comp[1]},
        ),
        WRITE_BATCH_SIZE,
        describe=lambda comp: {"child_product_id": comp[0]},
    )
    failed = failures(outcomes)
    if not failed:
        return

    reasons = "; ".join(f"{o.context['child_product_id']}: {o.error}" for o in failed)
    logger.error("Recipe write failed for bundle %s, removing it: %s", bundle["barcode"], reasons)

    cleanup = await run_batched(
        successes(outcomes),
        lambda comp: store.delete_row(PRODUCT_COMPONENTS, comp["id"]),
        WRITE_BATCH_SIZE,
    )
    for outcome in failures(cleanup):
        logger.error("Could not remove component %s: %s", outcome.item["id"], outcome.error)
    try:
        await store.delete_row(PRODUCTS, bundle["id"])
    except Exception:
        logger.exception("Could not remove bundle %s after recipe failure", bundle["barcode"])

    raise ProductCreationError(
        f"Failed to create components for bundle {bundle['barcode']}: {reasons}",
        context={
            "barcode": bundle["barcode"],
            "failed_components": [o.context["child_product_id"] for o in failed],
        },
    )
