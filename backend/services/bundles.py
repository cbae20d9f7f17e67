"""
Résolution des besoins en stock pour une liste d'items scannés.

    barcode scanné (x count)
        single  -> +count sur le produit lui-même
        bundle  -> +component.quantity * count sur chaque composant
                   (jamais sur le bundle)

Les doublons de barcode sont agrégés avant toute lecture ; l'ordre de
traitement n'influence pas le résultat (somme commutative).
Toute anomalie (produit absent, bundle sans composants, cycle) est une
erreur "soft" ajoutée à `errors` : la résolution continue.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable

from backend.app.db.models.core_types import ProductType
from backend.app.db.store import DocumentStore
from backend.services.batching import ID_QUERY_BATCH_SIZE
from backend.services.catalog import (
    fetch_components,
    fetch_products_by_barcodes,
    fetch_products_by_ids,
)

logger = logging.getLogger(__name__)

MAX_BUNDLE_DEPTH = 5


@dataclass
class StockDelta:
    """Quantité (non signée) à appliquer à un produit ; snapshot produit optionnel."""

    product: dict[str, Any] | None
    quantity: int


def count_barcodes(items: Iterable[dict[str, Any]]) -> Counter[str]:
    return Counter(item["product_barcode"] for item in items if item.get("product_barcode"))


def add_requirement(
    requirements: dict[str, StockDelta],
    product: dict[str, Any],
    quantity: int,
) -> None:
    current = requirements.get(product["id"])
    if current is None:
        requirements[product["id"]] = StockDelta(product=product, quantity=quantity)
    else:
        current.quantity += quantity


class _Resolver:
    def __init__(self, store: DocumentStore, errors: list[str], *, max_depth: int, batch_size: int):
        self.store = store
        self.errors = errors
        self.max_depth = max_depth
        self.batch_size = batch_size
        self.requirements: dict[str, StockDelta] = {}
        # parent_id -> [(composant, quantité)], une seule lecture par bundle
        self._recipes: dict[str, list[tuple[dict[str, Any], int]]] = {}

    async def recipe(self, bundle: dict[str, Any]) -> list[tuple[dict[str, Any], int]]:
        cached = self._recipes.get(bundle["id"])
        if cached is not None:
            return cached

        components = await fetch_components(self.store, bundle["id"])
        if not components:
            self.errors.append(f"No components found for bundle: {bundle['barcode']}")

        children = await fetch_products_by_ids(
            self.store,
            [c["child_product_id"] for c in components],
            batch_size=self.batch_size,
        )
        recipe = []
        for comp in components:
            child = children.get(comp["child_product_id"])
            if child is None:
                self.errors.append(
                    f"Component product not found: {comp['child_product_id']} (bundle {bundle['barcode']})"
                )
                continue
            recipe.append((child, int(comp["quantity"])))

        self._recipes[bundle["id"]] = recipe
        return recipe

    async def expand(self, product: dict[str, Any], count: int, path: tuple[str, ...] = ()) -> None:
        if product["type"] != ProductType.bundle:
            add_requirement(self.requirements, product, count)
            return

        if product["id"] in path:
            self.errors.append(f"Bundle cycle detected: {product['barcode']}")
            return
        if len(path) >= self.max_depth:
            self.errors.append(f"Bundle nesting too deep: {product['barcode']}")
            return

        for child, quantity in await self.recipe(product):
            await self.expand(child, quantity * count, path + (product["id"],))


async def resolve_stock_requirements(
    store: DocumentStore,
    items: Iterable[dict[str, Any]],
    errors: list[str],
    *,
    max_depth: int = MAX_BUNDLE_DEPTH,
    batch_size: int = ID_QUERY_BATCH_SIZE,
) -> dict[str, StockDelta]:
    """
    product_id -> StockDelta(product, quantité requise), agrégé sur tous les items.

    Les bundles imbriqués sont développés récursivement (profondeur bornée,
    cycles détectés). Avec des recettes à un niveau, c'est l'expansion simple.
    """
    counts = count_barcodes(items)
    if not counts:
        return {}

    products = await fetch_products_by_barcodes(store, counts.keys(), batch_size=batch_size)
    resolver = _Resolver(store, errors, max_depth=max_depth, batch_size=batch_size)

    for barcode, count in counts.items():
        product = products.get(barcode)
        if product is None:
            errors.append(f"Product not found: {barcode}")
            continue
        await resolver.expand(product, count)

    logger.info(
        "Resolved %d barcodes into %d stock requirements (%d soft errors)",
        len(counts),
        len(resolver.requirements),
        len(errors),
    )
    return resolver.requirements
