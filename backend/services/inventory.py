from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from backend.app.db.models.core_types import PRODUCTS
from backend.app.db.store import DocumentStore
from backend.services.batching import (
    ID_QUERY_BATCH_SIZE,
    WRITE_BATCH_SIZE,
    run_batched,
)
from backend.services.bundles import StockDelta
from backend.services.catalog import fetch_products_by_ids
from backend.services.trace import TraceContext

logger = logging.getLogger(__name__)

DEDUCT = -1
RESTORE = +1

_VERBS = {DEDUCT: "deduct", RESTORE: "restore"}


@dataclass
class StockChange:
    product_id: str
    barcode: str | None = None
    name: str | None = None
    previous: int | None = None
    new: int | None = None
    requested: int = 0
    clamped: bool = False
    success: bool = True
    error: str | None = None


@dataclass
class StockUpdateSummary:
    success: bool = True
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    changes: list[StockChange] = field(default_factory=list)

    def add_errors(self, errors: Iterable[str]) -> None:
        self.errors[:0] = list(errors)
        self.success = not self.errors

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def clamp_stock(current: int, delta: int) -> int:
    """
    Règle métier : le stock ne descend jamais sous zéro.

    Une déduction plus grande que le stock est donc sous-appliquée ;
    limite connue, pas corrigée ici.
    """
    return max(0, int(current) + int(delta))


def aggregate_stock_updates(stock_updates: Iterable[dict[str, Any]]) -> dict[str, StockDelta]:
    """[{product_id, deduct_amount}, ...] -> une seule écriture par produit."""
    deltas: dict[str, StockDelta] = {}
    for update in stock_updates:
        product_id = update["product_id"]
        amount = int(update["deduct_amount"])
        if product_id in deltas:
            deltas[product_id].quantity += amount
        else:
            deltas[product_id] = StockDelta(product=None, quantity=amount)
    return deltas


async def apply_stock_deltas(
    store: DocumentStore,
    deltas: dict[str, StockDelta],
    sign: int,
    trace: TraceContext,
    *,
    batch_size: int = WRITE_BATCH_SIZE,
    id_batch_size: int = ID_QUERY_BATCH_SIZE,
) -> StockUpdateSummary:
    """
    Applique `sign * quantity` au stock de chaque produit.

    - relit les produits par id (lots de id_batch_size) : un échec ici est fatal
    - écrit max(0, stock + sign*quantity) via l'exécuteur par lots
    - un échec d'écriture reste local au produit (message avec nom, barcode, waybill)
    """
    if sign not in _VERBS:
        raise ValueError("sign must be +1 or -1")

    summary = StockUpdateSummary()
    if not deltas:
        return summary

    verb = _VERBS[sign]
    latest = await fetch_products_by_ids(store, deltas.keys(), batch_size=id_batch_size)

    async def write(entry: tuple[str, StockDelta]) -> StockChange:
        product_id, delta = entry
        product = latest.get(product_id)
        if product is None:
            return StockChange(
                product_id=product_id,
                requested=delta.quantity,
                success=False,
                error=f"Product not found (ID: {product_id}) for waybill {trace.waybill_label}",
            )

        previous = int(product["stock_quantity"])
        new_stock = clamp_stock(previous, sign * delta.quantity)
        change = StockChange(
            product_id=product_id,
            barcode=product.get("barcode"),
            name=product.get("name"),
            previous=previous,
            new=new_stock,
            requested=delta.quantity,
            clamped=new_stock != previous + sign * delta.quantity,
        )
        try:
            await store.update_row(PRODUCTS, product_id, {"stock_quantity": new_stock})
        except Exception as exc:
            change.success = False
            change.new = None
            change.error = (
                f'Failed to {verb} stock for product "{product.get("name")}" '
                f"(barcode: {product.get('barcode')}) in waybill {trace.waybill_label}: {exc}"
            )
        return change

    entries = list(deltas.items())
    logger.info("Applying %s for %d products in batches of %d", verb, len(entries), batch_size)
    outcomes = await run_batched(
        entries,
        write,
        batch_size,
        describe=lambda entry: {"product_id": entry[0], "requested": entry[1].quantity},
    )

    for outcome in outcomes:
        change = outcome.value
        if change is None:
            # write() capture déjà ses erreurs ; filet pour tout le reste
            product_id = outcome.context["product_id"]
            change = StockChange(
                product_id=product_id,
                requested=outcome.context["requested"],
                success=False,
                error=f"Failed to {verb} stock for product {product_id} in waybill {trace.waybill_label}: {outcome.error}",
            )
        summary.changes.append(change)
        if change.success:
            summary.updated += 1
            if change.clamped:
                logger.warning(
                    "Stock clamped at 0 for %s (previous=%s, requested=%s%d)",
                    change.barcode,
                    change.previous,
                    "+" if sign > 0 else "-",
                    change.requested,
                )
        else:
            summary.errors.append(change.error or "unknown error")

    summary.success = not summary.errors
    logger.info("Stock %s: %d succeeded, %d failed", verb, summary.updated, len(summary.errors))
    return summary


@dataclass
class StockShortage:
    product_id: str
    barcode: str
    name: str
    required: int
    available: int


def find_shortages(requirements: dict[str, StockDelta]) -> list[StockShortage]:
    """Produits dont le stock du snapshot ne couvre pas le besoin."""
    shortages = []
    for product_id, delta in requirements.items():
        product = delta.product or {}
        available = int(product.get("stock_quantity", 0))
        if available < delta.quantity:
            shortages.append(
                StockShortage(
                    product_id=product_id,
                    barcode=product.get("barcode", ""),
                    name=product.get("name", ""),
                    required=delta.quantity,
                    available=available,
                )
            )
    return shortages
