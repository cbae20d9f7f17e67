"""
Cycle de vie d'un packaging record : Create / Update / Delete.

Chaque opération est une machine à états courte, non persistée. L'étape
courante est tamponnée dans le TraceContext (`trace.step(...)`) et reprise
telle quelle dans tout message d'erreur fatal.

Politique d'erreurs :
- validation (400) : levée avant tout effet de bord
- fatal (500) : interrompt la suite, message traçable + audit "failure"
- échec par item / par produit : collecté, jamais levé ; la réponse reste
  success=True avec les listes d'erreurs renseignées

Pas de transaction : rien n'est annulé si une étape ultérieure échoue.
"""

from __future__ import annotations

import logging
from datetime import date, timezone
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from backend.app.db.models.core_types import (
    PACKAGING_ITEMS,
    PACKAGING_RECORDS,
    PRODUCTS,
    AuditAction,
    AuditStatus,
    ResourceType,
)
from backend.app.db.models.models_v1 import utcnow
from backend.app.db.store import DocumentStore, RowNotFound, Where
from backend.app.schemas.packaging import (
    DeletedRecordOut,
    PackagingCreateRequest,
    PackagingCreateResponse,
    PackagingDeleteRequest,
    PackagingDeleteResponse,
    PackagingItemIn,
    PackagingItemOut,
    PackagingRecordOut,
    PackagingRecordWithItems,
    PackagingUpdateRequest,
    PackagingUpdateResponse,
    StockCheckResponse,
    StockRequirementOut,
    StockUpdateIn,
    StockUpdateSummaryOut,
)
from backend.services.audit import record_audit
from backend.services.batching import (
    ID_QUERY_BATCH_SIZE,
    WRITE_BATCH_SIZE,
    BatchOutcome,
    failures,
    run_batched,
    successes,
)
from backend.services.bundles import MAX_BUNDLE_DEPTH, resolve_stock_requirements
from backend.services.catalog import ITEM_PAGE_SIZE, list_record_items
from backend.services.errors import PackagingOperationError, PackagingValidationError
from backend.services.inventory import (
    DEDUCT,
    RESTORE,
    StockUpdateSummary,
    aggregate_stock_updates,
    apply_stock_deltas,
    find_shortages,
)
from backend.services.trace import TraceContext

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


# ---------- Helpers ----------
def _parse(model: type[M], payload: M | Mapping[str, Any]) -> M:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        raise PackagingValidationError(f"Invalid request body: {where}: {first['msg']}") from exc


def _missing(**fields: Any) -> bool:
    return any(value is None or value == "" for value in fields.values())


def _iso(value: date | str | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, date) else str(value)


def _item_row(record_id: str, item: PackagingItemIn) -> dict[str, Any]:
    scanned_at = item.scanned_at or utcnow()
    if scanned_at.tzinfo is None:
        # horodatage naïf = UTC
        scanned_at = scanned_at.replace(tzinfo=timezone.utc)
    return {
        "packaging_record_id": record_id,
        "product_barcode": item.product_barcode,
        "scanned_at": scanned_at,
    }


def _describe_item(item: PackagingItemIn | dict[str, Any]) -> dict[str, Any]:
    if isinstance(item, dict):
        return {"barcode": item.get("product_barcode"), "item_id": item.get("id")}
    return {"barcode": item.product_barcode}


def _item_errors(verb: str, outcomes: list[BatchOutcome], trace: TraceContext) -> list[str]:
    errors = []
    for outcome in failures(outcomes):
        errors.append(
            f"Failed to {verb} item (barcode: {outcome.context.get('barcode')}) "
            f"in waybill {trace.waybill_label}: {outcome.error}"
        )
    for message in errors:
        logger.warning(message)
    return errors


async def _fatal(
    store: DocumentStore,
    trace: TraceContext,
    exc: Exception,
    *,
    user_id: str,
    action: AuditAction,
    resource_type: ResourceType,
    user_email: str | None,
    session_id: str | None,
    user_agent: str | None,
) -> PackagingOperationError:
    message = trace.describe_failure(exc)
    logger.error(message)
    await record_audit(
        store,
        user_id=user_id,
        action_type=action.value,
        resource_type=resource_type.value,
        resource_id=trace.record_id,
        details=trace.as_dict(),
        status=AuditStatus.failure,
        error_message=message,
        user_email=user_email,
        session_id=session_id,
        user_agent=user_agent,
    )
    return PackagingOperationError(message, context=trace.as_dict())


def _summary_out(summary: StockUpdateSummary) -> StockUpdateSummaryOut:
    return StockUpdateSummaryOut.model_validate(summary.as_dict())


# ---------- Create ----------
async def create_packaging(
    store: DocumentStore,
    payload: PackagingCreateRequest | Mapping[str, Any],
    *,
    database_id: str = "NOT_SET",
    batch_size: int = WRITE_BATCH_SIZE,
    id_batch_size: int = ID_QUERY_BATCH_SIZE,
    user_agent: str | None = None,
) -> PackagingCreateResponse:
    """
    parsing request -> creating record -> creating items -> updating stock
    -> writing audit log -> done

    `stock_updates` ({product_id, deduct_amount}) sont précalculés par
    l'appelant ; absents = aucun effet stock.
    """
    trace = TraceContext(database_id=database_id)
    request = _parse(PackagingCreateRequest, payload)

    trace.waybill_number = request.waybill_number
    trace.packaging_date = _iso(request.packaging_date)
    trace.items_barcodes = [i.product_barcode for i in request.items or []]

    if _missing(
        packaging_date=request.packaging_date,
        waybill_number=request.waybill_number,
        items=request.items,
        user_id=request.user_id,
    ):
        raise PackagingValidationError(
            "Missing required fields: packaging_date, waybill_number, items, user_id"
        )
    if not request.items:
        raise PackagingValidationError("Items must be a non-empty array")

    items = request.items
    stock_updates = request.stock_updates or []
    logger.info("Creating packaging record: %s with %d items", request.waybill_number, len(items))

    try:
        # 1) record : échec = fatal, rien d'autre n'est touché
        trace.step(f"creating record in {PACKAGING_RECORDS}")
        record = await store.create_row(
            PACKAGING_RECORDS,
            {"packaging_date": request.packaging_date, "waybill_number": request.waybill_number},
        )
        trace.record_id = record["id"]
        logger.info("Created packaging record: %s", record["id"])

        # 2) items, par lots
        trace.step(f"creating items in {PACKAGING_ITEMS}")
        outcomes = await run_batched(
            items,
            lambda item: store.create_row(PACKAGING_ITEMS, _item_row(record["id"], item)),
            batch_size,
            describe=_describe_item,
        )
        created = successes(outcomes)
        item_errors = _item_errors("create", outcomes, trace)
        logger.info("Created %d packaging items (%d failed)", len(created), len(item_errors))

        # 3) stock : indépendant du résultat des items
        trace.step(f"updating stock in {PRODUCTS}")
        stock = StockUpdateSummary()
        if stock_updates:
            deltas = aggregate_stock_updates(u.model_dump() for u in stock_updates)
            stock = await apply_stock_deltas(
                store,
                deltas,
                DEDUCT,
                trace,
                batch_size=batch_size,
                id_batch_size=id_batch_size,
            )
    except Exception as exc:
        error = await _fatal(
            store,
            trace,
            exc,
            user_id=request.user_id,
            action=AuditAction.packaging_record_create,
            resource_type=ResourceType.packaging_record,
            user_email=request.user_email,
            session_id=request.session_id,
            user_agent=user_agent,
        )
        raise error from exc

    trace.step("writing audit log")
    await record_audit(
        store,
        user_id=request.user_id,
        action_type=AuditAction.packaging_record_create.value,
        resource_type=ResourceType.packaging_record.value,
        resource_id=record["id"],
        details={
            "packaging_date": trace.packaging_date,
            "waybill_number": request.waybill_number,
            "item_count": len(items),
            "items": [{"barcode": i.product_barcode, "name": i.product_name} for i in items],
            "items_created": len(created),
            "item_failures": len(item_errors),
            "stock_updates_count": len(stock_updates),
            "stock_update_success": stock.success,
        },
        user_email=request.user_email,
        session_id=request.session_id,
        user_agent=user_agent,
    )

    trace.step("done")
    return PackagingCreateResponse(
        record=PackagingRecordOut.model_validate(record),
        items=[PackagingItemOut.model_validate(i) for i in created],
        item_errors=item_errors,
        stock_updates=_summary_out(stock),
    )


# ---------- Update ----------
async def update_packaging(
    store: DocumentStore,
    payload: PackagingUpdateRequest | Mapping[str, Any],
    *,
    database_id: str = "NOT_SET",
    batch_size: int = WRITE_BATCH_SIZE,
    item_page_size: int = ITEM_PAGE_SIZE,
    user_agent: str | None = None,
) -> PackagingUpdateResponse:
    """
    parsing request -> fetching original record -> updating waybill?
    -> fetching / deleting existing items? -> creating new items?
    -> writing audit log -> done

    Les items sont remplacés en "tout supprimer puis tout recréer", jamais
    fusionnés. Le stock des produits n'est PAS ajusté, même si la liste
    d'items change : seuls Create et Delete touchent au stock.
    """
    trace = TraceContext(database_id=database_id)
    request = _parse(PackagingUpdateRequest, payload)
    trace.record_id = request.record_id

    if _missing(record_id=request.record_id, user_id=request.user_id):
        raise PackagingValidationError("Missing required fields: record_id, user_id")
    if request.waybill_number is None and request.items is None:
        raise PackagingValidationError("At least one of waybill_number or items must be provided")

    replace_items = request.items is not None
    record_id = request.record_id
    logger.info("Updating packaging record: %s", record_id)

    old_items: list[dict[str, Any]] = []
    new_items: list[dict[str, Any]] = []
    removed = 0
    item_errors: list[str] = []

    try:
        trace.step(f"fetching original record from {PACKAGING_RECORDS}")
        original = await store.get_row(PACKAGING_RECORDS, record_id)
        trace.waybill_number = original["waybill_number"]
        trace.packaging_date = _iso(original["packaging_date"])
        record = original

        if request.waybill_number is not None:
            trace.step(f"updating waybill in {PACKAGING_RECORDS}")
            record = await store.update_row(
                PACKAGING_RECORDS, record_id, {"waybill_number": request.waybill_number}
            )
            trace.waybill_number = record["waybill_number"]
            logger.info("Updated waybill number to: %s", record["waybill_number"])

        if replace_items:
            trace.items_barcodes = [i.product_barcode for i in request.items]

            trace.step(f"fetching existing items from {PACKAGING_ITEMS}")
            old_items = await list_record_items(store, record_id, page_size=item_page_size)

            trace.step(f"deleting existing items from {PACKAGING_ITEMS}")
            deletions = await run_batched(
                old_items,
                lambda item: store.delete_row(PACKAGING_ITEMS, item["id"]),
                batch_size,
                describe=_describe_item,
            )
            item_errors += _item_errors("delete", deletions, trace)
            removed = len(deletions) - len(failures(deletions))

            if request.items:
                trace.step(f"creating new items in {PACKAGING_ITEMS}")
                creations = await run_batched(
                    request.items,
                    lambda item: store.create_row(PACKAGING_ITEMS, _item_row(record_id, item)),
                    batch_size,
                    describe=_describe_item,
                )
                new_items = successes(creations)
                item_errors += _item_errors("create", creations, trace)

            logger.info(
                "Replaced items of %s: %d removed, %d created (stock levels unchanged)",
                record_id,
                removed,
                len(new_items),
            )
    except Exception as exc:
        error = await _fatal(
            store,
            trace,
            exc,
            user_id=request.user_id,
            action=AuditAction.packaging_items_update if replace_items else AuditAction.packaging_record_update,
            resource_type=ResourceType.packaging_item if replace_items else ResourceType.packaging_record,
            user_email=request.user_email,
            session_id=request.session_id,
            user_agent=user_agent,
        )
        raise error from exc

    trace.step("writing audit log")
    details: dict[str, Any] = {"packaging_date": trace.packaging_date}
    if request.waybill_number is not None:
        details["old_waybill_number"] = original["waybill_number"]
        details["new_waybill_number"] = request.waybill_number
    if replace_items:
        details["old_item_count"] = len(old_items)
        details["new_item_count"] = len(request.items)
        details["old_items"] = [i["product_barcode"] for i in old_items]
        details["new_items"] = [i.product_barcode for i in request.items]
        details["item_failures"] = len(item_errors)

    await record_audit(
        store,
        user_id=request.user_id,
        action_type=(
            AuditAction.packaging_items_update if replace_items else AuditAction.packaging_record_update
        ).value,
        resource_type=(
            ResourceType.packaging_item if replace_items else ResourceType.packaging_record
        ).value,
        resource_id=record_id,
        details=details,
        user_email=request.user_email,
        session_id=request.session_id,
        user_agent=user_agent,
    )

    trace.step("done")
    return PackagingUpdateResponse(
        record=PackagingRecordOut.model_validate(record),
        items=[PackagingItemOut.model_validate(i) for i in new_items],
        removed_items=removed,
        item_errors=item_errors,
    )


# ---------- Delete ----------
async def delete_packaging(
    store: DocumentStore,
    payload: PackagingDeleteRequest | Mapping[str, Any],
    *,
    database_id: str = "NOT_SET",
    batch_size: int = WRITE_BATCH_SIZE,
    id_batch_size: int = ID_QUERY_BATCH_SIZE,
    item_page_size: int = ITEM_PAGE_SIZE,
    max_bundle_depth: int = MAX_BUNDLE_DEPTH,
    user_agent: str | None = None,
) -> PackagingDeleteResponse:
    """
    parsing request -> fetching record (soft) -> fetching items
    -> restoring stock? -> deleting items -> deleting record (soft)
    -> writing audit log -> done

    Record introuvable ou déjà supprimé : on continue, pour nettoyer les
    items orphelins et restaurer le stock à partir des seuls items.
    Le stock est restauré AVANT la suppression des items (barcodes encore lisibles).
    """
    trace = TraceContext(database_id=database_id)
    request = _parse(PackagingDeleteRequest, payload)
    trace.record_id = request.record_id

    if _missing(record_id=request.record_id, user_id=request.user_id):
        raise PackagingValidationError("Missing required fields: record_id, user_id")

    record_id = request.record_id
    logger.info("Deleting packaging record: %s", record_id)

    record: dict[str, Any] | None = None
    record_deleted = False

    try:
        trace.step(f"fetching record from {PACKAGING_RECORDS}")
        try:
            record = await store.get_row(PACKAGING_RECORDS, record_id)
            trace.waybill_number = record["waybill_number"]
            trace.packaging_date = _iso(record["packaging_date"])
        except RowNotFound as exc:
            logger.warning("Record not found (ID: %s), continuing with deletion: %s", record_id, exc)

        trace.step(f"fetching items from {PACKAGING_ITEMS}")
        items = await list_record_items(store, record_id, page_size=item_page_size)
        trace.items_barcodes = [i["product_barcode"] for i in items]
        logger.info("Found %d items to delete", len(items))

        stock = StockUpdateSummary()
        if request.restore_stock and items:
            trace.step(f"restoring stock in {PRODUCTS}")
            soft_errors: list[str] = []
            requirements = await resolve_stock_requirements(
                store,
                items,
                soft_errors,
                max_depth=max_bundle_depth,
                batch_size=id_batch_size,
            )
            stock = await apply_stock_deltas(
                store,
                requirements,
                RESTORE,
                trace,
                batch_size=batch_size,
                id_batch_size=id_batch_size,
            )
            stock.add_errors(soft_errors)

        trace.step(f"deleting items from {PACKAGING_ITEMS}")
        deletions = await run_batched(
            items,
            lambda item: store.delete_row(PACKAGING_ITEMS, item["id"]),
            batch_size,
            describe=_describe_item,
        )
        item_errors = _item_errors("delete", deletions, trace)
        items_deleted = len(deletions) - len(item_errors)
        logger.info("Deleted %d items", items_deleted)

        trace.step(f"deleting record from {PACKAGING_RECORDS}")
        try:
            await store.delete_row(PACKAGING_RECORDS, record_id)
            record_deleted = True
        except Exception as exc:
            # déjà supprimé ou introuvable : simple note
            logger.warning(
                "Record deletion note for waybill %s: %s", trace.waybill_number or record_id, exc
            )
    except Exception as exc:
        error = await _fatal(
            store,
            trace,
            exc,
            user_id=request.user_id,
            action=AuditAction.packaging_record_delete,
            resource_type=ResourceType.packaging_record,
            user_email=request.user_email,
            session_id=request.session_id,
            user_agent=user_agent,
        )
        raise error from exc

    trace.step("writing audit log")
    await record_audit(
        store,
        user_id=request.user_id,
        action_type=AuditAction.packaging_record_delete.value,
        resource_type=ResourceType.packaging_record.value,
        resource_id=record_id,
        details={
            "packaging_date": trace.packaging_date,
            "waybill_number": trace.waybill_number,
            "record_found": record is not None,
            "items_deleted": items_deleted,
            "item_failures": len(item_errors),
            "stock_restored": request.restore_stock,
            "stock_restore_success": stock.success,
        },
        user_email=request.user_email,
        session_id=request.session_id,
        user_agent=user_agent,
    )

    trace.step("done")
    return PackagingDeleteResponse(
        deleted=DeletedRecordOut(
            record_id=record_id,
            items_count=items_deleted,
            packaging_date=record["packaging_date"] if record else None,
            waybill_number=trace.waybill_number,
            record_deleted=record_deleted,
        ),
        item_errors=item_errors,
        stock_restore=_summary_out(stock),
    )


# ---------- Lecture ----------
async def list_packaging_by_date(
    store: DocumentStore,
    packaging_date: date,
    *,
    item_page_size: int = ITEM_PAGE_SIZE,
) -> list[PackagingRecordWithItems]:
    result = await store.list_rows(
        PACKAGING_RECORDS,
        [Where("packaging_date", packaging_date)],
        order_by="created_at",
        descending=True,
    )
    records = []
    for record in result.rows:
        items = await list_record_items(store, record["id"], page_size=item_page_size)
        records.append(
            PackagingRecordWithItems.model_validate(
                {**record, "items": [PackagingItemOut.model_validate(i) for i in items]}
            )
        )
    return records


async def preview_stock_requirements(
    store: DocumentStore,
    items: list[PackagingItemIn] | list[Mapping[str, Any]],
    *,
    id_batch_size: int = ID_QUERY_BATCH_SIZE,
    max_bundle_depth: int = MAX_BUNDLE_DEPTH,
) -> StockCheckResponse:
    """
    Calcule, sans rien écrire, les `stock_updates` d'un futur Create et
    les produits dont le stock est insuffisant.
    """
    rows = [
        {"product_barcode": i.product_barcode if isinstance(i, PackagingItemIn) else i["product_barcode"]}
        for i in items
    ]
    errors: list[str] = []
    requirements = await resolve_stock_requirements(
        store,
        rows,
        errors,
        max_depth=max_bundle_depth,
        batch_size=id_batch_size,
    )

    def as_out(product_id: str) -> StockRequirementOut:
        delta = requirements[product_id]
        product = delta.product or {}
        return StockRequirementOut(
            product_id=product_id,
            barcode=product.get("barcode", ""),
            name=product.get("name", ""),
            required=delta.quantity,
            available=int(product.get("stock_quantity", 0)),
        )

    shortages = find_shortages(requirements)
    return StockCheckResponse(
        valid=not shortages and not errors,
        stock_updates=[
            StockUpdateIn(product_id=pid, deduct_amount=delta.quantity) for pid, delta in requirements.items()
        ],
        requirements=[as_out(pid) for pid in requirements],
        insufficient=[as_out(s.product_id) for s in shortages],
        errors=errors,
    )
