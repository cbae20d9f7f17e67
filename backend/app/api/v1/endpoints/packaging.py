from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header, Query

from backend.app.api.deps import get_store
from backend.app.core.config import settings
from backend.app.db.store import DocumentStore
from backend.app.schemas.packaging import (
    PackagingCreateRequest,
    PackagingCreateResponse,
    PackagingDeleteRequest,
    PackagingDeleteResponse,
    PackagingRecordWithItems,
    PackagingUpdateRequest,
    PackagingUpdateResponse,
    StockCheckRequest,
    StockCheckResponse,
)
from backend.services.packaging import (
    create_packaging,
    delete_packaging,
    list_packaging_by_date,
    preview_stock_requirements,
    update_packaging,
)

router = APIRouter(prefix="/packaging")


@router.get("", response_model=list[PackagingRecordWithItems])
async def list_packaging(
    packaging_date: date = Query(alias="date"),
    store: DocumentStore = Depends(get_store),
):
    return await list_packaging_by_date(store, packaging_date, item_page_size=settings.item_page_size)


@router.post("", response_model=PackagingCreateResponse)
async def create_packaging_endpoint(
    payload: PackagingCreateRequest,
    store: DocumentStore = Depends(get_store),
    user_agent: str | None = Header(default=None),
):
    return await create_packaging(
        store,
        payload,
        database_id=settings.database_id,
        batch_size=settings.write_batch_size,
        id_batch_size=settings.id_query_batch_size,
        user_agent=user_agent,
    )


@router.post("/stock-check", response_model=StockCheckResponse)
async def stock_check(payload: StockCheckRequest, store: DocumentStore = Depends(get_store)):
    """
    Aperçu (lecture seule) : stock_updates à envoyer au Create
    + produits en stock insuffisant.
    """
    return await preview_stock_requirements(
        store,
        payload.items,
        id_batch_size=settings.id_query_batch_size,
        max_bundle_depth=settings.max_bundle_depth,
    )


@router.patch("/{record_id}", response_model=PackagingUpdateResponse)
async def update_packaging_endpoint(
    record_id: str,
    payload: PackagingUpdateRequest,
    store: DocumentStore = Depends(get_store),
    user_agent: str | None = Header(default=None),
):
    """Ne touche jamais au stock, même si les items changent."""
    return await update_packaging(
        store,
        payload.model_copy(update={"record_id": record_id}),
        database_id=settings.database_id,
        batch_size=settings.write_batch_size,
        item_page_size=settings.item_page_size,
        user_agent=user_agent,
    )


@router.delete("/{record_id}", response_model=PackagingDeleteResponse)
async def delete_packaging_endpoint(
    record_id: str,
    user_id: str | None = None,
    restore_stock: bool = True,
    user_email: str | None = None,
    session_id: str | None = None,
    store: DocumentStore = Depends(get_store),
    user_agent: str | None = Header(default=None),
):
    return await delete_packaging(
        store,
        PackagingDeleteRequest(
            record_id=record_id,
            user_id=user_id,
            restore_stock=restore_stock,
            user_email=user_email,
            session_id=session_id,
        ),
        database_id=settings.database_id,
        batch_size=settings.write_batch_size,
        id_batch_size=settings.id_query_batch_size,
        item_page_size=settings.item_page_size,
        max_bundle_depth=settings.max_bundle_depth,
        user_agent=user_agent,
    )
