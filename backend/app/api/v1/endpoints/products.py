from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_store
from backend.app.db.store import DocumentStore
from backend.app.schemas.product import ProductCreate, ProductRead
from backend.services.catalog import create_product, get_product_with_components, list_products

router = APIRouter(prefix="/products")


@router.get("", response_model=list[ProductRead])
async def list_products_endpoint(
    limit: int = 100,
    offset: int = 0,
    store: DocumentStore = Depends(get_store),
):
    result = await list_products(store, limit=limit, offset=offset)
    return result.rows


@router.get("/{barcode}", response_model=ProductRead)
async def get_product(barcode: str, store: DocumentStore = Depends(get_store)):
    return await get_product_with_components(store, barcode)


@router.post("", response_model=ProductRead)
async def create_product_endpoint(payload: ProductCreate, store: DocumentStore = Depends(get_store)):
    product = await create_product(
        store,
        barcode=payload.barcode,
        name=payload.name,
        product_type=payload.type,
        stock_quantity=payload.stock_quantity,
        sku_code=payload.sku_code,
        price=payload.price,
        components=[(c.product_id, c.quantity) for c in payload.components],
    )
    return await get_product_with_components(store, product["barcode"])
