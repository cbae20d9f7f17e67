from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import ProductType


class ComponentIn(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class ProductCreate(BaseModel):
    barcode: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    type: ProductType = ProductType.single
    stock_quantity: int = Field(default=0, ge=0)
    sku_code: str | None = Field(default=None, max_length=64)
    price: float = Field(default=0, ge=0)
    components: list[ComponentIn] = Field(default_factory=list)


class ComponentOut(BaseModel):
    product_id: str
    barcode: str | None = None
    name: str | None = None
    quantity: int


class ProductRead(BaseModel):
    id: str
    barcode: str
    name: str
    type: ProductType
    stock_quantity: int
    sku_code: str | None = None
    price: float = 0
    created_at: datetime | None = None
    components: list[ComponentOut] | None = None
