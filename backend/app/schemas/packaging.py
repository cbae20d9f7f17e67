from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


# ---------- Requests ----------
# Champs requis volontairement optionnels ici : l'absence est une erreur
# métier (400 "Missing required fields") levée par le service.
class PackagingItemIn(BaseModel):
    product_barcode: str = Field(min_length=1, max_length=64)
    product_name: str | None = None
    scanned_at: datetime | None = None


class StockUpdateIn(BaseModel):
    product_id: str = Field(min_length=1)
    deduct_amount: int = Field(ge=0)


class PackagingCreateRequest(BaseModel):
    packaging_date: date | None = None
    waybill_number: str | None = Field(default=None, max_length=128)
    items: list[PackagingItemIn] | None = None
    stock_updates: list[StockUpdateIn] | None = None
    user_id: str | None = None
    user_email: str | None = None
    session_id: str | None = None


class PackagingUpdateRequest(BaseModel):
    record_id: str | None = None
    waybill_number: str | None = Field(default=None, max_length=128)
    items: list[PackagingItemIn] | None = None
    user_id: str | None = None
    user_email: str | None = None
    session_id: str | None = None


class PackagingDeleteRequest(BaseModel):
    record_id: str | None = None
    restore_stock: bool = True
    user_id: str | None = None
    user_email: str | None = None
    session_id: str | None = None


class StockCheckRequest(BaseModel):
    items: list[PackagingItemIn] = Field(default_factory=list)


# ---------- Responses ----------
class PackagingRecordOut(BaseModel):
    id: str
    packaging_date: date
    waybill_number: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PackagingItemOut(BaseModel):
    id: str
    packaging_record_id: str
    product_barcode: str
    scanned_at: datetime


class PackagingRecordWithItems(PackagingRecordOut):
    items: list[PackagingItemOut] = Field(default_factory=list)


class StockChangeOut(BaseModel):
    product_id: str
    barcode: str | None = None
    name: str | None = None
    previous: int | None = None
    new: int | None = None
    requested: int = 0
    clamped: bool = False
    success: bool = True
    error: str | None = None


class StockUpdateSummaryOut(BaseModel):
    success: bool = True
    updated: int = 0
    errors: list[str] = Field(default_factory=list)
    changes: list[StockChangeOut] = Field(default_factory=list)


class PackagingCreateResponse(BaseModel):
    success: bool = True
    record: PackagingRecordOut
    items: list[PackagingItemOut]
    item_errors: list[str] = Field(default_factory=list)
    stock_updates: StockUpdateSummaryOut


class PackagingUpdateResponse(BaseModel):
    success: bool = True
    record: PackagingRecordOut
    items: list[PackagingItemOut] = Field(default_factory=list)
    removed_items: int = 0
    item_errors: list[str] = Field(default_factory=list)


class DeletedRecordOut(BaseModel):
    record_id: str
    items_count: int
    packaging_date: date | None = None
    waybill_number: str | None = None
    record_deleted: bool


class PackagingDeleteResponse(BaseModel):
    success: bool = True
    deleted: DeletedRecordOut
    item_errors: list[str] = Field(default_factory=list)
    stock_restore: StockUpdateSummaryOut


class StockRequirementOut(BaseModel):
    product_id: str
    barcode: str
    name: str
    required: int
    available: int


class StockCheckResponse(BaseModel):
    valid: bool
    stock_updates: list[StockUpdateIn]
    requirements: list[StockRequirementOut]
    insufficient: list[StockRequirementOut]
    errors: list[str] = Field(default_factory=list)
