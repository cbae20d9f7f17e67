import enum

# Noms de tables, utilisés par le store et dans les messages de trace
PRODUCTS = "products"
PRODUCT_COMPONENTS = "product_components"
PACKAGING_RECORDS = "packaging_records"
PACKAGING_ITEMS = "packaging_items"
AUDIT_LOGS = "audit_logs"


class ProductType(str, enum.Enum):
    single = "single"
    bundle = "bundle"


class AuditStatus(str, enum.Enum):
    success = "success"
    failure = "failure"


class AuditAction(str, enum.Enum):
    packaging_record_create = "packaging_record_create"
    packaging_record_update = "packaging_record_update"
    packaging_items_update = "packaging_items_update"
    packaging_record_delete = "packaging_record_delete"


class ResourceType(str, enum.Enum):
    packaging_record = "packaging_record"
    packaging_item = "packaging_item"
