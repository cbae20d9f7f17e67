from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.products import router as products_router
from backend.app.api.v1.endpoints.packaging import router as packaging_router
from backend.app.api.v1.endpoints.audit_logs import router as audit_logs_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(products_router, tags=["products"])
router.include_router(packaging_router, tags=["packaging"])
router.include_router(audit_logs_router, tags=["audit_logs"])
