from fastapi import APIRouter

from stocktake.api.v1.endpoints import (
    inventories,
    serial_items,
    erp,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Counting Campaigns ====================
api_router.include_router(
    inventories.router,
    prefix="/inventories",
    tags=["Inventories"]
)
api_router.include_router(
    inventories.items_router,
    prefix="/inventory-items",
    tags=["Counts"]
)

# ==================== Serial Reconciliation ====================
api_router.include_router(
    serial_items.router,
    prefix="/inventories",
    tags=["Serial Reconciliation"]
)
api_router.include_router(
    serial_items.serial_items_router,
    prefix="/serial-items",
    tags=["Serial Reconciliation"]
)

# ==================== ERP Integration ====================
api_router.include_router(
    erp.router,
    prefix="/inventories",
    tags=["ERP Integration"]
)
