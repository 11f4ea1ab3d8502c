"""
ERP integration schemas.

The outbound payload keeps the ERP's camelCase field names.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from stocktake.schemas.base import BaseResponseSchema


class ErpStockUpdate(BaseModel):
    """One stock adjustment line sent to the ERP."""
    model_config = ConfigDict(populate_by_name=True)

    product_code: str = Field(..., alias="productCode")
    quantity: Decimal
    location_id: UUID = Field(..., alias="locationId")
    inventory_code: str = Field(..., alias="inventoryCode")

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ErpBatchResponse(BaseModel):
    """ERP reply to a batch update."""
    model_config = ConfigDict(extra="ignore")

    success: bool
    message: Optional[str] = None


class ErpMigrationCheck(BaseResponseSchema):
    """Dry run of an inventory ERP migration."""
    inventory_id: UUID
    can_migrate: bool
    reason: Optional[str] = None
    items_to_migrate: int = 0
    unsettled_count: int = 0


class ErpMigrationResult(BaseResponseSchema):
    inventory_id: UUID
    success: bool
    migrated_items: int
    batches: int
    erp_migrated_at: Optional[datetime] = None
