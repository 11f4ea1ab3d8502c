"""
Inventory Counting Schemas.

Pydantic schemas for inventories, items, count submissions and the
aggregate read-only views consumed by dashboards.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import Field, model_validator

from stocktake.models.inventory import (
    InventoryType, InventoryStatus, ItemStatus, DivergenceClass
)
from stocktake.schemas.base import BaseCreateSchema, BaseResponseSchema
from stocktake.schemas.serial_item import SerialDiscrepancySummary


# ============================================================================
# INVENTORY SCHEMAS
# ============================================================================

class InventoryCreate(BaseCreateSchema):
    """Schema for creating an inventory."""
    code: str = Field(..., max_length=50)
    description: Optional[str] = None
    inventory_type: InventoryType = InventoryType.GENERAL
    start_date: Optional[datetime] = None
    predicted_end_date: Optional[datetime] = None

    # Selection Criteria
    location_ids: Optional[List[UUID]] = None
    category_ids: Optional[List[UUID]] = None
    product_ids: Optional[List[UUID]] = None

    blocks_system_movements: bool = False
    open_immediately: bool = False  # Create in "open" instead of "planning"

    @model_validator(mode="after")
    def check_targeted_selection(self):
        if self.inventory_type == InventoryType.TARGETED and not self.product_ids:
            raise ValueError("Targeted inventories require at least one product")
        return self


class InventoryCancel(BaseCreateSchema):
    """Schema for cancelling an inventory."""
    reason: str = Field(..., min_length=1, max_length=2000)


class InventoryResponse(BaseResponseSchema):
    """Schema for inventory response."""
    id: UUID
    code: str
    description: Optional[str] = None
    inventory_type: InventoryType
    status: InventoryStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    predicted_end_date: Optional[datetime] = None
    location_ids: Optional[List[UUID]] = None
    category_ids: Optional[List[UUID]] = None
    product_ids: Optional[List[UUID]] = None
    blocks_system_movements: bool
    cancellation_reason: Optional[str] = None
    erp_migrated: bool
    erp_migrated_at: Optional[datetime] = None
    erp_migrated_by: Optional[UUID] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class TransitionResponse(BaseResponseSchema):
    """Result of a lifecycle action."""
    inventory_id: UUID
    previous_status: InventoryStatus
    status: InventoryStatus
    transitions: List[InventoryStatus] = []


# ============================================================================
# ITEM / COUNT SCHEMAS
# ============================================================================

class CountSubmit(BaseCreateSchema):
    """
    Schema for submitting a count for an item.

    Stage range and sign are validated by the count ledger
    (INVALID_STAGE, NEGATIVE_QUANTITY).
    """
    stage: int = Field(..., description="Count stage, 1-4")
    quantity: Decimal = Field(..., description="Counted quantity, >= 0")


class InventoryItemResponse(BaseResponseSchema):
    """Schema for inventory item response."""
    id: UUID
    inventory_id: UUID
    product_id: UUID
    product_code: str
    location_id: UUID
    category_id: Optional[UUID] = None
    expected_quantity: Optional[Decimal] = None
    count1: Optional[Decimal] = None
    count1_by: Optional[UUID] = None
    count1_at: Optional[datetime] = None
    count2: Optional[Decimal] = None
    count2_by: Optional[UUID] = None
    count2_at: Optional[datetime] = None
    count3: Optional[Decimal] = None
    count3_by: Optional[UUID] = None
    count3_at: Optional[datetime] = None
    count4: Optional[Decimal] = None
    count4_by: Optional[UUID] = None
    count4_at: Optional[datetime] = None
    final_quantity: Optional[Decimal] = None
    divergence_qty: Optional[Decimal] = None
    divergence_class: DivergenceClass
    status: ItemStatus


class CountEntryResponse(BaseResponseSchema):
    """One count ledger entry."""
    id: UUID
    item_id: UUID
    stage: int
    quantity: Decimal
    counted_by: UUID
    counted_at: datetime


class CountRecordResponse(CountEntryResponse):
    """Ledger entry plus the item state it produced."""
    item: InventoryItemResponse


class ClosureCheckResponse(BaseResponseSchema):
    """Dry-run closure gate."""
    inventory_id: UUID
    allowed: bool
    total_items: int
    unsettled_count: int


class BulkConfirmResponse(BaseResponseSchema):
    """Result of confirming every item of an inventory."""
    inventory_id: UUID
    total_items: int
    confirmed: int
    failed: int


# ============================================================================
# DASHBOARD / REPORT SCHEMAS
# ============================================================================

class DivergenceTotals(BaseResponseSchema):
    divergent_items: int
    surplus_qty: Decimal
    shortage_qty: Decimal
    net_qty: Decimal


class InventoryStats(BaseResponseSchema):
    """Read-only aggregate view of an inventory."""
    inventory_id: UUID
    status: InventoryStatus
    total_items: int
    counted_by_stage: Dict[str, int]
    items_by_status: Dict[str, int]
    settled_items: int
    unsettled_items: int
    progress_percent: Decimal
    accuracy_percent: Optional[Decimal] = None
    divergence: DivergenceTotals
    serial_discrepancies: Optional[SerialDiscrepancySummary] = None
