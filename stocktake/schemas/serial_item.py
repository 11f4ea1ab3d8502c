"""
Serial-identity reconciliation schemas.
"""
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import Field

from stocktake.models.serial_item import DiscrepancyType, ResolutionStatus
from stocktake.schemas.base import BaseCreateSchema, BaseResponseSchema


class SerialReadingCreate(BaseCreateSchema):
    """Schema for a scanned serial number."""
    serial_number: str = Field(..., min_length=1, max_length=100)
    location_id: UUID
    stage: int = Field(..., ge=1, le=4)


class SerialResolve(BaseCreateSchema):
    """Schema for resolving a discrepancy."""
    notes: str = Field(..., min_length=1, max_length=2000)


class SerialMigrate(BaseCreateSchema):
    """Schema for marking resolved discrepancies as migrated to the ERP."""
    erp_reference: Optional[str] = Field(None, max_length=200)


class SerialReadingResponse(BaseResponseSchema):
    stage: int
    location_id: UUID
    scanned_by: UUID
    scanned_at: datetime


class SerialItemResponse(BaseResponseSchema):
    """Schema for serial item response."""
    id: UUID
    inventory_id: UUID
    serial_number: str
    product_id: Optional[UUID] = None
    expected_location_id: Optional[UUID] = None
    found_location_id: Optional[UUID] = None
    found_stage: Optional[int] = None
    found_by: Optional[UUID] = None
    found_at: Optional[datetime] = None
    discrepancy_type: Optional[DiscrepancyType] = None
    resolution_status: ResolutionStatus
    resolution_notes: Optional[str] = None
    resolved_by: Optional[UUID] = None
    resolved_at: Optional[datetime] = None
    migrated_by: Optional[UUID] = None
    migrated_at: Optional[datetime] = None
    erp_reference: Optional[str] = None


class SerialReadingResult(BaseResponseSchema):
    """Outcome of a scan submission."""
    serial_item: SerialItemResponse
    created: bool        # A new unexpected record was created
    changed: bool        # False when the scan repeated an identical reading


class SerialItemPage(BaseResponseSchema):
    items: List[SerialItemResponse]
    total: int
    skip: int
    limit: int


class SerialStatusCounts(BaseResponseSchema):
    pending: int = 0
    resolved: int = 0
    migrated_to_erp: int = 0


class SerialDiscrepancySummary(BaseResponseSchema):
    """Discrepancy totals by type and by resolution status."""
    total_serial_items: int = 0
    total_discrepancies: int = 0
    found: int = 0
    location_mismatches: int = 0
    not_found: int = 0
    unexpected_found: int = 0
    by_status: SerialStatusCounts = SerialStatusCounts()


class SerialInitializeResult(BaseResponseSchema):
    inventory_id: UUID
    created: int
    skipped: int


class SerialProcessResult(BaseResponseSchema):
    inventory_id: UUID
    marked_not_found: int
    summary: SerialDiscrepancySummary


class SerialMigrateResult(BaseResponseSchema):
    inventory_id: UUID
    migrated: int
    failed: int
