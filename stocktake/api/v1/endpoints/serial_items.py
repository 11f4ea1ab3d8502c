"""
Serial Reconciliation API Endpoints.

Scan intake and discrepancy resolution for serialized assets.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from stocktake.api.deps import DB, CurrentActor
from stocktake.models.serial_item import DiscrepancyType, ResolutionStatus
from stocktake.schemas.serial_item import (
    SerialReadingCreate, SerialResolve, SerialMigrate,
    SerialItemResponse, SerialReadingResult, SerialItemPage,
    SerialDiscrepancySummary, SerialInitializeResult, SerialProcessResult, SerialMigrateResult,
)
from stocktake.services.serial_reconciliation_service import SerialReconciliationService

router = APIRouter()
serial_items_router = APIRouter()


@router.post(
    "/{inventory_id}/serial-items/initialize",
    response_model=SerialInitializeResult,
    summary="Initialize Expected Serials"
)
async def initialize_serial_items(inventory_id: UUID, db: DB, actor: CurrentActor):
    """Snapshot the serials expected at the inventory's locations."""
    created, skipped = await SerialReconciliationService(db).initialize_serial_items(inventory_id, actor)
    return SerialInitializeResult(inventory_id=inventory_id, created=created, skipped=skipped)


@router.post(
    "/{inventory_id}/serial-readings",
    response_model=SerialReadingResult,
    status_code=status.HTTP_201_CREATED,
    summary="Register Serial Scan"
)
async def register_reading(inventory_id: UUID, data: SerialReadingCreate, db: DB, actor: CurrentActor):
    serial_item, created, changed = await SerialReconciliationService(db).register_reading(
        inventory_id,
        data.serial_number,
        data.location_id,
        data.stage,
        actor,
    )
    return SerialReadingResult(
        serial_item=SerialItemResponse.model_validate(serial_item),
        created=created,
        changed=changed,
    )


@router.post(
    "/{inventory_id}/serial-discrepancies/process",
    response_model=SerialProcessResult,
    summary="Mark Unscanned Serials Not Found"
)
async def process_discrepancies(inventory_id: UUID, db: DB, actor: CurrentActor):
    service = SerialReconciliationService(db)
    marked = await service.process_discrepancies(inventory_id)
    summary = await service.get_summary(inventory_id)
    return SerialProcessResult(inventory_id=inventory_id, marked_not_found=marked, summary=summary)


@router.get(
    "/{inventory_id}/serial-discrepancies",
    response_model=SerialItemPage,
    summary="List Serial Discrepancies"
)
async def list_discrepancies(
    inventory_id: UUID,
    db: DB,
    actor: CurrentActor,
    discrepancy_type: Optional[DiscrepancyType] = None,
    resolution_status: Optional[ResolutionStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    items, total = await SerialReconciliationService(db).list_discrepancies(
        inventory_id,
        discrepancy_type=discrepancy_type,
        resolution_status=resolution_status,
        skip=skip,
        limit=limit,
    )
    return SerialItemPage(
        items=[SerialItemResponse.model_validate(i) for i in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{inventory_id}/serial-discrepancies/summary",
    response_model=SerialDiscrepancySummary,
    summary="Serial Discrepancy Summary"
)
async def get_summary(inventory_id: UUID, db: DB, actor: CurrentActor):
    return await SerialReconciliationService(db).get_summary(inventory_id)


@router.post(
    "/{inventory_id}/serial-discrepancies/migrate-to-erp",
    response_model=SerialMigrateResult,
    summary="Migrate Resolved Discrepancies"
)
async def migrate_resolved(inventory_id: UUID, data: SerialMigrate, db: DB, actor: CurrentActor):
    """Mark every resolved discrepancy as migrated. Requires an audit role."""
    migrated, failed = await SerialReconciliationService(db).migrate_resolved_to_erp(
        inventory_id, actor, data.erp_reference
    )
    return SerialMigrateResult(inventory_id=inventory_id, migrated=migrated, failed=failed)


@serial_items_router.post(
    "/{serial_item_id}/resolve",
    response_model=SerialItemResponse,
    summary="Resolve Serial Discrepancy"
)
async def resolve(serial_item_id: UUID, data: SerialResolve, db: DB, actor: CurrentActor):
    return await SerialReconciliationService(db).resolve(serial_item_id, data.notes, actor)
