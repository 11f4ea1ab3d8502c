"""
Inventory API Endpoints.

Counting campaigns: creation, lifecycle actions, count submission, closure
checks, bulk confirmation and statistics.
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Query, status

from stocktake.api.deps import DB, CurrentActor
from stocktake.core.exceptions import NotFoundError
from stocktake.models.inventory import InventoryStatus, ItemStatus
from stocktake.schemas.inventory import (
    InventoryCreate, InventoryCancel, InventoryResponse, TransitionResponse,
    CountSubmit, CountEntryResponse, CountRecordResponse, InventoryItemResponse,
    ClosureCheckResponse, BulkConfirmResponse, InventoryStats,
)
from stocktake.services.count_ledger_service import CountLedgerService
from stocktake.services.inventory_report_service import InventoryReportService
from stocktake.services.inventory_service import InventoryService

router = APIRouter()
items_router = APIRouter()


async def _get_item_or_404(db, item_id: UUID):
    item = await CountLedgerService(db).get_item(item_id)
    if not item:
        raise NotFoundError("Inventory item not found", error_code="ITEM_NOT_FOUND",
                            details={"item_id": str(item_id)})
    return item


def _transition_response(result) -> TransitionResponse:
    inventory, previous, path = result
    return TransitionResponse(
        inventory_id=inventory.id,
        previous_status=previous,
        status=inventory.status,
        transitions=path,
    )


# ============================================================================
# INVENTORIES
# ============================================================================

@router.post(
    "",
    response_model=InventoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Inventory"
)
async def create_inventory(data: InventoryCreate, db: DB, actor: CurrentActor):
    """Create an inventory and generate its items from current stock."""
    service = InventoryService(db)
    return await service.create_inventory(data, actor)


@router.get(
    "",
    response_model=List[InventoryResponse],
    summary="List Inventories"
)
async def list_inventories(
    db: DB,
    actor: CurrentActor,
    status: Optional[InventoryStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    service = InventoryService(db)
    inventories, _ = await service.list_inventories(status=status, skip=skip, limit=limit)
    return inventories


@router.get(
    "/{inventory_id}",
    response_model=InventoryResponse,
    summary="Get Inventory"
)
async def get_inventory(inventory_id: UUID, db: DB, actor: CurrentActor):
    service = InventoryService(db)
    return await service.get_inventory(inventory_id)


@router.delete(
    "/{inventory_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Cancelled Inventory"
)
async def delete_inventory(inventory_id: UUID, db: DB, actor: CurrentActor):
    """Only cancelled inventories can be deleted."""
    service = InventoryService(db)
    await service.delete_inventory(inventory_id, actor)


@router.get(
    "/{inventory_id}/items",
    response_model=List[InventoryItemResponse],
    summary="List Inventory Items"
)
async def list_items(
    inventory_id: UUID,
    db: DB,
    actor: CurrentActor,
    status: Optional[ItemStatus] = None,
    unsettled_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
):
    service = InventoryService(db)
    items, _ = await service.list_items(
        inventory_id,
        status=status,
        unsettled_only=unsettled_only,
        skip=skip,
        limit=limit
    )
    return items


# ============================================================================
# LIFECYCLE
# ============================================================================

@router.post("/{inventory_id}/open", response_model=TransitionResponse, summary="Open Inventory")
async def open_inventory(inventory_id: UUID, db: DB, actor: CurrentActor):
    return _transition_response(await InventoryService(db).open_inventory(inventory_id, actor))


@router.post("/{inventory_id}/start-counting", response_model=TransitionResponse, summary="Start Counting Round")
async def start_counting(inventory_id: UUID, db: DB, actor: CurrentActor):
    return _transition_response(await InventoryService(db).start_counting(inventory_id, actor))


@router.post("/{inventory_id}/finish-counting", response_model=TransitionResponse, summary="Finish Counting Round")
async def finish_counting(inventory_id: UUID, db: DB, actor: CurrentActor):
    """
    Close the open counting round.

    After round 2 the response lists the automatic follow-up transition
    (third round required, or straight to audit) when auto-advance is on.
    """
    return _transition_response(await InventoryService(db).finish_counting(inventory_id, actor))


@router.post(
    "/{inventory_id}/evaluate-second-round",
    response_model=TransitionResponse,
    summary="Decide Third Round or Audit"
)
async def evaluate_second_round(inventory_id: UUID, db: DB, actor: CurrentActor):
    return _transition_response(await InventoryService(db).evaluate_second_round(inventory_id, actor))


@router.post("/{inventory_id}/cancel", response_model=TransitionResponse, summary="Cancel Inventory")
async def cancel_inventory(inventory_id: UUID, data: InventoryCancel, db: DB, actor: CurrentActor):
    return _transition_response(await InventoryService(db).cancel(inventory_id, data.reason, actor))


@router.post("/{inventory_id}/close", response_model=TransitionResponse, summary="Close Inventory")
async def close_inventory(inventory_id: UUID, db: DB, actor: CurrentActor):
    """Requires an audit role and every item settled."""
    return _transition_response(await InventoryService(db).close(inventory_id, actor))


@router.get("/{inventory_id}/can-close", response_model=ClosureCheckResponse, summary="Closure Dry Run")
async def can_close(inventory_id: UUID, db: DB, actor: CurrentActor):
    check = await InventoryService(db).can_close(inventory_id)
    return ClosureCheckResponse(
        inventory_id=check.inventory_id,
        allowed=check.allowed,
        total_items=check.total_items,
        unsettled_count=check.unsettled_count,
    )


@router.post(
    "/{inventory_id}/confirm-all-items",
    response_model=BulkConfirmResponse,
    summary="Confirm All Items"
)
async def confirm_all_items(inventory_id: UUID, db: DB, actor: CurrentActor):
    """Audit-settle every item at its final quantity (zero when unsettled)."""
    total, confirmed, failed = await InventoryService(db).confirm_all_items(inventory_id, actor)
    return BulkConfirmResponse(
        inventory_id=inventory_id,
        total_items=total,
        confirmed=confirmed,
        failed=failed,
    )


@router.get("/{inventory_id}/stats", response_model=InventoryStats, summary="Inventory Statistics")
async def get_stats(inventory_id: UUID, db: DB, actor: CurrentActor):
    return await InventoryReportService(db).get_stats(inventory_id)


# ============================================================================
# COUNTS
# ============================================================================

@items_router.post(
    "/{item_id}/counts",
    response_model=CountRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Count"
)
async def submit_count(item_id: UUID, data: CountSubmit, db: DB, actor: CurrentActor):
    """Record a count for the given stage and reconcile the item."""
    service = CountLedgerService(db)
    entry, _ = await service.record_count(item_id, data.stage, data.quantity, actor)
    item = await service.get_item(item_id)
    return CountRecordResponse(
        id=entry.id,
        item_id=entry.item_id,
        stage=entry.stage,
        quantity=entry.quantity,
        counted_by=entry.counted_by,
        counted_at=entry.counted_at,
        item=InventoryItemResponse.model_validate(item),
    )


@items_router.get(
    "/{item_id}",
    response_model=InventoryItemResponse,
    summary="Get Inventory Item"
)
async def get_item(item_id: UUID, db: DB, actor: CurrentActor):
    return await _get_item_or_404(db, item_id)


@items_router.get(
    "/{item_id}/counts",
    response_model=List[CountEntryResponse],
    summary="List Item Count Ledger"
)
async def list_counts(item_id: UUID, db: DB, actor: CurrentActor):
    """Every count recorded for the item, oldest first."""
    await _get_item_or_404(db, item_id)
    return await CountLedgerService(db).list_counts(item_id)
