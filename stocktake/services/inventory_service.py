"""
Inventory Service.

Campaign management on top of the lifecycle state machine: creation with item
generation, counting rounds, cancellation, closure, bulk confirmation and
deletion. Every transition holds an exclusive lock on the inventory row for
the duration of its transaction.
"""
import logging
from typing import Optional, List, Tuple
from uuid import UUID

from sqlalchemy import select, func, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.config import settings
from stocktake.core.exceptions import (
    BusinessValidationError, InventoryStateError, NotFoundError, StocktakeError,
)
from stocktake.core.permissions import Actor, require_audit_access
from stocktake.models.inventory import (
    Inventory, InventoryItem, InventoryCount, InventoryStatus, InventoryType, ItemStatus,
)
from stocktake.models.serial_item import SerialItem, SerialReading
from stocktake.models.stock import StockBalance
from stocktake.schemas.inventory import InventoryCreate
from stocktake.services.audit_service import AuditService
from stocktake.services.closure_validator import ClosureValidator, ClosureCheck
from stocktake.services.count_ledger_service import CountLedgerService, AUDIT_STAGE
from stocktake.services.inventory_state_machine import (
    as_status, transition_inventory, start_counting_target, finish_counting_target,
    second_round_outcome, ensure_not_terminal,
)
from stocktake.services.reconciliation import apply_reconciliation
from stocktake.services.serial_reconciliation_service import SerialReconciliationService


logger = logging.getLogger(__name__)


class InventoryService:
    """Service for counting campaign operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.closure = ClosureValidator(db)

    # ========================================================================
    # INVENTORIES
    # ========================================================================

    async def create_inventory(self, data: InventoryCreate, actor: Actor) -> Inventory:
        """
        Create an inventory and snapshot its items from current stock.

        General and cyclic campaigns get one item per stock record matching
        the selected locations/categories; targeted campaigns one per stock
        record of the selected products.
        """
        existing = await self.db.scalar(
            select(func.count()).select_from(Inventory).where(Inventory.code == data.code)
        )
        if existing:
            raise BusinessValidationError(
                f"Inventory code '{data.code}' already exists",
                error_code="DUPLICATE_CODE",
            )

        inventory_type = InventoryType(data.inventory_type)
        if inventory_type == InventoryType.TARGETED and not data.product_ids:
            raise BusinessValidationError(
                "Targeted inventories require at least one product",
                error_code="INVALID_SELECTION",
            )
        if inventory_type == InventoryType.CYCLIC and not data.location_ids:
            raise BusinessValidationError(
                "Cyclic inventories require at least one location",
                error_code="INVALID_SELECTION",
            )

        stock_query = select(StockBalance)
        if data.location_ids:
            stock_query = stock_query.where(StockBalance.location_id.in_(data.location_ids))
        if data.category_ids:
            stock_query = stock_query.where(StockBalance.category_id.in_(data.category_ids))
        if inventory_type == InventoryType.TARGETED:
            stock_query = stock_query.where(StockBalance.product_id.in_(data.product_ids))
        stock_query = stock_query.order_by(StockBalance.location_id, StockBalance.product_code)

        balances = (await self.db.execute(stock_query)).scalars().all()
        if not balances:
            raise BusinessValidationError(
                "Selection matched no stock records",
                error_code="INVALID_SELECTION",
            )

        inventory = Inventory(
            code=data.code,
            description=data.description,
            inventory_type=inventory_type.value,
            status=(InventoryStatus.OPEN if data.open_immediately else InventoryStatus.PLANNING).value,
            start_date=data.start_date,
            predicted_end_date=data.predicted_end_date,
            location_ids=[str(i) for i in data.location_ids] if data.location_ids else None,
            category_ids=[str(i) for i in data.category_ids] if data.category_ids else None,
            product_ids=[str(i) for i in data.product_ids] if data.product_ids else None,
            blocks_system_movements=data.blocks_system_movements,
            created_by=actor.id,
        )
        self.db.add(inventory)
        await self.db.flush()

        for balance in balances:
            self.db.add(InventoryItem(
                inventory_id=inventory.id,
                product_id=balance.product_id,
                product_code=balance.product_code,
                location_id=balance.location_id,
                category_id=balance.category_id,
                expected_quantity=balance.quantity,
                status=ItemStatus.PENDING.value,
            ))

        await self.audit.record(
            actor_id=actor.id,
            action="CREATE_INVENTORY",
            entity_type="INVENTORY",
            entity_id=inventory.id,
            new_values={
                "code": inventory.code,
                "inventory_type": inventory.inventory_type,
                "status": inventory.status,
            },
            metadata={
                "items": len(balances),
                "location_ids": inventory.location_ids,
                "category_ids": inventory.category_ids,
                "product_ids": inventory.product_ids,
            },
        )

        await self.db.commit()
        await self.db.refresh(inventory)
        logger.info(f"Inventory {inventory.code} created with {len(balances)} items")
        return inventory

    async def get_inventory(self, inventory_id: UUID) -> Inventory:
        """Get an inventory by ID or raise NotFoundError."""
        result = await self.db.execute(
            select(Inventory).where(Inventory.id == inventory_id)
        )
        inventory = result.scalar_one_or_none()
        if not inventory:
            raise NotFoundError("Inventory not found", error_code="INVENTORY_NOT_FOUND",
                                details={"inventory_id": str(inventory_id)})
        return inventory

    async def _lock_inventory(self, inventory_id: UUID) -> Inventory:
        result = await self.db.execute(
            select(Inventory)
            .where(Inventory.id == inventory_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        inventory = result.scalar_one_or_none()
        if not inventory:
            raise NotFoundError("Inventory not found", error_code="INVENTORY_NOT_FOUND",
                                details={"inventory_id": str(inventory_id)})
        return inventory

    async def list_inventories(
        self,
        status: Optional[InventoryStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[Inventory], int]:
        """List inventories with filters."""
        query = select(Inventory)
        if status:
            query = query.where(Inventory.status == InventoryStatus(status).value)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(Inventory.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def list_items(
        self,
        inventory_id: UUID,
        status: Optional[ItemStatus] = None,
        unsettled_only: bool = False,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[InventoryItem], int]:
        """List items of an inventory."""
        await self.get_inventory(inventory_id)

        query = select(InventoryItem).where(InventoryItem.inventory_id == inventory_id)
        if status:
            query = query.where(InventoryItem.status == ItemStatus(status).value)
        if unsettled_only:
            query = query.where(InventoryItem.final_quantity.is_(None))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(InventoryItem.location_id, InventoryItem.product_code)
        query = query.offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def _transition(
        self,
        inventory: Inventory,
        target: InventoryStatus,
        actor: Actor,
        metadata: Optional[dict] = None,
    ) -> InventoryStatus:
        previous = transition_inventory(inventory, target, actor.id)
        await self.audit.log_status_change(
            inventory.id, previous.value, target.value, actor.id, metadata
        )
        logger.info(f"Inventory {inventory.code}: {previous.value} -> {target.value}")

        if target == InventoryStatus.AUDIT_MODE:
            # Counting rounds are over: unsettled items await audit and
            # expected serials never scanned are missing
            await self.db.flush()
            await self._mark_unsettled_for_audit(inventory)
            await self.db.flush()
            await SerialReconciliationService(self.db).process_discrepancies(inventory.id, commit=False)
        return previous

    async def _mark_unsettled_for_audit(self, inventory: Inventory) -> None:
        result = await self.db.execute(
            select(InventoryItem)
            .where(
                InventoryItem.inventory_id == inventory.id,
                InventoryItem.final_quantity.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        items = result.scalars().all()
        for item in items:
            apply_reconciliation(item, audit_mode=True)
        logger.info(f"Inventory {inventory.code}: {len(items)} unsettled items await audit")

    async def open_inventory(self, inventory_id: UUID, actor: Actor) -> Tuple[Inventory, InventoryStatus, List[InventoryStatus]]:
        """planning -> open."""
        inventory = await self._lock_inventory(inventory_id)
        previous = await self._transition(inventory, InventoryStatus.OPEN, actor)
        await self.db.commit()
        await self.db.refresh(inventory)
        return inventory, previous, [InventoryStatus.OPEN]

    async def start_counting(self, inventory_id: UUID, actor: Actor) -> Tuple[Inventory, InventoryStatus, List[InventoryStatus]]:
        """Open the next counting round."""
        inventory = await self._lock_inventory(inventory_id)
        target = start_counting_target(inventory.status)
        previous = await self._transition(inventory, target, actor, {"action": "START_COUNTING"})
        await self.db.commit()
        await self.db.refresh(inventory)
        return inventory, previous, [target]

    async def finish_counting(self, inventory_id: UUID, actor: Actor) -> Tuple[Inventory, InventoryStatus, List[InventoryStatus]]:
        """
        Close the current counting round.

        Closing round 3 always moves on to audit mode. Closing round 2 is
        followed by the settlement decision when auto-advance is enabled.
        """
        inventory = await self._lock_inventory(inventory_id)
        target = finish_counting_target(inventory.status)
        previous = await self._transition(inventory, target, actor, {"action": "FINISH_COUNTING"})
        path = [target]

        if target == InventoryStatus.COUNT3_CLOSED:
            await self._transition(inventory, InventoryStatus.AUDIT_MODE, actor, {"action": "AUTO_AUDIT"})
            path.append(InventoryStatus.AUDIT_MODE)

        elif target == InventoryStatus.COUNT2_CLOSED and settings.AUTO_ADVANCE_AFTER_SECOND_COUNT:
            path.append(await self._advance_second_round(inventory, actor))

        await self.db.commit()
        await self.db.refresh(inventory)
        return inventory, previous, path

    async def evaluate_second_round(self, inventory_id: UUID, actor: Actor) -> Tuple[Inventory, InventoryStatus, List[InventoryStatus]]:
        """count2_closed -> count3_required | audit_mode, decided by item settlement."""
        inventory = await self._lock_inventory(inventory_id)
        previous = as_status(inventory.status)
        if previous != InventoryStatus.COUNT2_CLOSED:
            ensure_not_terminal(previous)
            raise InventoryStateError(
                f"Second round can only be evaluated from 'count2_closed' (current: '{previous.value}')",
                error_code="INVALID_TRANSITION",
                details={"current_status": previous.value},
            )
        target = await self._advance_second_round(inventory, actor)
        await self.db.commit()
        await self.db.refresh(inventory)
        return inventory, previous, [target]

    async def _advance_second_round(self, inventory: Inventory, actor: Actor) -> InventoryStatus:
        check = await self.closure.can_close(inventory.id)
        target = second_round_outcome(check.unsettled_count)
        await self._transition(
            inventory, target, actor,
            {"action": "SECOND_ROUND_DECISION", "unsettled_count": check.unsettled_count},
        )
        return target

    async def can_close(self, inventory_id: UUID) -> ClosureCheck:
        """Dry-run closure check."""
        await self.get_inventory(inventory_id)
        return await self.closure.can_close(inventory_id)

    async def close(self, inventory_id: UUID, actor: Actor) -> Tuple[Inventory, InventoryStatus, List[InventoryStatus]]:
        """audit_mode -> closed, gated on every item being settled."""
        require_audit_access(actor, "close inventories")
        inventory = await self._lock_inventory(inventory_id)
        ensure_not_terminal(inventory.status)

        if as_status(inventory.status) == InventoryStatus.AUDIT_MODE:
            check = await self.closure.can_close(inventory.id)
            if not check.allowed:
                raise InventoryStateError(
                    f"Cannot close inventory: {check.unsettled_count} of {check.total_items} "
                    f"items have no final quantity",
                    error_code="UNSETTLED_ITEMS",
                    details={"unsettled_count": check.unsettled_count, "total_items": check.total_items},
                )

        previous = await self._transition(inventory, InventoryStatus.CLOSED, actor)
        await self.db.commit()
        await self.db.refresh(inventory)
        return inventory, previous, [InventoryStatus.CLOSED]

    async def cancel(self, inventory_id: UUID, reason: str, actor: Actor) -> Tuple[Inventory, InventoryStatus, List[InventoryStatus]]:
        """Cancel from any non-terminal state, recording the reason."""
        if not reason or not reason.strip():
            raise BusinessValidationError(
                "A cancellation reason is required",
                error_code="REASON_REQUIRED",
            )
        inventory = await self._lock_inventory(inventory_id)
        previous = transition_inventory(inventory, InventoryStatus.CANCELLED, actor.id)
        inventory.cancellation_reason = reason.strip()

        await self.audit.record(
            actor_id=actor.id,
            action="CANCEL_INVENTORY",
            entity_type="INVENTORY",
            entity_id=inventory.id,
            old_values={"status": previous.value},
            new_values={"status": InventoryStatus.CANCELLED.value, "reason": inventory.cancellation_reason},
        )
        logger.info(f"Inventory {inventory.code} cancelled from {previous.value}")

        await self.db.commit()
        await self.db.refresh(inventory)
        return inventory, previous, [InventoryStatus.CANCELLED]

    async def delete_inventory(self, inventory_id: UUID, actor: Actor) -> None:
        """Physically delete a cancelled inventory and everything under it."""
        inventory = await self._lock_inventory(inventory_id)
        status = as_status(inventory.status)
        if status != InventoryStatus.CANCELLED:
            raise InventoryStateError(
                f"Only cancelled inventories can be deleted (current: '{status.value}')",
                error_code="NOT_CANCELLED",
                details={"status": status.value},
            )

        serial_ids = select(SerialItem.id).where(SerialItem.inventory_id == inventory_id)
        item_ids = select(InventoryItem.id).where(InventoryItem.inventory_id == inventory_id)

        await self.db.execute(delete(SerialReading).where(SerialReading.serial_item_id.in_(serial_ids)))
        await self.db.execute(delete(SerialItem).where(SerialItem.inventory_id == inventory_id))
        await self.db.execute(delete(InventoryCount).where(InventoryCount.item_id.in_(item_ids)))
        await self.db.execute(delete(InventoryItem).where(InventoryItem.inventory_id == inventory_id))
        await self.db.execute(delete(Inventory).where(Inventory.id == inventory_id))

        await self.audit.record(
            actor_id=actor.id,
            action="DELETE_INVENTORY",
            entity_type="INVENTORY",
            entity_id=inventory_id,
            old_values={"code": inventory.code, "status": status.value},
        )
        await self.db.commit()
        logger.info(f"Inventory {inventory.code} deleted")

    # ========================================================================
    # BULK CONFIRMATION
    # ========================================================================

    async def confirm_all_items(self, inventory_id: UUID, actor: Actor) -> Tuple[int, int, int]:
        """
        Settle every item through the audit stage.

        Items with a final quantity are confirmed at that quantity; items
        still unsettled are confirmed at zero. Work is committed per batch,
        so a failure leaves earlier batches settled.

        Returns:
            ``(total_items, confirmed, failed)``
        """
        require_audit_access(actor, "confirm all items")
        inventory = await self.get_inventory(inventory_id)
        ensure_not_terminal(inventory.status)
        if as_status(inventory.status) != InventoryStatus.AUDIT_MODE:
            raise InventoryStateError(
                "Inventory must be in audit mode to confirm all items",
                error_code="INVALID_TRANSITION",
                details={"status": as_status(inventory.status).value},
            )

        rows = (await self.db.execute(
            select(InventoryItem.id, InventoryItem.final_quantity)
            .where(InventoryItem.inventory_id == inventory_id)
            .order_by(InventoryItem.id)
        )).all()
        await self.db.commit()

        ledger = CountLedgerService(self.db)
        batch_size = max(1, settings.BULK_BATCH_SIZE)
        confirmed = 0
        failed = 0

        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]
            batch_confirmed = 0
            batch_failed = 0
            try:
                for item_id, final_quantity in batch:
                    quantity = final_quantity if final_quantity is not None else 0
                    try:
                        await ledger.record_count(item_id, AUDIT_STAGE, quantity, actor, commit=False)
                        batch_confirmed += 1
                    except StocktakeError as e:
                        batch_failed += 1
                        logger.warning(f"Could not confirm item {item_id}: {e.message}")
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Bulk confirmation batch starting at {start} failed: {e}")
                # Everything from this batch on stays as it was
                failed += len(rows) - start
                break
            confirmed += batch_confirmed
            failed += batch_failed

        await self.audit.record(
            actor_id=actor.id,
            action="BULK_CONFIRM_ITEMS",
            entity_type="INVENTORY",
            entity_id=inventory_id,
            new_values={"confirmed": confirmed, "failed": failed},
        )
        await self.db.commit()
        logger.info(f"Inventory {inventory.code}: {confirmed} items confirmed, {failed} failed")
        return len(rows), confirmed, failed
