"""
Count Ledger Service.

Records counting observations and re-runs reconciliation for the item after
every write. Each write holds a shared lock on the inventory row (so no
lifecycle transition can interleave) and an exclusive lock on the item row
(so two writers never recompute the final quantity concurrently).
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.core.exceptions import (
    BusinessValidationError, NotFoundError, DataInconsistencyError,
)
from stocktake.core.permissions import Actor, require_audit_access
from stocktake.models.inventory import Inventory, InventoryItem, InventoryCount, InventoryStatus
from stocktake.services.audit_service import AuditService
from stocktake.services.inventory_state_machine import (
    STAGE_OPEN_STATUS, as_status, ensure_not_terminal,
)
from stocktake.services.reconciliation import apply_reconciliation, ReconciliationResult


logger = logging.getLogger(__name__)

AUDIT_STAGE = 4


class CountLedgerService:
    """Append-only count ledger for inventory items."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def _lock_item(self, item_id: UUID) -> Tuple[InventoryItem, Inventory]:
        item_result = await self.db.execute(
            select(InventoryItem.inventory_id).where(InventoryItem.id == item_id)
        )
        inventory_id = item_result.scalar_one_or_none()
        if inventory_id is None:
            raise NotFoundError("Inventory item not found", error_code="ITEM_NOT_FOUND",
                                details={"item_id": str(item_id)})

        # Inventory first, then item: same order as lifecycle transitions
        inventory = (await self.db.execute(
            select(Inventory)
            .where(Inventory.id == inventory_id)
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        )).scalar_one()
        item = (await self.db.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one()
        return item, inventory

    @staticmethod
    def validate_submission(stage: int, quantity: Decimal) -> None:
        """Reject malformed stage numbers and negative quantities."""
        if stage not in STAGE_OPEN_STATUS:
            raise BusinessValidationError(
                f"Stage must be one of 1, 2, 3, 4 (got {stage})",
                error_code="INVALID_STAGE",
                details={"stage": stage},
            )
        if quantity is None or quantity < 0:
            raise BusinessValidationError(
                "Quantity must be greater than or equal to 0",
                error_code="NEGATIVE_QUANTITY",
                details={"quantity": str(quantity)},
            )

    def _check_stage_open(self, inventory: Inventory, item: InventoryItem, stage: int, actor: Actor) -> None:
        status = as_status(inventory.status)
        ensure_not_terminal(status)

        required = STAGE_OPEN_STATUS[stage]
        if status != required:
            raise BusinessValidationError(
                f"Stage {stage} can only be recorded while the inventory is "
                f"'{required.value}' (current: '{status.value}')",
                error_code="STAGE_NOT_OPEN",
                details={"stage": stage, "status": status.value, "required_status": required.value},
            )

        if stage == AUDIT_STAGE:
            require_audit_access(actor, "record audit counts")
        elif item.get_count(stage) is not None:
            raise BusinessValidationError(
                f"Stage {stage} was already recorded for this item",
                error_code="STAGE_ALREADY_RECORDED",
                details={"stage": stage, "item_id": str(item.id)},
            )

    async def record_count(
        self,
        item_id: UUID,
        stage: int,
        quantity: Decimal,
        actor: Actor,
        commit: bool = True,
    ) -> Tuple[InventoryCount, ReconciliationResult]:
        """
        Record a count for an item and reconcile it.

        Stages 1-3 are written once, while the matching round is open.
        Stage 4 is the audit override: audit mode only, audit role only,
        and it may be resubmitted (the latest value wins).
        """
        quantity = Decimal(quantity) if quantity is not None else None
        self.validate_submission(stage, quantity)

        item, inventory = await self._lock_item(item_id)
        self._check_stage_open(inventory, item, stage, actor)

        if item.expected_quantity is None:
            logger.error(f"Inventory item {item.id} has no expected quantity")
            raise DataInconsistencyError(
                "Item has no expected quantity; stock snapshot is inconsistent",
                error_code="MISSING_EXPECTED_QUANTITY",
                details={"item_id": str(item.id)},
            )

        old_values = {
            f"count{stage}": item.get_count(stage),
            "final_quantity": item.final_quantity,
            "status": item.status,
        }

        now = datetime.now(timezone.utc)
        entry = InventoryCount(
            item_id=item.id,
            stage=stage,
            quantity=quantity,
            counted_by=actor.id,
            counted_at=now,
        )
        self.db.add(entry)

        setattr(item, f"count{stage}", quantity)
        setattr(item, f"count{stage}_by", actor.id)
        setattr(item, f"count{stage}_at", now)

        result = apply_reconciliation(item, audit_mode=as_status(inventory.status) == InventoryStatus.AUDIT_MODE)

        await self.audit.record(
            actor_id=actor.id,
            action="RECORD_COUNT",
            entity_type="INVENTORY_ITEM",
            entity_id=item.id,
            old_values=old_values,
            new_values={
                f"count{stage}": quantity,
                "final_quantity": result.final_quantity,
                "divergence_class": result.divergence_class.value,
                "status": result.item_status.value,
            },
            metadata={"inventory_id": str(inventory.id), "stage": stage},
        )

        if commit:
            await self.db.commit()
            await self.db.refresh(entry)
            await self.db.refresh(item)
        else:
            await self.db.flush()
        return entry, result

    async def get_item(self, item_id: UUID) -> Optional[InventoryItem]:
        result = await self.db.execute(
            select(InventoryItem).where(InventoryItem.id == item_id)
        )
        return result.scalar_one_or_none()

    async def list_counts(self, item_id: UUID) -> List[InventoryCount]:
        result = await self.db.execute(
            select(InventoryCount)
            .where(InventoryCount.item_id == item_id)
            .order_by(InventoryCount.counted_at, InventoryCount.stage)
        )
        return list(result.scalars().all())
