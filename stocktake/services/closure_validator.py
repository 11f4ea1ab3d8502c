"""
Closure Validator.

Hard gate in front of the audit_mode -> closed transition, also callable on
its own as a dry run so a caller can see how many items still block closure.
"""
from dataclasses import dataclass
from typing import Tuple
from uuid import UUID

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.models.inventory import InventoryItem


@dataclass(frozen=True)
class ClosureCheck:
    inventory_id: UUID
    allowed: bool
    total_items: int
    unsettled_count: int


class ClosureValidator:
    """Checks that every item of an inventory has a final quantity."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_unsettled(self, inventory_id: UUID) -> Tuple[int, int]:
        """Return ``(total_items, unsettled_items)``."""
        result = await self.db.execute(
            select(
                func.count(InventoryItem.id),
                func.coalesce(
                    func.sum(case((InventoryItem.final_quantity.is_(None), 1), else_=0)),
                    0
                ),
            ).where(InventoryItem.inventory_id == inventory_id)
        )
        total, unsettled = result.one()
        return int(total or 0), int(unsettled or 0)

    async def can_close(self, inventory_id: UUID) -> ClosureCheck:
        """``allowed`` is true iff no item lacks a final quantity."""
        total, unsettled = await self.count_unsettled(inventory_id)
        return ClosureCheck(
            inventory_id=inventory_id,
            allowed=unsettled == 0,
            total_items=total,
            unsettled_count=unsettled,
        )
