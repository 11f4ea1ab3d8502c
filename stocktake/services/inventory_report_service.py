"""
Inventory Report Service.

Read-only dashboard aggregates for a counting campaign.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any
from uuid import UUID

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.core.exceptions import NotFoundError
from stocktake.models.inventory import Inventory, InventoryItem, ItemStatus
from stocktake.services.serial_reconciliation_service import SerialReconciliationService


def _percent(part: int, whole: int) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class InventoryReportService:
    """Service for inventory statistics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_stats(self, inventory_id: UUID) -> Dict[str, Any]:
        inventory = (await self.db.execute(
            select(Inventory).where(Inventory.id == inventory_id)
        )).scalar_one_or_none()
        if not inventory:
            raise NotFoundError("Inventory not found", error_code="INVENTORY_NOT_FOUND",
                                details={"inventory_id": str(inventory_id)})

        def counted(column):
            return func.coalesce(func.sum(case((column.is_not(None), 1), else_=0)), 0)

        delta = InventoryItem.divergence_qty
        totals = (await self.db.execute(
            select(
                func.count(InventoryItem.id),
                counted(InventoryItem.count1),
                counted(InventoryItem.count2),
                counted(InventoryItem.count3),
                counted(InventoryItem.count4),
                counted(InventoryItem.final_quantity),
                func.coalesce(func.sum(case((delta == 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((delta != 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((delta > 0, delta), else_=0)), 0),
                func.coalesce(func.sum(case((delta < 0, delta), else_=0)), 0),
            ).where(InventoryItem.inventory_id == inventory_id)
        )).one()
        (total, c1, c2, c3, c4, settled, accurate, divergent, surplus, shortage) = totals
        total = int(total or 0)
        settled = int(settled or 0)

        status_rows = (await self.db.execute(
            select(InventoryItem.status, func.count(InventoryItem.id))
            .where(InventoryItem.inventory_id == inventory_id)
            .group_by(InventoryItem.status)
        )).all()
        items_by_status = {s.value: 0 for s in ItemStatus}
        items_by_status.update({status: int(count) for status, count in status_rows})

        surplus = Decimal(str(surplus or 0))
        shortage = Decimal(str(shortage or 0))

        serial_summary = await SerialReconciliationService(self.db).get_summary(inventory_id)

        return {
            "inventory_id": inventory.id,
            "status": inventory.status,
            "total_items": total,
            "counted_by_stage": {
                "count1": int(c1 or 0),
                "count2": int(c2 or 0),
                "count3": int(c3 or 0),
                "count4": int(c4 or 0),
            },
            "items_by_status": items_by_status,
            "settled_items": settled,
            "unsettled_items": total - settled,
            "progress_percent": _percent(settled, total),
            "accuracy_percent": _percent(int(accurate or 0), settled) if settled else None,
            "divergence": {
                "divergent_items": int(divergent or 0),
                "surplus_qty": surplus,
                "shortage_qty": -shortage,
                "net_qty": surplus + shortage,
            },
            "serial_discrepancies": serial_summary if serial_summary["total_serial_items"] else None,
        }
