"""
Serial-Identity Reconciliation Service.

Matches scanned serial numbers against the expected per-location set of an
inventory and classifies each serialized asset:

- scanned at its expected location       -> no discrepancy
- scanned somewhere else                 -> location_mismatch
- scanned but not in the expected set    -> unexpected_found
- expected, never scanned when counting
  rounds are over                        -> not_found

Only the highest-stage reading counts as "found". A record that reached
migrated_to_erp is never touched again.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Tuple, Dict
from uuid import UUID

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.config import settings
from stocktake.core.exceptions import (
    BusinessValidationError, InventoryStateError, NotFoundError,
)
from stocktake.core.permissions import Actor, require_audit_access
from stocktake.models.inventory import Inventory, InventoryStatus
from stocktake.models.serial_item import (
    SerialItem, SerialReading, DiscrepancyType, ResolutionStatus,
)
from stocktake.models.stock import StockSerial
from stocktake.services.audit_service import AuditService
from stocktake.services.inventory_state_machine import (
    STAGE_OPEN_STATUS, as_status, ensure_not_terminal,
)


logger = logging.getLogger(__name__)


def classify(expected_location_id: Optional[UUID], found_location_id: Optional[UUID]) -> Optional[DiscrepancyType]:
    """Discrepancy of a scanned serial, or None when it sits where expected."""
    if expected_location_id is None:
        return DiscrepancyType.UNEXPECTED_FOUND
    if found_location_id is None:
        return None
    if found_location_id != expected_location_id:
        return DiscrepancyType.LOCATION_MISMATCH
    return None


def _ensure_not_migrated(serial_item: SerialItem) -> None:
    if serial_item.resolution_status == ResolutionStatus.MIGRATED_TO_ERP.value:
        raise InventoryStateError(
            f"Serial {serial_item.serial_number} was migrated to the ERP and cannot be changed",
            error_code="SERIAL_ITEM_MIGRATED",
            details={"serial_item_id": str(serial_item.id)},
        )


def _ensure_not_cancelled(inventory: Inventory) -> None:
    # Closed inventories still accept resolution and ERP migration
    if as_status(inventory.status) == InventoryStatus.CANCELLED:
        raise InventoryStateError(
            f"Inventory {inventory.code} is cancelled; its serial discrepancies cannot be changed",
            error_code="INVENTORY_TERMINAL",
            details={"status": InventoryStatus.CANCELLED.value},
        )


class SerialReconciliationService:
    """Scan intake, discrepancy classification and resolution for serialized assets."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def _get_inventory(self, inventory_id: UUID, lock: bool = False) -> Inventory:
        query = select(Inventory).where(Inventory.id == inventory_id)
        if lock:
            query = query.with_for_update(read=True).execution_options(populate_existing=True)
        inventory = (await self.db.execute(query)).scalar_one_or_none()
        if not inventory:
            raise NotFoundError("Inventory not found", error_code="INVENTORY_NOT_FOUND",
                                details={"inventory_id": str(inventory_id)})
        return inventory

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    async def initialize_serial_items(self, inventory_id: UUID, actor: Actor) -> Tuple[int, int]:
        """
        Snapshot the expected serials of the inventory's locations.

        Safe to call again: serials already tracked are skipped.

        Returns:
            ``(created, skipped)``
        """
        inventory = await self._get_inventory(inventory_id, lock=True)
        ensure_not_terminal(inventory.status)

        query = select(StockSerial)
        if inventory.location_ids:
            query = query.where(StockSerial.location_id.in_([UUID(str(i)) for i in inventory.location_ids]))
        if inventory.product_ids:
            query = query.where(StockSerial.product_id.in_([UUID(str(i)) for i in inventory.product_ids]))
        serials = (await self.db.execute(query.order_by(StockSerial.serial_number))).scalars().all()

        existing = set((await self.db.execute(
            select(SerialItem.serial_number).where(SerialItem.inventory_id == inventory_id)
        )).scalars().all())

        created = 0
        skipped = 0
        for serial in serials:
            if serial.serial_number in existing:
                skipped += 1
                continue
            self.db.add(SerialItem(
                inventory_id=inventory_id,
                serial_number=serial.serial_number,
                product_id=serial.product_id,
                expected_location_id=serial.location_id,
                resolution_status=ResolutionStatus.PENDING.value,
            ))
            created += 1

        await self.audit.record(
            actor_id=actor.id,
            action="INITIALIZE_SERIAL_ITEMS",
            entity_type="INVENTORY",
            entity_id=inventory_id,
            new_values={"created": created, "skipped": skipped},
        )
        await self.db.commit()
        logger.info(f"Inventory {inventory.code}: {created} serial items initialized, {skipped} skipped")
        return created, skipped

    # ========================================================================
    # SCANS
    # ========================================================================

    async def register_reading(
        self,
        inventory_id: UUID,
        serial_number: str,
        location_id: UUID,
        stage: int,
        actor: Actor,
    ) -> Tuple[SerialItem, bool, bool]:
        """
        Register a scan of a serial number at a location during a count stage.

        Returns:
            ``(serial_item, created, changed)``; ``changed`` is False when the
            scan repeats the reading already stored for that stage.
        """
        serial_number = (serial_number or "").strip()
        if not serial_number:
            raise BusinessValidationError("Serial number is required", error_code="SERIAL_REQUIRED")
        if stage not in STAGE_OPEN_STATUS:
            raise BusinessValidationError(
                f"Stage must be one of 1, 2, 3, 4 (got {stage})",
                error_code="INVALID_STAGE",
                details={"stage": stage},
            )

        inventory = await self._get_inventory(inventory_id, lock=True)
        status = as_status(inventory.status)
        ensure_not_terminal(status)
        if status != STAGE_OPEN_STATUS[stage]:
            raise BusinessValidationError(
                f"Stage {stage} scans are only accepted while the inventory is "
                f"'{STAGE_OPEN_STATUS[stage].value}' (current: '{status.value}')",
                error_code="STAGE_NOT_OPEN",
                details={"stage": stage, "status": status.value},
            )

        serial_item = (await self.db.execute(
            select(SerialItem)
            .where(SerialItem.inventory_id == inventory_id, SerialItem.serial_number == serial_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()

        created = False
        if serial_item is None:
            product_id = await self.db.scalar(
                select(StockSerial.product_id).where(StockSerial.serial_number == serial_number)
            )
            serial_item = SerialItem(
                inventory_id=inventory_id,
                serial_number=serial_number,
                product_id=product_id,
                resolution_status=ResolutionStatus.PENDING.value,
            )
            self.db.add(serial_item)
            await self.db.flush()
            created = True
            logger.info(f"Unexpected serial {serial_number} found in inventory {inventory.code}")
        else:
            _ensure_not_migrated(serial_item)

        reading = (await self.db.execute(
            select(SerialReading).where(
                SerialReading.serial_item_id == serial_item.id,
                SerialReading.stage == stage,
            )
        )).scalar_one_or_none()

        if reading is not None and reading.location_id == location_id and not created:
            return serial_item, False, False

        now = datetime.now(timezone.utc)
        if reading is None:
            self.db.add(SerialReading(
                serial_item_id=serial_item.id,
                stage=stage,
                location_id=location_id,
                scanned_by=actor.id,
                scanned_at=now,
            ))
        else:
            reading.location_id = location_id
            reading.scanned_by = actor.id
            reading.scanned_at = now
        await self.db.flush()

        old_values = {
            "found_location_id": serial_item.found_location_id,
            "discrepancy_type": serial_item.discrepancy_type,
            "resolution_status": serial_item.resolution_status,
        }
        await self._apply_latest_reading(serial_item)

        await self.audit.record(
            actor_id=actor.id,
            action="SERIAL_READING",
            entity_type="SERIAL_ITEM",
            entity_id=serial_item.id,
            old_values=old_values,
            new_values={
                "found_location_id": serial_item.found_location_id,
                "discrepancy_type": serial_item.discrepancy_type,
                "resolution_status": serial_item.resolution_status,
            },
            metadata={"inventory_id": str(inventory_id), "stage": stage, "location_id": str(location_id)},
        )
        await self.db.commit()
        await self.db.refresh(serial_item)
        return serial_item, created, True

    async def _apply_latest_reading(self, serial_item: SerialItem) -> None:
        latest = (await self.db.execute(
            select(SerialReading)
            .where(SerialReading.serial_item_id == serial_item.id)
            .order_by(SerialReading.stage.desc())
            .limit(1)
        )).scalar_one()

        previous_type = serial_item.discrepancy_type
        serial_item.found_location_id = latest.location_id
        serial_item.found_stage = latest.stage
        serial_item.found_by = latest.scanned_by
        serial_item.found_at = latest.scanned_at

        discrepancy = classify(serial_item.expected_location_id, latest.location_id)
        serial_item.discrepancy_type = discrepancy.value if discrepancy else None

        # A resolution only covers the discrepancy it was made for
        if (serial_item.discrepancy_type != previous_type
                and serial_item.resolution_status == ResolutionStatus.RESOLVED.value):
            serial_item.resolution_status = ResolutionStatus.PENDING.value
            serial_item.resolved_by = None
            serial_item.resolved_at = None

    # ========================================================================
    # DISCREPANCIES
    # ========================================================================

    async def process_discrepancies(self, inventory_id: UUID, commit: bool = True) -> int:
        """
        Mark every expected serial without any reading as not_found.

        Runs automatically when the inventory enters audit mode.

        Returns:
            Number of serial items newly marked not_found
        """
        inventory = await self._get_inventory(inventory_id)
        ensure_not_terminal(inventory.status)

        result = await self.db.execute(
            update(SerialItem)
            .where(
                SerialItem.inventory_id == inventory_id,
                SerialItem.expected_location_id.is_not(None),
                SerialItem.found_location_id.is_(None),
                SerialItem.discrepancy_type.is_(None),
                SerialItem.resolution_status != ResolutionStatus.MIGRATED_TO_ERP.value,
            )
            .values(discrepancy_type=DiscrepancyType.NOT_FOUND.value)
            .execution_options(synchronize_session="fetch")
        )
        marked = result.rowcount or 0

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        logger.info(f"Inventory {inventory.code}: {marked} serial items marked not_found")
        return marked

    async def list_discrepancies(
        self,
        inventory_id: UUID,
        discrepancy_type: Optional[DiscrepancyType] = None,
        resolution_status: Optional[ResolutionStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[SerialItem], int]:
        """List serial items carrying a discrepancy."""
        await self._get_inventory(inventory_id)

        query = select(SerialItem).where(
            SerialItem.inventory_id == inventory_id,
            SerialItem.discrepancy_type.is_not(None),
        )
        if discrepancy_type:
            query = query.where(SerialItem.discrepancy_type == DiscrepancyType(discrepancy_type).value)
        if resolution_status:
            query = query.where(SerialItem.resolution_status == ResolutionStatus(resolution_status).value)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(SerialItem.serial_number).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_summary(self, inventory_id: UUID) -> Dict:
        """Totals by discrepancy type and by resolution status."""
        await self._get_inventory(inventory_id)

        rows = (await self.db.execute(
            select(
                SerialItem.discrepancy_type,
                SerialItem.resolution_status,
                func.count(SerialItem.id),
            )
            .where(SerialItem.inventory_id == inventory_id)
            .group_by(SerialItem.discrepancy_type, SerialItem.resolution_status)
        )).all()

        found = await self.db.scalar(
            select(func.count(SerialItem.id)).where(
                SerialItem.inventory_id == inventory_id,
                SerialItem.found_location_id.is_not(None),
            )
        ) or 0

        by_type = {t.value: 0 for t in DiscrepancyType}
        by_status = {s.value: 0 for s in ResolutionStatus}
        total = 0
        for discrepancy_type, resolution_status, count in rows:
            total += count
            if discrepancy_type is None:
                continue
            by_type[discrepancy_type] = by_type.get(discrepancy_type, 0) + count
            by_status[resolution_status] = by_status.get(resolution_status, 0) + count

        return {
            "total_serial_items": total,
            "total_discrepancies": sum(by_type.values()),
            "found": found,
            "location_mismatches": by_type[DiscrepancyType.LOCATION_MISMATCH.value],
            "not_found": by_type[DiscrepancyType.NOT_FOUND.value],
            "unexpected_found": by_type[DiscrepancyType.UNEXPECTED_FOUND.value],
            "by_status": by_status,
        }

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    async def resolve(self, serial_item_id: UUID, notes: str, actor: Actor) -> SerialItem:
        """pending -> resolved, with notes and resolver."""
        if not notes or not notes.strip():
            raise BusinessValidationError("Resolution notes are required", error_code="NOTES_REQUIRED")

        inventory_id = await self.db.scalar(
            select(SerialItem.inventory_id).where(SerialItem.id == serial_item_id)
        )
        if inventory_id is None:
            raise NotFoundError("Serial item not found", error_code="SERIAL_ITEM_NOT_FOUND",
                                details={"serial_item_id": str(serial_item_id)})
        inventory = await self._get_inventory(inventory_id, lock=True)
        _ensure_not_cancelled(inventory)

        serial_item = (await self.db.execute(
            select(SerialItem)
            .where(SerialItem.id == serial_item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one()
        _ensure_not_migrated(serial_item)
        if serial_item.discrepancy_type is None:
            raise BusinessValidationError(
                f"Serial {serial_item.serial_number} has no discrepancy to resolve",
                error_code="NO_DISCREPANCY",
            )

        old_status = serial_item.resolution_status
        serial_item.resolution_status = ResolutionStatus.RESOLVED.value
        serial_item.resolution_notes = notes.strip()
        serial_item.resolved_by = actor.id
        serial_item.resolved_at = datetime.now(timezone.utc)

        await self.audit.record(
            actor_id=actor.id,
            action="RESOLVE_SERIAL_DISCREPANCY",
            entity_type="SERIAL_ITEM",
            entity_id=serial_item.id,
            old_values={"resolution_status": old_status},
            new_values={"resolution_status": serial_item.resolution_status, "notes": serial_item.resolution_notes},
            metadata={"inventory_id": str(serial_item.inventory_id),
                      "discrepancy_type": serial_item.discrepancy_type},
        )
        await self.db.commit()
        await self.db.refresh(serial_item)
        return serial_item

    async def migrate_resolved_to_erp(
        self,
        inventory_id: UUID,
        actor: Actor,
        erp_reference: Optional[str] = None,
    ) -> Tuple[int, int]:
        """
        Mark every resolved discrepancy of the inventory as migrated to the ERP.

        Committed per batch of ``BULK_BATCH_SIZE`` records.

        Returns:
            ``(migrated, failed)``
        """
        require_audit_access(actor, "migrate serial discrepancies")
        inventory = await self._get_inventory(inventory_id)
        _ensure_not_cancelled(inventory)

        ids = list((await self.db.execute(
            select(SerialItem.id).where(
                SerialItem.inventory_id == inventory_id,
                SerialItem.resolution_status == ResolutionStatus.RESOLVED.value,
            ).order_by(SerialItem.serial_number)
        )).scalars().all())

        batch_size = max(1, settings.BULK_BATCH_SIZE)
        migrated = 0
        failed = 0
        for start in range(0, len(ids), batch_size):
            batch = ids[start:start + batch_size]
            now = datetime.now(timezone.utc)
            result = await self.db.execute(
                update(SerialItem)
                .where(
                    SerialItem.id.in_(batch),
                    SerialItem.resolution_status == ResolutionStatus.RESOLVED.value,
                )
                .values(
                    resolution_status=ResolutionStatus.MIGRATED_TO_ERP.value,
                    migrated_by=actor.id,
                    migrated_at=now,
                    erp_reference=erp_reference,
                )
                .execution_options(synchronize_session="fetch")
            )
            done = result.rowcount or 0
            await self.db.commit()
            migrated += done
            # Rows re-opened by a concurrent scan between listing and update
            failed += len(batch) - done

        await self.audit.record(
            actor_id=actor.id,
            action="MIGRATE_SERIAL_DISCREPANCIES",
            entity_type="INVENTORY",
            entity_id=inventory_id,
            new_values={"migrated": migrated, "failed": failed, "erp_reference": erp_reference},
        )
        await self.db.commit()
        logger.info(f"Inventory {inventory.code}: {migrated} serial discrepancies migrated to ERP")
        return migrated, failed
