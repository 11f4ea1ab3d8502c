"""Tests for inventory creation, lifecycle transitions and closure."""
from decimal import Decimal
import uuid

import pytest
from sqlalchemy import select, func

from stocktake.config import settings
from stocktake.core.exceptions import (
    BusinessValidationError, InventoryStateError, NotFoundError, PermissionDeniedError,
)
from stocktake.models import AuditLog, Inventory, InventoryItem, InventoryStatus, InventoryType
from stocktake.models.inventory import ItemStatus
from stocktake.schemas.inventory import InventoryCreate
from stocktake.services.count_ledger_service import CountLedgerService
from stocktake.services.inventory_service import InventoryService
from stocktake.services.inventory_report_service import InventoryReportService

from tests.conftest import LOCATION_A, LOCATION_B, PRODUCT_1


class TestCreateInventory:

    async def test_general_inventory_snapshots_stock(self, db, create_inventory, items_by_code):
        inventory = await create_inventory(locations=(LOCATION_A,))

        assert inventory.status == "planning"
        items = await items_by_code(inventory.id)
        assert set(items) == {"P-001", "P-002"}
        assert items["P-001"].expected_quantity == Decimal("10")
        assert items["P-001"].status == "pending"
        assert items["P-001"].final_quantity is None

    async def test_open_immediately(self, create_inventory):
        inventory = await create_inventory(open_immediately=True)
        assert inventory.status == "open"

    async def test_targeted_inventory_uses_selected_products(self, db, counter):
        data = InventoryCreate(
            code="TGT-1",
            inventory_type=InventoryType.TARGETED,
            product_ids=[PRODUCT_1],
        )
        inventory = await InventoryService(db).create_inventory(data, counter)

        items, total = await InventoryService(db).list_items(inventory.id)
        assert total == 2
        assert {i.location_id for i in items} == {LOCATION_A, LOCATION_B}

    async def test_cyclic_inventory_requires_locations(self, db, counter):
        data = InventoryCreate(code="CYC-1", inventory_type=InventoryType.CYCLIC)
        with pytest.raises(BusinessValidationError) as exc_info:
            await InventoryService(db).create_inventory(data, counter)
        assert exc_info.value.error_code == "INVALID_SELECTION"

    async def test_empty_selection_rejected(self, create_inventory):
        with pytest.raises(BusinessValidationError) as exc_info:
            await create_inventory(locations=(uuid.uuid4(),))
        assert exc_info.value.error_code == "INVALID_SELECTION"

    async def test_duplicate_code_rejected(self, create_inventory):
        await create_inventory(code="INV-DUP")
        with pytest.raises(BusinessValidationError) as exc_info:
            await create_inventory(code="INV-DUP")
        assert exc_info.value.error_code == "DUPLICATE_CODE"


class TestLifecycle:

    async def test_full_happy_path_skips_third_round(self, db, counter, supervisor,
                                                     create_inventory, items_by_code, count_round):
        service = InventoryService(db)
        inventory = await create_inventory()
        items = await items_by_code(inventory.id)

        await service.open_inventory(inventory.id, counter)
        await count_round(inventory.id, 1, {"P-001": 10, "P-002": 4}, items)
        inventory, previous, path = await count_round(inventory.id, 2, {"P-001": 10, "P-002": 4}, items)

        assert previous == InventoryStatus.COUNT2_OPEN
        assert path == [InventoryStatus.COUNT2_CLOSED, InventoryStatus.AUDIT_MODE]
        assert inventory.status == "audit_mode"

        inventory, _, _ = await service.close(inventory.id, supervisor)
        assert inventory.status == "closed"
        assert inventory.closed_by == supervisor.id
        assert inventory.end_date is not None

    async def test_disagreeing_counts_require_third_round(self, db, counter, supervisor,
                                                         create_inventory, items_by_code, count_round):
        service = InventoryService(db)
        inventory = await create_inventory()
        items = await items_by_code(inventory.id)

        await service.open_inventory(inventory.id, counter)
        await count_round(inventory.id, 1, {"P-001": 8, "P-002": 5}, items)
        _, _, path = await count_round(inventory.id, 2, {"P-001": 9, "P-002": 5}, items)
        assert path == [InventoryStatus.COUNT2_CLOSED, InventoryStatus.COUNT3_REQUIRED]

        # Third count matches neither prior count
        _, _, path = await count_round(inventory.id, 3, {"P-001": 7}, items)
        assert path == [InventoryStatus.COUNT3_CLOSED, InventoryStatus.AUDIT_MODE]

        check = await service.can_close(inventory.id)
        assert not check.allowed
        assert check.unsettled_count == 1

        with pytest.raises(InventoryStateError) as exc_info:
            await service.close(inventory.id, supervisor)
        assert exc_info.value.error_code == "UNSETTLED_ITEMS"
        assert exc_info.value.details["unsettled_count"] == 1

        await CountLedgerService(db).record_count(items["P-001"].id, 4, Decimal("8"), supervisor)
        inventory, _, _ = await service.close(inventory.id, supervisor)
        assert inventory.status == "closed"

    async def test_unsettled_items_await_audit_after_third_round(self, db, counter, supervisor,
                                                                 create_inventory, items_by_code, count_round):
        service = InventoryService(db)
        inventory = await create_inventory()
        items = await items_by_code(inventory.id)

        await service.open_inventory(inventory.id, counter)
        await count_round(inventory.id, 1, {"P-001": 8}, items)
        await count_round(inventory.id, 2, {"P-001": 9}, items)
        _, _, path = await count_round(inventory.id, 3, {}, items)
        assert path == [InventoryStatus.COUNT3_CLOSED, InventoryStatus.AUDIT_MODE]

        pending, total = await service.list_items(inventory.id, status=ItemStatus.PENDING_AUDIT)
        assert total == 2
        assert {i.product_code for i in pending} == {"P-001", "P-002"}
        assert {i.divergence_class for i in pending} == {"needs_audit"}

        await CountLedgerService(db).record_count(items["P-001"].id, 4, Decimal("9"), supervisor)
        pending, total = await service.list_items(inventory.id, status=ItemStatus.PENDING_AUDIT)
        assert [i.product_code for i in pending] == ["P-002"]

    async def test_manual_second_round_evaluation(self, db, counter, create_inventory,
                                                  items_by_code, count_round, monkeypatch):
        monkeypatch.setattr(settings, "AUTO_ADVANCE_AFTER_SECOND_COUNT", False)
        service = InventoryService(db)
        inventory = await create_inventory()
        items = await items_by_code(inventory.id)

        await service.open_inventory(inventory.id, counter)
        await count_round(inventory.id, 1, {"P-001": 8, "P-002": 5}, items)
        inventory, _, path = await count_round(inventory.id, 2, {"P-001": 9, "P-002": 5}, items)
        assert path == [InventoryStatus.COUNT2_CLOSED]
        assert inventory.status == "count2_closed"

        inventory, previous, path = await service.evaluate_second_round(inventory.id, counter)
        assert previous == InventoryStatus.COUNT2_CLOSED
        assert path == [InventoryStatus.COUNT3_REQUIRED]

        with pytest.raises(InventoryStateError):
            await service.evaluate_second_round(inventory.id, counter)

    async def test_transition_cannot_be_repeated(self, db, counter, create_inventory):
        service = InventoryService(db)
        inventory = await create_inventory()
        await service.open_inventory(inventory.id, counter)

        with pytest.raises(InventoryStateError) as exc_info:
            await service.open_inventory(inventory.id, counter)
        assert exc_info.value.error_code == "INVALID_TRANSITION"

    async def test_close_requires_audit_role(self, db, counter, create_inventory):
        inventory = await create_inventory()
        with pytest.raises(PermissionDeniedError):
            await InventoryService(db).close(inventory.id, counter)

    async def test_close_outside_audit_mode_rejected(self, db, supervisor, create_inventory):
        inventory = await create_inventory()
        with pytest.raises(InventoryStateError) as exc_info:
            await InventoryService(db).close(inventory.id, supervisor)
        assert exc_info.value.error_code == "INVALID_TRANSITION"

    async def test_every_transition_is_audited(self, db, counter, create_inventory):
        service = InventoryService(db)
        inventory = await create_inventory()
        await service.open_inventory(inventory.id, counter)
        await service.start_counting(inventory.id, counter)

        logs = (await db.execute(
            select(AuditLog)
            .where(AuditLog.action == "INVENTORY_STATUS_CHANGE")
            .order_by(AuditLog.created_at)
        )).scalars().all()
        assert [(log.old_values["status"], log.new_values["status"]) for log in logs] == [
            ("planning", "open"),
            ("open", "count1_open"),
        ]
        assert all(log.user_id == counter.id for log in logs)

    async def test_unknown_inventory(self, db, counter):
        with pytest.raises(NotFoundError):
            await InventoryService(db).start_counting(uuid.uuid4(), counter)


class TestCancelAndDelete:

    async def test_cancel_records_reason(self, db, counter, create_inventory):
        service = InventoryService(db)
        inventory = await create_inventory()
        await service.open_inventory(inventory.id, counter)

        inventory, previous, _ = await service.cancel(inventory.id, "Wrong location set", counter)
        assert previous == InventoryStatus.OPEN
        assert inventory.status == "cancelled"
        assert inventory.cancellation_reason == "Wrong location set"
        assert inventory.cancelled_by == counter.id

    async def test_cancel_requires_reason(self, db, counter, create_inventory):
        inventory = await create_inventory()
        with pytest.raises(BusinessValidationError):
            await InventoryService(db).cancel(inventory.id, "  ", counter)

    async def test_cancelled_inventory_is_immutable(self, db, counter, create_inventory):
        service = InventoryService(db)
        inventory = await create_inventory()
        await service.cancel(inventory.id, "Duplicate", counter)

        with pytest.raises(InventoryStateError) as exc_info:
            await service.open_inventory(inventory.id, counter)
        assert exc_info.value.error_code == "INVENTORY_TERMINAL"

        with pytest.raises(InventoryStateError):
            await service.cancel(inventory.id, "Again", counter)

    async def test_delete_requires_cancelled(self, db, counter, create_inventory):
        inventory = await create_inventory()
        with pytest.raises(InventoryStateError) as exc_info:
            await InventoryService(db).delete_inventory(inventory.id, counter)
        assert exc_info.value.error_code == "NOT_CANCELLED"

    async def test_delete_removes_items(self, db, counter, create_inventory):
        service = InventoryService(db)
        inventory = await create_inventory()
        await service.cancel(inventory.id, "Duplicate", counter)
        await service.delete_inventory(inventory.id, counter)

        remaining = await db.scalar(
            select(func.count()).select_from(InventoryItem).where(InventoryItem.inventory_id == inventory.id)
        )
        assert remaining == 0
        assert await db.scalar(
            select(func.count()).select_from(Inventory).where(Inventory.id == inventory.id)
        ) == 0


class TestConfirmAllItems:

    async def test_bulk_confirmation_settles_everything(self, db, counter, supervisor, create_inventory,
                                                        items_by_code, count_round, monkeypatch):
        monkeypatch.setattr(settings, "BULK_BATCH_SIZE", 1)
        service = InventoryService(db)
        inventory = await create_inventory()
        items = await items_by_code(inventory.id)

        await service.open_inventory(inventory.id, counter)
        await count_round(inventory.id, 1, {"P-001": 8, "P-002": 5}, items)
        await count_round(inventory.id, 2, {"P-001": 9, "P-002": 5}, items)
        await count_round(inventory.id, 3, {}, items)

        total, confirmed, failed = await service.confirm_all_items(inventory.id, supervisor)
        assert (total, confirmed, failed) == (2, 2, 0)

        refreshed = await items_by_code(inventory.id)
        # Unsettled item is confirmed at zero, settled one keeps its final quantity
        assert refreshed["P-001"].count4 == Decimal("0")
        assert refreshed["P-001"].final_quantity == Decimal("0")
        assert refreshed["P-002"].final_quantity == Decimal("5")
        assert refreshed["P-002"].status == "confirmed"
        assert (await service.can_close(inventory.id)).allowed

    async def test_bulk_confirmation_requires_audit_mode(self, db, supervisor, create_inventory):
        inventory = await create_inventory()
        with pytest.raises(InventoryStateError):
            await InventoryService(db).confirm_all_items(inventory.id, supervisor)

    async def test_bulk_confirmation_requires_audit_role(self, db, counter, create_inventory):
        inventory = await create_inventory()
        with pytest.raises(PermissionDeniedError):
            await InventoryService(db).confirm_all_items(inventory.id, counter)


class TestStats:

    async def test_stats_after_two_rounds(self, db, counter, create_inventory, items_by_code, count_round):
        service = InventoryService(db)
        inventory = await create_inventory()
        items = await items_by_code(inventory.id)

        await service.open_inventory(inventory.id, counter)
        await count_round(inventory.id, 1, {"P-001": 12, "P-002": 5}, items)
        await count_round(inventory.id, 2, {"P-001": 12, "P-002": 5}, items)

        stats = await InventoryReportService(db).get_stats(inventory.id)
        assert stats["total_items"] == 2
        assert stats["counted_by_stage"]["count1"] == 2
        assert stats["settled_items"] == 2
        assert stats["progress_percent"] == Decimal("100.00")
        assert stats["accuracy_percent"] == Decimal("50.00")
        assert stats["divergence"]["divergent_items"] == 1
        assert stats["divergence"]["surplus_qty"] == Decimal("2")
        assert stats["items_by_status"]["confirmed"] == 1
        assert stats["items_by_status"]["divergent"] == 1
