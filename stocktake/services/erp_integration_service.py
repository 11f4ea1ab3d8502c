"""
ERP Integration Service.

Pushes the settled stock adjustments of a closed inventory to the ERP.

Flow:
1. validate_for_migration() - dry run: closed, not yet migrated, ERP enabled
2. migrate_inventory() - POST divergent items in chunks of ERP_BATCH_SIZE
3. Only after every chunk is accepted is the inventory flagged as migrated

A timeout or a rejected chunk raises IntegrationError (retryable) and the
inventory stays unmigrated; a retry re-sends every chunk.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from uuid import UUID

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.config import settings
from stocktake.core.exceptions import IntegrationError, InventoryStateError, NotFoundError
from stocktake.core.permissions import Actor, require_audit_access
from stocktake.models.inventory import Inventory, InventoryItem, InventoryStatus
from stocktake.schemas.erp import ErpStockUpdate, ErpBatchResponse
from stocktake.services.audit_service import AuditService
from stocktake.services.closure_validator import ClosureValidator


logger = logging.getLogger(__name__)


class ErpClient:
    """Thin HTTP client for the ERP stock-update endpoint."""

    STOCK_UPDATE_PATH = "/api/stock/batch-update"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.ERP_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ERP_API_KEY
        self.timeout = timeout if timeout is not None else settings.ERP_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send_stock_updates(self, updates: List[ErpStockUpdate]) -> ErpBatchResponse:
        """
        POST one chunk of stock updates.

        Raises:
            IntegrationError: on timeout, transport failure, HTTP error or
                an explicit ``success: false`` reply.
        """
        payload = {"updates": [u.to_payload() for u in updates]}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}{self.STOCK_UPDATE_PATH}",
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()
                result = ErpBatchResponse.model_validate(response.json())

            except httpx.TimeoutException as e:
                raise IntegrationError(
                    f"ERP did not answer within {self.timeout}s",
                    error_code="ERP_TIMEOUT",
                    details={"error": str(e)},
                )
            except httpx.HTTPStatusError as e:
                raise IntegrationError(
                    f"ERP HTTP error: {e.response.status_code}",
                    error_code="ERP_UNAVAILABLE",
                    details={"status_code": e.response.status_code, "response": e.response.text[:500]},
                    retryable=e.response.status_code >= 500,
                )
            except httpx.RequestError as e:
                raise IntegrationError(
                    f"ERP request failed: {str(e)}",
                    error_code="ERP_UNAVAILABLE",
                )
            except (ValueError, PydanticValidationError) as e:
                raise IntegrationError(
                    "ERP returned an unreadable response",
                    error_code="ERP_REJECTED",
                    details={"error": str(e)},
                )

        if not result.success:
            raise IntegrationError(
                result.message or "ERP rejected the stock update",
                error_code="ERP_REJECTED",
                details={"erp_message": result.message},
            )
        return result


class ErpMigrationService:
    """Migration of a closed inventory's adjustments to the ERP."""

    def __init__(self, db: AsyncSession, client: Optional[ErpClient] = None):
        self.db = db
        self.client = client or ErpClient()
        self.audit = AuditService(db)

    async def _get_inventory(self, inventory_id: UUID, lock: bool = False) -> Inventory:
        query = select(Inventory).where(Inventory.id == inventory_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        inventory = (await self.db.execute(query)).scalar_one_or_none()
        if not inventory:
            raise NotFoundError("Inventory not found", error_code="INVENTORY_NOT_FOUND",
                                details={"inventory_id": str(inventory_id)})
        return inventory

    def _divergent_items_query(self, inventory_id: UUID):
        return select(InventoryItem).where(
            InventoryItem.inventory_id == inventory_id,
            InventoryItem.final_quantity.is_not(None),
            InventoryItem.final_quantity != InventoryItem.expected_quantity,
        )

    async def _check(self, inventory: Inventory) -> Dict[str, Any]:
        items_to_migrate = await self.db.scalar(
            select(func.count()).select_from(self._divergent_items_query(inventory.id).subquery())
        ) or 0
        _, unsettled = await ClosureValidator(self.db).count_unsettled(inventory.id)

        reason = None
        if not settings.ERP_ENABLED:
            reason = "ERP integration is disabled"
        elif inventory.erp_migrated:
            reason = "Inventory was already migrated to the ERP"
        elif inventory.status != InventoryStatus.CLOSED.value:
            reason = f"Inventory must be closed before migration (current: '{inventory.status}')"
        elif unsettled:
            reason = f"{unsettled} items have no final quantity"

        return {
            "inventory_id": inventory.id,
            "can_migrate": reason is None,
            "reason": reason,
            "items_to_migrate": items_to_migrate,
            "unsettled_count": unsettled,
        }

    async def validate_for_migration(self, inventory_id: UUID, actor: Actor) -> Dict[str, Any]:
        """Dry run of migrate_inventory()."""
        require_audit_access(actor, "validate ERP migration")
        inventory = await self._get_inventory(inventory_id)
        return await self._check(inventory)

    async def migrate_inventory(self, inventory_id: UUID, actor: Actor) -> Dict[str, Any]:
        """Send every divergent settled item to the ERP, then flag the inventory."""
        require_audit_access(actor, "migrate inventories to the ERP")
        inventory = await self._get_inventory(inventory_id, lock=True)

        check = await self._check(inventory)
        if not check["can_migrate"]:
            raise InventoryStateError(
                check["reason"],
                error_code="ALREADY_MIGRATED" if inventory.erp_migrated else "MIGRATION_NOT_ALLOWED",
                details={"unsettled_count": check["unsettled_count"]},
            )

        items = (await self.db.execute(
            self._divergent_items_query(inventory_id).order_by(InventoryItem.product_code)
        )).scalars().all()
        updates = [
            ErpStockUpdate(
                product_code=item.product_code,
                quantity=item.final_quantity,
                location_id=item.location_id,
                inventory_code=inventory.code,
            )
            for item in items
        ]

        batch_size = max(1, settings.ERP_BATCH_SIZE)
        batches = 0
        for start in range(0, len(updates), batch_size):
            chunk = updates[start:start + batch_size]
            try:
                await self.client.send_stock_updates(chunk)
            except IntegrationError as e:
                logger.warning(
                    f"ERP migration of inventory {inventory.code} failed at batch {batches + 1}: "
                    f"{e.error_code} {e.message}"
                )
                raise
            batches += 1
            logger.info(f"Inventory {inventory.code}: ERP batch {batches} accepted ({len(chunk)} items)")

        now = datetime.now(timezone.utc)
        inventory.erp_migrated = True
        inventory.erp_migrated_at = now
        inventory.erp_migrated_by = actor.id

        await self.audit.record(
            actor_id=actor.id,
            action="ERP_MIGRATION",
            entity_type="INVENTORY",
            entity_id=inventory.id,
            new_values={"erp_migrated": True, "migrated_items": len(updates), "batches": batches},
        )
        await self.db.commit()
        await self.db.refresh(inventory)
        logger.info(f"Inventory {inventory.code} migrated to ERP: {len(updates)} items in {batches} batches")

        return {
            "inventory_id": inventory.id,
            "success": True,
            "migrated_items": len(updates),
            "batches": batches,
            "erp_migrated_at": inventory.erp_migrated_at,
        }
