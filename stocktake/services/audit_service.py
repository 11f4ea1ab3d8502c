import logging
import uuid
from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stocktake.models.audit_log import AuditLog


logger = logging.getLogger(__name__)


class AuditService:
    """
    Audit log recorder for every state-changing counting action.

    Fire-and-forget from the caller's point of view: each entry is written in
    its own SAVEPOINT, and a failure is logged as a warning instead of
    aborting the business transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        actor_id: Optional[uuid.UUID],
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Create an audit log entry.

        Args:
            actor_id: ID of the user performing the action
            action: The action performed (RECORD_COUNT, INVENTORY_STATUS_CHANGE, etc.)
            entity_type: Type of entity (INVENTORY, INVENTORY_ITEM, SERIAL_ITEM)
            entity_id: ID of the affected entity
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            metadata: Additional context

        Returns:
            The created AuditLog entry, or None if it could not be written
        """
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            user_id=actor_id,
            old_values=old_values,
            new_values=new_values,
            extra=metadata,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(entry)
        except SQLAlchemyError as e:
            logger.warning(
                f"Audit log write failed for {action} on {entity_type} {entity_id}: {e}"
            )
            return None
        return entry

    async def log_status_change(
        self,
        inventory_id: uuid.UUID,
        old_status: str,
        new_status: str,
        actor_id: Optional[uuid.UUID] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """Log an inventory lifecycle transition."""
        return await self.record(
            actor_id=actor_id,
            action="INVENTORY_STATUS_CHANGE",
            entity_type="INVENTORY",
            entity_id=inventory_id,
            old_values={"status": old_status},
            new_values={"status": new_status},
            metadata=metadata,
        )
