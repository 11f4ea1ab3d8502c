import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from stocktake.database import Base
from stocktake.db_types import UUIDType, JSONType


class AuditLog(Base):
    """
    Audit log model for tracking every state-changing counting action.
    Write-once; never read back by the engine.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: CREATE_INVENTORY, INVENTORY_STATUS_CHANGE, RECORD_COUNT,
    #          SERIAL_READING, ERP_MIGRATION, etc.

    # Entity being modified
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Entity types: INVENTORY, INVENTORY_ITEM, SERIAL_ITEM

    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Change tracking
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    extra: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
