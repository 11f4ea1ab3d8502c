"""
Inventory Counting Models.

Models for physical stock-counting campaigns:
- Inventory: one counting campaign and its lifecycle status
- InventoryItem: one product x location pairing with up to four counts
- InventoryCount: append-only ledger of count observations
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Index, Text, Boolean, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stocktake.database import Base
from stocktake.db_types import UUIDType, JSONType, QuantityType


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class InventoryType(str, Enum):
    """Type of counting campaign. Drives item generation."""
    GENERAL = "general"      # Every stock record at the selected locations/categories
    CYCLIC = "cyclic"        # Same as general, scoped to a subset of locations
    TARGETED = "targeted"    # Explicitly selected products only


class InventoryStatus(str, Enum):
    """Lifecycle status of a counting campaign."""
    PLANNING = "planning"
    OPEN = "open"
    COUNT1_OPEN = "count1_open"
    COUNT1_CLOSED = "count1_closed"
    COUNT2_OPEN = "count2_open"
    COUNT2_CLOSED = "count2_closed"
    COUNT3_REQUIRED = "count3_required"
    COUNT3_OPEN = "count3_open"
    COUNT3_CLOSED = "count3_closed"
    AUDIT_MODE = "audit_mode"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ItemStatus(str, Enum):
    """Status of an inventory item, derived from its reconciliation outcome."""
    PENDING = "pending"                  # Not counted yet
    IN_PROGRESS = "in_progress"          # Counted, waiting for the next round
    PENDING_RECOUNT = "pending_recount"  # Counts 1 and 2 disagree, needs count 3
    PENDING_AUDIT = "pending_audit"      # Unsettled in audit mode
    DIVERGENT = "divergent"              # Settled, final differs from expected
    CONFIRMED = "confirmed"              # Settled, final equals expected


class DivergenceClass(str, Enum):
    """Reconciliation outcome for an item."""
    AWAITING_COUNTS = "awaiting_counts"
    NO_DIVERGENCE = "no_divergence"
    CONSISTENT_DIVERGENCE = "consistent_divergence"
    NEEDS_THIRD_COUNT = "needs_third_count"
    RESOLVED_ON_THIRD_COUNT = "resolved_on_third_count"
    NEEDS_AUDIT = "needs_audit"
    AUDIT_SETTLED = "audit_settled"


# ============================================================================
# MODELS
# ============================================================================

class Inventory(Base):
    """
    A physical counting campaign.

    Status only changes through the lifecycle state machine
    (``stocktake.services.inventory_state_machine``).
    """
    __tablename__ = "inventories"
    __table_args__ = (
        Index("idx_inventories_status", "status"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    inventory_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InventoryType.GENERAL.value
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=InventoryStatus.PLANNING.value
    )

    # Schedule
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    predicted_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Selection Criteria
    location_ids: Mapped[Optional[List]] = mapped_column(JSONType)   # List of location UUIDs
    category_ids: Mapped[Optional[List]] = mapped_column(JSONType)   # List of category UUIDs
    product_ids: Mapped[Optional[List]] = mapped_column(JSONType)    # Targeted campaigns only

    blocks_system_movements: Mapped[bool] = mapped_column(Boolean, default=False)

    # Cancellation
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancelled_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Closure
    closed_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    # ERP Migration
    erp_migrated: Mapped[bool] = mapped_column(Boolean, default=False)
    erp_migrated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    erp_migrated_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    created_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    items: Mapped[List["InventoryItem"]] = relationship(
        "InventoryItem", back_populates="inventory", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Inventory(code='{self.code}', status='{self.status}')>"


class InventoryItem(Base):
    """
    One product x location pairing inside an inventory.

    ``final_quantity`` and ``divergence_class`` are derived by the
    reconciliation engine after every count write and never set directly.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("inventory_id", "product_id", "location_id", name="uq_inventory_item_product_location"),
        Index("idx_inventory_items_status", "inventory_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    inventory_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False
    )

    # Product / Location
    product_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    product_code: Mapped[str] = mapped_column(String(50), nullable=False)
    location_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    category_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    # Snapshot of system stock at creation time
    expected_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)

    # Counting rounds
    count1: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    count1_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    count1_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    count2: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    count2_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    count2_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    count3: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    count3_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    count3_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Audit override
    count4: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    count4_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    count4_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived by reconciliation
    final_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    divergence_qty: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    divergence_class: Mapped[str] = mapped_column(
        String(30), nullable=False, default=DivergenceClass.AWAITING_COUNTS.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ItemStatus.PENDING.value
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    inventory: Mapped["Inventory"] = relationship("Inventory", back_populates="items")
    counts: Mapped[List["InventoryCount"]] = relationship(
        "InventoryCount", back_populates="item", cascade="all, delete-orphan",
        order_by="InventoryCount.counted_at"
    )

    def get_count(self, stage: int) -> Optional[Decimal]:
        return getattr(self, f"count{stage}")

    def __repr__(self) -> str:
        return f"<InventoryItem(product='{self.product_code}', final={self.final_quantity})>"


class InventoryCount(Base):
    """
    Immutable ledger entry for a single count observation.

    Stages 1-3 appear at most once per item; stage 4 (audit) may repeat,
    the latest entry being the effective override.
    """
    __tablename__ = "inventory_counts"
    __table_args__ = (
        Index("idx_inventory_counts_item_stage", "item_id", "stage"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    item_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False
    )
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    counted_by: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    counted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    item: Mapped["InventoryItem"] = relationship("InventoryItem", back_populates="counts")
