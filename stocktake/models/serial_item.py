"""
Serial-identity reconciliation models.

One SerialItem per serialized asset tracked by an inventory, plus one
SerialReading per (serial item, count stage) scan.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stocktake.database import Base
from stocktake.db_types import UUIDType
from stocktake.models.inventory import utc_now


class DiscrepancyType(str, Enum):
    """Classification of a serialized asset against its expected location."""
    LOCATION_MISMATCH = "location_mismatch"    # Scanned, but somewhere else
    NOT_FOUND = "not_found"                    # Expected, never scanned
    UNEXPECTED_FOUND = "unexpected_found"      # Scanned, not in the expected set


class ResolutionStatus(str, Enum):
    """Resolution workflow for a discrepancy."""
    PENDING = "pending"
    RESOLVED = "resolved"
    MIGRATED_TO_ERP = "migrated_to_erp"       # Terminal


class SerialItem(Base):
    """Expected / observed state of one serialized asset inside an inventory."""
    __tablename__ = "inventory_serial_items"
    __table_args__ = (
        UniqueConstraint("inventory_id", "serial_number", name="uq_serial_item_inventory_serial"),
        Index("idx_serial_items_discrepancy", "inventory_id", "discrepancy_type"),
        Index("idx_serial_items_resolution", "inventory_id", "resolution_status"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    inventory_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False
    )
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    # Expected vs found
    expected_location_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    found_location_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    found_stage: Mapped[Optional[int]] = mapped_column(Integer)
    found_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    found_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Classification
    discrepancy_type: Mapped[Optional[str]] = mapped_column(String(30))
    resolution_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ResolutionStatus.PENDING.value
    )

    # Resolution
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text)
    resolved_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # ERP Migration
    migrated_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    migrated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    erp_reference: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    readings: Mapped[List["SerialReading"]] = relationship(
        "SerialReading", back_populates="serial_item", cascade="all, delete-orphan",
        order_by="SerialReading.stage"
    )

    @property
    def is_expected(self) -> bool:
        return self.expected_location_id is not None

    def __repr__(self) -> str:
        return f"<SerialItem(serial='{self.serial_number}', discrepancy='{self.discrepancy_type}')>"


class SerialReading(Base):
    """A scan of a serial number at a location during a count stage."""
    __tablename__ = "inventory_serial_readings"
    __table_args__ = (
        UniqueConstraint("serial_item_id", "stage", name="uq_serial_reading_stage"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    serial_item_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("inventory_serial_items.id", ondelete="CASCADE"), nullable=False
    )
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    location_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    scanned_by: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    serial_item: Mapped["SerialItem"] = relationship("SerialItem", back_populates="readings")
