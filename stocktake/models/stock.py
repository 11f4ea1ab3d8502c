"""
Stock snapshot sources.

These tables are maintained by the stock master-data system. The counting
engine only reads them, to snapshot expected quantities and expected serials
when an inventory is created.
"""
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stocktake.database import Base
from stocktake.db_types import UUIDType, QuantityType


class StockBalance(Base):
    """On-hand quantity of a product at a location."""
    __tablename__ = "stock_balances"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_stock_balance_product_location"),
        Index("idx_stock_balances_location", "location_id"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    product_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    product_code: Mapped[str] = mapped_column(String(50), nullable=False)
    category_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    location_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False, default=Decimal("0"))


class StockSerial(Base):
    """A serialized asset and the location the system believes it is in."""
    __tablename__ = "stock_serials"
    __table_args__ = (
        Index("idx_stock_serials_location", "location_id"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    product_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    location_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
