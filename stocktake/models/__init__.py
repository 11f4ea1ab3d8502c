# Import all models so they register with Base.metadata
from stocktake.models.inventory import (
    Inventory, InventoryItem, InventoryCount,
    InventoryType, InventoryStatus, ItemStatus, DivergenceClass,
)
from stocktake.models.serial_item import (
    SerialItem, SerialReading, DiscrepancyType, ResolutionStatus,
)
from stocktake.models.stock import StockBalance, StockSerial
from stocktake.models.audit_log import AuditLog

__all__ = [
    "Inventory",
    "InventoryItem",
    "InventoryCount",
    "InventoryType",
    "InventoryStatus",
    "ItemStatus",
    "DivergenceClass",
    "SerialItem",
    "SerialReading",
    "DiscrepancyType",
    "ResolutionStatus",
    "StockBalance",
    "StockSerial",
    "AuditLog",
]
