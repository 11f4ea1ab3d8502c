# Services module
from stocktake.services.audit_service import AuditService
from stocktake.services.closure_validator import ClosureValidator
from stocktake.services.count_ledger_service import CountLedgerService
from stocktake.services.inventory_service import InventoryService
from stocktake.services.inventory_report_service import InventoryReportService
from stocktake.services.serial_reconciliation_service import SerialReconciliationService
from stocktake.services.erp_integration_service import ErpClient, ErpMigrationService

__all__ = [
    "AuditService",
    "ClosureValidator",
    "CountLedgerService",
    "InventoryService",
    "InventoryReportService",
    "SerialReconciliationService",
    # ERP
    "ErpClient",
    "ErpMigrationService",
]
