"""
ERP Migration API Endpoints.
"""
from uuid import UUID

from fastapi import APIRouter

from stocktake.api.deps import DB, CurrentActor
from stocktake.schemas.erp import ErpMigrationCheck, ErpMigrationResult
from stocktake.services.erp_integration_service import ErpMigrationService

router = APIRouter()


@router.get("/{inventory_id}/erp/validate", response_model=ErpMigrationCheck, summary="Validate ERP Migration")
async def validate_migration(inventory_id: UUID, db: DB, actor: CurrentActor):
    return await ErpMigrationService(db).validate_for_migration(inventory_id, actor)


@router.post("/{inventory_id}/erp/migrate", response_model=ErpMigrationResult, summary="Migrate to ERP")
async def migrate_inventory(inventory_id: UUID, db: DB, actor: CurrentActor):
    """Push settled divergent items of a closed inventory to the ERP."""
    return await ErpMigrationService(db).migrate_inventory(inventory_id, actor)
