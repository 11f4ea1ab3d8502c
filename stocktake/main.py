from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from stocktake.config import settings
from stocktake.api.v1.router import api_router
from stocktake.core.exceptions import StocktakeError
from stocktake.database import init_db, dispose_engine, async_session_factory


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create missing tables (migrations own the schema in production)

    Shutdown:
    - Dispose the engine's connection pool
    """
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    yield

    # Shutdown
    await dispose_engine()
    logger.info("Shutdown complete")


OPENAPI_TAGS = [
    {"name": "Inventories", "description": "Counting campaigns and their lifecycle"},
    {"name": "Counts", "description": "Per-item count submissions (stages 1-4)"},
    {"name": "Serial Reconciliation", "description": "Serialized asset scans and discrepancies"},
    {"name": "ERP Integration", "description": "Push settled adjustments to the ERP"},
    {"name": "Health", "description": "Service health"},
]

API_DESCRIPTION = """
## Stocktake Reconciliation API

Physical stock-counting campaigns reconciled against expected quantities.

### Lifecycle

`planning -> open -> count1 -> count2 -> [count3] -> audit_mode -> closed`,
with `cancelled` reachable from every non-terminal state.

### Authentication

All endpoints except `/health` require a JWT bearer token whose `sub` is the
user id and whose `role` claim is the user's role.

### Error Codes

| Code | Description |
|------|-------------|
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Audit role required |
| 404 | Not Found - Inventory, item or serial doesn't exist |
| 409 | Conflict - Lifecycle rule violated |
| 422 | Unprocessable Entity - Business rule violation |
| 502 | Bad Gateway - ERP unavailable, retry later |
| 500 | Internal Server Error - Inconsistent stored data |

Every business error body carries `error_code`, `message` and `details`.
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(StocktakeError)
async def stocktake_exception_handler(request: Request, exc: StocktakeError):
    """Map business errors to their HTTP status with a machine-readable body."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
