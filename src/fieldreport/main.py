import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.fieldreport.api.v1.routes_checklist import router as checklist_router_v1
from src.fieldreport.api.v1.routes_reports import router as reports_router_v1
from src.fieldreport.api.v1.routes_sessions import router as sessions_router_v1
from src.fieldreport.api.v1.routes_system import router as system_router_v1
from src.fieldreport.config import settings
from src.fieldreport.infra.db.bootstrap import init_sql_repositories
from src.fieldreport.services.session.service import get_session_service

logger = logging.getLogger(__name__)

app = FastAPI(title="Voice Daily Report API")


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    When USE_SQL_REPOS is enabled and a DATABASE_URL is configured, the report
    index is switched to the SQL-backed repository. In other environments
    (tests, local dev without a database) the in-memory index stays active.
    """

    init_sql_repositories()
    logger.info("Agent backend: %s, report store: %s", settings.agent_backend, settings.report_store_backend)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Stop live dialogue streams and release the agent connector's HTTP client."""

    await get_session_service().aclose()


# CORS configuration – permissive by default for development. Tighten via
# CORS_ALLOW_ORIGINS in production deployments.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness check for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(system_router_v1, prefix="/api/v1")
app.include_router(checklist_router_v1, prefix="/api/v1")
app.include_router(sessions_router_v1, prefix="/api/v1")
app.include_router(reports_router_v1, prefix="/api/v1")
