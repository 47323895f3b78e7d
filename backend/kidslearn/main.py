import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging
from .progress_routes import router as progress_router
from .telemetry_pipeline import install_audit_listener


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("Progress backend starting (persistence=%s)", settings.persistence_mode)
    if settings.uses_default_secret:
        logger.warning("Using the default auth secret; set KIDSLEARN_AUTH_SECRET in production.")
    if settings.persistence_mode == "database" and settings.database_url:
        install_audit_listener()
    yield


app = FastAPI(title="Kids Learn Progress Backend", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(progress_router)


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/healthz/database")
def database_health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    if settings.persistence_mode == "filesystem":
        root = settings.progress_data_dir
        return {
            "status": "ok",
            "persistence_mode": "filesystem",
            "data_dir": str(root),
            "data_dir_exists": root.exists(),
        }
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "persistence_mode": "database",
        "pool": get_pool_snapshot(engine),
    }
