import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ChatBackend.config import APP_VERSION


router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _base_status(request: Request) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": _now_iso(),
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "version": APP_VERSION,
        "environment": request.app.state.settings.environment,
    }


# Runs SELECT 1 against the configured database
def check_database(request: Request) -> Dict[str, Any]:
    engine = request.app.state.engine
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return {"status": "disconnected", "dialect": engine.dialect.name}
    return {"status": "connected", "dialect": engine.dialect.name}


async def check_ai(request: Request) -> Dict[str, Any]:
    generator = request.app.state.generator
    if not generator.configured:
        return {"configured": False, "connected": False, "message": "AI service not configured"}
    ping = await generator.ping()
    return {"configured": True, "connected": ping["success"], "message": ping["message"], "model": generator.model}


@router.get("")
def basic_health(request: Request):
    return _base_status(request)


@router.get("/database")
def database_health(request: Request):
    details = check_database(request)
    healthy = details["status"] == "connected"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "message": "Database is connected" if healthy else "Database is not connected",
            "details": details,
            "timestamp": _now_iso(),
        },
    )


@router.get("/ai")
async def ai_health(request: Request):
    details = await check_ai(request)
    healthy = details["connected"]
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "message": "AI service is operational" if healthy else details["message"],
            "details": details,
            "timestamp": _now_iso(),
        },
    )


# Aggregates database and AI checks; any failing service degrades the whole report
@router.get("/detailed")
async def detailed_health(request: Request):
    payload = _base_status(request)
    payload["services"] = {
        "database": check_database(request),
        "ai": await check_ai(request),
    }
    healthy = payload["services"]["database"]["status"] == "connected" and payload["services"]["ai"]["connected"]
    payload["status"] = "healthy" if healthy else "degraded"
    return JSONResponse(status_code=200 if healthy else 503, content=payload)
