import logging
from typing import Any

import anyio
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from bikawo.infra.stripe_resilience import stripe_circuit

router = APIRouter()
logger = logging.getLogger(__name__)

DB_PING_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _ping_database(request: Request) -> dict[str, Any]:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        return {"ok": False, "message": "database session factory unavailable"}
    try:
        with anyio.fail_after(DB_PING_TIMEOUT_SECONDS):
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
    except TimeoutError:
        return {"ok": False, "message": "database check timed out", "timeout_seconds": DB_PING_TIMEOUT_SECONDS}
    except Exception as exc:  # noqa: BLE001
        logger.warning("readiness_database_failed", extra={"extra": {"error_type": type(exc).__name__}})
        return {"ok": False, "message": "database check failed", "error": type(exc).__name__}
    return {"ok": True, "message": "database reachable"}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    database = await _ping_database(request)
    # An open refund circuit degrades refunds but cancellations still work.
    checks = {
        "database": database,
        "stripe_circuit": {"ok": stripe_circuit.state != "open", "state": stripe_circuit.state},
    }
    ready = database["ok"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "unavailable", "checks": checks},
    )
