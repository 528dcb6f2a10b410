"""Liveness and readiness probes.

``/api/v1/health`` always answers 200 and reports store reachability plus
the backfill queue depth.  ``/ready`` sits at the root and answers 503
while the store is unreachable so orchestrators stop routing traffic.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_api import __version__
from pulse_api.dependencies import DispatcherDep, SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])
readiness_router = APIRouter(tags=["infrastructure"])


async def _store_reachable(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Store probe failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health(session: SessionDep, dispatcher: DispatcherDep) -> dict[str, Any]:
    return {
        "status": "healthy",
        "version": __version__,
        "db": "ok" if await _store_reachable(session) else "degraded",
        "pending_backfills": dispatcher.pending,
    }


@readiness_router.get("/ready")
async def readiness_probe(session: SessionDep) -> JSONResponse:
    reachable = await _store_reachable(session)
    return JSONResponse(
        status_code=200 if reachable else 503,
        content={
            "status": "ready" if reachable else "not_ready",
            "version": __version__,
            "checks": {"db": "ok" if reachable else "unavailable"},
        },
    )
