"""Background submission of install-triggered backfills.

A webhook install must answer the provider quickly, but the follow-up
backfill can take minutes.  :class:`BackfillDispatcher` runs each backfill
as its own ``asyncio`` task, decoupled from the request that submitted it:

* bounded by its own timeout (``asyncio.wait_for``);
* reading the tenant's credential through its own session, after the
  webhook's transaction has committed;
* tracked in a task set so application shutdown can cancel it;
* reporting failures to a log sink instead of the caller (one attempt,
  no retry).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_core.ingestion.backfill import BackfillEngine
from pulse_core.models.metrics import BackfillResult
from pulse_core.state.database import session_scope
from pulse_core.state.repository import TenantRepository

logger = logging.getLogger(__name__)

FailureSink = Callable[[str, BaseException], None]


def _log_failure(tenant_id: str, exc: BaseException) -> None:
    logger.error(
        "Install backfill for tenant %s failed: %s",
        tenant_id,
        exc,
        exc_info=(type(exc), exc, exc.__traceback__),
    )


class BackfillDispatcher:
    """Runs backfills as tracked background tasks.

    Parameters
    ----------
    session_factory:
        Used to read the tenant's credential when the task starts.
    engine:
        The backfill engine that does the per-day work.
    days:
        Window to backfill (default 7).
    timeout:
        Upper bound in seconds on one whole backfill.
    failure_sink:
        Called with ``(tenant_id, exception)`` when a backfill times out or
        fails.  Defaults to an error log entry.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: BackfillEngine,
        *,
        days: int = 7,
        timeout: float = 300.0,
        failure_sink: FailureSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._days = days
        self._timeout = timeout
        self._failure_sink = failure_sink or _log_failure
        self._tasks: set[asyncio.Task[BackfillResult | None]] = set()

    @property
    def pending(self) -> int:
        """Number of backfills still running."""
        return len(self._tasks)

    def submit(self, tenant_id: str) -> asyncio.Task[BackfillResult | None]:
        """Schedule a backfill for *tenant_id* and return immediately.

        Call only after the transaction that created or refreshed the
        tenant has committed.
        """
        task = asyncio.create_task(self._run(tenant_id), name=f"backfill:{tenant_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Submitted %d-day backfill for tenant %s", self._days, tenant_id)
        return task

    async def drain(self) -> None:
        """Wait for every submitted backfill to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding backfills (application shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d outstanding backfill(s)", len(tasks))

    async def _run(self, tenant_id: str) -> BackfillResult | None:
        try:
            async with session_scope(self._session_factory) as session:
                tenant = await TenantRepository(session).get(tenant_id)
                credential = tenant.credential if tenant is not None else ""
            if not credential:
                logger.warning("Skipping backfill for tenant %s: no installed credential", tenant_id)
                return None
            return await asyncio.wait_for(
                self._engine.run(tenant_id, credential, self._days),
                timeout=self._timeout,
            )
        except asyncio.CancelledError:
            logger.info("Backfill for tenant %s cancelled", tenant_id)
            raise
        except Exception as exc:
            self._failure_sink(tenant_id, exc)
            return None
