"""HTTP client for the membership platform's REST API.

One client instance is bound to one tenant credential.  The only public
operation, :meth:`ProviderClient.fetch_daily_summary`, turns three paginated
collection queries into a :class:`~pulse_core.models.metrics.DailySummary`
for a single UTC calendar day.

Each query is isolated: a transport error, a non-2xx status, or a malformed
payload zeroes the values that query feeds and leaves the others intact.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from types import TracebackType
from typing import Any, Self, TypeVar

import httpx

from pulse_core.config import CoreSettings
from pulse_core.models.metrics import DailySummary

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_CENTS = Decimal("0.01")
_TRIAL_CONVERSION_REASON = "subscription_trial_conversion"

# Errors that zero a single query instead of failing the whole day.
_QUERY_ERRORS = (
    httpx.HTTPError,
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
    ArithmeticError,
)


def day_window(day: date) -> tuple[datetime, datetime]:
    """Return the half-open UTC interval ``[day 00:00, next day 00:00)``."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def _is_trial_conversion(payment: dict[str, Any]) -> bool:
    return payment.get("billing_reason") == _TRIAL_CONVERSION_REASON or bool(payment.get("is_trial_conversion"))


def _has_next_page(pagination: dict[str, Any], page: int) -> bool:
    current = int(pagination.get("current_page") or page)
    total_pages = pagination.get("total_pages")
    if total_pages is not None and current >= int(total_pages):
        return False
    if "next" in pagination:
        return bool(pagination["next"])
    return total_pages is not None


class ProviderClient:
    """Async wrapper around the provider's payments and memberships endpoints.

    Parameters
    ----------
    credential:
        The tenant's provider access token, sent as a bearer token.
    base_url:
        Root URL of the provider API (e.g. ``https://api.whop.com/api/v2``).
    timeout:
        Per-request timeout in seconds.
    page_size:
        ``limit`` sent with every collection request.
    max_pages:
        Hard cap on pages fetched per query, regardless of what the
        provider's pagination block claims.
    live_active_days:
        Days counting back from today for which the provider's live active
        member total is trusted.
    transport:
        Optional httpx transport, used by tests to stub the provider.
    """

    def __init__(
        self,
        credential: str,
        *,
        base_url: str = "https://api.whop.com/api/v2",
        timeout: float = 15.0,
        page_size: int = 100,
        max_pages: int = 50,
        live_active_days: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._page_size = page_size
        self._max_pages = max_pages
        self._live_active_days = live_active_days
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers={
                "Authorization": f"Bearer {credential}",
                "Accept": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        credential: str,
        settings: CoreSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ProviderClient:
        return cls(
            credential,
            base_url=settings.provider_base_url,
            timeout=settings.provider_timeout,
            page_size=settings.provider_page_size,
            max_pages=settings.provider_max_pages,
            live_active_days=settings.live_active_days,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -- Public API ----------------------------------------------------------

    async def fetch_daily_summary(
        self,
        day: date,
        *,
        previous_active: int = 0,
        today: date | None = None,
    ) -> DailySummary:
        """Fetch and aggregate one day of metrics.

        Parameters
        ----------
        day:
            UTC calendar day to summarise.
        previous_active:
            Active member count of the most recent stored day before *day*.
            Used to derive the active count when the live total is not
            available or *day* is too old for the live total to apply.
        today:
            Override for the current UTC date (tests).
        """
        start, end = day_window(day)
        window = {
            "created_after": start.isoformat(),
            "created_before": end.isoformat(),
        }

        revenue, trials_paid = await self._guarded(
            "payments", self._payment_totals(window), (Decimal("0"), 0)
        )
        new_members, trials_started = await self._guarded(
            "memberships", self._membership_totals(window), (0, 0)
        )
        cancellations = await self._guarded(
            "memberships/canceled", self._collect_count("/memberships/canceled", window), 0
        )

        today = today or datetime.now(UTC).date()
        live_total: int | None = None
        if (today - day).days <= self._live_active_days:
            live_total = await self._guarded("memberships/active", self._live_active_total(), None)

        derived = live_total is None
        if derived:
            active_members = max(0, previous_active + new_members - cancellations)
        else:
            active_members = max(0, live_total or 0)

        return DailySummary(
            gross_revenue=revenue,
            active_members=active_members,
            new_members=new_members,
            cancellations=cancellations,
            trials_started=trials_started,
            trials_paid=trials_paid,
            active_members_derived=derived,
        )

    # -- Queries -------------------------------------------------------------

    async def _payment_totals(self, window: dict[str, str]) -> tuple[Decimal, int]:
        payments = await self._collect("/payments", {**window, "status": "paid"})
        total = Decimal("0")
        conversions = 0
        for payment in payments:
            total += Decimal(str(payment.get("amount") or 0))
            if _is_trial_conversion(payment):
                conversions += 1
        # Amounts are minor units (cents); refunds never push the day negative.
        revenue = max(Decimal("0"), (total / 100).quantize(_CENTS))
        return revenue, conversions

    async def _membership_totals(self, window: dict[str, str]) -> tuple[int, int]:
        memberships = await self._collect("/memberships", window)
        trialing = sum(1 for m in memberships if m.get("status") == "trialing")
        return len(memberships), trialing

    async def _collect_count(self, path: str, params: dict[str, str]) -> int:
        return len(await self._collect(path, params))

    async def _live_active_total(self) -> int | None:
        response = await self._client.get(
            "/memberships",
            params={"status": "active", "limit": 1, "page": 1},
        )
        response.raise_for_status()
        pagination = response.json().get("pagination") or {}
        total = pagination.get("total_count")
        return None if total is None else int(total)

    async def _collect(self, path: str, params: dict[str, str]) -> list[dict[str, Any]]:
        """Fetch every page of a collection, up to ``max_pages``."""
        items: list[dict[str, Any]] = []
        for page in range(1, self._max_pages + 1):
            response = await self._client.get(
                path,
                params={**params, "limit": self._page_size, "page": page},
            )
            response.raise_for_status()
            body = response.json()
            data = body.get("data") or []
            if not isinstance(data, list):
                raise ValueError(f"Expected a list under 'data' from {path}, got {type(data).__name__}")
            items.extend(data)
            if not data or not _has_next_page(body.get("pagination") or {}, page):
                break
        else:
            logger.warning("Pagination cap of %d pages reached for %s", self._max_pages, path)
        return items

    async def _guarded(self, label: str, query: Awaitable[_T], default: _T) -> _T:
        try:
            return await query
        except _QUERY_ERRORS as exc:
            logger.warning("Provider query %s failed, defaulting to zero: %s", label, exc)
            return default
