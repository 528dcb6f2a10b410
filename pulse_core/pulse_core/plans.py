"""Subscription plans and plan-based feature gating.

Three plans control access to dashboard and reporting features:

* **Free** -- weekly email summary and a 7-day data window.
* **Pro** -- adds daily email, Discord alerts, and advanced insights.
* **Business** -- full feature set including extended (90-day+) history,
  data exports, and priority support.
"""

from __future__ import annotations

from enum import Enum


class Plan(str, Enum):
    """Subscription plan stored on each tenant."""

    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


class PlanFeature(str, Enum):
    """Features that can be gated by plan."""

    WEEKLY_EMAIL = "weekly_email"
    DAILY_EMAIL = "daily_email"
    DISCORD_ALERTS = "discord_alerts"
    ADVANCED_INSIGHTS = "advanced_insights"
    EXTENDED_HISTORY = "extended_history"
    DATA_EXPORTS = "data_exports"
    PRIORITY_SUPPORT = "priority_support"


# Higher plans include all lower-plan features automatically.

_FREE_FEATURES: frozenset[PlanFeature] = frozenset({PlanFeature.WEEKLY_EMAIL})

_PRO_FEATURES: frozenset[PlanFeature] = _FREE_FEATURES | frozenset(
    {
        PlanFeature.DAILY_EMAIL,
        PlanFeature.DISCORD_ALERTS,
        PlanFeature.ADVANCED_INSIGHTS,
    }
)

_BUSINESS_FEATURES: frozenset[PlanFeature] = _PRO_FEATURES | frozenset(
    {
        PlanFeature.EXTENDED_HISTORY,
        PlanFeature.DATA_EXPORTS,
        PlanFeature.PRIORITY_SUPPORT,
    }
)

PLAN_FEATURES: dict[Plan, frozenset[PlanFeature]] = {
    Plan.FREE: _FREE_FEATURES,
    Plan.PRO: _PRO_FEATURES,
    Plan.BUSINESS: _BUSINESS_FEATURES,
}

# Provider plan labels that map onto our plans.
_PLAN_ALIASES: dict[str, Plan] = {
    "free": Plan.FREE,
    "pro": Plan.PRO,
    "professional": Plan.PRO,
    "business": Plan.BUSINESS,
    "enterprise": Plan.BUSINESS,
}

_FREE_WINDOW_DAYS = 7
_PAID_WINDOW_DAYS = 90


def normalize_plan(value: str | Plan | None) -> Plan:
    """Map a provider plan label onto a :class:`Plan`.

    Unknown, empty, or missing labels fall back to ``Plan.FREE``.
    """
    if isinstance(value, Plan):
        return value
    if not value:
        return Plan.FREE
    return _PLAN_ALIASES.get(value.strip().lower(), Plan.FREE)


def is_feature_enabled(plan: Plan, feature: PlanFeature) -> bool:
    """Check whether a feature is included in the given plan."""
    return feature in PLAN_FEATURES.get(plan, _FREE_FEATURES)


def get_plan_features(plan: Plan) -> frozenset[PlanFeature]:
    """Return the set of features available on a plan."""
    return PLAN_FEATURES.get(plan, _FREE_FEATURES)


def get_required_plan(feature: PlanFeature) -> Plan:
    """Return the lowest plan that includes *feature*."""
    for plan in (Plan.FREE, Plan.PRO, Plan.BUSINESS):
        if feature in PLAN_FEATURES[plan]:
            return plan
    return Plan.BUSINESS


def has_paid_plan(plan: Plan) -> bool:
    return plan in (Plan.PRO, Plan.BUSINESS)


def data_window_days(plan: Plan) -> int:
    """Number of days of history a dashboard may show for *plan*."""
    return _PAID_WINDOW_DAYS if has_paid_plan(plan) else _FREE_WINDOW_DAYS
