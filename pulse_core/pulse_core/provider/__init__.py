"""Membership platform API client."""

from pulse_core.provider.client import ProviderClient, day_window

__all__ = ["ProviderClient", "day_window"]
