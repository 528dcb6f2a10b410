"""Tenant data integrity diagnostics."""

from pulse_core.integrity.checker import SEED_PATTERNS, IntegrityChecker, gap_window

__all__ = ["SEED_PATTERNS", "IntegrityChecker", "gap_window"]
