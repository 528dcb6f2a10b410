"""Pulse API: webhook receiver, admin jobs, and tenant-facing endpoints."""

__version__ = "0.1.0"
