"""Creator Pulse engine: tenant identity, metrics ingestion, and integrity checks."""

__version__ = "0.1.0"
