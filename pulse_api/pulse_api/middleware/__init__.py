"""HTTP middleware for the Creator Pulse API."""
