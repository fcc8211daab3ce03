"""Ephemeral, self-expiring object-bucket store."""

__version__ = "1.0.0"
