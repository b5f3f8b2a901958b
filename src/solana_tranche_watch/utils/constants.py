"""Shared constants for wallet tranche tracking."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# Pump-style launches mint a fixed one billion supply, so cap = price * 1e9.
FIXED_TOKEN_SUPPLY = 1_000_000_000

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

__all__ = ["utc_now", "FIXED_TOKEN_SUPPLY", "TOKEN_PROGRAM_ID"]
