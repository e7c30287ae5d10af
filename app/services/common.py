"""Common helper functions for service layer.

This module provides reusable utilities for:
- UUID handling
- Query pagination
"""

from __future__ import annotations

import uuid


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def try_coerce_uuid(value) -> uuid.UUID | None:
    """Like coerce_uuid, but returns None for malformed identifiers."""
    try:
        return coerce_uuid(value)
    except (TypeError, ValueError):
        return None


def apply_pagination(query, limit: int, offset: int):
    """Apply pagination to a query.

    Args:
        query: SQLAlchemy query object
        limit: Maximum number of results
        offset: Number of results to skip

    Returns:
        Query with pagination applied
    """
    return query.limit(limit).offset(offset)
