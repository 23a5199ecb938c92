"""
audit/models.py -- Domain dataclass for audit entries.

Pattern: Data class (pure data container, zero logic).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AuditEntry:
    """One recorded request outcome. Append-only -- never updated."""

    method: str
    url: str
    status: int
    user_id: int | None = None
    ip: str | None = None
    id: int | None = None
    created_at: str | None = None
