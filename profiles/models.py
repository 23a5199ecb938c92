"""
profiles/models.py -- Domain dataclass for user profiles.

Pattern: Data class (pure data container, zero logic).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Profile:
    """Personal details attached to exactly one user.

    birth_date is an ISO date string (YYYY-MM-DD). avatar is the public URL
    path of an uploaded image, or None.
    """

    user_id: int
    first_name: str
    birth_date: str
    id: int | None = None
    last_name: str | None = None
    avatar: str | None = None
    is_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
