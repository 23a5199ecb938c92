"""
api/pagination.py -- page/limit query parameters shared by list endpoints.

Out-of-range values are clamped rather than rejected: page < 1 becomes 1,
limit < 1 falls back to the default and limit > MAX_LIMIT is capped.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def get_pagination(page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> Pagination:
    """FastAPI dependency: read ?page=&limit= from the query string."""
    if page < 1:
        page = 1
    if limit < 1:
        limit = DEFAULT_LIMIT
    elif limit > MAX_LIMIT:
        limit = MAX_LIMIT
    return Pagination(page=page, limit=limit)
