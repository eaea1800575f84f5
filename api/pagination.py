"""
api/pagination.py -- Offset pagination shared by every list endpoint.

Query contract: ?page= (1-based, default 1) and ?limit= (default 10).
A limit above MAX_LIMIT is clamped rather than rejected; a page outside
1..MAX_PAGE or a limit < 1 fails validation (400).
"""

from __future__ import annotations

import math

from fastapi import Query

DEFAULT_LIMIT = 10
MAX_LIMIT = 100
MAX_PAGE = 10_000_000


class PageParams:
    """FastAPI dependency: Depends(PageParams) -> .page, .limit, .offset."""

    def __init__(
        self,
        page: int = Query(1, ge=1, le=MAX_PAGE, description="1-based page number."),
        limit: int = Query(DEFAULT_LIMIT, ge=1, description=f"Page size, capped at {MAX_LIMIT}."),
    ) -> None:
        self.page = page
        self.limit = min(limit, MAX_LIMIT)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def envelope(self, total: int) -> dict:
        """Return the total_items / total_pages / current_page fields of a page body."""
        return {
            "total_items": total,
            "total_pages": math.ceil(total / self.limit) if total else 0,
            "current_page": self.page,
        }
