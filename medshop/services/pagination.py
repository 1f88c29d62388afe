from __future__ import annotations

import math
from typing import Any

MAX_PAGE_SIZE = 100


def page_window(page: int, limit: int) -> tuple[int, int, int]:
    """Clamp ``page``/``limit`` and return ``(page, limit, offset)``."""
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 20), MAX_PAGE_SIZE))
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    return {
        "page": page,
        "limit": limit,
        "totalCount": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }
