import math
from datetime import datetime, timezone
from typing import Dict


def now() -> datetime:
    return datetime.now(timezone.utc)


def page_bounds(page: int, per_page: int) -> Dict[str, int]:
    page = max(1, int(page))
    return {"page": page, "limit": per_page, "offset": (page - 1) * per_page}


def total_pages(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page)) if per_page > 0 else 1


def truncate(text: str | None, max_length: int = 100) -> str | None:
    if not text or len(text) <= max_length:
        return text
    return text[:max_length] + "..."
