from __future__ import annotations

import math
import re
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(value: str) -> str:
    s = (value or "").strip().lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


def format_file_size(size_bytes: int) -> str:
    if not size_bytes or size_bytes <= 0:
        return "0 B"
    units = ("B", "KB", "MB", "GB")
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(units) - 1)
    value = round(size_bytes / (1024 ** i), 2)
    # 1.50 -> "1.5", 2.00 -> "2"
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[i]}"


def parse_int(value, *, default: int | None = None) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if not s:
        return default
    try:
        return int(s)
    except ValueError:
        return default


def parse_bool(value) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return None


def clamp_pagination(page, limit, *, default_limit: int = 12, max_limit: int = 100) -> tuple[int, int, int]:
    """Returns (page, limit, offset) with page >= 1 and 1 <= limit <= max_limit."""
    p = max(parse_int(page, default=1) or 1, 1)
    lim = parse_int(limit, default=default_limit) or default_limit
    lim = max(1, min(lim, max_limit))
    return p, lim, (p - 1) * lim


def page_info(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalCount": total,
        "hasNextPage": page < total_pages,
        "hasPreviousPage": page > 1,
    }


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
