from __future__ import annotations

from typing import Callable

from flask import current_app


def clamp_page(page: int | None, per_page: int | None) -> tuple[int, int]:
    default = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    maximum = current_app.config.get("MAX_PAGE_SIZE", 100)
    per_page = min(per_page or default, maximum)
    per_page = max(per_page, 1)
    page = max(page or 1, 1)
    return page, per_page


def paginate(
    query,
    page: int | None,
    per_page: int | None,
    serialize: Callable = None,
    serialize_rows: Callable = None,
) -> dict:
    """
    Run `query` for one page.

    serialize maps one row; serialize_rows maps the whole page at once
    (for batched lookups such as actor names).

    Returns {"items", "count", "pagination"} where count is the number of
    items on this page and pagination.total counts all matching rows.
    """
    page, per_page = clamp_page(page, per_page)
    serialize = serialize or (lambda row: row.to_dict())

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    items = serialize_rows(rows) if serialize_rows else [serialize(r) for r in rows]

    return {
        "items": items,
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
