# Overview: Shared page/page_size handling for list endpoints.

from __future__ import annotations

from typing import Callable

from flask import current_app


def clamp_page(page: int | None, page_size: int | None) -> tuple[int, int]:
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = max(page or 1, 1)
    page_size = max(1, min(page_size or default_size, max_size))
    return page, page_size


def paginate(query, *, page: int | None, page_size: int | None, serialize: Callable | None = None) -> dict:
    """
    Run an ordered query one page at a time.

    `count` is the total across all pages; consumers that need the complete
    set keep requesting `next` until it is None.

    serialize receives the page's rows as a list so it can batch lookups
    (e.g. PFI totals) instead of issuing one query per row.
    """
    page, page_size = clamp_page(page, page_size)

    total = query.order_by(None).count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    total_pages = (total + page_size - 1) // page_size if total > 0 else 1

    results = serialize(rows) if serialize else [r.to_dict() for r in rows]

    return {
        "count": total,
        "page": page,
        "page_size": page_size,
        "next": page + 1 if page < total_pages else None,
        "previous": page - 1 if page > 1 else None,
        "results": results,
    }
