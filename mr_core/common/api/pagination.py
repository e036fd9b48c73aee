from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DefaultPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


def page_window(page, limit, *, default_limit: int, max_limit: int = 200) -> tuple[int, int]:
    """
    Normalize ?page / ?limit query values into (page, limit).
    Garbage or non-positive values fall back to page 1 / default_limit.
    """
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = default_limit
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit) if limit > 0 else default_limit
    return page, limit


def page_meta(*, page: int, limit: int, total: int) -> dict:
    """{ page, limit, total, pages } block returned alongside windowed lists."""
    pages = (total + limit - 1) // limit if limit else 0
    return {"page": page, "limit": limit, "total": total, "pages": pages}


def paginate(request, queryset, serializer_class, *, paginator: PageNumberPagination | None = None) -> Response:
    """
    Shared pagination helper to enforce a stable contract:
      { count, next, previous, results }
    """
    p = paginator or DefaultPagination()
    page = p.paginate_queryset(queryset, request)
    if page is not None:
        ser = serializer_class(page, many=True)
        return p.get_paginated_response(ser.data)

    # If pagination is disabled for some reason, fall back to a non-paginated list.
    ser = serializer_class(queryset, many=True)
    return Response(ser.data)
