from __future__ import annotations

from typing import Any, Callable, Iterable


def ok(data: Any = None, **extra: Any) -> dict:
    return {'success': True, **extra, 'data': data if data is not None else {}}


def listing(rows: Iterable[Any], serialize: Callable[[Any], dict]) -> dict:
    items = [serialize(row) for row in rows]
    return {'success': True, 'count': len(items), 'data': items}


def paginated(rows: list[Any], total: int, page: int, page_size: int, serialize: Callable[[Any], dict]) -> dict:
    items = [serialize(row) for row in rows]
    pagination: dict[str, Any] = {'page': page, 'page_size': page_size, 'total': total}
    if page * page_size < total:
        pagination['next'] = page + 1
    if page > 1:
        pagination['prev'] = page - 1
    return {'success': True, 'count': len(items), 'pagination': pagination, 'data': items}
