# orders/application/queries.py
from typing import Mapping, Optional, Any, List, Dict

from orders.domain.entities import OrderListQuery, ORDER_STATUSES
from orders.domain.errors import ValidationError

SORTABLE_FIELDS = ("createdAt", "total", "status")
SORT_ORDERS = ("asc", "desc")
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _positive_int(raw: Any, field: str, errors: List[Dict[str, Any]], default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        errors.append({"field": field, "message": f"{field} must be a positive integer", "value": raw})
        return default
    if value < 1:
        errors.append({"field": field, "message": f"{field} must be a positive integer", "value": raw})
        return default
    return value


def build_list_query(args: Mapping[str, Any], owner_id: Optional[str] = None) -> OrderListQuery:
    """
    Convierte los parámetros del query string en un OrderListQuery validado.
    owner_id lo fija el servidor para la vista del cliente; nunca se lee de args.
    Acumula todos los errores por campo antes de fallar.
    """
    errors: List[Dict[str, Any]] = []

    page = _positive_int(args.get("page"), "page", errors, 1)
    page_size = _positive_int(args.get("limit"), "limit", errors, DEFAULT_PAGE_SIZE)
    page_size = min(page_size, MAX_PAGE_SIZE)

    status = args.get("status") or None
    if status is not None and status not in ORDER_STATUSES:
        errors.append({"field": "status", "message": "Invalid status", "value": status})

    sort_by = args.get("sortBy") or "createdAt"
    if sort_by not in SORTABLE_FIELDS:
        errors.append({
            "field": "sortBy",
            "message": f"sortBy must be one of: {', '.join(SORTABLE_FIELDS)}",
            "value": sort_by,
        })

    sort_order = (args.get("sortOrder") or "desc").lower()
    if sort_order not in SORT_ORDERS:
        errors.append({"field": "sortOrder", "message": "sortOrder must be asc or desc", "value": sort_order})

    if errors:
        raise ValidationError("Validation failed", errors=errors)

    search = args.get("search")
    search = search.strip() if isinstance(search, str) and search.strip() else None

    return OrderListQuery(
        status=status,
        search=search,
        owner_id=owner_id,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def build_pagination(query: OrderListQuery, total: int) -> Dict[str, Any]:
    total_pages = -(-total // query.page_size) if total else 0
    return {
        "currentPage": query.page,
        "totalPages": total_pages,
        "totalOrders": total,
        "hasNextPage": query.page < total_pages,
        "hasPrevPage": query.page > 1,
    }
