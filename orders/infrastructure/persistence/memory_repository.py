# orders/infrastructure/persistence/memory_repository.py
import copy
import threading
import uuid
from datetime import datetime
from typing import List, Dict, Optional, Tuple

from orders.domain.interfaces import OrderRepository
from orders.domain.entities import Order, OrderListQuery, OrderPage, StatusHistoryEntry
from orders.domain.errors import ConflictError


def _sort_key(sort_by: str):
    if sort_by == "total":
        return lambda order: (order.total, order.order_id)
    if sort_by == "status":
        return lambda order: (order.status, order.order_id)
    return lambda order: (order.created_at, order.order_id)


class InMemoryOrderRepository(OrderRepository):
    """
    Almacén de órdenes en memoria (desarrollo local y pruebas).
    Un candado serializa las escrituras; las lecturas devuelven copias para que
    nadie fuera del repositorio pueda mutar los documentos guardados.
    """

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._lock = threading.Lock()

    def insert_order(self, order: Order) -> Order:
        with self._lock:
            if order.order_id is None:
                order.order_id = uuid.uuid4().hex
            self._orders[order.order_id] = copy.deepcopy(order)
            return copy.deepcopy(order)

    def get_order_by_id(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    def apply_status_change(self, order_id: str, entry: StatusHistoryEntry,
                            disallowed_from: Tuple[str, ...] = ()) -> Optional[Tuple[Order, str]]:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            if order.status in disallowed_from:
                raise ConflictError(f"Order is already '{order.status}'")
            previous_status = order.apply_status_change(entry)
            return copy.deepcopy(order), previous_status

    def update_payment_status(self, order_id: str, payment_status: str, payment_id: Optional[str],
                              changed_at: datetime) -> Optional[Tuple[Order, str]]:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            previous = order.apply_payment_update(payment_status, payment_id, changed_at)
            return copy.deepcopy(order), previous

    def delete_order(self, order_id: str) -> bool:
        with self._lock:
            return self._orders.pop(order_id, None) is not None

    def _snapshot(self) -> List[Order]:
        with self._lock:
            return [copy.deepcopy(order) for order in self._orders.values()]

    def get_orders_by_user_id(self, user_id: str) -> List[Order]:
        orders = [order for order in self._snapshot() if order.user_id == user_id]
        orders.sort(key=_sort_key("createdAt"), reverse=True)
        return orders

    def list_orders(self, query: OrderListQuery) -> OrderPage:
        orders = self._snapshot()
        if query.status:
            orders = [order for order in orders if order.status == query.status]
        if query.owner_id is not None:
            orders = [order for order in orders if order.user_id == query.owner_id]
        if query.search:
            term = query.search.lower()
            orders = [
                order for order in orders
                if term in order.order_number.lower()
                or term in (order.customer_info.name or "").lower()
                or term in (order.customer_info.email or "").lower()
            ]
        orders.sort(key=_sort_key(query.sort_by), reverse=query.sort_order == "desc")
        page = orders[query.offset:query.offset + query.page_size]
        return OrderPage(orders=page, total=len(orders))

    def _owned(self, owner_id: Optional[str]) -> List[Order]:
        return [order for order in self._snapshot() if owner_id is None or order.user_id == owner_id]

    def count_by_status(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for order in self._owned(owner_id):
            counts[order.status] = counts.get(order.status, 0) + 1
        return counts

    def total_by_status(self, owner_id: Optional[str] = None) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        for order in self._owned(owner_id):
            totals[order.status] = totals.get(order.status, 0.0) + order.total
        return totals

    def get_revenue(self, statuses: Tuple[str, ...] = ("delivered",)) -> float:
        return sum(order.total for order in self._snapshot() if order.status in statuses)

    def get_recent_orders(self, limit: int = 5) -> List[Order]:
        orders = self._snapshot()
        orders.sort(key=_sort_key("createdAt"), reverse=True)
        return orders[:limit]
