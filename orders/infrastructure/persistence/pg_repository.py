# orders/infrastructure/persistence/pg_repository.py
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple

import psycopg2
from psycopg2 import extras

from orders.domain.interfaces import OrderRepository
from orders.domain.entities import (
    CustomerInfo, Order, OrderItem, OrderListQuery, OrderPage, ShippingAddress, StatusHistoryEntry,
)
from orders.domain.errors import ConflictError, RepositoryError
from .db_connector import get_connection, release_connection

logger = logging.getLogger(__name__)

# Columnas permitidas para ordenar; nunca se interpola texto del cliente en el SQL
SORT_COLUMNS = {
    "createdAt": "o.created_at",
    "total": "o.total",
    "status": "o.status",
}

ORDER_COLUMNS = """
    o.order_id, o.order_number, o.user_id, o.status,
    o.customer_name, o.customer_email, o.customer_phone, o.shipping_address,
    o.payment_method, o.payment_id, o.payment_status,
    o.subtotal, o.shipping, o.tax, o.discount, o.total,
    o.tracking_number, o.created_at, o.updated_at, o.delivered_at
"""


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except ValueError:
        return False


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PgOrderRepository(OrderRepository):
    """
    Implementación concreta que se conecta a PostgreSQL
    para obtener y persistir datos de Órdenes usando psycopg2.
    """

    @contextmanager
    def _cursor(self, operation: str):
        """Entrega un cursor de diccionario; ante psycopg2.Error hace rollback y lanza RepositoryError."""
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor(cursor_factory=extras.RealDictCursor)
            yield conn, cursor
        except psycopg2.Error as e:
            logger.error(f"ERROR de base de datos durante {operation}: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError(f"Database error during {operation}.") from e
        finally:
            if conn:
                release_connection(conn)

    # --- Escritura ---

    def insert_order(self, order: Order) -> Order:
        """
        Inserta la cabecera, las líneas y la primera entrada de la bitácora en una transacción.
        """
        with self._cursor("order insertion") as (conn, cursor):
            cursor.execute("""
                INSERT INTO orders.Orders (
                    order_number, user_id, status, customer_name, customer_email, customer_phone,
                    shipping_address, payment_method, payment_id, payment_status,
                    subtotal, shipping, tax, discount, total, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING order_id;
            """, (
                order.order_number, order.user_id, order.status,
                order.customer_info.name, order.customer_info.email, order.customer_info.phone,
                extras.Json(order.shipping_address.to_dict()),
                order.payment_method, order.payment_id, order.payment_status,
                order.subtotal, order.shipping, order.tax, order.discount, order.total,
                order.created_at, order.updated_at,
            ))
            order.order_id = str(cursor.fetchone()["order_id"])

            lines_data = [
                (order.order_id, position, item.product_id, item.name, item.price,
                 item.quantity, item.size, item.color, item.image)
                for position, item in enumerate(order.items)
            ]
            extras.execute_batch(cursor, """
                INSERT INTO orders.OrderLines (order_id, position, product_id, name, price, quantity, size, color, image)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s);
            """, lines_data)

            for entry in order.status_history:
                self._insert_history(cursor, order.order_id, entry)

            conn.commit()
            return order

    def apply_status_change(self, order_id: str, entry: StatusHistoryEntry,
                            disallowed_from: Tuple[str, ...] = ()) -> Optional[Tuple[Order, str]]:
        """
        Bloquea la fila del pedido, actualiza el estado y agrega la entrada de bitácora
        en la misma transacción. Dos administradores concurrentes quedan serializados.
        """
        if not _is_uuid(order_id):
            return None

        with self._cursor("order status update") as (conn, cursor):
            cursor.execute(
                "SELECT status FROM orders.Orders WHERE order_id = %s FOR UPDATE;",
                (order_id,)
            )
            row = cursor.fetchone()
            if row is None:
                conn.rollback()
                return None
            previous_status = row["status"]
            if previous_status in disallowed_from:
                conn.rollback()
                raise ConflictError(f"Order is already '{previous_status}'")

            cursor.execute("""
                UPDATE orders.Orders
                SET status = %s,
                    tracking_number = COALESCE(%s, tracking_number),
                    delivered_at = CASE
                        WHEN %s = 'delivered' AND delivered_at IS NULL THEN %s
                        ELSE delivered_at
                    END,
                    updated_at = %s
                WHERE order_id = %s;
            """, (
                entry.status, entry.tracking_number,
                entry.status, entry.changed_at,
                entry.changed_at, order_id,
            ))
            self._insert_history(cursor, order_id, entry)

            # Se lee dentro de la transacción para devolver exactamente lo escrito
            order = self._load_orders(cursor, "WHERE o.order_id = %s", (order_id,))[0]
            conn.commit()
            return order, previous_status

    def update_payment_status(self, order_id: str, payment_status: str, payment_id: Optional[str],
                              changed_at: datetime) -> Optional[Tuple[Order, str]]:
        if not _is_uuid(order_id):
            return None

        with self._cursor("payment status update") as (conn, cursor):
            cursor.execute(
                "SELECT payment_status FROM orders.Orders WHERE order_id = %s FOR UPDATE;",
                (order_id,)
            )
            row = cursor.fetchone()
            if row is None:
                conn.rollback()
                return None

            cursor.execute("""
                UPDATE orders.Orders
                SET payment_status = %s,
                    payment_id = COALESCE(%s, payment_id),
                    updated_at = %s
                WHERE order_id = %s;
            """, (payment_status, payment_id, changed_at, order_id))

            order = self._load_orders(cursor, "WHERE o.order_id = %s", (order_id,))[0]
            conn.commit()
            return order, row["payment_status"]

    def delete_order(self, order_id: str) -> bool:
        if not _is_uuid(order_id):
            return False
        with self._cursor("order deletion") as (conn, cursor):
            cursor.execute("DELETE FROM orders.Orders WHERE order_id = %s RETURNING order_id;", (order_id,))
            deleted = cursor.fetchone() is not None
            conn.commit()
            return deleted

    @staticmethod
    def _insert_history(cursor, order_id: str, entry: StatusHistoryEntry):
        cursor.execute("""
            INSERT INTO orders.OrderStatusHistory (order_id, status, note, tracking_number, changed_at, changed_by)
            VALUES (%s, %s, %s, %s, %s, %s);
        """, (order_id, entry.status, entry.note, entry.tracking_number, entry.changed_at, entry.changed_by))

    # --- Lectura ---

    def get_order_by_id(self, order_id: str) -> Optional[Order]:
        if not _is_uuid(order_id):
            return None
        with self._cursor("order retrieval") as (conn, cursor):
            orders = self._load_orders(cursor, "WHERE o.order_id = %s", (order_id,))
            return orders[0] if orders else None

    def get_orders_by_user_id(self, user_id: str) -> List[Order]:
        with self._cursor("order retrieval by user") as (conn, cursor):
            return self._load_orders(cursor, "WHERE o.user_id = %s ORDER BY o.created_at DESC", (user_id,))

    def list_orders(self, query: OrderListQuery) -> OrderPage:
        conditions = []
        params: List[Any] = []
        if query.status:
            conditions.append("o.status = %s")
            params.append(query.status)
        if query.owner_id is not None:
            conditions.append("o.user_id = %s")
            params.append(query.owner_id)
        if query.search:
            pattern = f"%{_escape_like(query.search)}%"
            conditions.append(
                "(o.order_number ILIKE %s OR o.customer_name ILIKE %s OR o.customer_email ILIKE %s)"
            )
            params.extend([pattern, pattern, pattern])

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        column = SORT_COLUMNS[query.sort_by]
        direction = "ASC" if query.sort_order == "asc" else "DESC"

        with self._cursor("order listing") as (conn, cursor):
            cursor.execute(f"SELECT COUNT(*) AS total FROM orders.Orders o {where};", tuple(params))
            total = cursor.fetchone()["total"]

            orders = self._load_orders(
                cursor,
                f"{where} ORDER BY {column} {direction}, o.order_id {direction} LIMIT %s OFFSET %s",
                tuple(params) + (query.page_size, query.offset),
            )
            return OrderPage(orders=orders, total=total)

    def count_by_status(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        with self._cursor("status breakdown") as (conn, cursor):
            if owner_id is None:
                cursor.execute("SELECT status, COUNT(*) AS count FROM orders.Orders GROUP BY status;")
            else:
                cursor.execute(
                    "SELECT status, COUNT(*) AS count FROM orders.Orders WHERE user_id = %s GROUP BY status;",
                    (owner_id,)
                )
            return {row["status"]: row["count"] for row in cursor.fetchall()}

    def total_by_status(self, owner_id: Optional[str] = None) -> Dict[str, float]:
        with self._cursor("status totals") as (conn, cursor):
            if owner_id is None:
                cursor.execute("SELECT status, SUM(total) AS amount FROM orders.Orders GROUP BY status;")
            else:
                cursor.execute(
                    "SELECT status, SUM(total) AS amount FROM orders.Orders WHERE user_id = %s GROUP BY status;",
                    (owner_id,)
                )
            return {row["status"]: float(row["amount"]) for row in cursor.fetchall()}

    def get_revenue(self, statuses: Tuple[str, ...] = ("delivered",)) -> float:
        with self._cursor("revenue calculation") as (conn, cursor):
            cursor.execute(
                "SELECT COALESCE(SUM(total), 0) AS revenue FROM orders.Orders WHERE status = ANY(%s);",
                (list(statuses),)
            )
            return float(cursor.fetchone()["revenue"])

    def get_recent_orders(self, limit: int = 5) -> List[Order]:
        with self._cursor("recent orders retrieval") as (conn, cursor):
            return self._load_orders(cursor, "ORDER BY o.created_at DESC LIMIT %s", (limit,))

    # --- Mapeo de filas ---

    def _load_orders(self, cursor, tail_sql: str, params: tuple) -> List[Order]:
        """Carga cabeceras según tail_sql y completa líneas y bitácora con dos consultas más."""
        cursor.execute(f"SELECT {ORDER_COLUMNS} FROM orders.Orders o {tail_sql};", params)
        headers = cursor.fetchall()
        if not headers:
            return []

        order_ids = [str(row["order_id"]) for row in headers]

        cursor.execute("""
            SELECT order_id, product_id, name, price, quantity, size, color, image
            FROM orders.OrderLines
            WHERE order_id = ANY(%s::uuid[])
            ORDER BY order_id, position;
        """, (order_ids,))
        lines: Dict[str, List[OrderItem]] = {order_id: [] for order_id in order_ids}
        for row in cursor.fetchall():
            lines[str(row["order_id"])].append(OrderItem(
                product_id=row["product_id"],
                name=row["name"],
                price=float(row["price"]),
                quantity=row["quantity"],
                size=row["size"],
                color=row["color"],
                image=row["image"],
            ))

        cursor.execute("""
            SELECT order_id, status, note, tracking_number, changed_at, changed_by
            FROM orders.OrderStatusHistory
            WHERE order_id = ANY(%s::uuid[])
            ORDER BY order_id, history_id;
        """, (order_ids,))
        history: Dict[str, List[StatusHistoryEntry]] = {order_id: [] for order_id in order_ids}
        for row in cursor.fetchall():
            history[str(row["order_id"])].append(StatusHistoryEntry(
                status=row["status"],
                note=row["note"],
                tracking_number=row["tracking_number"],
                changed_at=row["changed_at"],
                changed_by=row["changed_by"],
            ))

        return [self._row_to_order(row, lines, history) for row in headers]

    @staticmethod
    def _row_to_order(row: Dict[str, Any], lines, history) -> Order:
        order_id = str(row["order_id"])
        address = row["shipping_address"] or {}
        return Order(
            order_id=order_id,
            order_number=row["order_number"],
            user_id=row["user_id"],
            status=row["status"],
            items=lines[order_id],
            status_history=history[order_id],
            customer_info=CustomerInfo(
                name=row["customer_name"],
                email=row["customer_email"],
                phone=row["customer_phone"],
            ),
            shipping_address=ShippingAddress(
                full_name=address.get("fullName", ""),
                address=address.get("address", ""),
                city=address.get("city", ""),
                state=address.get("state", ""),
                zip_code=address.get("zipCode", ""),
                phone=address.get("phone", ""),
                country=address.get("country", ""),
            ),
            payment_method=row["payment_method"],
            payment_id=row["payment_id"],
            payment_status=row["payment_status"],
            subtotal=float(row["subtotal"]),
            shipping=float(row["shipping"]),
            tax=float(row["tax"]),
            discount=float(row["discount"]),
            total=float(row["total"]),
            tracking_number=row["tracking_number"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            delivered_at=row["delivered_at"],
        )
