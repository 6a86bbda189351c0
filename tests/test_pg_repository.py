from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from orders.domain.entities import OrderListQuery, StatusHistoryEntry
from orders.domain.errors import ConflictError, RepositoryError
from orders.infrastructure.persistence.pg_repository import PgOrderRepository
from conftest import make_order

ORDER_UUID = "7b0c1a52-3f4e-4c3b-9f2d-0a1b2c3d4e5f"
CHANGED_AT = datetime(2025, 2, 1, 9, 0, tzinfo=timezone.utc)


def _header_row(status="shipped"):
    return {
        "order_id": ORDER_UUID, "order_number": "ORD-1", "user_id": "user-1", "status": status,
        "customer_name": "Ana Gómez", "customer_email": "ana@example.com", "customer_phone": "",
        "shipping_address": {"fullName": "Ana Gómez", "address": "Calle 1", "city": "Bogotá",
                             "state": "Cundinamarca", "zipCode": "110111", "phone": "300"},
        "payment_method": "COD", "payment_id": None, "payment_status": "pending",
        "subtotal": Decimal("100.00"), "shipping": Decimal("5.99"), "tax": Decimal("8.50"),
        "discount": Decimal("0"), "total": Decimal("114.49"), "tracking_number": "TRK123",
        "created_at": CHANGED_AT, "updated_at": CHANGED_AT, "delivered_at": None,
    }


def _line_row():
    return {"order_id": ORDER_UUID, "product_id": "p1", "name": "Camisa", "price": Decimal("100.00"),
            "quantity": 1, "size": "M", "color": "Azul", "image": "/img/a.jpg"}


def _history_rows():
    return [
        {"order_id": ORDER_UUID, "status": "pending", "note": "Order placed successfully",
         "tracking_number": None, "changed_at": CHANGED_AT, "changed_by": None},
        {"order_id": ORDER_UUID, "status": "shipped", "note": "",
         "tracking_number": "TRK123", "changed_at": CHANGED_AT, "changed_by": "admin-1"},
    ]


# --- Fixtures y Mocks Centrales ---

@pytest.fixture
def mock_db_connection():
    """Retorna un objeto MagicMock que simula una conexión de base de datos."""
    mock_conn = MagicMock()
    mock_cursor = MagicMock()
    # Al llamar a conn.cursor(), devuelve el mock_cursor
    mock_conn.cursor.return_value = mock_cursor
    return mock_conn


@pytest.fixture
def pg_repo_with_mocks(mock_db_connection):
    """
    Crea una instancia de PgOrderRepository y 'mockea' las funciones
    get_connection y release_connection.
    """
    with patch(
            'orders.infrastructure.persistence.pg_repository.get_connection',
            return_value=mock_db_connection
    ) as get_conn_mock:
        with patch(
                'orders.infrastructure.persistence.pg_repository.release_connection'
        ) as release_conn_mock:
            repo = PgOrderRepository()

            repo.get_connection_mock = get_conn_mock
            repo.release_connection_mock = release_conn_mock
            repo.conn_mock = mock_db_connection
            repo.cursor_mock = mock_db_connection.cursor.return_value

            yield repo


def _executed_sql(cursor_mock):
    return [call.args[0] for call in cursor_mock.execute.call_args_list]


@patch('orders.infrastructure.persistence.pg_repository.extras.execute_batch')
def test_insert_order_writes_header_lines_and_history_in_one_transaction(mock_batch, pg_repo_with_mocks):
    order = make_order(None)
    pg_repo_with_mocks.cursor_mock.fetchone.return_value = {"order_id": ORDER_UUID}

    created = pg_repo_with_mocks.insert_order(order)

    assert created.order_id == ORDER_UUID
    mock_batch.assert_called_once()
    statements = _executed_sql(pg_repo_with_mocks.cursor_mock)
    assert any("INSERT INTO orders.Orders" in sql for sql in statements)
    assert any("INSERT INTO orders.OrderStatusHistory" in sql for sql in statements)
    pg_repo_with_mocks.conn_mock.commit.assert_called_once()
    pg_repo_with_mocks.release_connection_mock.assert_called_once_with(pg_repo_with_mocks.conn_mock)


def test_insert_order_db_error(pg_repo_with_mocks):
    """
    Verifica que se lance RepositoryError cuando ocurre psycopg2.Error y que la conexión se libere.
    """
    pg_repo_with_mocks.cursor_mock.execute.side_effect = psycopg2.Error("Simulated DB error")

    with pytest.raises(RepositoryError, match="Database error during order insertion."):
        pg_repo_with_mocks.insert_order(make_order(None))

    pg_repo_with_mocks.conn_mock.rollback.assert_called_once()
    pg_repo_with_mocks.conn_mock.commit.assert_not_called()
    pg_repo_with_mocks.release_connection_mock.assert_called_once_with(pg_repo_with_mocks.conn_mock)


def test_apply_status_change_locks_updates_and_appends(pg_repo_with_mocks):
    cursor = pg_repo_with_mocks.cursor_mock
    cursor.fetchone.return_value = {"status": "processing"}
    cursor.fetchall.side_effect = [[_header_row()], [_line_row()], _history_rows()]
    entry = StatusHistoryEntry(status="shipped", note="", tracking_number="TRK123",
                               changed_at=CHANGED_AT, changed_by="admin-1")

    order, previous_status = pg_repo_with_mocks.apply_status_change(ORDER_UUID, entry)

    assert previous_status == "processing"
    assert order.status == "shipped"
    assert order.status == order.status_history[-1].status
    assert order.tracking_number == "TRK123"
    assert order.total == 114.49
    assert order.items[0].price == 100.0

    statements = _executed_sql(cursor)
    assert "FOR UPDATE" in statements[0]
    assert "delivered_at IS NULL" in statements[1]
    assert "INSERT INTO orders.OrderStatusHistory" in statements[2]
    pg_repo_with_mocks.conn_mock.commit.assert_called_once()


def test_apply_status_change_missing_order(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.fetchone.return_value = None
    entry = StatusHistoryEntry(status="shipped", note="", changed_at=CHANGED_AT, changed_by="admin-1")

    assert pg_repo_with_mocks.apply_status_change(ORDER_UUID, entry) is None
    pg_repo_with_mocks.conn_mock.commit.assert_not_called()
    pg_repo_with_mocks.conn_mock.rollback.assert_called_once()


def test_apply_status_change_db_error_rolls_back_both_writes(pg_repo_with_mocks):
    cursor = pg_repo_with_mocks.cursor_mock
    cursor.fetchone.return_value = {"status": "processing"}
    # Falla la inserción en la bitácora después del UPDATE
    cursor.execute.side_effect = [None, None, psycopg2.Error("insert failed")]
    entry = StatusHistoryEntry(status="shipped", note="", changed_at=CHANGED_AT, changed_by="admin-1")

    with pytest.raises(RepositoryError):
        pg_repo_with_mocks.apply_status_change(ORDER_UUID, entry)

    pg_repo_with_mocks.conn_mock.commit.assert_not_called()
    pg_repo_with_mocks.conn_mock.rollback.assert_called_once()


def test_malformed_id_is_treated_as_missing(pg_repo_with_mocks):
    entry = StatusHistoryEntry(status="shipped", note="", changed_at=CHANGED_AT, changed_by="admin-1")

    assert pg_repo_with_mocks.get_order_by_id("no-es-uuid") is None
    assert pg_repo_with_mocks.apply_status_change("no-es-uuid", entry) is None
    assert pg_repo_with_mocks.delete_order("no-es-uuid") is False
    pg_repo_with_mocks.get_connection_mock.assert_not_called()


def test_list_orders_builds_safe_query(pg_repo_with_mocks):
    cursor = pg_repo_with_mocks.cursor_mock
    cursor.fetchone.return_value = {"total": 25}
    cursor.fetchall.return_value = []
    query = OrderListQuery(status="shipped", search="50%_off", owner_id="user-1",
                           page=2, page_size=10, sort_by="total", sort_order="asc")

    page = pg_repo_with_mocks.list_orders(query)

    assert page.total == 25
    assert page.orders == []
    count_sql, count_params = cursor.execute.call_args_list[0].args
    assert "COUNT(*)" in count_sql
    assert count_params[:2] == ("shipped", "user-1")
    assert count_params[2] == "%50\\%\\_off%"
    list_sql, list_params = cursor.execute.call_args_list[1].args
    assert "ORDER BY o.total ASC, o.order_id ASC LIMIT %s OFFSET %s" in list_sql
    assert list_params[-2:] == (10, 10)


def test_count_by_status(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.fetchall.return_value = [
        {"status": "pending", "count": 2}, {"status": "delivered", "count": 3},
    ]
    assert pg_repo_with_mocks.count_by_status() == {"pending": 2, "delivered": 3}


def test_count_by_status_error_propagates(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.execute.side_effect = psycopg2.Error("timeout")
    with pytest.raises(RepositoryError, match="status breakdown"):
        pg_repo_with_mocks.count_by_status("user-1")


def test_get_revenue(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.fetchone.return_value = {"revenue": Decimal("250.50")}
    assert pg_repo_with_mocks.get_revenue() == 250.50


def test_delete_order(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.fetchone.return_value = {"order_id": ORDER_UUID}
    assert pg_repo_with_mocks.delete_order(ORDER_UUID) is True
    pg_repo_with_mocks.conn_mock.commit.assert_called_once()


def test_apply_status_change_guard_is_checked_under_lock(pg_repo_with_mocks):
    cursor = pg_repo_with_mocks.cursor_mock
    cursor.fetchone.return_value = {"status": "delivered"}
    entry = StatusHistoryEntry(status="cancelled", note="", changed_at=CHANGED_AT, changed_by="user-1")

    with pytest.raises(ConflictError):
        pg_repo_with_mocks.apply_status_change(ORDER_UUID, entry, disallowed_from=("delivered", "cancelled"))

    statements = _executed_sql(cursor)
    assert len(statements) == 1
    assert "FOR UPDATE" in statements[0]
    pg_repo_with_mocks.conn_mock.rollback.assert_called_once()
    pg_repo_with_mocks.conn_mock.commit.assert_not_called()
    pg_repo_with_mocks.release_connection_mock.assert_called_once_with(pg_repo_with_mocks.conn_mock)


def test_update_payment_status(pg_repo_with_mocks):
    cursor = pg_repo_with_mocks.cursor_mock
    cursor.fetchone.return_value = {"payment_status": "pending"}
    paid_row = dict(_header_row(), payment_status="paid", payment_id="pi_1")
    cursor.fetchall.side_effect = [[paid_row], [_line_row()], _history_rows()]

    order, previous = pg_repo_with_mocks.update_payment_status(ORDER_UUID, "paid", "pi_1", CHANGED_AT)

    assert previous == "pending"
    assert order.payment_status == "paid"
    statements = _executed_sql(cursor)
    assert "FOR UPDATE" in statements[0]
    assert "payment_id = COALESCE(%s, payment_id)" in statements[1]
    # La bitácora de envío no se toca
    assert not any("OrderStatusHistory (" in sql for sql in statements)
    pg_repo_with_mocks.conn_mock.commit.assert_called_once()


def test_update_payment_status_missing_order(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.fetchone.return_value = None
    assert pg_repo_with_mocks.update_payment_status(ORDER_UUID, "paid", None, CHANGED_AT) is None
    assert pg_repo_with_mocks.update_payment_status("no-es-uuid", "paid", None, CHANGED_AT) is None
    pg_repo_with_mocks.conn_mock.commit.assert_not_called()


def test_total_by_status(pg_repo_with_mocks):
    pg_repo_with_mocks.cursor_mock.fetchall.return_value = [
        {"status": "pending", "amount": Decimal("15.50")}, {"status": "delivered", "amount": Decimal("100.25")},
    ]
    assert pg_repo_with_mocks.total_by_status("user-1") == {"pending": 15.5, "delivered": 100.25}
    sql, params = pg_repo_with_mocks.cursor_mock.execute.call_args.args
    assert "GROUP BY status" in sql
    assert params == ("user-1",)
