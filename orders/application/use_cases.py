# orders/application/use_cases.py
import logging
import math
import random
import string
import time
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Tuple

from orders.domain.entities import (
    Actor, CustomerInfo, Order, OrderListQuery, ShippingAddress, StatusHistoryEntry,
    ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES, TERMINAL_STATUSES,
    INITIAL_STATUS, INITIAL_STATUS_NOTE, utc_now,
)
from orders.domain.errors import (
    ForbiddenError, InvalidStatusError, NotFoundError, ValidationError,
)
from orders.domain.interfaces import OrderRepository, StatusNotifier
from orders.domain.normalization import normalize_item
from orders.application.queries import build_pagination

logger = logging.getLogger(__name__)

TOTAL_TOLERANCE = 0.01
REQUIRED_ADDRESS_FIELDS = ("fullName", "address", "city", "state", "zipCode", "phone")


def generate_order_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def _amount(payload: Dict[str, Any], field: str, default: Optional[float] = 0.0) -> float:
    raw = payload.get(field, default)
    if raw is None:
        raw = default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError.for_field(field, f"Valid {field} amount is required", raw)
    if not math.isfinite(value) or value < 0:
        raise ValidationError.for_field(field, f"Valid {field} amount is required", raw)
    return value


def _text(raw: Dict[str, Any], name: str, field: str, numeric_ok: bool = False) -> str:
    """Lee un campo de texto; los números solo se admiten donde numeric_ok (código postal, teléfono)."""
    value = raw.get(name)
    if value is None:
        return ""
    if numeric_ok and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ValidationError.for_field(field, f"{name} must be a string", value)
    return value.strip()


class CreateOrderUseCase:
    """
    Caso de uso: Crear una nueva orden a partir del checkout.
    Congela las instantáneas de productos, cliente y dirección, valida los montos y
    siembra la bitácora con el estado inicial en la misma escritura.
    """

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, payload: Dict[str, Any], actor: Optional[Actor] = None) -> Order:
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        raw_items = payload.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError.for_field("items", "At least one item is required", raw_items)
        items = [normalize_item(raw, index) for index, raw in enumerate(raw_items)]

        shipping_address = self._shipping_address(payload.get("shippingAddress"))
        customer_info = self._customer_info(payload.get("customerInfo"), actor)

        payment_method = str(payload.get("paymentMethod") or "").upper()
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError.for_field(
                "paymentMethod", "Valid payment method is required", payload.get("paymentMethod")
            )

        # El subtotal se recalcula desde las líneas; el enviado por el cliente se ignora
        subtotal = round(sum(item.line_total for item in items), 2)
        shipping = _amount(payload, "shipping")
        tax = _amount(payload, "tax")
        discount = _amount(payload, "discount")
        total = _amount(payload, "total", default=None)

        expected_total = round(subtotal + shipping + tax - discount, 2)
        if abs(expected_total - total) > TOTAL_TOLERANCE:
            logger.warning(
                f"Total no coincide al crear la orden: calculado={expected_total}, recibido={total}"
            )
            raise ValidationError.for_field(
                "total", f"Total does not match subtotal + shipping + tax - discount ({expected_total})", total
            )

        now = utc_now()
        user_id = actor.user_id if actor else None
        order = Order(
            order_id=None,
            order_number=generate_order_number(),
            user_id=user_id,
            items=items,
            customer_info=customer_info,
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_id=_text(payload, "paymentId", "paymentId") or None,
            payment_status="pending" if payment_method == "COD" else "paid",
            subtotal=subtotal,
            shipping=shipping,
            tax=tax,
            discount=discount,
            total=round(total, 2),
            status=INITIAL_STATUS,
            status_history=[StatusHistoryEntry(
                status=INITIAL_STATUS,
                note=INITIAL_STATUS_NOTE,
                changed_at=now,
                changed_by=user_id,
            )],
            created_at=now,
            updated_at=now,
        )

        created = self.repository.insert_order(order)
        logger.info(
            f"Orden creada {created.order_number} (usuario={user_id or 'guest'}, "
            f"items={len(items)}, total={created.total})"
        )
        return created

    @staticmethod
    def _shipping_address(raw: Any) -> ShippingAddress:
        if not isinstance(raw, dict):
            raise ValidationError.for_field("shippingAddress", "Shipping address is required", raw)
        values = {
            name: _text(raw, name, f"shippingAddress.{name}", numeric_ok=name in ("zipCode", "phone"))
            for name in REQUIRED_ADDRESS_FIELDS + ("country",)
        }
        errors = [
            {"field": f"shippingAddress.{name}", "message": f"{name} is required", "value": raw.get(name)}
            for name in REQUIRED_ADDRESS_FIELDS
            if not values[name]
        ]
        if errors:
            raise ValidationError("Validation failed", errors=errors)
        return ShippingAddress(
            full_name=values["fullName"],
            address=values["address"],
            city=values["city"],
            state=values["state"],
            zip_code=values["zipCode"],
            phone=values["phone"],
            country=values["country"],
        )

    @staticmethod
    def _customer_info(raw: Any, actor: Optional[Actor]) -> CustomerInfo:
        raw = raw if isinstance(raw, dict) else {}
        name = _text(raw, "name", "customerInfo.name")
        email = _text(raw, "email", "customerInfo.email")
        phone = _text(raw, "phone", "customerInfo.phone", numeric_ok=True)
        if actor is None and (not name or not email):
            raise ValidationError(
                "Customer information (name and email) is required for guest checkout",
                errors=[{"field": "customerInfo", "message": "name and email are required"}],
            )
        email = email or (actor.email if actor else "")
        if email and "@" not in email:
            raise ValidationError.for_field("customerInfo.email", "Valid customer email is required", email)
        return CustomerInfo(
            name=name or (actor.name if actor else "") or "Unknown",
            email=email,
            phone=phone,
        )


@dataclass
class StatusUpdateResult:
    order: Order
    previous_status: str

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.order.status


class UpdateOrderStatusUseCase:
    """
    Caso de uso: Cambiar el estado de un pedido (Gestor del ciclo de vida).
    No valida la dirección de la transición: cualquier estado puede pasar a cualquier otro.
    """

    def __init__(self, order_repository: OrderRepository, notifier: Optional[StatusNotifier] = None):
        self.repository = order_repository
        self.notifier = notifier

    def execute(self, order_id: str, new_status: str, actor: Actor,
                note: Optional[str] = None, tracking_number: Optional[str] = None,
                disallowed_from: Tuple[str, ...] = ()) -> StatusUpdateResult:
        if new_status not in ORDER_STATUSES:
            raise InvalidStatusError(new_status, ORDER_STATUSES)
        if note is not None and not isinstance(note, str):
            raise ValidationError.for_field("note", "Note must be a string", note)
        if tracking_number is not None and not isinstance(tracking_number, str):
            raise ValidationError.for_field("trackingNumber", "Tracking number must be a string", tracking_number)

        entry = StatusHistoryEntry(
            status=new_status,
            note=note or "",
            tracking_number=tracking_number,
            changed_at=utc_now(),
            changed_by=actor.user_id,
        )

        result = self.repository.apply_status_change(order_id, entry, disallowed_from=disallowed_from)
        if result is None:
            raise NotFoundError("Order not found")
        order, previous_status = result

        logger.info(
            f"Estado de la orden {order.order_number} actualizado: {previous_status} -> {new_status} "
            f"(por {actor.user_id})"
        )

        if self.notifier is not None:
            self.notifier.notify_status_change({
                "orderId": order.order_id,
                "orderNumber": order.order_number,
                "previousStatus": previous_status,
                "status": new_status,
                "trackingNumber": order.tracking_number,
                "note": entry.note,
                "changedBy": entry.changed_by,
                "changedAt": entry.changed_at.isoformat(),
                "customerEmail": order.customer_info.email,
            })

        return StatusUpdateResult(order=order, previous_status=previous_status)


@dataclass
class PaymentUpdateResult:
    order: Order
    previous_payment_status: str


class UpdatePaymentStatusUseCase:
    """
    Caso de uso: Cambiar el estado del cobro (solo administradores).
    El cobro tiene su propio ciclo y no escribe en la bitácora de envío.
    """

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, order_id: str, payment_status: Any, actor: Actor,
                payment_id: Optional[str] = None) -> PaymentUpdateResult:
        if payment_status not in PAYMENT_STATUSES:
            valid = ", ".join(PAYMENT_STATUSES)
            raise ValidationError.for_field(
                "paymentStatus", f"Invalid payment status. Valid values: {valid}", payment_status
            )
        if payment_id is not None and not isinstance(payment_id, str):
            raise ValidationError.for_field("paymentId", "Payment ID must be a string", payment_id)

        result = self.repository.update_payment_status(order_id, payment_status, payment_id or None, utc_now())
        if result is None:
            raise NotFoundError("Order not found")
        order, previous = result

        logger.info(
            f"Pago de la orden {order.order_number} actualizado: {previous} -> {payment_status} "
            f"(por {actor.user_id})"
        )
        return PaymentUpdateResult(order=order, previous_payment_status=previous)


class ListOrdersUseCase:
    """
    Caso de uso: Listado paginado de pedidos para administración o para el cliente.
    Agrega los resúmenes de cliente y de productos al momento de la consulta.
    """

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, query: OrderListQuery) -> Dict[str, Any]:
        page = self.repository.list_orders(query)
        orders = []
        for order in page.orders:
            data = order.to_dict()
            data["customer"] = order.customer_summary()
            data["itemsSummary"] = order.items_summary()
            orders.append(data)
        return {"orders": orders, "pagination": build_pagination(query, page.total)}


class GetMyOrdersUseCase:
    """Caso de uso: Pedidos del usuario autenticado, más recientes primero."""

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, actor: Actor) -> List[Dict[str, Any]]:
        orders = self.repository.get_orders_by_user_id(actor.user_id)
        orders.sort(key=lambda order: order.created_at, reverse=True)
        return [order.to_dict() for order in orders]


class GetOrderByIdUseCase:

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, order_id: str, actor: Actor) -> Order:
        order = self.repository.get_order_by_id(order_id)
        # Un cliente no puede distinguir un pedido ajeno de uno inexistente
        if order is None or (not actor.is_admin and order.user_id != actor.user_id):
            raise NotFoundError("Order not found")
        return order


class GetOrderStatsUseCase:
    """
    Caso de uso: Conteos por estado e indicadores para el panel de administración.
    Los errores del repositorio se propagan; nunca se devuelven conteos en cero por defecto.
    """

    RECENT_ORDERS_LIMIT = 5

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def get_status_breakdown(self, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        counts = self.repository.count_by_status(owner_id)
        totals = self.repository.total_by_status(owner_id)
        return [
            {"_id": status, "count": counts[status], "totalAmount": round(totals.get(status, 0.0), 2)}
            for status in ORDER_STATUSES
            if counts.get(status)
        ]

    def execute(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        breakdown = self.get_status_breakdown(owner_id)
        recent = self.repository.get_recent_orders(self.RECENT_ORDERS_LIMIT)
        return {
            "totalOrders": sum(row["count"] for row in breakdown),
            "totalRevenue": round(self.repository.get_revenue(("delivered",)), 2),
            "statusBreakdown": breakdown,
            "recentOrders": [
                {
                    "_id": order.order_id,
                    "orderNumber": order.order_number,
                    "total": order.total,
                    "status": order.status,
                    "createdAt": order.created_at.isoformat() if order.created_at else None,
                    "customer": order.customer_summary(),
                }
                for order in recent
            ],
        }


class DeleteOrderUseCase:
    """Caso de uso: Eliminar un pedido (solo administradores). Los entregados no se eliminan."""

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, order_id: str, actor: Actor) -> Dict[str, Any]:
        order = self.repository.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.status == "delivered":
            logger.warning(f"Intento de eliminar la orden entregada {order.order_number} por {actor.user_id}")
            raise ValidationError("Cannot delete delivered orders. Please contact system administrator.")

        if not self.repository.delete_order(order_id):
            raise NotFoundError("Order not found")

        logger.info(f"Orden {order.order_number} eliminada por {actor.user_id}")
        return {
            "_id": order.order_id,
            "orderNumber": order.order_number,
            "userId": order.user_id,
            "total": order.total,
            "status": order.status,
        }


class CancelOrderUseCase:
    """
    Caso de uso: Cancelación solicitada por el dueño del pedido (o un administrador).
    Pasa por el gestor del ciclo de vida para que quede en la bitácora.
    """

    def __init__(self, order_repository: OrderRepository, update_status_case: UpdateOrderStatusUseCase):
        self.repository = order_repository
        self.update_status_case = update_status_case

    def execute(self, order_id: str, actor: Actor, reason: Optional[str] = None) -> StatusUpdateResult:
        order = self.repository.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not actor.is_admin and order.user_id != actor.user_id:
            raise ForbiddenError("Not authorized to cancel this order")
        if order.is_terminal:
            raise ValidationError("Order cannot be cancelled in current status")

        # La misma condición se repite bajo el bloqueo de la escritura por si el estado cambió entre medio
        return self.update_status_case.execute(
            order_id, "cancelled", actor, note=reason or "Cancelled by customer",
            disallowed_from=TERMINAL_STATUSES,
        )
