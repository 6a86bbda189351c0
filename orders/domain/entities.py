# orders/domain/entities.py
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

# Estados válidos del ciclo de vida de un pedido (Regla de Negocio Central)
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled", "refunded")

# Estados finales para efectos de seguimiento del envío
TERMINAL_STATUSES = ("delivered", "cancelled", "refunded")

# Secuencia sugerida para la interfaz; no se usa para rechazar transiciones
NEXT_LOGICAL_STATUS = {
    "pending": "processing",
    "processing": "shipped",
    "shipped": "delivered",
}

ORDER_STATUS_MAP = {
    "pending": {"name": "Pendiente"},
    "processing": {"name": "Procesando"},
    "shipped": {"name": "En camino"},
    "delivered": {"name": "Entregado"},
    "cancelled": {"name": "Cancelado"},
    "refunded": {"name": "Reembolsado"},
}

PAYMENT_METHODS = ("COD", "CARD")

# Ciclo de vida del cobro, independiente del estado del envío
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

INITIAL_STATUS = "pending"
INITIAL_STATUS_NOTE = "Order placed successfully"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def get_next_logical_status(current_status: str) -> Optional[str]:
    """Devuelve el siguiente estado sugerido o None si no hay uno."""
    return NEXT_LOGICAL_STATUS.get(current_status)


@dataclass
class Actor:
    """Identidad autenticada que ejecuta una acción (usuario o administrador)."""
    user_id: str
    role: str = "user"
    email: str = ""
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class OrderItem:
    """Línea de la orden: instantánea del producto al momento de la compra."""
    product_id: str
    name: str
    price: float
    quantity: int
    size: str
    color: str
    image: str = "/placeholder-image.jpg"

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "size": self.size,
            "color": self.color,
            "image": self.image,
        }


@dataclass
class CustomerInfo:
    name: str
    email: str
    phone: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}


@dataclass
class ShippingAddress:
    full_name: str
    address: str
    city: str
    state: str
    zip_code: str
    phone: str
    country: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fullName": self.full_name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "country": self.country,
            "phone": self.phone,
        }


@dataclass(frozen=True)
class StatusHistoryEntry:
    """Entrada inmutable de la bitácora de estados."""
    status: str
    note: str
    changed_at: datetime
    changed_by: Optional[str]
    tracking_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "note": self.note,
            "trackingNumber": self.tracking_number,
            "changedAt": _iso(self.changed_at),
            "changedBy": self.changed_by,
        }


@dataclass
class Order:
    """Entidad central de Pedido."""
    order_id: Optional[str]
    order_number: str
    user_id: Optional[str]
    items: List[OrderItem]
    customer_info: CustomerInfo
    shipping_address: ShippingAddress
    payment_method: str
    subtotal: float
    total: float
    shipping: float = 0.0
    tax: float = 0.0
    discount: float = 0.0
    status: str = INITIAL_STATUS
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    payment_id: Optional[str] = None
    payment_status: str = "pending"
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def status_name(self) -> str:
        return ORDER_STATUS_MAP.get(self.status, {"name": "Desconocido"})["name"]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def total_items(self) -> int:
        return sum(item.quantity or 0 for item in self.items)

    def apply_status_change(self, entry: StatusHistoryEntry) -> str:
        """
        Aplica una transición ya validada y retorna el estado anterior.
        Agrega la entrada a la bitácora y actualiza los campos derivados en un solo paso.
        """
        previous_status = self.status
        self.status_history.append(entry)
        self.status = entry.status
        if entry.tracking_number is not None:
            self.tracking_number = entry.tracking_number
        # deliveredAt solo se fija la primera vez que se entra en 'delivered'
        if entry.status == "delivered" and self.delivered_at is None:
            self.delivered_at = entry.changed_at
        self.updated_at = entry.changed_at
        return previous_status

    def apply_payment_update(self, payment_status: str, payment_id: Optional[str], changed_at: datetime) -> str:
        """Actualiza el estado del cobro sin tocar la bitácora de envío; retorna el estado anterior."""
        previous_payment_status = self.payment_status
        self.payment_status = payment_status
        if payment_id is not None:
            self.payment_id = payment_id
        self.updated_at = changed_at
        return previous_payment_status

    def customer_summary(self) -> Dict[str, Any]:
        return {
            "name": self.customer_info.name,
            "email": self.customer_info.email,
            "type": "registered" if self.user_id else "guest",
        }

    def items_summary(self) -> Dict[str, Any]:
        count = len(self.items)
        return {
            "count": self.total_items,
            "firstItem": self.items[0].to_dict() if self.items else None,
            "hasMultiple": count > 1,
            "additionalCount": count - 1 if count > 1 else 0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.order_id,
            "orderNumber": self.order_number,
            "userId": self.user_id,
            "status": self.status,
            "statusName": self.status_name,
            "statusHistory": [entry.to_dict() for entry in self.status_history],
            "items": [item.to_dict() for item in self.items],
            "customerInfo": self.customer_info.to_dict(),
            "shippingAddress": self.shipping_address.to_dict(),
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "tax": self.tax,
            "discount": self.discount,
            "total": self.total,
            "paymentMethod": self.payment_method,
            "paymentId": self.payment_id,
            "paymentStatus": self.payment_status,
            "trackingNumber": self.tracking_number,
            "totalItems": self.total_items,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "deliveredAt": _iso(self.delivered_at),
        }


@dataclass
class OrderListQuery:
    """Filtros, orden y paginación para los listados de pedidos."""
    status: Optional[str] = None
    search: Optional[str] = None
    owner_id: Optional[str] = None
    page: int = 1
    page_size: int = 10
    sort_by: str = "createdAt"
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class OrderPage:
    """Resultado paginado que devuelve el repositorio."""
    orders: List[Order]
    total: int
