# orders/domain/interfaces.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple
from .entities import Order, OrderListQuery, OrderPage, StatusHistoryEntry


class OrderRepository(ABC):
    """
    Contrato (Interfaz) para la capa de acceso a datos de Pedidos.
    La capa de Aplicación solo conoce esta Interfaz, no la implementación.
    """

    @abstractmethod
    def insert_order(self, order: Order) -> Order:
        """Inserta la orden junto con su primera entrada de bitácora en una sola operación."""
        pass

    @abstractmethod
    def get_order_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    def apply_status_change(self, order_id: str, entry: StatusHistoryEntry,
                            disallowed_from: Tuple[str, ...] = ()) -> Optional[Tuple[Order, str]]:
        """
        Agrega la entrada a la bitácora y actualiza el estado como una escritura atómica.
        Retorna (orden actualizada, estado anterior) o None si la orden no existe.
        Si el estado actual, leído bajo el mismo bloqueo, está en disallowed_from,
        lanza ConflictError sin escribir nada.
        """
        pass

    @abstractmethod
    def update_payment_status(self, order_id: str, payment_status: str, payment_id: Optional[str],
                              changed_at: datetime) -> Optional[Tuple[Order, str]]:
        """Retorna (orden actualizada, estado de pago anterior) o None si la orden no existe."""
        pass

    @abstractmethod
    def list_orders(self, query: OrderListQuery) -> OrderPage:
        pass

    @abstractmethod
    def get_orders_by_user_id(self, user_id: str) -> List[Order]:
        """Recupera los pedidos de un cliente, más recientes primero."""
        pass

    @abstractmethod
    def count_by_status(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        pass

    @abstractmethod
    def total_by_status(self, owner_id: Optional[str] = None) -> Dict[str, float]:
        """Suma de 'total' agrupada por estado."""
        pass

    @abstractmethod
    def get_revenue(self, statuses: Tuple[str, ...] = ("delivered",)) -> float:
        pass

    @abstractmethod
    def get_recent_orders(self, limit: int = 5) -> List[Order]:
        pass

    @abstractmethod
    def delete_order(self, order_id: str) -> bool:
        pass


class StatusNotifier(ABC):
    """Receptor externo de eventos de cambio de estado (correo, SMS, auditoría)."""

    @abstractmethod
    def notify_status_change(self, event: Dict[str, Any]) -> None:
        pass
