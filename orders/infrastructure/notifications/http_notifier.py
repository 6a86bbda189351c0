"""Clientes de notificación para los cambios de estado de los pedidos."""

import json
import logging
from typing import Dict, Any

import requests

from orders.domain.interfaces import StatusNotifier

logger = logging.getLogger(__name__)


class HttpStatusNotifier(StatusNotifier):
    """Publica los eventos de cambio de estado en el servicio externo de notificaciones."""

    def __init__(self, base_url: str, timeout: int = 10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def notify_status_change(self, event: Dict[str, Any]) -> None:
        """
        Envía el evento a POST <base_url>/events/order-status.

        La transición ya quedó confirmada en la base de datos cuando se llama a este método,
        así que un fallo del servicio externo se registra como error y no deshace el cambio.
        """
        url = f"{self.base_url}/events/order-status"
        try:
            response = requests.post(url, json=event, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Error al notificar el cambio de estado de la orden {event.get('orderNumber')} en {url}: {e}"
            )


class LoggingStatusNotifier(StatusNotifier):
    """Receptor usado cuando no hay servicio de notificaciones configurado."""

    def notify_status_change(self, event: Dict[str, Any]) -> None:
        logger.info(f"ORDER_STATUS_EVENT: {json.dumps(event, default=str)}")
