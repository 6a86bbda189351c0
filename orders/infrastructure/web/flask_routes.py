from flask import Blueprint, jsonify, request, g
from werkzeug.exceptions import HTTPException
import logging

from orders.application.queries import build_list_query
from orders.application.use_cases import (
    CreateOrderUseCase, GetMyOrdersUseCase, GetOrderByIdUseCase, CancelOrderUseCase,
    ListOrdersUseCase, UpdateOrderStatusUseCase, GetOrderStatsUseCase, DeleteOrderUseCase,
    UpdatePaymentStatusUseCase,
)
from orders.domain.errors import OrderServiceError, ValidationError
from .auth import require_auth, optional_auth, require_admin

logger = logging.getLogger(__name__)


def _json_body(optional: bool = False):
    """Cuerpo JSON como diccionario; con optional=True un cuerpo vacío equivale a {}."""
    if optional and not request.get_data():
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _register_error_handlers(bp: Blueprint):
    """Convierte los errores del dominio en respuestas JSON con un 'kind' estable."""

    @bp.errorhandler(OrderServiceError)
    def handle_service_error(error: OrderServiceError):
        if error.http_status >= 500:
            logger.error(f"Error del servicio de órdenes en {request.endpoint}: {error.message}")
        return jsonify(error.to_dict()), error.http_status

    @bp.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception(f"Error inesperado en {request.endpoint}: {error}")
        return jsonify({
            "success": False,
            "kind": "internal_error",
            "message": "Internal server error in the orders service.",
        }), 500


def create_api_blueprint(
    create_case: CreateOrderUseCase,
    list_case: ListOrdersUseCase,
    my_orders_case: GetMyOrdersUseCase,
    get_order_case: GetOrderByIdUseCase,
    cancel_case: CancelOrderUseCase
):
    """
    Función de fábrica para inyectar los Casos de Uso en el Blueprint de clientes.
    Crea un nuevo Blueprint en cada llamada para evitar conflictos en tests.
    """
    api_bp = Blueprint('orders_api', __name__)
    _register_error_handlers(api_bp)

    @api_bp.route('/', methods=['POST'], strict_slashes=False)
    @optional_auth
    def create_order():
        order = create_case.execute(_json_body(), g.actor)
        return jsonify({
            "success": True,
            "message": "Order created successfully",
            "data": {"order": order.to_dict()}
        }), 201

    @api_bp.route('/', methods=['GET'], strict_slashes=False)
    @require_auth
    def list_own_orders():
        # El filtro por dueño lo impone el servidor, no el query string
        query = build_list_query(request.args, owner_id=g.actor.user_id)
        return jsonify({"success": True, "data": list_case.execute(query)}), 200

    @api_bp.route('/my', methods=['GET'])
    @require_auth
    def get_my_orders():
        orders = my_orders_case.execute(g.actor)
        return jsonify({"success": True, "data": {"orders": orders}}), 200

    @api_bp.route('/<order_id>', methods=['GET'])
    @require_auth
    def get_order_by_id(order_id):
        order = get_order_case.execute(order_id, g.actor)
        return jsonify({"success": True, "data": {"order": order.to_dict()}}), 200

    @api_bp.route('/<order_id>', methods=['DELETE'])
    @require_auth
    def cancel_order(order_id):
        reason = _json_body(optional=True).get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError.for_field("reason", "Reason must be a string", reason)
        result = cancel_case.execute(order_id, g.actor, reason)
        return jsonify({
            "success": True,
            "message": "Order cancelled successfully",
            "data": {"order": result.order.to_dict(), "previousStatus": result.previous_status}
        }), 200

    return api_bp


def create_admin_blueprint(
    list_case: ListOrdersUseCase,
    update_status_case: UpdateOrderStatusUseCase,
    stats_case: GetOrderStatsUseCase,
    delete_case: DeleteOrderUseCase,
    payment_case: UpdatePaymentStatusUseCase
):
    """
    Función de fábrica del Blueprint de administración (panel de pedidos).
    """
    admin_bp = Blueprint('orders_admin', __name__)
    _register_error_handlers(admin_bp)

    @admin_bp.route('/orders', methods=['GET'])
    @require_admin
    def list_orders():
        query = build_list_query(request.args)
        logger.info(f"Administrador {g.actor.user_id} consulta órdenes: {dict(request.args)}")
        return jsonify({"success": True, "data": list_case.execute(query)}), 200

    @admin_bp.route('/orders/stats', methods=['GET'])
    @require_admin
    def get_order_stats():
        return jsonify({"success": True, "data": stats_case.execute()}), 200

    @admin_bp.route('/orders/<order_id>/status', methods=['PUT'])
    @require_admin
    def update_order_status(order_id):
        data = _json_body()
        result = update_status_case.execute(
            order_id,
            data.get("status"),
            g.actor,
            note=data.get("note"),
            tracking_number=data.get("trackingNumber"),
        )
        return jsonify({
            "success": True,
            "message": "Order status updated successfully",
            "data": {
                "order": result.order.to_dict(),
                "previousStatus": result.previous_status,
                "statusChanged": result.status_changed,
            }
        }), 200

    @admin_bp.route('/orders/<order_id>/payment', methods=['PUT'])
    @require_admin
    def update_payment_status(order_id):
        data = _json_body()
        result = payment_case.execute(
            order_id,
            data.get("paymentStatus"),
            g.actor,
            payment_id=data.get("paymentId"),
        )
        return jsonify({
            "success": True,
            "message": "Payment status updated successfully",
            "data": {
                "order": result.order.to_dict(),
                "previousPaymentStatus": result.previous_payment_status,
            }
        }), 200

    @admin_bp.route('/orders/<order_id>', methods=['DELETE'])
    @require_admin
    def delete_order(order_id):
        deleted = delete_case.execute(order_id, g.actor)
        return jsonify({
            "success": True,
            "message": "Order deleted successfully",
            "data": {"deletedOrder": deleted}
        }), 200

    return admin_bp
