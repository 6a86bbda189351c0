# app.py
import logging

from flask import Flask, jsonify
from dotenv import load_dotenv  # Necesario para cargar variables de entorno
from flask_cors import CORS

from config import Config
from orders.application.use_cases import (
    CreateOrderUseCase, UpdateOrderStatusUseCase, ListOrdersUseCase, GetMyOrdersUseCase,
    GetOrderByIdUseCase, GetOrderStatsUseCase, DeleteOrderUseCase, CancelOrderUseCase,
    UpdatePaymentStatusUseCase,
)
from orders.infrastructure.notifications.http_notifier import HttpStatusNotifier, LoggingStatusNotifier
from orders.infrastructure.persistence.memory_repository import InMemoryOrderRepository
from orders.infrastructure.web.flask_routes import create_api_blueprint, create_admin_blueprint

# Cargar variables de entorno del archivo .env (si existe)
load_dotenv()

logger = logging.getLogger(__name__)


def build_repository(config):
    """Selecciona la implementación del almacén de órdenes según ORDER_STORE."""
    if config.get('ORDER_STORE') == 'memory':
        logger.warning("Usando el almacén de órdenes en memoria; los datos no se persisten.")
        return InMemoryOrderRepository()

    from orders.infrastructure.persistence.db_connector import init_db_pool
    from orders.infrastructure.persistence.db_initializer import initialize_database
    from orders.infrastructure.persistence.pg_repository import PgOrderRepository

    # Un fallo aquí detiene el arranque: sin pool todas las peticiones fallarían
    init_db_pool()
    initialize_database()
    return PgOrderRepository()


def build_notifier(config):
    url = config.get('NOTIFICATION_SERVICE_URL')
    if url:
        return HttpStatusNotifier(url, timeout=config.get('NOTIFICATION_SERVICE_TIMEOUT', 10))
    return LoggingStatusNotifier()


def create_app(order_repository=None, notifier=None, config_overrides=None):
    """Crea, configura y cablea la aplicación Flask siguiendo la Arquitectura Limpia."""

    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # --- CABLEADO DE DEPENDENCIAS (Dependency Injection - DI) ---

    # 1. Infraestructura de Persistencia y Notificaciones
    order_repository = order_repository or build_repository(app.config)
    notifier = notifier or build_notifier(app.config)

    # 2. Capa de Aplicación (Use Cases)
    update_status_case = UpdateOrderStatusUseCase(order_repository, notifier)
    list_case = ListOrdersUseCase(order_repository)

    # Configurar CORS
    CORS(app, resources={
        r"/*": {
            "origins": "*",
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With", "x-auth-token"]
        }
    })

    # 3. Capa de Presentación (Web)
    api_bp = create_api_blueprint(
        CreateOrderUseCase(order_repository),
        list_case,
        GetMyOrdersUseCase(order_repository),
        GetOrderByIdUseCase(order_repository),
        CancelOrderUseCase(order_repository, update_status_case),
    )
    admin_bp = create_admin_blueprint(
        list_case,
        update_status_case,
        GetOrderStatsUseCase(order_repository),
        DeleteOrderUseCase(order_repository),
        UpdatePaymentStatusUseCase(order_repository),
    )
    app.register_blueprint(api_bp, url_prefix='/orders')
    app.register_blueprint(admin_bp, url_prefix='/admin')

    # --- Ruta de control ---
    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=Config.PORT, debug=False)
