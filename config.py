# config.py
import os


class Config:
    """Clase base de configuración, con variables de entorno para DB, autenticación y notificaciones."""
    # Configuración de la Base de Datos (PostgreSQL)
    DB_HOST = os.environ.get('DB_HOST', 'localhost')
    DB_PORT = os.environ.get('DB_PORT', '5432')
    DB_NAME = os.environ.get('DB_NAME', 'storefront_orders_db')
    DB_USER = os.environ.get('DB_USER', 'postgres')
    DB_PASSWORD = os.environ.get('DB_PASSWORD', 'postgres')
    DB_POOL_MIN = int(os.environ.get('DB_POOL_MIN', '1'))
    DB_POOL_MAX = int(os.environ.get('DB_POOL_MAX', '10'))
    # Parámetros para la inicialización de la BD
    RUN_DB_INIT_ON_STARTUP = os.environ.get('RUN_DB_INIT_ON_STARTUP', 'False').lower() == 'true'
    # 'postgres' en producción, 'memory' para desarrollo local
    ORDER_STORE = os.environ.get('ORDER_STORE', 'postgres').lower()

    # Autenticación (JWT emitido por el servicio de usuarios)
    JWT_SECRET = os.environ.get('JWT_SECRET', '')
    JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

    # Servicio externo de notificaciones (correo/SMS)
    NOTIFICATION_SERVICE_URL = os.environ.get('NOTIFICATION_SERVICE_URL', '')
    NOTIFICATION_SERVICE_TIMEOUT = int(os.environ.get('NOTIFICATION_SERVICE_TIMEOUT', '10'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    PORT = int(os.environ.get('PORT', '8080'))
