import os


class Config:
    """Clase base de configuración, con variables de entorno para DB y reglas de despacho."""
    # Configuración de la Base de Datos (PostgreSQL)
    DB_HOST = os.environ.get('DB_HOST', 'localhost')
    DB_PORT = os.environ.get('DB_PORT', '5432')
    DB_NAME = os.environ.get('DB_NAME', 'quickcommerce_db')
    DB_USER = os.environ.get('DB_USER', 'postgres')
    DB_PASSWORD = os.environ.get('DB_PASSWORD', 'postgres')
    # Parámetros para la inicialización de la BD
    RUN_DB_INIT_ON_STARTUP = os.environ.get('RUN_DB_INIT_ON_STARTUP', 'False').lower() == 'true'
    # 'postgres' en despliegue, 'memory' para desarrollo local sin base de datos
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND', 'postgres').lower()

    # Reglas del ciclo de vida
    CANCEL_WINDOW_SECONDS = int(os.environ.get('CANCEL_WINDOW_SECONDS', '120'))
    DEFAULT_ESTIMATED_DELIVERY_MINUTES = int(os.environ.get('DEFAULT_ESTIMATED_DELIVERY_MINUTES', '10'))

    # Geocodificación inversa (Google Geocoding API)
    GEOCODING_API_KEY = os.environ.get('GEOCODING_API_KEY', '')
    GEOCODING_URL = os.environ.get('GEOCODING_URL', 'https://maps.googleapis.com/maps/api/geocode/json')
    GEOCODING_TIMEOUT = float(os.environ.get('GEOCODING_TIMEOUT', '3'))

    # Autenticación
    JWT_SECRET = os.environ.get('JWT_SECRET', 'change-me')
    JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

    # Notificaciones de cambios
    PG_NOTIFY_CHANNEL = os.environ.get('PG_NOTIFY_CHANNEL', 'order_events')
    EVENT_STREAM_HEARTBEAT_SECONDS = float(os.environ.get('EVENT_STREAM_HEARTBEAT_SECONDS', '15'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
