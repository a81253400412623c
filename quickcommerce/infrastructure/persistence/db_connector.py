import logging

import psycopg2
from psycopg2 import pool

from quickcommerce.config import Config

logger = logging.getLogger(__name__)

# Se usa un pool de conexiones para manejo eficiente en un entorno web.
# ThreadedConnectionPool porque las peticiones concurrentes comparten el pool.
db_pool = None


def init_db_pool():
    """Inicializa el pool de conexiones de PostgreSQL."""
    global db_pool
    if db_pool is None:
        try:
            db_pool = pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=10,
                host=Config.DB_HOST,
                port=Config.DB_PORT,
                database=Config.DB_NAME,
                user=Config.DB_USER,
                password=Config.DB_PASSWORD
            )
            logger.info("Pool de conexiones a la base de datos inicializado.")
        except psycopg2.Error as e:
            logger.error(f"No se pudo conectar a la base de datos. {e}")
            raise ConnectionError("Fallo en la conexión inicial a la base de datos.")


def get_connection():
    """Obtiene una conexión del pool."""
    if db_pool is None:
        raise ConnectionError("El pool de la base de datos no está inicializado.")
    return db_pool.getconn()


def release_connection(conn):
    """Devuelve una conexión al pool."""
    if db_pool:
        db_pool.putconn(conn)


def close_db_pool():
    """Cierra todas las conexiones (apagado ordenado)."""
    global db_pool
    if db_pool is not None:
        db_pool.closeall()
        db_pool = None
        logger.info("Pool de conexiones cerrado.")
