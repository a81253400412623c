"""
Notificaciones de cambios entre procesos con LISTEN/NOTIFY de PostgreSQL.

Cada worker publica con pg_notify al confirmar una transición y un hilo
escucha el canal para reenviar los eventos al bus local, así todos los
suscriptores (tableros, seguimiento) los reciben sin importar qué worker
atendió la petición.
"""
import json
import logging
import select
import threading

import psycopg2
import psycopg2.extensions
from psycopg2 import sql

from quickcommerce.config import Config
from quickcommerce.domain.events import OrderEvent
from quickcommerce.domain.interfaces import OrderEventPublisher
from quickcommerce.infrastructure.persistence.db_connector import get_connection, release_connection

logger = logging.getLogger(__name__)


class PgNotifyPublisher(OrderEventPublisher):

    def __init__(self, channel: str = None):
        self.channel = channel or Config.PG_NOTIFY_CHANNEL

    def publish(self, event: OrderEvent) -> None:
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor()
            cursor.execute("SELECT pg_notify(%s, %s);", (self.channel, json.dumps(event.to_dict())))
            conn.commit()
        except (psycopg2.Error, ConnectionError) as e:
            # La transición ya está confirmada; los lectores pueden recuperar el estado con GET
            logger.error(f"No se pudo notificar el cambio de {event.order_number}: {e}")
            if conn:
                conn.rollback()
        finally:
            if conn:
                release_connection(conn)


class PgOrderListener:
    """Hilo que hace LISTEN sobre el canal y reenvía cada evento al publicador local."""

    def __init__(self, target: OrderEventPublisher, channel: str = None, poll_timeout: float = 5.0):
        self.target = target
        self.channel = channel or Config.PG_NOTIFY_CHANNEL
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._thread = None
        self._conn = None

    def _connect(self):
        conn = psycopg2.connect(
            host=Config.DB_HOST,
            port=Config.DB_PORT,
            database=Config.DB_NAME,
            user=Config.DB_USER,
            password=Config.DB_PASSWORD,
        )
        conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
        cursor = conn.cursor()
        cursor.execute(sql.SQL("LISTEN {};").format(sql.Identifier(self.channel)))
        return conn

    def handle_payload(self, payload: str) -> None:
        try:
            event = OrderEvent.from_dict(json.loads(payload))
        except (ValueError, KeyError) as e:
            logger.warning(f"Notificación inválida en {self.channel}: {e}")
            return
        self.target.publish(event)

    def _run(self):
        while not self._stop.is_set():
            try:
                if self._conn is None:
                    self._conn = self._connect()
                    logger.info(f"Escuchando notificaciones en el canal {self.channel}.")
                if select.select([self._conn], [], [], self.poll_timeout) == ([], [], []):
                    continue
                self._conn.poll()
                while self._conn.notifies:
                    notify = self._conn.notifies.pop(0)
                    self.handle_payload(notify.payload)
            except (psycopg2.Error, OSError) as e:
                # OSError: select sobre un socket que el servidor ya cerró
                logger.error(f"Conexión de notificaciones perdida: {e}. Reintentando...")
                self._close_connection()
                self._stop.wait(self.poll_timeout)

    def _close_connection(self):
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg2.Error:
                pass
            self._conn = None

    def start(self):
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="pg-order-listener", daemon=True)
            self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_timeout + 1)
            self._thread = None
        self._close_connection()
