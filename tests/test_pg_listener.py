import json
from unittest.mock import MagicMock, patch

import psycopg2
from psycopg2 import sql

from quickcommerce.domain.events import EVENT_UPDATE, OrderEvent
from quickcommerce.infrastructure.events.event_bus import InMemoryEventBus
from quickcommerce.infrastructure.events.pg_listener import PgNotifyPublisher, PgOrderListener

from conftest import T0

MODULE = 'quickcommerce.infrastructure.events.pg_listener'
EVENT = OrderEvent(EVENT_UPDATE, "order-1", "ORD1", "confirmed", "pending", 2, T0)


def test_listener_forwards_to_bus():
    bus = InMemoryEventBus()
    listener = PgOrderListener(bus, channel="order_events")
    with bus.subscribe("order-1") as subscription:
        listener.handle_payload(json.dumps(EVENT.to_dict()))
        assert subscription.get(timeout=1) == EVENT


def test_listener_ignores_invalid_payload():
    target = MagicMock()
    listener = PgOrderListener(target, channel="order_events")
    listener.handle_payload("no es json")
    listener.handle_payload(json.dumps({"order_id": "order-1"}))
    target.publish.assert_not_called()


def test_publisher_uses_pg_notify():
    conn = MagicMock()
    with patch(f'{MODULE}.get_connection', return_value=conn), \
            patch(f'{MODULE}.release_connection') as release:
        PgNotifyPublisher(channel="order_events").publish(EVENT)

    sql, params = conn.cursor.return_value.execute.call_args[0]
    assert "pg_notify" in sql
    assert params[0] == "order_events"
    assert json.loads(params[1])["status"] == "confirmed"
    conn.commit.assert_called_once()
    release.assert_called_once_with(conn)


def test_publisher_swallows_database_errors():
    conn = MagicMock()
    conn.cursor.return_value.execute.side_effect = psycopg2.Error("canal inválido")
    with patch(f'{MODULE}.get_connection', return_value=conn), \
            patch(f'{MODULE}.release_connection') as release:
        PgNotifyPublisher(channel="order_events").publish(EVENT)

    conn.rollback.assert_called_once()
    release.assert_called_once_with(conn)


def test_listen_quotes_channel_identifier():
    conn = MagicMock()
    with patch(f'{MODULE}.psycopg2.connect', return_value=conn):
        PgOrderListener(MagicMock(), channel="order-events")._connect()

    statement = conn.cursor.return_value.execute.call_args[0][0]
    assert statement == sql.SQL("LISTEN {};").format(sql.Identifier("order-events"))


def test_listener_reconnects_after_socket_error():
    listener = PgOrderListener(MagicMock(), channel="order_events", poll_timeout=0)
    dropped = MagicMock()
    attempts = []

    def connect():
        attempts.append(len(attempts) + 1)
        if len(attempts) == 1:
            return dropped
        # Segundo intento: detiene el ciclo para que la prueba termine
        listener._stop.set()
        raise psycopg2.OperationalError("servidor no disponible")

    with patch.object(listener, '_connect', side_effect=connect), \
            patch(f'{MODULE}.select.select', side_effect=OSError(9, "Bad file descriptor")):
        listener._run()

    assert attempts == [1, 2]
    dropped.close.assert_called_once()
    assert listener._conn is None
