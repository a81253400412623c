import json
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import errors, extras

from quickcommerce.domain.entities import (
    Coordinates, DeliveryPartner, Hub, Order, OrderItem, OrderStatus, PaymentStatus, StatusChange,
)
from quickcommerce.domain.errors import ConcurrentModification, DuplicateOrderNumber, RepositoryError
from quickcommerce.domain.interfaces import DeliveryPartnerRepository, HubRepository, OrderRepository
from .db_connector import get_connection, release_connection

logger = logging.getLogger(__name__)

ORDER_COLUMNS = """
    order_id, order_number, customer_id, status, payment_status,
    delivery_address, delivery_lat, delivery_lng, delivery_fee, promo_discount,
    total_amount, estimated_delivery_minutes, hub_id, delivery_partner_id,
    created_at, accepted_at, picked_up_at, delivered_at, cancelled_at,
    delivery_time_minutes, version
"""

HISTORY_INSERT_SQL = """
    INSERT INTO orders.OrderStatusHistory (order_id, status, previous_status, actor_id, note, changed_at)
    VALUES (%s, %s, %s, %s, %s, %s);
"""


def _insert_history(cursor, change: StatusChange) -> None:
    cursor.execute(HISTORY_INSERT_SQL, (
        change.order_id,
        change.status.value,
        change.previous_status.value if change.previous_status else None,
        change.actor_id,
        change.note,
        change.changed_at,
    ))


def _row_to_order(row: Dict[str, Any], items: List[OrderItem]) -> Order:
    minutes = row['delivery_time_minutes']
    return Order(
        id=row['order_id'],
        order_number=row['order_number'],
        customer_id=row['customer_id'],
        status=OrderStatus(row['status']),
        payment_status=PaymentStatus(row['payment_status']),
        items=tuple(items),
        delivery_address=row['delivery_address'],
        delivery_coordinates=Coordinates(row['delivery_lat'], row['delivery_lng']),
        delivery_fee=Decimal(row['delivery_fee']),
        promo_discount=Decimal(row['promo_discount']),
        total_amount=Decimal(row['total_amount']),
        estimated_delivery_minutes=row['estimated_delivery_minutes'],
        hub_id=row['hub_id'],
        delivery_partner_id=row['delivery_partner_id'],
        created_at=row['created_at'],
        accepted_at=row['accepted_at'],
        picked_up_at=row['picked_up_at'],
        delivered_at=row['delivered_at'],
        cancelled_at=row['cancelled_at'],
        delivery_time_minutes=float(minutes) if minutes is not None else None,
        version=row['version'],
    )


class PgOrderRepository(OrderRepository):
    """
    Implementación concreta que se conecta a PostgreSQL
    para obtener y persistir Pedidos usando psycopg2.
    """

    def insert_order(self, order: Order, change: StatusChange) -> Order:
        """
        Inserta un pedido (cabecera, líneas e historial inicial) en una transacción.
        """
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor()

            order_sql = f"""
                INSERT INTO orders.Orders ({ORDER_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                        %s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
            """
            cursor.execute(order_sql, (
                order.id, order.order_number, order.customer_id,
                order.status.value, order.payment_status.value,
                order.delivery_address, order.delivery_coordinates.lat, order.delivery_coordinates.lng,
                order.delivery_fee, order.promo_discount, order.total_amount,
                order.estimated_delivery_minutes, order.hub_id, order.delivery_partner_id,
                order.created_at, order.accepted_at, order.picked_up_at, order.delivered_at,
                order.cancelled_at, order.delivery_time_minutes, order.version,
            ))

            lines_insert_sql = """
                INSERT INTO orders.OrderItems (order_id, line_number, product_id, quantity, unit_price)
                VALUES (%s, %s, %s, %s, %s);
            """
            lines_data = [
                (order.id, line_number, item.product_id, item.quantity, item.unit_price)
                for line_number, item in enumerate(order.items, start=1)
            ]
            extras.execute_batch(cursor, lines_insert_sql, lines_data)
            _insert_history(cursor, change)

            conn.commit()
            return order

        except errors.UniqueViolation as e:
            # order_id es un uuid4: la única clave que choca en la práctica es order_number
            logger.warning(f"Número de pedido {order.order_number} ya registrado por otro proceso: {e}")
            if conn:
                conn.rollback()
            raise DuplicateOrderNumber(f"Order number {order.order_number} already exists.")
        except psycopg2.Error as e:
            logger.error(f"Error de base de datos al insertar el pedido {order.order_number}: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError("Database error during order insertion.")
        finally:
            if conn:
                release_connection(conn)

    def _fetch_orders(self, where: str, params: tuple, suffix: str = "") -> List[Order]:
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor(cursor_factory=extras.RealDictCursor)

            cursor.execute(f"SELECT {ORDER_COLUMNS} FROM orders.Orders {where} {suffix};", params)
            rows = cursor.fetchall()
            if not rows:
                return []

            order_ids = [row['order_id'] for row in rows]
            cursor.execute("""
                SELECT order_id, product_id, quantity, unit_price
                FROM orders.OrderItems
                WHERE order_id = ANY(%s)
                ORDER BY order_id, line_number;
            """, (order_ids,))

            items_map: Dict[str, List[OrderItem]] = {}
            for item_row in cursor.fetchall():
                items_map.setdefault(item_row['order_id'], []).append(OrderItem(
                    product_id=item_row['product_id'],
                    quantity=item_row['quantity'],
                    unit_price=Decimal(item_row['unit_price']),
                ))

            return [_row_to_order(row, items_map.get(row['order_id'], [])) for row in rows]

        except psycopg2.Error as e:
            logger.error(f"Error de base de datos al consultar pedidos: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError("Database error during order retrieval.")
        finally:
            if conn:
                release_connection(conn)

    def get_by_id(self, order_id: str) -> Optional[Order]:
        orders = self._fetch_orders("WHERE order_id = %s", (order_id,))
        return orders[0] if orders else None

    def get_by_order_number(self, order_number: str) -> Optional[Order]:
        orders = self._fetch_orders("WHERE order_number = %s", (order_number,))
        return orders[0] if orders else None

    def list_orders(self, status: Optional[OrderStatus] = None, limit: int = 100) -> List[Order]:
        return self._list_where([], (), status, limit)

    def list_by_customer(self, customer_id: str, status: Optional[OrderStatus] = None,
                         limit: int = 100) -> List[Order]:
        return self._list_where(["customer_id = %s"], (customer_id,), status, limit)

    def list_for_partner(self, partner_id: str, status: Optional[OrderStatus] = None,
                         limit: int = 100) -> List[Order]:
        visible = "(delivery_partner_id = %s OR (delivery_partner_id IS NULL AND status = %s))"
        return self._list_where([visible], (partner_id, OrderStatus.READY_FOR_PICKUP.value), status, limit)

    def _list_where(self, conditions: List[str], params: tuple,
                    status: Optional[OrderStatus], limit: int) -> List[Order]:
        if status is not None:
            conditions = conditions + ["status = %s"]
            params = params + (status.value,)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return self._fetch_orders(where, params + (limit,), "ORDER BY created_at DESC LIMIT %s")

    def compare_and_swap(self, updated: Order, expected_status: OrderStatus,
                         expected_version: int, change: StatusChange) -> Order:
        """
        UPDATE condicionado al estado y la versión leídos. Si no se actualiza
        ninguna fila, otra operación confirmó primero.
        """
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor()

            update_sql = """
                UPDATE orders.Orders SET
                    status = %s,
                    payment_status = %s,
                    delivery_partner_id = %s,
                    accepted_at = %s,
                    picked_up_at = %s,
                    delivered_at = %s,
                    cancelled_at = %s,
                    delivery_time_minutes = %s,
                    version = version + 1
                WHERE order_id = %s AND status = %s AND version = %s
                RETURNING version;
            """
            cursor.execute(update_sql, (
                updated.status.value,
                updated.payment_status.value,
                updated.delivery_partner_id,
                updated.accepted_at,
                updated.picked_up_at,
                updated.delivered_at,
                updated.cancelled_at,
                updated.delivery_time_minutes,
                updated.id,
                expected_status.value,
                expected_version,
            ))
            row = cursor.fetchone()
            if row is None:
                conn.rollback()
                logger.warning(
                    f"Compare-and-swap perdido en {updated.order_number}: "
                    f"esperado {expected_status.value}/v{expected_version}"
                )
                raise ConcurrentModification()

            _insert_history(cursor, change)
            conn.commit()

            return replace(updated, version=row[0])

        except psycopg2.Error as e:
            logger.error(f"Error de base de datos al actualizar el pedido {updated.order_number}: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError("Database error during order update.")
        finally:
            if conn:
                release_connection(conn)

    def get_status_history(self, order_id: str) -> List[StatusChange]:
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor()

            cursor.execute("""
                SELECT order_id, status, previous_status, changed_at, actor_id, note
                FROM orders.OrderStatusHistory
                WHERE order_id = %s
                ORDER BY changed_at, history_id;
            """, (order_id,))

            return [
                StatusChange(
                    order_id=row[0],
                    status=OrderStatus(row[1]),
                    previous_status=OrderStatus(row[2]) if row[2] else None,
                    changed_at=row[3],
                    actor_id=row[4],
                    note=row[5],
                )
                for row in cursor.fetchall()
            ]

        except psycopg2.Error as e:
            logger.error(f"Error de base de datos al recuperar el historial de {order_id}: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError("Database error retrieving status history.")
        finally:
            if conn:
                release_connection(conn)


class PgDeliveryPartnerRepository(DeliveryPartnerRepository):

    SELECT_SQL = """
        SELECT partner_id, name, is_online, is_kyc_verified, assigned_hub_id, created_at
        FROM orders.DeliveryPartners
    """

    @staticmethod
    def _to_partner(row) -> DeliveryPartner:
        return DeliveryPartner(
            id=row[0], name=row[1], is_online=row[2], is_kyc_verified=row[3],
            assigned_hub_id=row[4], created_at=row[5],
        )

    def _query(self, sql: str, params: tuple) -> List[DeliveryPartner]:
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return [self._to_partner(row) for row in cursor.fetchall()]
        except psycopg2.Error as e:
            logger.error(f"Error de base de datos al consultar repartidores: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError("Database error during delivery partner retrieval.")
        finally:
            if conn:
                release_connection(conn)

    def get_by_id(self, partner_id: str) -> Optional[DeliveryPartner]:
        partners = self._query(self.SELECT_SQL + " WHERE partner_id = %s;", (partner_id,))
        return partners[0] if partners else None

    def list_available(self) -> List[DeliveryPartner]:
        return self._query(
            self.SELECT_SQL + " WHERE is_online = TRUE AND is_kyc_verified = TRUE ORDER BY created_at, partner_id;",
            (),
        )


class PgHubRepository(HubRepository):

    SELECT_SQL = """
        SELECT hub_id, name, polygon, center_lat, center_lng, radius_km, is_active
        FROM orders.Darkstores
    """

    @staticmethod
    def _to_hub(row) -> Hub:
        polygon = row[2] or []
        if isinstance(polygon, str):
            polygon = json.loads(polygon)
        center = Coordinates(row[3], row[4]) if row[3] is not None and row[4] is not None else None
        return Hub(
            id=row[0],
            name=row[1],
            polygon=[Coordinates(v['lat'], v['lng']) for v in polygon],
            center=center,
            radius_km=row[5],
            is_active=row[6],
        )

    def _query(self, sql: str, params: tuple) -> List[Hub]:
        conn = None
        try:
            conn = get_connection()
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return [self._to_hub(row) for row in cursor.fetchall()]
        except psycopg2.Error as e:
            logger.error(f"Error de base de datos al consultar darkstores: {e}")
            if conn:
                conn.rollback()
            raise RepositoryError("Database error during darkstore retrieval.")
        finally:
            if conn:
                release_connection(conn)

    def get_by_id(self, hub_id: str) -> Optional[Hub]:
        hubs = self._query(self.SELECT_SQL + " WHERE hub_id = %s;", (hub_id,))
        return hubs[0] if hubs else None

    def list_active(self) -> List[Hub]:
        return self._query(self.SELECT_SQL + " WHERE is_active = TRUE ORDER BY created_at, hub_id;", ())
