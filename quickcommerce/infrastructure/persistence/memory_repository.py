"""
Implementaciones en memoria de los repositorios.

Se usan en desarrollo local (STORAGE_BACKEND=memory) y en pruebas. Tienen la
misma semántica de compare-and-swap que la implementación de PostgreSQL.
"""
import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from quickcommerce.domain.entities import DeliveryPartner, Hub, Order, OrderStatus, StatusChange
from quickcommerce.domain.errors import ConcurrentModification, DuplicateOrderNumber, NotFound
from quickcommerce.domain.interfaces import DeliveryPartnerRepository, HubRepository, OrderRepository

logger = logging.getLogger(__name__)


class InMemoryOrderRepository(OrderRepository):

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._by_number: Dict[str, str] = {}
        self._history: Dict[str, List[StatusChange]] = {}
        self._lock = threading.Lock()

    def insert_order(self, order: Order, change: StatusChange) -> Order:
        with self._lock:
            if order.id in self._orders:
                raise ValueError(f"El pedido {order.id} ya existe.")
            if order.order_number in self._by_number:
                raise DuplicateOrderNumber(f"El número de pedido {order.order_number} ya existe.")
            self._orders[order.id] = order
            self._by_number[order.order_number] = order.id
            self._history[order.id] = [change]
            return order

    def get_by_id(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(order_id)

    def get_by_order_number(self, order_number: str) -> Optional[Order]:
        with self._lock:
            order_id = self._by_number.get(order_number)
            return self._orders.get(order_id) if order_id else None

    def list_orders(self, status: Optional[OrderStatus] = None, limit: int = 100) -> List[Order]:
        return self._select(lambda o: True, status, limit)

    def list_by_customer(self, customer_id: str, status: Optional[OrderStatus] = None,
                         limit: int = 100) -> List[Order]:
        return self._select(lambda o: o.customer_id == customer_id, status, limit)

    def list_for_partner(self, partner_id: str, status: Optional[OrderStatus] = None,
                         limit: int = 100) -> List[Order]:
        return self._select(
            lambda o: o.delivery_partner_id == partner_id or (
                o.delivery_partner_id is None and o.status == OrderStatus.READY_FOR_PICKUP
            ),
            status, limit,
        )

    def _select(self, predicate, status: Optional[OrderStatus], limit: int) -> List[Order]:
        with self._lock:
            orders = [o for o in self._orders.values()
                      if predicate(o) and (status is None or o.status == status)]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    def compare_and_swap(self, updated: Order, expected_status: OrderStatus,
                         expected_version: int, change: StatusChange) -> Order:
        with self._lock:
            current = self._orders.get(updated.id)
            if current is None:
                raise NotFound(f"No existe el pedido {updated.id}.")
            if current.status != expected_status or current.version != expected_version:
                logger.warning(
                    f"Compare-and-swap perdido en {current.order_number}: "
                    f"esperado {expected_status.value}/v{expected_version}, "
                    f"actual {current.status.value}/v{current.version}"
                )
                raise ConcurrentModification(
                    current_status=current.status.value, current_version=current.version,
                )
            committed = replace(updated, version=expected_version + 1)
            self._orders[updated.id] = committed
            self._history[updated.id].append(change)
            return committed

    def get_status_history(self, order_id: str) -> List[StatusChange]:
        with self._lock:
            return list(self._history.get(order_id, []))


class InMemoryDeliveryPartnerRepository(DeliveryPartnerRepository):

    def __init__(self, partners: Iterable[DeliveryPartner] = ()):
        self._partners: Dict[str, DeliveryPartner] = {p.id: p for p in partners}
        self._lock = threading.Lock()

    def save(self, partner: DeliveryPartner) -> None:
        with self._lock:
            self._partners[partner.id] = partner

    def get_by_id(self, partner_id: str) -> Optional[DeliveryPartner]:
        with self._lock:
            return self._partners.get(partner_id)

    def list_available(self) -> List[DeliveryPartner]:
        # El orden de inserción hace las veces de orden de registro
        with self._lock:
            return [p for p in self._partners.values() if p.is_available]


class InMemoryHubRepository(HubRepository):

    def __init__(self, hubs: Iterable[Hub] = ()):
        self._hubs: Dict[str, Hub] = {h.id: h for h in hubs}

    def get_by_id(self, hub_id: str) -> Optional[Hub]:
        return self._hubs.get(hub_id)

    def list_active(self) -> List[Hub]:
        return [h for h in self._hubs.values() if h.is_active]
