"""Bus de eventos en proceso: suscripciones por pedido o globales (dashboards)."""
import logging
import queue
import threading
from typing import Dict, Optional, Set

from quickcommerce.domain.events import OrderEvent
from quickcommerce.domain.interfaces import OrderEventPublisher

logger = logging.getLogger(__name__)

ALL_ORDERS = "*"


class Subscription:
    """Cola de eventos de un suscriptor. Se cierra con close() o con `with`."""

    def __init__(self, bus: "InMemoryEventBus", key: str, max_size: int):
        self._bus = bus
        self.key = key
        self._queue: "queue.Queue[OrderEvent]" = queue.Queue(maxsize=max_size)
        self.closed = False

    def offer(self, event: OrderEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # Un suscriptor lento pierde eventos; puede recuperar el estado con GET
            logger.warning(f"Suscripción {self.key} llena, evento de {event.order_number} descartado.")

    def get(self, timeout: Optional[float] = None) -> Optional[OrderEvent]:
        """Siguiente evento o None si vence el timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class InMemoryEventBus(OrderEventPublisher):

    def __init__(self, max_queue_size: int = 100):
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._lock = threading.RLock()
        self._max_queue_size = max_queue_size

    def subscribe(self, order_id: Optional[str] = None) -> Subscription:
        key = order_id or ALL_ORDERS
        subscription = Subscription(self, key, self._max_queue_size)
        with self._lock:
            self._subscribers.setdefault(key, set()).add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.key)
            if subscribers:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[subscription.key]

    def subscriber_count(self, order_id: Optional[str] = None) -> int:
        with self._lock:
            return len(self._subscribers.get(order_id or ALL_ORDERS, ()))

    def publish(self, event: OrderEvent) -> None:
        with self._lock:
            targets = list(self._subscribers.get(event.order_id, ())) + list(self._subscribers.get(ALL_ORDERS, ()))
        for subscription in targets:
            subscription.offer(event)
        logger.debug(f"Evento {event.event_type} de {event.order_number} entregado a {len(targets)} suscriptores.")
