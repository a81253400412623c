import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from .entities import Order, OrderStatus, TERMINAL_STATUSES
from .errors import InvalidTransition

logger = logging.getLogger(__name__)

# Únicas aristas permitidas del ciclo de vida
ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.DISPATCHED}),
    OrderStatus.DISPATCHED: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# La asignación manual del administrador puede saltar directo a dispatched
MANUAL_ASSIGNMENT_SOURCES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.READY_FOR_PICKUP,
})


def can_transition(current: OrderStatus, target: OrderStatus, manual_assignment: bool = False) -> bool:
    if target in ALLOWED_TRANSITIONS[current]:
        return True
    return (
        manual_assignment
        and target == OrderStatus.DISPATCHED
        and current in MANUAL_ASSIGNMENT_SOURCES
    )


def transition(order: Order, target: OrderStatus, at: datetime,
               manual_assignment: bool = False, **changes) -> Order:
    """
    Aplica una transición y retorna una copia NUEVA del pedido.
    El registro original nunca se modifica, así que un rechazo lo deja intacto.

    Los sellos de tiempo de cada etapa se fijan aquí:
    - out_for_delivery -> picked_up_at
    - delivered -> delivered_at y delivery_time_minutes
    - cancelled -> cancelled_at
    """
    current = order.status
    if not can_transition(current, target, manual_assignment):
        if current in TERMINAL_STATUSES:
            message = f"El pedido {order.order_number} está en estado final '{current.value}'."
        else:
            message = f"Transición no permitida: {current.value} -> {target.value}."
        logger.warning(f"Transición rechazada para {order.order_number}: {current.value} -> {target.value}")
        raise InvalidTransition(message, current=current.value, target=target.value)

    if target == OrderStatus.OUT_FOR_DELIVERY:
        changes.setdefault("picked_up_at", at)
    elif target == OrderStatus.DELIVERED:
        changes.setdefault("delivered_at", at)
        changes.setdefault(
            "delivery_time_minutes",
            fulfillment_minutes(order.accepted_at or order.created_at, changes["delivered_at"]),
        )
    elif target == OrderStatus.CANCELLED:
        changes.setdefault("cancelled_at", at)

    return replace(order, status=target, **changes)


def fulfillment_minutes(start: datetime, delivered_at: datetime) -> float:
    """Duración final de la entrega, en minutos con dos decimales."""
    return round((delivered_at - start).total_seconds() / 60, 2)


def next_status(current: OrderStatus) -> Optional[OrderStatus]:
    """Siguiente estado en el camino feliz (None para estados finales)."""
    forward = [s for s in ALLOWED_TRANSITIONS[current] if s != OrderStatus.CANCELLED]
    return forward[0] if forward else None
