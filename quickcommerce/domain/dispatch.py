import logging
from datetime import datetime
from typing import Callable, List, Optional

from .entities import DeliveryPartner, Order, OrderStatus
from .errors import AlreadyAssigned, InvalidState, PartnerUnavailable
from .state_machine import MANUAL_ASSIGNMENT_SOURCES, transition

logger = logging.getLogger(__name__)

# Estrategia de selección: recibe candidatos elegibles y el pedido, retorna uno o None
SelectionStrategy = Callable[[List[DeliveryPartner], Order], Optional[DeliveryPartner]]


def first_registered(candidates: List[DeliveryPartner], order: Order) -> Optional[DeliveryPartner]:
    """Primer repartidor por fecha de registro (desempate por id)."""
    if not candidates:
        return None
    return min(candidates, key=lambda p: (
        p.created_at is None,
        p.created_at.timestamp() if p.created_at else 0.0,
        p.id,
    ))


def same_hub_first(candidates: List[DeliveryPartner], order: Order) -> Optional[DeliveryPartner]:
    """Prefiere repartidores asignados al hub del pedido; si no hay, cualquiera."""
    local = [p for p in candidates if order.hub_id and p.assigned_hub_id == order.hub_id]
    return first_registered(local, order) or first_registered(candidates, order)


class DispatchEngine:
    """
    Reglas de asignación de repartidor. No toca persistencia: recibe el
    pedido leído y retorna la versión nueva que el caso de uso confirma con
    compare-and-swap.
    """

    def __init__(self, strategy: SelectionStrategy = first_registered):
        self.strategy = strategy

    @staticmethod
    def _ensure_unassigned(order: Order) -> None:
        if order.delivery_partner_id is not None:
            raise AlreadyAssigned(
                f"El pedido {order.order_number} ya está asignado al repartidor {order.delivery_partner_id}.",
                delivery_partner_id=order.delivery_partner_id,
            )

    def ensure_dispatchable(self, order: Order) -> None:
        self._ensure_unassigned(order)
        if order.status != OrderStatus.READY_FOR_PICKUP:
            raise InvalidState(
                f"Solo se despachan pedidos en ready_for_pickup (actual: {order.status.value}).",
                status=order.status.value,
            )

    def dispatch(self, order: Order, candidates: List[DeliveryPartner], now: datetime) -> Optional[Order]:
        """
        Asigna automáticamente un repartidor elegible a un pedido listo.
        Retorna None si no hay candidatos: el pedido sigue en ready_for_pickup
        visible para que un repartidor lo acepte.
        """
        self.ensure_dispatchable(order)

        eligible = [p for p in candidates if p.is_available]
        partner = self.strategy(eligible, order)
        if partner is None:
            logger.info(f"Sin repartidores disponibles para {order.order_number}; queda en ready_for_pickup.")
            return None

        return transition(
            order, OrderStatus.DISPATCHED, now,
            delivery_partner_id=partner.id, accepted_at=now,
        )

    def assign_manually(self, order: Order, partner: DeliveryPartner, now: datetime) -> Order:
        """Asignación del administrador: no exige que el repartidor esté en línea."""
        self._ensure_unassigned(order)
        if order.status not in MANUAL_ASSIGNMENT_SOURCES:
            raise InvalidState(
                f"No se puede asignar un pedido en estado '{order.status.value}'.",
                status=order.status.value,
            )
        return transition(
            order, OrderStatus.DISPATCHED, now, manual_assignment=True,
            delivery_partner_id=partner.id, accepted_at=now,
        )

    def accept(self, order: Order, partner: DeliveryPartner, now: datetime) -> Order:
        """Autoasignación: el repartidor toma un pedido listo sin asignar."""
        self._ensure_unassigned(order)
        if order.status != OrderStatus.READY_FOR_PICKUP:
            raise InvalidState(
                f"Solo se pueden aceptar pedidos en ready_for_pickup (actual: {order.status.value}).",
                status=order.status.value,
            )
        if not partner.is_available:
            raise PartnerUnavailable(partner_id=partner.id)
        return transition(
            order, OrderStatus.DISPATCHED, now,
            delivery_partner_id=partner.id, accepted_at=now,
        )
