"""
Temporizador de promesa de entrega (SLA).

Cálculo puro sobre los sellos de tiempo del pedido: no guarda estado ni
modifica el registro. Lo consultan la vista de seguimiento del cliente,
la consola de administración y las alertas de pedidos vencidos.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .entities import Order, OrderStatus

TIMER_RUNNING = "running"
TIMER_FROZEN = "frozen"
TIMER_CANCELLED = "cancelled"


@dataclass(frozen=True)
class SlaSnapshot:
    elapsed_seconds: int
    remaining_seconds: int
    is_overdue: bool
    state: str
    partner_remaining_seconds: Optional[int] = None

    @property
    def elapsed(self) -> str:
        return format_clock(self.elapsed_seconds)

    @property
    def remaining(self) -> str:
        return format_clock(self.remaining_seconds)

    @property
    def partner_remaining(self) -> Optional[str]:
        if self.partner_remaining_seconds is None:
            return None
        return format_clock(self.partner_remaining_seconds)


def format_clock(seconds: int) -> str:
    """MM:SS con minutos enteros. Los valores negativos se muestran como 00:00."""
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def evaluate(order: Order, now: datetime) -> SlaSnapshot:
    """
    elapsed = fin − inicio, donde inicio es accepted_at (o created_at) y fin es
    `now`, o el momento de entrega/cancelación cuando el reloj ya se detuvo.
    """
    reference_start = order.accepted_at or order.created_at
    promise_seconds = order.estimated_delivery_minutes * 60

    if order.status == OrderStatus.CANCELLED:
        end = order.cancelled_at or reference_start
        state = TIMER_CANCELLED
    elif order.delivered_at is not None:
        end = order.delivered_at
        state = TIMER_FROZEN
    else:
        end = now
        state = TIMER_RUNNING

    elapsed = int((end - reference_start).total_seconds())
    remaining = promise_seconds - elapsed
    is_overdue = remaining < 0 and not order.is_terminal

    partner_remaining = None
    if order.accepted_at is not None and state == TIMER_RUNNING:
        # Lo que quedaba de la promesa al aceptar, menos lo consumido por el repartidor
        used_before_accept = (order.accepted_at - order.created_at).total_seconds()
        used_by_partner = (now - order.accepted_at).total_seconds()
        partner_remaining = max(0, int(promise_seconds - used_before_accept - used_by_partner))

    return SlaSnapshot(
        elapsed_seconds=elapsed,
        remaining_seconds=remaining,
        is_overdue=is_overdue,
        state=state,
        partner_remaining_seconds=partner_remaining,
    )
