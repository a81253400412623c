from datetime import datetime, timedelta

from .entities import Order, OrderStatus
from .errors import CancellationWindowExpired, InvalidState

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
DEFAULT_CANCEL_WINDOW = timedelta(minutes=2)


class CancellationPolicy:
    """Decide si un pedido puede cancelarse en este momento."""

    def __init__(self, window: timedelta = DEFAULT_CANCEL_WINDOW):
        self.window = window

    @classmethod
    def from_seconds(cls, seconds: int) -> "CancellationPolicy":
        return cls(timedelta(seconds=seconds))

    def can_cancel(self, order: Order, now: datetime) -> bool:
        if order.status not in CANCELLABLE_STATUSES:
            return False
        return now - order.created_at <= self.window

    def seconds_left(self, order: Order, now: datetime) -> int:
        """Segundos restantes de la ventana (0 si ya no se puede cancelar)."""
        if order.status not in CANCELLABLE_STATUSES:
            return 0
        remaining = self.window - (now - order.created_at)
        return max(0, int(remaining.total_seconds()))

    def ensure_can_cancel(self, order: Order, now: datetime) -> None:
        """Igual que can_cancel, pero lanza el error tipado que explica el rechazo."""
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidState(
                f"El pedido {order.order_number} ya está en '{order.status.value}' y no puede cancelarse.",
                status=order.status.value,
            )
        if now - order.created_at > self.window:
            minutes = int(self.window.total_seconds() // 60)
            raise CancellationWindowExpired(
                f"Solo puedes cancelar durante los primeros {minutes} minutos después de realizar el pedido.",
                window_seconds=int(self.window.total_seconds()),
            )
