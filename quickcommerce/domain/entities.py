import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple


class OrderStatus(str, Enum):
    """Estados posibles de un pedido dentro del ciclo de vida."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    READY_FOR_PICKUP = "ready_for_pickup"
    DISPATCHED = "dispatched"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    DELIVERY_PARTNER = "delivery_partner"


# Progreso mostrado al cliente por estado (solo presentación, no es estado autoritativo)
ORDER_PROGRESS_MAP = {
    OrderStatus.PENDING: 10,
    OrderStatus.CONFIRMED: 25,
    OrderStatus.READY_FOR_PICKUP: 40,
    OrderStatus.DISPATCHED: 60,
    OrderStatus.OUT_FOR_DELIVERY: 80,
    OrderStatus.DELIVERED: 100,
    OrderStatus.CANCELLED: 0,
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

ORDER_NUMBER_PREFIX = "ORD"


@dataclass(frozen=True)
class Coordinates:
    """Punto geográfico (latitud, longitud) en grados decimales."""
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitud fuera de rango: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Longitud fuera de rango: {self.lng}")

    def as_label(self) -> str:
        """Representación de respaldo cuando no hay dirección legible."""
        return f"{self.lat:.6f}, {self.lng:.6f}"


@dataclass(frozen=True)
class OrderItem:
    """Línea de un pedido. Cantidad y precio no cambian después de la creación."""
    product_id: str
    quantity: int
    unit_price: Decimal

    def __post_init__(self):
        if not self.product_id:
            raise ValueError("product_id es obligatorio")
        if self.quantity < 1:
            raise ValueError("La cantidad debe ser al menos 1")
        if self.unit_price < 0:
            raise ValueError("El precio unitario no puede ser negativo")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Order:
    """Entidad central de Pedido (raíz del agregado, dueña de sus líneas)."""
    id: str
    order_number: str
    customer_id: str
    status: OrderStatus
    items: Tuple[OrderItem, ...]
    delivery_address: str
    delivery_coordinates: Coordinates
    delivery_fee: Decimal
    promo_discount: Decimal
    total_amount: Decimal
    created_at: datetime
    payment_status: PaymentStatus = PaymentStatus.PENDING
    estimated_delivery_minutes: int = 10
    hub_id: Optional[str] = None
    delivery_partner_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivery_time_minutes: Optional[float] = None
    version: int = 1

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    @property
    def progress(self) -> int:
        return ORDER_PROGRESS_MAP[self.status]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def compute_total(items: List[OrderItem], delivery_fee: Decimal, promo_discount: Decimal) -> Decimal:
    """totalAmount = Σ(precio × cantidad) + envío − descuento."""
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    return subtotal + delivery_fee - promo_discount


@dataclass
class DeliveryPartner:
    """Repartidor que puede atender pedidos."""
    id: str
    name: str = ""
    is_online: bool = False
    is_kyc_verified: bool = False
    assigned_hub_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.is_online and self.is_kyc_verified


@dataclass
class Hub:
    """
    Darkstore: punto de despacho con un único área de servicio.
    El área se define con un polígono (lista ordenada de vértices) o con
    centro + radio en kilómetros.
    """
    id: str
    name: str
    polygon: List[Coordinates] = field(default_factory=list)
    center: Optional[Coordinates] = None
    radius_km: Optional[float] = None
    is_active: bool = True


@dataclass(frozen=True)
class StatusChange:
    """Registro histórico de una transición confirmada."""
    order_id: str
    status: OrderStatus
    previous_status: Optional[OrderStatus]
    changed_at: datetime
    actor_id: Optional[str] = None
    note: str = ""


@dataclass(frozen=True)
class RequestContext:
    """Contexto explícito de la petición: quién llama y con qué rol."""
    caller_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class OrderNumberGenerator:
    """
    Genera números de pedido 'ORD' + epoch en milisegundos.
    Si dos pedidos caen en el mismo milisegundo se avanza uno para mantener
    la secuencia estrictamente creciente.
    """

    def __init__(self, clock_ms=None):
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            candidate = self._clock_ms()
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return f"{ORDER_NUMBER_PREFIX}{candidate}"


def is_order_number(reference: str) -> bool:
    """Distingue un número de pedido ('ORD' + dígitos) de un id interno."""
    return (
        reference.startswith(ORDER_NUMBER_PREFIX)
        and reference[len(ORDER_NUMBER_PREFIX):].isdigit()
    )
