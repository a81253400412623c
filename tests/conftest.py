"""Utilidades compartidas por las pruebas: reloj controlable y fábrica de pedidos."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from quickcommerce.domain.entities import Coordinates, Order, OrderItem, OrderStatus

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Reloj inyectable: las pruebas avanzan el tiempo a mano."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_order(status: OrderStatus = OrderStatus.PENDING, **overrides) -> Order:
    items = (
        OrderItem("prod-leche", 2, Decimal("50")),
        OrderItem("prod-pan", 1, Decimal("50")),
    )
    values = dict(
        id=str(uuid.uuid4()),
        order_number="ORD1767268800000",
        customer_id="cust-1",
        status=status,
        items=items,
        delivery_address="Thamel, Kathmandu",
        delivery_coordinates=Coordinates(27.7180, 85.3250),
        delivery_fee=Decimal("20"),
        promo_discount=Decimal("0"),
        total_amount=Decimal("170"),
        created_at=T0,
        hub_id="hub-central",
    )
    values.update(overrides)
    return Order(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def order_factory():
    return make_order
