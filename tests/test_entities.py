import uuid
from decimal import Decimal

import pytest

from quickcommerce.domain.entities import (
    Coordinates, DeliveryPartner, OrderItem, OrderNumberGenerator, OrderStatus,
    compute_total, is_order_number,
)

from conftest import make_order


def test_coordinates_out_of_range():
    with pytest.raises(ValueError):
        Coordinates(91.0, 0.0)
    with pytest.raises(ValueError):
        Coordinates(0.0, -181.0)


def test_coordinates_label():
    assert Coordinates(27.7172, 85.324).as_label() == "27.717200, 85.324000"


def test_order_item_validates_quantity_and_price():
    with pytest.raises(ValueError):
        OrderItem("p1", 0, Decimal("10"))
    with pytest.raises(ValueError):
        OrderItem("p1", 1, Decimal("-1"))
    with pytest.raises(ValueError):
        OrderItem("", 1, Decimal("1"))
    assert OrderItem("p1", 3, Decimal("2.50")).line_total == Decimal("7.50")


def test_compute_total():
    """Σ(precio × cantidad) + envío − descuento: 2×50 + 1×50 + 20 = 170."""
    items = [OrderItem("p1", 2, Decimal("50")), OrderItem("p2", 1, Decimal("50"))]
    assert compute_total(items, Decimal("20"), Decimal("0")) == Decimal("170")
    assert compute_total(items, Decimal("20"), Decimal("30")) == Decimal("140")


@pytest.mark.parametrize("status, expected", [
    (OrderStatus.PENDING, 10),
    (OrderStatus.CONFIRMED, 25),
    (OrderStatus.READY_FOR_PICKUP, 40),
    (OrderStatus.DISPATCHED, 60),
    (OrderStatus.OUT_FOR_DELIVERY, 80),
    (OrderStatus.DELIVERED, 100),
    (OrderStatus.CANCELLED, 0),
])
def test_progress_by_status(status, expected):
    assert make_order(status).progress == expected


def test_terminal_statuses():
    assert make_order(OrderStatus.DELIVERED).is_terminal
    assert make_order(OrderStatus.CANCELLED).is_terminal
    assert not make_order(OrderStatus.OUT_FOR_DELIVERY).is_terminal


def test_subtotal():
    assert make_order().subtotal == Decimal("150")


def test_order_number_strictly_increasing_within_same_millisecond():
    generator = OrderNumberGenerator(clock_ms=lambda: 1767268800000)
    first, second, third = generator.next(), generator.next(), generator.next()
    assert first == "ORD1767268800000"
    assert second == "ORD1767268800001"
    assert third == "ORD1767268800002"


def test_order_number_follows_clock():
    ticks = iter([1000, 5000])
    generator = OrderNumberGenerator(clock_ms=lambda: next(ticks))
    assert generator.next() == "ORD1000"
    assert generator.next() == "ORD5000"


def test_is_order_number():
    assert is_order_number("ORD1767268800000")
    assert not is_order_number(str(uuid.uuid4()))
    assert not is_order_number("ORDabc")
    assert not is_order_number("ORD")


def test_delivery_partner_availability():
    assert DeliveryPartner("p1", is_online=True, is_kyc_verified=True).is_available
    assert not DeliveryPartner("p2", is_online=False, is_kyc_verified=True).is_available
    assert not DeliveryPartner("p3", is_online=True, is_kyc_verified=False).is_available
