from datetime import timedelta

from quickcommerce.domain import sla
from quickcommerce.domain.entities import OrderStatus

from conftest import T0, make_order


def test_format_clock():
    assert sla.format_clock(125) == "02:05"
    assert sla.format_clock(0) == "00:00"
    assert sla.format_clock(-60) == "00:00"
    assert sla.format_clock(3600) == "60:00"


def test_running_timer():
    snapshot = sla.evaluate(make_order(), T0 + timedelta(minutes=3))
    assert snapshot.state == sla.TIMER_RUNNING
    assert snapshot.elapsed_seconds == 180
    assert snapshot.remaining_seconds == 420
    assert snapshot.elapsed == "03:00"
    assert snapshot.remaining == "07:00"
    assert not snapshot.is_overdue


def test_overdue_order():
    """Promesa de 10 minutos consultada a los 11: vencido y restante en 00:00."""
    snapshot = sla.evaluate(make_order(OrderStatus.CONFIRMED), T0 + timedelta(minutes=11))
    assert snapshot.is_overdue
    assert snapshot.remaining_seconds == -60
    assert snapshot.remaining == "00:00"


def test_clock_frozen_on_delivery():
    order = make_order(OrderStatus.DELIVERED, delivered_at=T0 + timedelta(minutes=7))
    snapshot = sla.evaluate(order, T0 + timedelta(minutes=45))
    assert snapshot.state == sla.TIMER_FROZEN
    assert snapshot.elapsed_seconds == 420
    assert snapshot.remaining == "03:00"
    assert not snapshot.is_overdue


def test_late_delivery_not_flagged_overdue():
    order = make_order(OrderStatus.DELIVERED, delivered_at=T0 + timedelta(minutes=12))
    snapshot = sla.evaluate(order, T0 + timedelta(minutes=20))
    assert snapshot.remaining_seconds == -120
    assert not snapshot.is_overdue


def test_cancelled_shows_cancelled_state():
    order = make_order(OrderStatus.CANCELLED, cancelled_at=T0 + timedelta(minutes=1))
    snapshot = sla.evaluate(order, T0 + timedelta(minutes=30))
    assert snapshot.state == sla.TIMER_CANCELLED
    assert snapshot.elapsed_seconds == 60
    assert not snapshot.is_overdue


def test_starts_at_acceptance_with_partner_time():
    order = make_order(
        OrderStatus.DISPATCHED,
        delivery_partner_id="partner-001",
        accepted_at=T0 + timedelta(minutes=2),
    )
    snapshot = sla.evaluate(order, T0 + timedelta(minutes=5))
    assert snapshot.elapsed_seconds == 180
    assert snapshot.remaining_seconds == 420
    # 600 − 120 consumidos antes de aceptar − 180 del repartidor
    assert snapshot.partner_remaining_seconds == 300
    assert snapshot.partner_remaining == "05:00"


def test_no_partner_time_without_acceptance():
    snapshot = sla.evaluate(make_order(), T0 + timedelta(minutes=1))
    assert snapshot.partner_remaining_seconds is None
    assert snapshot.partner_remaining is None
