"""
Pruebas de los casos de uso sobre los repositorios en memoria, con un reloj
controlable y el geocodificador simulado.
"""
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from quickcommerce.application.use_cases import (
    AcceptOrderUseCase, AssignOrderManuallyUseCase, CancellationStatusUseCase, CancelOrderUseCase,
    CheckServiceabilityUseCase, ConfirmOrderUseCase, DeliverOrderUseCase, DispatchOrderUseCase,
    GetOrderUseCase, GetStatusHistoryUseCase, ListOrdersUseCase, MarkOutForDeliveryUseCase,
    MarkReadyUseCase, PlaceOrderUseCase,
)
from quickcommerce.domain.cancellation import CancellationPolicy
from quickcommerce.domain.entities import (
    Coordinates, DeliveryPartner, Hub, OrderNumberGenerator, OrderStatus, PaymentStatus, RequestContext, Role,
)
from quickcommerce.domain.errors import (
    AlreadyAssigned, CancellationWindowExpired, DuplicateOrderNumber, Forbidden, InvalidOrderData, InvalidState,
    InvalidTransition, NotFound, OutOfServiceArea, PartnerUnavailable,
)
from quickcommerce.domain.events import EVENT_INSERT, EVENT_UPDATE
from quickcommerce.infrastructure.events.event_bus import InMemoryEventBus
from quickcommerce.infrastructure.persistence.memory_repository import (
    InMemoryDeliveryPartnerRepository, InMemoryHubRepository, InMemoryOrderRepository,
)

from conftest import T0, FakeClock

HUB = Hub(id="hub-central", name="Darkstore Central", center=Coordinates(27.7172, 85.3240), radius_km=3.0)
INSIDE = Coordinates(27.7180, 85.3250)
OUTSIDE = Coordinates(27.9000, 85.6000)

CUSTOMER = RequestContext("cust-1", Role.CUSTOMER)
OTHER_CUSTOMER = RequestContext("cust-2", Role.CUSTOMER)
ADMIN = RequestContext("admin-1", Role.ADMIN)
PARTNER = RequestContext("partner-001", Role.DELIVERY_PARTNER)
OTHER_PARTNER = RequestContext("partner-003", Role.DELIVERY_PARTNER)

ITEMS = [
    {"product_id": "prod-leche", "quantity": 2, "unit_price": "50"},
    {"product_id": "prod-pan", "quantity": 1, "unit_price": 50},
]


@pytest.fixture
def svc():
    clock = FakeClock(T0)
    orders = InMemoryOrderRepository()
    partners = InMemoryDeliveryPartnerRepository([
        DeliveryPartner("partner-001", "Uno", is_online=True, is_kyc_verified=True, assigned_hub_id=HUB.id),
        DeliveryPartner("partner-002", "Dos", is_online=False, is_kyc_verified=True),
        DeliveryPartner("partner-003", "Tres", is_online=True, is_kyc_verified=True),
    ])
    hubs = InMemoryHubRepository([HUB])
    bus = InMemoryEventBus()
    geocoder = Mock()
    geocoder.reverse_geocode.return_value = "Thamel, Kathmandu"
    policy = CancellationPolicy()

    return SimpleNamespace(
        clock=clock, orders=orders, partners=partners, bus=bus, geocoder=geocoder,
        place=PlaceOrderUseCase(orders, hubs, bus, geocoder=geocoder,
                                number_generator=OrderNumberGenerator(lambda: 1767268800000), clock=clock),
        get=GetOrderUseCase(orders),
        list=ListOrdersUseCase(orders),
        history=GetStatusHistoryUseCase(orders),
        confirm=ConfirmOrderUseCase(orders, bus, clock=clock),
        ready=MarkReadyUseCase(orders, bus, clock=clock),
        dispatch=DispatchOrderUseCase(orders, partners, bus, clock=clock),
        assign=AssignOrderManuallyUseCase(orders, partners, bus, clock=clock),
        accept=AcceptOrderUseCase(orders, partners, bus, clock=clock),
        out_for_delivery=MarkOutForDeliveryUseCase(orders, bus, clock=clock),
        deliver=DeliverOrderUseCase(orders, bus, clock=clock),
        cancel=CancelOrderUseCase(orders, bus, policy, clock=clock),
        cancellation=CancellationStatusUseCase(orders, policy, clock=clock),
        serviceability=CheckServiceabilityUseCase(hubs, geocoder),
    )


def place(svc, ctx=CUSTOMER, **kwargs):
    params = dict(items=ITEMS, delivery_address="Calle 1", coordinates=INSIDE, delivery_fee="20")
    params.update(kwargs)
    return svc.place.execute(ctx, **params)


def ready_order(svc):
    order = place(svc)
    svc.confirm.execute(ADMIN, order.id)
    return svc.ready.execute(ADMIN, order.id)


# --- Creación de pedidos ---

def test_place_order_computes_total_and_assigns_hub(svc):
    with svc.bus.subscribe() as subscription:
        order = place(svc)
        event = subscription.get(timeout=1)

    assert order.status == OrderStatus.PENDING
    assert order.total_amount == Decimal("170")
    assert order.order_number == "ORD1767268800000"
    assert order.hub_id == HUB.id
    assert order.customer_id == CUSTOMER.caller_id
    assert order.created_at == T0
    assert order.version == 1
    assert svc.orders.get_by_id(order.id) == order
    assert event.event_type == EVENT_INSERT
    assert event.status == "pending"


def test_place_order_blank_address_uses_geocoder(svc):
    order = place(svc, delivery_address="   ")
    assert order.delivery_address == "Thamel, Kathmandu"
    svc.geocoder.reverse_geocode.assert_called_once_with(INSIDE)


def test_place_order_out_of_service_area(svc):
    with pytest.raises(OutOfServiceArea):
        place(svc, coordinates=OUTSIDE)
    assert svc.orders.list_orders() == []


def test_place_order_customers_only(svc):
    with pytest.raises(Forbidden):
        place(svc, ctx=ADMIN)


@pytest.mark.parametrize("kwargs", [
    {"items": []},
    {"items": [{"product_id": "p1", "quantity": 0, "unit_price": "5"}]},
    {"items": [{"quantity": 1, "unit_price": "5"}]},
    {"items": [{"product_id": "p1", "quantity": 1, "unit_price": "abc"}]},
    {"items": "abc"},
    {"items": ["prod-leche"]},
    {"items": [{"product_id": "p1", "quantity": 1.9, "unit_price": "5"}]},
    {"items": [{"product_id": "p1", "quantity": True, "unit_price": "5"}]},
    {"items": [{"product_id": "p1", "quantity": 3, "unit_price": "0.333"}]},
    {"items": [{"product_id": "p1", "quantity": 1, "unit_price": "Infinity"}]},
    {"delivery_fee": "-1"},
    {"delivery_fee": "1e30"},
    {"promo_discount": "NaN"},
    {"promo_discount": "500"},
])
def test_place_order_invalid_data(svc, kwargs):
    with pytest.raises(InvalidOrderData):
        place(svc, **kwargs)
    assert svc.orders.list_orders() == []


def test_place_order_accepts_whole_quantities_and_cents(svc):
    order = place(svc, items=[{"product_id": "p1", "quantity": "3", "unit_price": "0.33"}], delivery_fee="0")
    assert order.items[0].quantity == 3
    assert order.total_amount == Decimal("0.99")
    assert order.total_amount == sum(item.line_total for item in order.items)


def test_place_order_retries_duplicate_order_number(svc):
    """Otro worker generó el mismo ORD<ms> en el mismo milisegundo."""
    other_worker = PlaceOrderUseCase(
        svc.orders, InMemoryHubRepository([HUB]), svc.bus,
        number_generator=OrderNumberGenerator(lambda: 1767268800000), clock=svc.clock,
    )
    first = other_worker.execute(CUSTOMER, ITEMS, "Calle 1", INSIDE)

    second = place(svc)

    assert first.order_number == "ORD1767268800000"
    assert second.order_number == "ORD1767268800001"
    assert svc.orders.get_by_order_number(second.order_number).id == second.id


def test_place_order_gives_up_after_repeated_duplicates(svc):
    repository = Mock()
    repository.insert_order.side_effect = DuplicateOrderNumber("duplicado")
    use_case = PlaceOrderUseCase(repository, InMemoryHubRepository([HUB]), svc.bus,
                                 number_generator=OrderNumberGenerator(lambda: 1767268800000),
                                 clock=svc.clock, max_number_attempts=3)

    with pytest.raises(DuplicateOrderNumber):
        use_case.execute(CUSTOMER, ITEMS, "Calle 1", INSIDE)

    numbers = [c.args[0].order_number for c in repository.insert_order.call_args_list]
    assert numbers == ["ORD1767268800000", "ORD1767268800001", "ORD1767268800002"]


# --- Ciclo de vida completo ---

def test_full_flow_until_delivery(svc):
    order = place(svc)
    svc.clock.advance(seconds=30)
    svc.confirm.execute(ADMIN, order.id)
    svc.ready.execute(ADMIN, order.order_number)
    svc.clock.advance(seconds=30)
    dispatched = svc.dispatch.execute(ADMIN, order.id)

    assert dispatched.status == OrderStatus.DISPATCHED
    assert dispatched.delivery_partner_id == "partner-001"
    assert dispatched.accepted_at == T0 + timedelta(minutes=1)

    svc.clock.advance(minutes=2)
    picked = svc.out_for_delivery.execute(PARTNER, order.id)
    assert picked.picked_up_at == T0 + timedelta(minutes=3)

    svc.clock.advance(minutes=4)
    delivered = svc.deliver.execute(PARTNER, order.id)

    assert delivered.status == OrderStatus.DELIVERED
    assert delivered.delivered_at == T0 + timedelta(minutes=7)
    assert delivered.delivery_time_minutes == 6
    assert delivered.payment_status == PaymentStatus.COMPLETED
    assert delivered.version == 6

    history = svc.history.execute(CUSTOMER, order.order_number)
    assert [c.status for c in history] == [
        OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.READY_FOR_PICKUP,
        OrderStatus.DISPATCHED, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED,
    ]
    assert history[3].previous_status == OrderStatus.READY_FOR_PICKUP


def test_transition_publishes_update_event(svc):
    order = place(svc)
    with svc.bus.subscribe(order.id) as subscription:
        svc.confirm.execute(ADMIN, order.id)
        event = subscription.get(timeout=1)
    assert event.event_type == EVENT_UPDATE
    assert event.previous_status == "pending"
    assert event.status == "confirmed"
    assert event.version == 2


def test_invalid_transition_leaves_order_untouched(svc):
    order = place(svc)
    with pytest.raises(InvalidTransition):
        svc.ready.execute(ADMIN, order.id)
    stored = svc.orders.get_by_id(order.id)
    assert stored.status == OrderStatus.PENDING
    assert stored.version == 1


def test_customer_cannot_confirm(svc):
    order = place(svc)
    with pytest.raises(Forbidden):
        svc.confirm.execute(CUSTOMER, order.id)


# --- Despacho y asignación ---

def test_dispatch_without_partners_stays_ready(svc):
    order = ready_order(svc)
    svc.partners.save(DeliveryPartner("partner-001", "Uno", is_online=False, is_kyc_verified=True))
    svc.partners.save(DeliveryPartner("partner-003", "Tres", is_online=False, is_kyc_verified=True))

    result = svc.dispatch.execute(ADMIN, order.id)

    assert result.status == OrderStatus.READY_FOR_PICKUP
    assert result.delivery_partner_id is None
    assert len(svc.orders.get_status_history(order.id)) == 3


def test_dispatch_twice(svc):
    order = ready_order(svc)
    svc.dispatch.execute(ADMIN, order.id)
    with pytest.raises(AlreadyAssigned):
        svc.dispatch.execute(ADMIN, order.id)


def test_dispatch_pending_order(svc):
    order = place(svc)
    with pytest.raises(InvalidState):
        svc.dispatch.execute(ADMIN, order.id)


def test_manual_assignment_jumps_from_pending(svc):
    order = place(svc)
    assigned = svc.assign.execute(ADMIN, order.id, partner_id="partner-002")
    assert assigned.status == OrderStatus.DISPATCHED
    assert assigned.delivery_partner_id == "partner-002"
    assert assigned.accepted_at == T0


def test_manual_assignment_validation(svc):
    order = place(svc)
    with pytest.raises(InvalidOrderData):
        svc.assign.execute(ADMIN, order.id)
    with pytest.raises(NotFound):
        svc.assign.execute(ADMIN, order.id, partner_id="partner-999")


def test_partner_accepts_ready_order(svc):
    order = ready_order(svc)
    accepted = svc.accept.execute(PARTNER, order.id)
    assert accepted.status == OrderStatus.DISPATCHED
    assert accepted.delivery_partner_id == PARTNER.caller_id


def test_unavailable_partner_cannot_accept(svc):
    order = ready_order(svc)
    with pytest.raises(PartnerUnavailable):
        svc.accept.execute(RequestContext("partner-002", Role.DELIVERY_PARTNER), order.id)
    with pytest.raises(PartnerUnavailable):
        svc.accept.execute(RequestContext("partner-404", Role.DELIVERY_PARTNER), order.id)
    with pytest.raises(Forbidden):
        svc.accept.execute(ADMIN, order.id)


def test_only_assigned_partner_advances_stages(svc):
    order = ready_order(svc)
    svc.dispatch.execute(ADMIN, order.id)
    with pytest.raises(Forbidden):
        svc.out_for_delivery.execute(OTHER_PARTNER, order.id)
    assert svc.out_for_delivery.execute(ADMIN, order.id).status == OrderStatus.OUT_FOR_DELIVERY


# --- Cancelación ---

def test_cancellation_within_window(svc):
    order = place(svc)
    svc.clock.advance(seconds=90)
    cancelled = svc.cancel.execute(CUSTOMER, order.order_number)
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at == T0 + timedelta(seconds=90)
    assert cancelled.progress == 0


def test_cancellation_outside_window(svc):
    order = place(svc)
    svc.clock.advance(seconds=121)
    with pytest.raises(CancellationWindowExpired):
        svc.cancel.execute(CUSTOMER, order.id)
    assert svc.orders.get_by_id(order.id).status == OrderStatus.PENDING


def test_cancellation_window_applies_to_admin(svc):
    order = place(svc)
    svc.clock.advance(minutes=3)
    with pytest.raises(CancellationWindowExpired):
        svc.cancel.execute(ADMIN, order.id)


def test_cancelling_another_customers_order(svc):
    order = place(svc)
    with pytest.raises(Forbidden):
        svc.cancel.execute(OTHER_CUSTOMER, order.id)


def test_cancellation_in_non_cancellable_status(svc):
    order = ready_order(svc)
    with pytest.raises(InvalidState):
        svc.cancel.execute(CUSTOMER, order.id)


def test_cancellation_countdown(svc):
    order = place(svc)
    svc.clock.advance(seconds=30)
    status = svc.cancellation.execute(CUSTOMER, order.order_number)
    assert status == {
        "order_id": order.id,
        "order_number": order.order_number,
        "can_cancel": True,
        "seconds_left": 90,
    }


# --- Consultas ---

def test_lookup_by_number_or_id(svc):
    order = place(svc)
    assert svc.get.execute(CUSTOMER, order.order_number).id == order.id
    assert svc.get.execute(ADMIN, order.id).id == order.id
    with pytest.raises(Forbidden):
        svc.get.execute(OTHER_CUSTOMER, order.id)
    with pytest.raises(NotFound):
        svc.get.execute(ADMIN, "ORD1")


def test_admin_listing(svc):
    first = place(svc)
    svc.clock.advance(seconds=10)
    second = place(svc)
    svc.confirm.execute(ADMIN, first.id)

    assert [o.id for o in svc.list.execute(ADMIN)] == [second.id, first.id]
    assert [o.id for o in svc.list.execute(ADMIN, "confirmed")] == [first.id]
    with pytest.raises(InvalidOrderData):
        svc.list.execute(ADMIN, "lost")


def test_customer_lists_only_own_orders(svc):
    own = place(svc)
    svc.clock.advance(seconds=10)
    place(svc, ctx=OTHER_CUSTOMER)

    assert [o.id for o in svc.list.execute(CUSTOMER)] == [own.id]
    assert svc.list.execute(CUSTOMER, "confirmed") == []


def test_partner_lists_assigned_and_unassigned_ready_orders(svc):
    svc.partners.save(DeliveryPartner("partner-001", "Uno", is_online=False, is_kyc_verified=True))
    svc.partners.save(DeliveryPartner("partner-003", "Tres", is_online=False, is_kyc_verified=True))
    open_order = ready_order(svc)
    svc.dispatch.execute(ADMIN, open_order.id)
    svc.clock.advance(seconds=10)
    taken = ready_order(svc)
    svc.partners.save(DeliveryPartner("partner-003", "Tres", is_online=True, is_kyc_verified=True))
    svc.accept.execute(OTHER_PARTNER, taken.id)
    svc.clock.advance(seconds=10)
    pending = place(svc)

    assert [o.id for o in svc.list.execute(OTHER_PARTNER)] == [taken.id, open_order.id]
    assert [o.id for o in svc.list.execute(PARTNER)] == [open_order.id]
    assert [o.id for o in svc.list.execute(OTHER_PARTNER, "dispatched")] == [taken.id]
    assert pending.id not in [o.id for o in svc.list.execute(PARTNER)]


# --- Zona de servicio ---

def test_serviceability_inside_area(svc):
    result = svc.serviceability.execute(INSIDE)
    assert result["serviceable"] is True
    assert result["hub_id"] == HUB.id
    assert result["address"] == "Thamel, Kathmandu"
    assert "reason" not in result


def test_serviceability_outside_area(svc):
    result = svc.serviceability.execute(OUTSIDE, HUB.id)
    assert result["serviceable"] is False
    assert result["reason"]
    assert result["coordinates"] == {"lat": OUTSIDE.lat, "lng": OUTSIDE.lng}


def test_serviceability_unknown_hub(svc):
    with pytest.raises(NotFound):
        svc.serviceability.execute(INSIDE, "hub-404")
