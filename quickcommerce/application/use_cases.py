import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

from quickcommerce.domain import geofence
from quickcommerce.domain.cancellation import CancellationPolicy
from quickcommerce.domain.dispatch import DispatchEngine
from quickcommerce.domain.entities import (
    Coordinates, Order, OrderItem, OrderNumberGenerator, OrderStatus,
    PaymentStatus, RequestContext, Role, StatusChange, compute_total, is_order_number,
)
from quickcommerce.domain.errors import (
    DuplicateOrderNumber, Forbidden, InvalidOrderData, NotFound, OutOfServiceArea, PartnerUnavailable,
)
from quickcommerce.domain.events import EVENT_INSERT, EVENT_UPDATE, OrderEvent
from quickcommerce.domain.interfaces import (
    DeliveryPartnerRepository, GeocodingService, HubRepository, OrderEventPublisher, OrderRepository,
)
from quickcommerce.domain.state_machine import transition

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidOrderData(f"El campo {field_name} debe ser numérico.", field=field_name)
    if not amount.is_finite():
        raise InvalidOrderData(f"El campo {field_name} debe ser un número finito.", field=field_name)
    if amount < 0:
        raise InvalidOrderData(f"El campo {field_name} no puede ser negativo.", field=field_name)
    # La base de datos guarda NUMERIC(12,2): más decimales romperían el total al releerlo
    if amount > MAX_AMOUNT:
        raise InvalidOrderData(f"El campo {field_name} excede el monto máximo permitido.", field=field_name)
    if amount != amount.quantize(CENTS):
        raise InvalidOrderData(f"El campo {field_name} admite como máximo dos decimales.", field=field_name)
    return amount


def _to_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidOrderData("La cantidad debe ser un entero.", field="quantity")
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidOrderData("La cantidad debe ser un entero.", field="quantity")
    if not quantity.is_finite() or quantity != quantity.to_integral_value():
        raise InvalidOrderData("La cantidad debe ser un entero.", field="quantity")
    return int(quantity)


def _parse_items(items: Any) -> Tuple[OrderItem, ...]:
    if not isinstance(items, list) or not items:
        raise InvalidOrderData("El pedido debe tener al menos un producto.")
    if not all(isinstance(item, dict) for item in items):
        raise InvalidOrderData("Cada producto debe ser un objeto con product_id, quantity y unit_price.")
    try:
        return tuple(
            OrderItem(
                product_id=str(item.get("product_id") or ""),
                quantity=_to_quantity(item.get("quantity", 0)),
                unit_price=_to_decimal(item.get("unit_price"), "unit_price"),
            )
            for item in items
        )
    except ValueError as e:
        raise InvalidOrderData(f"Producto inválido: {e}")


def _event(order: Order, event_type: str, previous: Optional[OrderStatus], at: datetime) -> OrderEvent:
    return OrderEvent(
        event_type=event_type,
        order_id=order.id,
        order_number=order.order_number,
        status=order.status.value,
        previous_status=previous.value if previous else None,
        version=order.version,
        occurred_at=at,
    )


def load_order(repository: OrderRepository, reference: str) -> Order:
    """Busca por número de pedido (ORD…) o por id interno."""
    if is_order_number(reference):
        order = repository.get_by_order_number(reference)
    else:
        order = repository.get_by_id(reference)
    if order is None:
        raise NotFound(f"No existe el pedido {reference}.", reference=reference)
    return order


def ensure_can_view(ctx: RequestContext, order: Order) -> None:
    if ctx.role == Role.CUSTOMER and order.customer_id != ctx.caller_id:
        raise Forbidden("Solo puedes consultar tus propios pedidos.")


def ensure_role(ctx: RequestContext, *roles: Role) -> None:
    if ctx.role not in roles:
        raise Forbidden(f"El rol '{ctx.role.value}' no puede realizar esta operación.")


class PlaceOrderUseCase:
    """
    Caso de uso: registrar un pedido en checkout.
    Vuelve a validar la zona de servicio al momento de colocar el pedido,
    aunque el cliente ya la haya validado al confirmar su ubicación.
    """

    def __init__(self, order_repository: OrderRepository, hub_repository: HubRepository,
                 publisher: OrderEventPublisher, geocoder: Optional[GeocodingService] = None,
                 number_generator: Optional[OrderNumberGenerator] = None,
                 clock: Clock = utc_now, estimated_delivery_minutes: int = 10,
                 max_number_attempts: int = 3):
        self.repository = order_repository
        self.hub_repository = hub_repository
        self.publisher = publisher
        self.geocoder = geocoder
        self.number_generator = number_generator or OrderNumberGenerator()
        self.clock = clock
        self.estimated_delivery_minutes = estimated_delivery_minutes
        self.max_number_attempts = max_number_attempts

    def execute(self, ctx: RequestContext, items: List[Dict[str, Any]], delivery_address: str,
                coordinates: Coordinates, promo_discount: Any = 0, delivery_fee: Any = 0) -> Order:
        ensure_role(ctx, Role.CUSTOMER)

        order_items = _parse_items(items)

        fee = _to_decimal(delivery_fee, "delivery_fee")
        discount = _to_decimal(promo_discount, "promo_discount")
        total = compute_total(list(order_items), fee, discount)
        if total < 0:
            raise InvalidOrderData("El descuento no puede superar el valor del pedido.")
        if total > MAX_AMOUNT:
            raise InvalidOrderData("El total del pedido excede el monto máximo permitido.")

        hub = geofence.find_serving_hub(coordinates, self.hub_repository.list_active())
        if hub is None:
            logger.warning(f"Pedido rechazado fuera de zona: {coordinates.as_label()} (cliente {ctx.caller_id})")
            raise OutOfServiceArea(
                "La dirección de entrega está fuera de nuestra zona de reparto. Elige otra ubicación.",
                lat=coordinates.lat, lng=coordinates.lng,
            )

        address = (delivery_address or "").strip()
        if not address:
            address = self.geocoder.reverse_geocode(coordinates) if self.geocoder else coordinates.as_label()

        now = self.clock()
        order = Order(
            id=str(uuid.uuid4()),
            order_number=self.number_generator.next(),
            customer_id=ctx.caller_id,
            status=OrderStatus.PENDING,
            items=order_items,
            delivery_address=address,
            delivery_coordinates=coordinates,
            delivery_fee=fee,
            promo_discount=discount,
            total_amount=total,
            created_at=now,
            payment_status=PaymentStatus.PENDING,
            estimated_delivery_minutes=self.estimated_delivery_minutes,
            hub_id=hub.id,
        )
        change = StatusChange(order.id, OrderStatus.PENDING, None, now, ctx.caller_id, "Pedido creado")
        created = self._insert_with_fresh_number(order, change)
        logger.info(f"Pedido {created.order_number} creado en hub {hub.id} por {created.total_amount}")
        self.publisher.publish(_event(created, EVENT_INSERT, None, now))
        return created

    def _insert_with_fresh_number(self, order: Order, change: StatusChange) -> Order:
        """Otro worker pudo generar el mismo ORD<ms>; se reintenta con el siguiente número."""
        for attempt in range(1, self.max_number_attempts + 1):
            try:
                return self.repository.insert_order(order, change)
            except DuplicateOrderNumber:
                if attempt == self.max_number_attempts:
                    raise
                logger.warning(f"Número de pedido {order.order_number} duplicado, reintentando (intento {attempt})")
                order = replace(order, order_number=self.number_generator.next())


class GetOrderUseCase:

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, ctx: RequestContext, reference: str) -> Order:
        order = load_order(self.repository, reference)
        ensure_can_view(ctx, order)
        return order


class ListOrdersUseCase:
    """
    Listado según el rol. El administrador ve todos los pedidos; el repartidor
    ve sus entregas junto con los pedidos listos sin asignar que puede aceptar.
    """

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, ctx: RequestContext, status: Optional[str] = None, limit: int = 100) -> List[Order]:
        status_filter = None
        if status:
            try:
                status_filter = OrderStatus(status)
            except ValueError:
                raise InvalidOrderData(f"Estado desconocido: {status}")
        if ctx.role == Role.ADMIN:
            return self.repository.list_orders(status_filter, limit)
        if ctx.role == Role.DELIVERY_PARTNER:
            return self.repository.list_for_partner(ctx.caller_id, status_filter, limit)
        return self.repository.list_by_customer(ctx.caller_id, status_filter, limit)


class GetStatusHistoryUseCase:

    def __init__(self, order_repository: OrderRepository):
        self.repository = order_repository

    def execute(self, ctx: RequestContext, reference: str) -> List[StatusChange]:
        order = load_order(self.repository, reference)
        ensure_can_view(ctx, order)
        return self.repository.get_status_history(order.id)


class _OrderTransitionUseCase:
    """
    Base para operaciones que cambian el estado: lee el pedido, calcula la
    versión nueva y la confirma con compare-and-swap sobre el estado leído.
    """
    allowed_roles = (Role.ADMIN,)
    note = ""

    def __init__(self, order_repository: OrderRepository, publisher: OrderEventPublisher,
                 clock: Clock = utc_now):
        self.repository = order_repository
        self.publisher = publisher
        self.clock = clock

    def authorize(self, ctx: RequestContext, order: Order) -> None:
        ensure_role(ctx, *self.allowed_roles)

    def apply(self, ctx: RequestContext, order: Order, now: datetime, **kwargs) -> Optional[Order]:
        raise NotImplementedError

    def execute(self, ctx: RequestContext, order_id: str, **kwargs) -> Order:
        order = load_order(self.repository, order_id)
        self.authorize(ctx, order)
        now = self.clock()
        updated = self.apply(ctx, order, now, **kwargs)
        if updated is None:
            return order

        change = StatusChange(order.id, updated.status, order.status, now, ctx.caller_id, self.note)
        committed = self.repository.compare_and_swap(updated, order.status, order.version, change)
        logger.info(
            f"Pedido {committed.order_number}: {order.status.value} -> {committed.status.value} "
            f"({ctx.role.value} {ctx.caller_id})"
        )
        self.publisher.publish(_event(committed, EVENT_UPDATE, order.status, now))
        return committed


class ConfirmOrderUseCase(_OrderTransitionUseCase):
    note = "Pedido confirmado"

    def apply(self, ctx, order, now, **kwargs):
        return transition(order, OrderStatus.CONFIRMED, now)


class MarkReadyUseCase(_OrderTransitionUseCase):
    note = "Pedido listo para recoger"

    def apply(self, ctx, order, now, **kwargs):
        return transition(order, OrderStatus.READY_FOR_PICKUP, now)


class DispatchOrderUseCase(_OrderTransitionUseCase):
    """Asignación automática al primer repartidor elegible."""
    note = "Repartidor asignado automáticamente"

    def __init__(self, order_repository: OrderRepository, partner_repository: DeliveryPartnerRepository,
                 publisher: OrderEventPublisher, engine: Optional[DispatchEngine] = None,
                 clock: Clock = utc_now):
        super().__init__(order_repository, publisher, clock)
        self.partner_repository = partner_repository
        self.engine = engine or DispatchEngine()

    def apply(self, ctx, order, now, **kwargs):
        # Valida el estado antes de consultar el pool de repartidores
        self.engine.ensure_dispatchable(order)
        return self.engine.dispatch(order, self.partner_repository.list_available(), now)


class AssignOrderManuallyUseCase(_OrderTransitionUseCase):
    note = "Repartidor asignado manualmente"

    def __init__(self, order_repository: OrderRepository, partner_repository: DeliveryPartnerRepository,
                 publisher: OrderEventPublisher, engine: Optional[DispatchEngine] = None,
                 clock: Clock = utc_now):
        super().__init__(order_repository, publisher, clock)
        self.partner_repository = partner_repository
        self.engine = engine or DispatchEngine()

    def apply(self, ctx, order, now, partner_id: str = None, **kwargs):
        if not partner_id:
            raise InvalidOrderData("partner_id es obligatorio.")
        partner = self.partner_repository.get_by_id(partner_id)
        if partner is None:
            raise NotFound(f"No existe el repartidor {partner_id}.", partner_id=partner_id)
        return self.engine.assign_manually(order, partner, now)


class AcceptOrderUseCase(_OrderTransitionUseCase):
    """El repartidor toma un pedido listo que nadie tiene asignado."""
    allowed_roles = (Role.DELIVERY_PARTNER,)
    note = "Pedido aceptado por el repartidor"

    def __init__(self, order_repository: OrderRepository, partner_repository: DeliveryPartnerRepository,
                 publisher: OrderEventPublisher, engine: Optional[DispatchEngine] = None,
                 clock: Clock = utc_now):
        super().__init__(order_repository, publisher, clock)
        self.partner_repository = partner_repository
        self.engine = engine or DispatchEngine()

    def apply(self, ctx, order, now, **kwargs):
        partner = self.partner_repository.get_by_id(ctx.caller_id)
        if partner is None:
            raise PartnerUnavailable(f"El repartidor {ctx.caller_id} no está registrado.")
        return self.engine.accept(order, partner, now)


class _PartnerStageUseCase(_OrderTransitionUseCase):
    """Etapas que puede marcar el administrador o el repartidor asignado."""
    allowed_roles = (Role.ADMIN, Role.DELIVERY_PARTNER)

    def authorize(self, ctx, order):
        super().authorize(ctx, order)
        if ctx.role == Role.DELIVERY_PARTNER and order.delivery_partner_id != ctx.caller_id:
            raise Forbidden("Solo el repartidor asignado puede actualizar este pedido.")


class MarkOutForDeliveryUseCase(_PartnerStageUseCase):
    note = "Pedido recogido en el darkstore"

    def apply(self, ctx, order, now, **kwargs):
        return transition(order, OrderStatus.OUT_FOR_DELIVERY, now)


class DeliverOrderUseCase(_PartnerStageUseCase):
    note = "Pedido entregado"

    def apply(self, ctx, order, now, **kwargs):
        # Pago contra entrega: se liquida al entregar
        return transition(order, OrderStatus.DELIVERED, now, payment_status=PaymentStatus.COMPLETED)


class CancelOrderUseCase(_OrderTransitionUseCase):
    """
    Cancela un pedido. La ventana se evalúa de nuevo al ejecutar, nunca se
    confía en la decisión que mostró la interfaz.
    """
    allowed_roles = (Role.CUSTOMER, Role.ADMIN)
    note = "Pedido cancelado"

    def __init__(self, order_repository: OrderRepository, publisher: OrderEventPublisher,
                 policy: Optional[CancellationPolicy] = None, clock: Clock = utc_now):
        super().__init__(order_repository, publisher, clock)
        self.policy = policy or CancellationPolicy()

    def authorize(self, ctx, order):
        super().authorize(ctx, order)
        ensure_can_view(ctx, order)

    def apply(self, ctx, order, now, **kwargs):
        self.policy.ensure_can_cancel(order, now)
        # Libera al repartidor si alguno quedó asociado
        return transition(order, OrderStatus.CANCELLED, now, delivery_partner_id=None)


class CancellationStatusUseCase:
    """Cuenta regresiva de cancelación para la vista del cliente."""

    def __init__(self, order_repository: OrderRepository, policy: Optional[CancellationPolicy] = None,
                 clock: Clock = utc_now):
        self.repository = order_repository
        self.policy = policy or CancellationPolicy()
        self.clock = clock

    def execute(self, ctx: RequestContext, reference: str) -> Dict[str, Any]:
        order = load_order(self.repository, reference)
        ensure_can_view(ctx, order)
        now = self.clock()
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "can_cancel": self.policy.can_cancel(order, now),
            "seconds_left": self.policy.seconds_left(order, now),
        }


class CheckServiceabilityUseCase:
    """
    Valida una ubicación al confirmarla en el mapa: retorna si hay cobertura
    y una dirección legible (o las coordenadas si el geocodificador falla).
    """

    def __init__(self, hub_repository: HubRepository, geocoder: Optional[GeocodingService] = None):
        self.hub_repository = hub_repository
        self.geocoder = geocoder

    def execute(self, point: Coordinates, hub_id: Optional[str] = None) -> Dict[str, Any]:
        if hub_id:
            hub = self.hub_repository.get_by_id(hub_id)
            if hub is None:
                raise NotFound(f"No existe el darkstore {hub_id}.", hub_id=hub_id)
            result = geofence.check(point, hub)
        else:
            hub = geofence.find_serving_hub(point, self.hub_repository.list_active())
            if hub is not None:
                result = geofence.ServiceabilityResult(True, None, hub.id)
            else:
                result = geofence.ServiceabilityResult(False, "La dirección está fuera de la zona de reparto.")

        address = self.geocoder.reverse_geocode(point) if self.geocoder else point.as_label()
        response = {
            "serviceable": result.serviceable,
            "hub_id": result.hub_id,
            "address": address,
            "coordinates": {"lat": point.lat, "lng": point.lng},
        }
        if result.reason:
            response["reason"] = result.reason
        return response
