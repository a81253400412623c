import json
from typing import Callable, Dict

from flask import Blueprint, Response, current_app, g, jsonify, request

from quickcommerce.application.presenters import serialize_order, serialize_status_change
from quickcommerce.application.use_cases import (
    CancellationStatusUseCase, CheckServiceabilityUseCase, GetOrderUseCase, GetStatusHistoryUseCase,
    ListOrdersUseCase, PlaceOrderUseCase, ensure_role, utc_now,
)
from quickcommerce.domain.entities import Coordinates, Role
from quickcommerce.domain.errors import (
    Forbidden, InvalidOrderData, NotFound, OrderServiceError, OutOfServiceArea, RepositoryError, Unauthorized,
)
from quickcommerce.infrastructure.events.event_bus import InMemoryEventBus
from .auth import require_auth

ERROR_STATUS_CODES = {
    InvalidOrderData: 400,
    Unauthorized: 401,
    Forbidden: 403,
    NotFound: 404,
    OutOfServiceArea: 422,
}


def _status_code_for(error: OrderServiceError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    # Conflictos de estado: InvalidTransition, InvalidState, AlreadyAssigned,
    # ConcurrentModification, CancellationWindowExpired, PartnerUnavailable
    return 409


def _parse_coordinates(data) -> Coordinates:
    try:
        return Coordinates(float(data["lat"]), float(data["lng"]))
    except (KeyError, TypeError, ValueError):
        raise InvalidOrderData("Se requieren coordenadas válidas (lat, lng).")


def register_error_handlers(bp: Blueprint) -> None:

    @bp.errorhandler(OrderServiceError)
    def handle_order_error(error: OrderServiceError):
        body = {"error": error.code, "message": error.message}
        if error.details:
            body["details"] = error.details
        return jsonify(body), _status_code_for(error)

    @bp.errorhandler(RepositoryError)
    def handle_repository_error(error: RepositoryError):
        current_app.logger.error(f"Error de persistencia: {error}")
        return jsonify({
            "error": "InternalError",
            "message": "Error interno del servicio de pedidos. Intenta nuevamente.",
        }), 500


def _sse_stream(subscription, heartbeat_seconds: float):
    """Eventos en formato Server-Sent Events, con comentarios de keep-alive."""
    with subscription:
        yield ": connected\n\n"
        while True:
            event = subscription.get(timeout=heartbeat_seconds)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield f"event: order\ndata: {json.dumps(event.to_dict())}\n\n"


def create_api_blueprint(
    place_case: PlaceOrderUseCase,
    get_case: GetOrderUseCase,
    list_case: ListOrdersUseCase,
    history_case: GetStatusHistoryUseCase,
    cancellation_case: CancellationStatusUseCase,
    transition_cases: Dict[str, object],
    event_bus: InMemoryEventBus,
    clock: Callable = utc_now,
    heartbeat_seconds: float = 15.0,
):
    """
    Función de fábrica para inyectar los Casos de Uso en el Blueprint de pedidos.
    Crea un nuevo Blueprint en cada llamada para evitar conflictos en tests.
    """
    api_bp = Blueprint('orders_api', __name__)
    register_error_handlers(api_bp)

    @api_bp.route('/', methods=['POST'])
    @require_auth
    def place_order():
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict) or "items" not in data or "coordinates" not in data:
            raise InvalidOrderData("items y coordinates son obligatorios.")

        order = place_case.execute(
            g.request_context,
            items=data["items"],
            delivery_address=data.get("delivery_address", ""),
            coordinates=_parse_coordinates(data["coordinates"]),
            promo_discount=data.get("promo_discount", 0),
            delivery_fee=data.get("delivery_fee", 0),
        )
        return jsonify({
            "order": serialize_order(order, clock()),
            "message": "Pedido creado exitosamente",
        }), 201

    @api_bp.route('/', methods=['GET'])
    @require_auth
    def list_orders():
        try:
            limit = int(request.args.get('limit', 100))
        except ValueError:
            raise InvalidOrderData("limit debe ser un entero.")
        orders = list_case.execute(g.request_context, request.args.get('status'), limit)
        now = clock()
        return jsonify({"orders": [serialize_order(o, now) for o in orders]}), 200

    @api_bp.route('/events', methods=['GET'])
    @require_auth
    def stream_all_events():
        ensure_role(g.request_context, Role.ADMIN)
        subscription = event_bus.subscribe()
        return Response(_sse_stream(subscription, heartbeat_seconds), mimetype='text/event-stream')

    @api_bp.route('/<reference>', methods=['GET'])
    @require_auth
    def get_order(reference):
        """Pedido con progreso y temporizador calculados en vivo (sirve también para polling)."""
        order = get_case.execute(g.request_context, reference)
        return jsonify({"order": serialize_order(order, clock())}), 200

    @api_bp.route('/<reference>/history', methods=['GET'])
    @require_auth
    def get_history(reference):
        history = history_case.execute(g.request_context, reference)
        return jsonify({"history": [serialize_status_change(c) for c in history]}), 200

    @api_bp.route('/<reference>/cancellation', methods=['GET'])
    @require_auth
    def get_cancellation_status(reference):
        return jsonify(cancellation_case.execute(g.request_context, reference)), 200

    @api_bp.route('/<reference>/events', methods=['GET'])
    @require_auth
    def stream_order_events(reference):
        order = get_case.execute(g.request_context, reference)
        subscription = event_bus.subscribe(order.id)
        return Response(_sse_stream(subscription, heartbeat_seconds), mimetype='text/event-stream')

    @api_bp.route('/<order_id>/<action>', methods=['POST'])
    @require_auth
    def transition_order(order_id, action):
        use_case = transition_cases.get(action)
        if use_case is None:
            raise NotFound(f"Acción desconocida: {action}")

        kwargs = {}
        if action == "assign":
            data = request.get_json(silent=True) or {}
            kwargs["partner_id"] = data.get("partner_id")

        order = use_case.execute(g.request_context, order_id, **kwargs)
        return jsonify({"order": serialize_order(order, clock())}), 200

    return api_bp


def create_location_blueprint(serviceability_case: CheckServiceabilityUseCase):
    """Blueprint para validar ubicaciones contra la zona de servicio."""
    location_bp = Blueprint('locations_api', __name__)
    register_error_handlers(location_bp)

    @location_bp.route('/serviceability', methods=['POST'])
    def check_serviceability():
        data = request.get_json(silent=True) or {}
        point = _parse_coordinates(data)
        result = serviceability_case.execute(point, data.get("hub_id"))
        return jsonify(result), 200

    return location_bp
