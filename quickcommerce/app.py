import logging

from dotenv import load_dotenv  # Necesario para cargar variables de entorno
from flask import Flask, jsonify
from flask_cors import CORS

from quickcommerce.application.use_cases import (
    AcceptOrderUseCase, AssignOrderManuallyUseCase, CancellationStatusUseCase, CancelOrderUseCase,
    CheckServiceabilityUseCase, ConfirmOrderUseCase, DeliverOrderUseCase, DispatchOrderUseCase,
    GetOrderUseCase, GetStatusHistoryUseCase, ListOrdersUseCase, MarkOutForDeliveryUseCase,
    MarkReadyUseCase, PlaceOrderUseCase, utc_now,
)
from quickcommerce.clients.geocoding_client import GeocodingClient
from quickcommerce.config import Config
from quickcommerce.domain.cancellation import CancellationPolicy
from quickcommerce.domain.dispatch import DispatchEngine
from quickcommerce.domain.entities import Coordinates, DeliveryPartner, Hub
from quickcommerce.infrastructure.events.event_bus import InMemoryEventBus
from quickcommerce.infrastructure.web.flask_routes import create_api_blueprint, create_location_blueprint

# Cargar variables de entorno del archivo .env (si existe)
load_dotenv()

logger = logging.getLogger(__name__)


def _memory_repositories():
    """Repositorios en memoria con el mismo darkstore semilla de insert_data.sql."""
    from quickcommerce.infrastructure.persistence.memory_repository import (
        InMemoryDeliveryPartnerRepository, InMemoryHubRepository, InMemoryOrderRepository,
    )
    hub = Hub(id="hub-central", name="Darkstore Central",
              center=Coordinates(27.7172, 85.3240), radius_km=3.0)
    partners = [DeliveryPartner(id="partner-001", name="Repartidor Uno", is_online=True,
                                is_kyc_verified=True, assigned_hub_id=hub.id)]
    return (
        InMemoryOrderRepository(),
        InMemoryDeliveryPartnerRepository(partners),
        InMemoryHubRepository([hub]),
    )


def _postgres_repositories():
    from quickcommerce.infrastructure.persistence.db_connector import init_db_pool
    from quickcommerce.infrastructure.persistence.db_initializer import initialize_database
    from quickcommerce.infrastructure.persistence.pg_repository import (
        PgDeliveryPartnerRepository, PgHubRepository, PgOrderRepository,
    )
    # Sin pool no hay servicio: el error se propaga y el contenedor no arranca
    init_db_pool()
    initialize_database()
    return PgOrderRepository(), PgDeliveryPartnerRepository(), PgHubRepository()


def create_app(repositories=None, clock=utc_now, geocoder=None):
    """Crea, configura y cablea la aplicación Flask siguiendo la Arquitectura Limpia."""

    app = Flask(__name__)
    app.config.from_object(Config)

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # --- CABLEADO DE DEPENDENCIAS (Dependency Injection - DI) ---

    # 1. Infraestructura de Persistencia y eventos
    event_bus = InMemoryEventBus()
    publisher = event_bus
    if repositories is not None:
        order_repository, partner_repository, hub_repository = repositories
    elif Config.STORAGE_BACKEND == 'memory':
        order_repository, partner_repository, hub_repository = _memory_repositories()
    else:
        from quickcommerce.infrastructure.events.pg_listener import PgNotifyPublisher, PgOrderListener
        order_repository, partner_repository, hub_repository = _postgres_repositories()
        # Entre workers los eventos viajan por NOTIFY; el listener los reenvía al bus local
        publisher = PgNotifyPublisher()
        listener = PgOrderListener(event_bus)
        listener.start()
        app.extensions['order_listener'] = listener
    logger.info(f"Servicio de pedidos usando almacenamiento '{Config.STORAGE_BACKEND}'.")

    geocoder = geocoder or GeocodingClient()
    policy = CancellationPolicy.from_seconds(Config.CANCEL_WINDOW_SECONDS)
    engine = DispatchEngine()

    # 2. Capa de Aplicación (Use Cases)
    place_case = PlaceOrderUseCase(
        order_repository, hub_repository, publisher, geocoder=geocoder, clock=clock,
        estimated_delivery_minutes=Config.DEFAULT_ESTIMATED_DELIVERY_MINUTES,
    )
    transition_cases = {
        "confirm": ConfirmOrderUseCase(order_repository, publisher, clock=clock),
        "ready": MarkReadyUseCase(order_repository, publisher, clock=clock),
        "dispatch": DispatchOrderUseCase(order_repository, partner_repository, publisher, engine, clock=clock),
        "assign": AssignOrderManuallyUseCase(order_repository, partner_repository, publisher, engine, clock=clock),
        "accept": AcceptOrderUseCase(order_repository, partner_repository, publisher, engine, clock=clock),
        "out-for-delivery": MarkOutForDeliveryUseCase(order_repository, publisher, clock=clock),
        "deliver": DeliverOrderUseCase(order_repository, publisher, clock=clock),
        "cancel": CancelOrderUseCase(order_repository, publisher, policy, clock=clock),
    }

    # Configurar CORS
    CORS(app, resources={
        r"/*": {
            "origins": "*",
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"]
        }
    })

    # 3. Capa de Presentación (Web)
    api_bp = create_api_blueprint(
        place_case,
        GetOrderUseCase(order_repository),
        ListOrdersUseCase(order_repository),
        GetStatusHistoryUseCase(order_repository),
        CancellationStatusUseCase(order_repository, policy, clock=clock),
        transition_cases,
        event_bus,
        clock=clock,
        heartbeat_seconds=Config.EVENT_STREAM_HEARTBEAT_SECONDS,
    )
    app.register_blueprint(api_bp, url_prefix='/orders')
    app.register_blueprint(
        create_location_blueprint(CheckServiceabilityUseCase(hub_repository, geocoder)),
        url_prefix='/locations',
    )
    app.extensions['order_event_bus'] = event_bus

    # --- Ruta de control ---
    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=8080, debug=False, threaded=True)
