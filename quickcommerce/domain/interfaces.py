from abc import ABC, abstractmethod
from typing import List, Optional

from .entities import Coordinates, DeliveryPartner, Hub, Order, OrderStatus, StatusChange


class OrderRepository(ABC):
    """
    Contrato (Interfaz) para la capa de acceso a datos de Pedidos.
    La capa de Aplicación solo conoce esta Interfaz, no la implementación.
    """

    @abstractmethod
    def insert_order(self, order: Order, change: StatusChange) -> Order:
        """Inserta un pedido nuevo con sus líneas y su primer registro de historial."""
        pass

    @abstractmethod
    def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    def get_by_order_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    def list_orders(self, status: Optional[OrderStatus] = None, limit: int = 100) -> List[Order]:
        """Pedidos más recientes primero, opcionalmente filtrados por estado."""
        pass

    @abstractmethod
    def list_by_customer(self, customer_id: str, status: Optional[OrderStatus] = None,
                         limit: int = 100) -> List[Order]:
        """Historial de un cliente, más recientes primero."""
        pass

    @abstractmethod
    def list_for_partner(self, partner_id: str, status: Optional[OrderStatus] = None,
                         limit: int = 100) -> List[Order]:
        """
        Pedidos visibles para un repartidor: los que tiene asignados más los
        que están en ready_for_pickup sin repartidor (autoasignación).
        """
        pass

    @abstractmethod
    def compare_and_swap(self, updated: Order, expected_status: OrderStatus,
                         expected_version: int, change: StatusChange) -> Order:
        """
        Persiste `updated` solo si el registro sigue en `expected_status` y
        `expected_version`. Si otra operación ganó la carrera lanza
        ConcurrentModification. Retorna el pedido con la versión incrementada.
        """
        pass

    @abstractmethod
    def get_status_history(self, order_id: str) -> List[StatusChange]:
        pass


class DeliveryPartnerRepository(ABC):

    @abstractmethod
    def get_by_id(self, partner_id: str) -> Optional[DeliveryPartner]:
        pass

    @abstractmethod
    def list_available(self) -> List[DeliveryPartner]:
        """Repartidores en línea y con KYC verificado, en orden de registro."""
        pass


class HubRepository(ABC):

    @abstractmethod
    def get_by_id(self, hub_id: str) -> Optional[Hub]:
        pass

    @abstractmethod
    def list_active(self) -> List[Hub]:
        pass


class OrderEventPublisher(ABC):

    @abstractmethod
    def publish(self, event) -> None:
        pass


class GeocodingService(ABC):

    @abstractmethod
    def reverse_geocode(self, point: Coordinates) -> str:
        """Dirección legible para un punto; nunca falla (usa coordenadas de respaldo)."""
        pass
