"""Taxonomía de errores del ciclo de vida de pedidos y despacho."""


class OrderServiceError(Exception):
    """Error base. `code` es estable y se expone tal cual al cliente."""
    code = "OrderServiceError"
    default_message = "No fue posible completar la operación."

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class InvalidTransition(OrderServiceError):
    code = "InvalidTransition"
    default_message = "El pedido no puede pasar a ese estado desde su estado actual."


class InvalidState(OrderServiceError):
    code = "InvalidState"
    default_message = "La operación no es válida en el estado actual del pedido."


class AlreadyAssigned(OrderServiceError):
    code = "AlreadyAssigned"
    default_message = "El pedido ya tiene un repartidor asignado."


class ConcurrentModification(OrderServiceError):
    code = "ConcurrentModification"
    default_message = "El pedido fue modificado por otra operación. Consulta su estado e intenta de nuevo."


class CancellationWindowExpired(OrderServiceError):
    code = "CancellationWindowExpired"
    default_message = "El plazo para cancelar el pedido ha expirado."


class OutOfServiceArea(OrderServiceError):
    code = "OutOfServiceArea"
    default_message = "La dirección de entrega está fuera de nuestra zona de reparto."


class NoAvailablePartner(OrderServiceError):
    """No es fatal: el pedido queda en ready_for_pickup para autoasignación."""
    code = "NoAvailablePartner"
    default_message = "No hay repartidores disponibles en este momento."


class PartnerUnavailable(OrderServiceError):
    code = "PartnerUnavailable"
    default_message = "El repartidor debe estar en línea y con KYC verificado."


class UpstreamUnavailable(OrderServiceError):
    code = "UpstreamUnavailable"
    default_message = "El proveedor de mapas no respondió."


class InvalidOrderData(OrderServiceError):
    code = "InvalidOrderData"
    default_message = "Los datos del pedido no son válidos."


class NotFound(OrderServiceError):
    code = "NotFound"
    default_message = "El recurso solicitado no existe."


class Unauthorized(OrderServiceError):
    code = "Unauthorized"
    default_message = "Token de autorización requerido."


class Forbidden(OrderServiceError):
    code = "Forbidden"
    default_message = "No tienes permisos para realizar esta operación."


class RepositoryError(Exception):
    """Fallo de infraestructura de persistencia (no forma parte del dominio)."""


class DuplicateOrderNumber(RepositoryError):
    """Otro proceso ya registró ese número de pedido; se puede reintentar con otro."""
