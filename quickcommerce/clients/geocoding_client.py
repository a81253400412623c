"""Cliente HTTP para geocodificación inversa (Google Geocoding API)."""

import logging
from typing import Optional

import requests

from quickcommerce.config import Config
from quickcommerce.domain.entities import Coordinates
from quickcommerce.domain.errors import UpstreamUnavailable
from quickcommerce.domain.interfaces import GeocodingService

logger = logging.getLogger(__name__)


class GeocodingClient(GeocodingService):
    """
    Convierte coordenadas en una dirección legible.
    Cualquier falla del proveedor (timeout, error HTTP, respuesta vacía) se
    resuelve localmente con las coordenadas formateadas, así nunca bloquea la
    confirmación de ubicación ni la creación del pedido.
    """

    def __init__(self, api_key: str = None, base_url: str = None, timeout: float = None):
        self.api_key = api_key if api_key is not None else Config.GEOCODING_API_KEY
        self.base_url = base_url or Config.GEOCODING_URL
        self.timeout = timeout if timeout is not None else Config.GEOCODING_TIMEOUT

    def lookup(self, point: Coordinates) -> Optional[str]:
        """Llama al proveedor. Lanza UpstreamUnavailable si no hay respuesta útil."""
        if not self.api_key:
            raise UpstreamUnavailable("Clave de geocodificación no configurada.")
        try:
            response = requests.get(
                self.base_url,
                params={"latlng": f"{point.lat},{point.lng}", "key": self.api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(f"Error al consumir el servicio de geocodificación: {e}")
        except ValueError:
            raise UpstreamUnavailable("Respuesta JSON inválida del servicio de geocodificación.")

        results = data.get("results") or []
        if data.get("status") not in (None, "OK") or not results:
            logger.warning(f"Geocodificación sin resultados para {point.as_label()}: {data.get('status')}")
            return None
        return results[0].get("formatted_address")

    def reverse_geocode(self, point: Coordinates) -> str:
        try:
            address = self.lookup(point)
        except UpstreamUnavailable as e:
            logger.warning(f"{e.message} Usando coordenadas como dirección.")
            return point.as_label()
        return address or point.as_label()
