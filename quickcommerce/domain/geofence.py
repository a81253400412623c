"""
Validación de zona de servicio (geofence) de un darkstore.

Dos pruebas posibles por hub:
- Polígono: ray-casting sobre los vértices (lat, lng). Un punto exactamente
  sobre un borde o un vértice se considera DENTRO.
- Radio: distancia Haversine al centro <= radio configurado (el límite
  exacto cuenta como dentro).
"""
import math
from dataclasses import dataclass
from typing import List, Optional

from .entities import Coordinates, Hub

EARTH_RADIUS_KM = 6371.0
# Tolerancia en grados para decidir si el punto cae sobre un borde
EDGE_TOLERANCE = 1e-12


@dataclass(frozen=True)
class ServiceabilityResult:
    serviceable: bool
    reason: Optional[str] = None
    hub_id: Optional[str] = None


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Distancia de gran círculo en kilómetros."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = math.sin(d_lat / 2) ** 2 + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(
        d_lng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _on_segment(point: Coordinates, start: Coordinates, end: Coordinates) -> bool:
    cross = (end.lng - start.lng) * (point.lat - start.lat) - (end.lat - start.lat) * (point.lng - start.lng)
    if abs(cross) > EDGE_TOLERANCE:
        return False
    return (
        min(start.lng, end.lng) - EDGE_TOLERANCE <= point.lng <= max(start.lng, end.lng) + EDGE_TOLERANCE
        and min(start.lat, end.lat) - EDGE_TOLERANCE <= point.lat <= max(start.lat, end.lat) + EDGE_TOLERANCE
    )


def point_in_polygon(point: Coordinates, polygon: List[Coordinates]) -> bool:
    """Ray-casting sobre el eje de longitud. Bordes y vértices cuentan como dentro."""
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        vi, vj = polygon[i], polygon[j]
        if _on_segment(point, vj, vi):
            return True
        if (vi.lat > point.lat) != (vj.lat > point.lat):
            crossing_lng = (vj.lng - vi.lng) * (point.lat - vi.lat) / (vj.lat - vi.lat) + vi.lng
            if point.lng < crossing_lng:
                inside = not inside
        j = i
    return inside


def within_radius(point: Coordinates, center: Coordinates, radius_km: float) -> bool:
    return haversine_km(point, center) <= radius_km


def is_serviceable(point: Coordinates, hub: Hub) -> bool:
    """True si el punto está dentro del área del hub (polígono tiene prioridad sobre radio)."""
    if hub.polygon:
        return point_in_polygon(point, hub.polygon)
    if hub.center is not None and hub.radius_km is not None:
        return within_radius(point, hub.center, hub.radius_km)
    return False


def check(point: Coordinates, hub: Hub) -> ServiceabilityResult:
    if not hub.is_active:
        return ServiceabilityResult(False, f"El darkstore {hub.name} no está operando.", hub.id)
    if not hub.polygon and (hub.center is None or hub.radius_km is None):
        return ServiceabilityResult(False, f"El darkstore {hub.name} no tiene zona de servicio configurada.", hub.id)
    if is_serviceable(point, hub):
        return ServiceabilityResult(True, None, hub.id)
    return ServiceabilityResult(False, "La dirección está fuera de la zona de reparto.", hub.id)


def find_serving_hub(point: Coordinates, hubs: List[Hub]) -> Optional[Hub]:
    """Primer hub activo (en orden estable) cuya zona contiene el punto."""
    for hub in hubs:
        if check(point, hub).serviceable:
            return hub
    return None
