from datetime import datetime
from typing import Any, Dict, Optional

from quickcommerce.domain import sla
from quickcommerce.domain.state_machine import next_status
from quickcommerce.domain.entities import Order, StatusChange


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_order(order: Order, now: datetime) -> Dict[str, Any]:
    """Pedido + señales calculadas en vivo (progreso y temporizador)."""
    timer = sla.evaluate(order, now)
    upcoming = next_status(order.status)
    return {
        "id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "status": order.status.value,
        "progress": order.progress,
        "next_status": upcoming.value if upcoming else None,
        "payment_status": order.payment_status.value,
        "items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_price": float(item.unit_price),
                "line_total": float(item.line_total),
            }
            for item in order.items
        ],
        "delivery_address": order.delivery_address,
        "delivery_coordinates": {
            "lat": order.delivery_coordinates.lat,
            "lng": order.delivery_coordinates.lng,
        },
        "subtotal": float(order.subtotal),
        "delivery_fee": float(order.delivery_fee),
        "promo_discount": float(order.promo_discount),
        "total_amount": float(order.total_amount),
        "estimated_delivery_minutes": order.estimated_delivery_minutes,
        "hub_id": order.hub_id,
        "delivery_partner_id": order.delivery_partner_id,
        "created_at": _iso(order.created_at),
        "accepted_at": _iso(order.accepted_at),
        "picked_up_at": _iso(order.picked_up_at),
        "delivered_at": _iso(order.delivered_at),
        "cancelled_at": _iso(order.cancelled_at),
        "delivery_time_minutes": order.delivery_time_minutes,
        "timer": {
            "state": timer.state,
            "elapsed": timer.elapsed,
            "remaining": timer.remaining,
            "elapsed_seconds": timer.elapsed_seconds,
            "remaining_seconds": max(0, timer.remaining_seconds),
            "is_overdue": timer.is_overdue,
            "partner_remaining": timer.partner_remaining,
        },
        "version": order.version,
    }


def serialize_status_change(change: StatusChange) -> Dict[str, Any]:
    return {
        "status": change.status.value,
        "previous_status": change.previous_status.value if change.previous_status else None,
        "changed_at": _iso(change.changed_at),
        "actor_id": change.actor_id,
        "note": change.note,
    }
