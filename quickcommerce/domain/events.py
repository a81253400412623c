from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"


@dataclass(frozen=True)
class OrderEvent:
    """Notificación de cambio de un pedido, identificada por order_id."""
    event_type: str
    order_id: str
    order_number: str
    status: str
    previous_status: Optional[str]
    version: int
    occurred_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "status": self.status,
            "previous_status": self.previous_status,
            "version": self.version,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderEvent":
        return cls(
            event_type=data["event_type"],
            order_id=str(data["order_id"]),
            order_number=data["order_number"],
            status=data["status"],
            previous_status=data.get("previous_status"),
            version=int(data["version"]),
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
        )
