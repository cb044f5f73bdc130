# boxoffice/models/reservation.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from boxoffice.models.common import StoreModel
from boxoffice.utils.dates import ensure_utc


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    EXPIRED = "expired"
    CONVERTED = "converted"


class ReservationItemRequest(BaseModel):
    tier_id: str
    quantity: int


class ReservationRequest(BaseModel):
    event_id: str
    items: List[ReservationItemRequest]
    device_id: Optional[str] = None
    queue_id: Optional[str] = None


class ReservationItem(BaseModel):
    tier_id: str
    tier_name: str
    entry_type: str = "general"
    quantity: int
    unit_price: float
    price_label: Optional[str] = None
    subtotal: float


class CartReservation(StoreModel):
    id: str
    event_id: str
    customer_id: Optional[str] = None
    device_id: Optional[str] = None
    queue_id: Optional[str] = None
    items: List[ReservationItem]
    status: ReservationStatus = ReservationStatus.ACTIVE
    created_at: datetime
    expires_at: datetime
    order_id: Optional[str] = None
    # True once the held units were taken out of tier inventory by a confirmed order
    settled: bool = False
    released_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= ensure_utc(self.expires_at)

    def expires_in_seconds(self, now: datetime) -> int:
        return max(0, int((ensure_utc(self.expires_at) - now).total_seconds()))
