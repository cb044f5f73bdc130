# boxoffice/models/event.py
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, model_validator

from boxoffice import config
from boxoffice.models.common import StoreModel
from boxoffice.utils.dates import ensure_utc


class GenderRequirement(str, Enum):
    ANY = "any"
    MALE = "male"
    FEMALE = "female"


class InventoryCharge(str, Enum):
    ON_PURCHASE = "on_purchase"  # units leave inventory when the order confirms
    ON_CLAIM = "on_claim"        # shared units leave inventory only when claimed


class PriceWindow(BaseModel):
    starts_at: datetime
    ends_at: datetime
    price: float
    label: str


class TicketTier(StoreModel):
    id: str
    name: str
    base_price: float = 0.0
    # Overlapping windows resolve to the first declared match; keeping them
    # disjoint is the organizer's job when configuring the tier.
    price_windows: List[PriceWindow] = []
    quantity: int
    remaining: Optional[int] = None
    min_per_order: int = 1
    max_per_order: Optional[int] = None
    sales_start: Optional[datetime] = None
    sales_end: Optional[datetime] = None
    gender_requirement: GenderRequirement = GenderRequirement.ANY
    is_couple: bool = False
    entry_type: str = "general"
    promoter_enabled: bool = True
    promoter_discount: Optional[float] = None
    promoter_discount_type: Literal["percent", "fixed"] = "percent"
    inventory_charge: Optional[InventoryCharge] = None

    @model_validator(mode="after")
    def default_remaining(self):
        if self.remaining is None:
            self.remaining = self.quantity
        return self

    @property
    def is_free(self) -> bool:
        return self.base_price == 0 and all(w.price == 0 for w in self.price_windows)

    @property
    def charge_mode(self) -> InventoryCharge:
        return InventoryCharge(self.inventory_charge or config.DEFAULT_INVENTORY_CHARGE)

    def sales_open(self, now: datetime) -> bool:
        if self.sales_start and now < ensure_utc(self.sales_start):
            return False
        if self.sales_end and now > ensure_utc(self.sales_end):
            return False
        return True


class PromoterSettings(BaseModel):
    enabled: bool = False
    buyer_discounts_enabled: bool = False
    discount: Optional[float] = None
    discount_type: Literal["percent", "fixed"] = "percent"
    use_default_discount: bool = True


class EventBase(BaseModel):
    title: str
    description: Optional[str] = None
    starts_at: datetime
    location: Optional[str] = None
    is_rsvp: bool = False
    promoter_settings: PromoterSettings = PromoterSettings()


class EventCreate(EventBase):
    tiers: List[TicketTier]


class Event(EventBase, StoreModel):
    id: str
    tiers: List[TicketTier]
    created_by: Optional[str] = None

    def tier(self, tier_id: str) -> Optional[TicketTier]:
        return next((t for t in self.tiers if t.id == tier_id), None)
