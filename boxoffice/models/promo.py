# boxoffice/models/promo.py
import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from boxoffice.models.common import StoreModel


def normalize_code(code: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", code.upper())


class PromoBase(BaseModel):
    code: str
    name: Optional[str] = None
    discount_type: str  # "percent" or "fixed"
    discount_value: float
    tier_ids: List[str] = []  # empty applies to every tier
    max_redemptions: Optional[int] = None
    max_per_user: Optional[int] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True

    @field_validator('discount_type')
    def validate_discount_type(cls, v):
        if v not in ["percent", "fixed"]:
            raise ValueError("discount_type must be either 'percent' or 'fixed'")
        return v

    @field_validator('code')
    def validate_code(cls, v):
        code = normalize_code(v)
        if len(code) < 3:
            raise ValueError("Promo code must be at least 3 characters")
        return code


class PromoCreate(PromoBase):
    event_id: str


class Promo(PromoBase, StoreModel):
    id: str
    event_id: str
    redemption_count: int = 0
    created_by: Optional[str] = None


class PromoRedemption(StoreModel):
    id: str
    promo_code_id: str
    order_id: str
    user_id: Optional[str] = None
    discount_amount: float
    redeemed_at: datetime


class PromoterLinkCreate(BaseModel):
    event_id: str
    promoter_id: str
    code: str


class PromoterLink(PromoterLinkCreate, StoreModel):
    id: str
    is_active: bool = True
