# boxoffice/services/promotions.py
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from boxoffice.database import PROMO_CODES, PROMO_REDEMPTIONS, PROMOTER_LINKS
from boxoffice.errors import Conflict
from boxoffice.models.order import PricedLine
from boxoffice.models.promo import (
    Promo,
    PromoCreate,
    PromoRedemption,
    PromoterLink,
    PromoterLinkCreate,
    normalize_code,
)
from boxoffice.store.base import DocumentReader, DocumentStore, Transaction
from boxoffice.utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PromoValidation:
    valid: bool
    amount: float = 0.0
    label: str = ""
    promo: Optional[Promo] = None
    error: Optional[str] = None


async def get_promo_by_code(reader: DocumentReader, event_id: str, code: str) -> Optional[Promo]:
    doc = await reader.find_one(PROMO_CODES, {"event_id": event_id, "code": normalize_code(code)})
    return Promo(**doc) if doc else None


async def validate_promo_code(
    reader: DocumentReader,
    event_id: str,
    code: str,
    items: List[PricedLine],
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PromoValidation:
    now = utcnow(now)
    promo = await get_promo_by_code(reader, event_id, code)

    if not promo:
        return PromoValidation(False, error="Invalid promo code")
    if not promo.is_active:
        return PromoValidation(False, error="This promo code is no longer active")
    if promo.starts_at and now < ensure_utc(promo.starts_at):
        return PromoValidation(False, error="This promo code is not yet active")
    if promo.ends_at and now > ensure_utc(promo.ends_at):
        return PromoValidation(False, error="This promo code has expired")
    if promo.max_redemptions and promo.redemption_count >= promo.max_redemptions:
        return PromoValidation(False, error="This promo code has reached its maximum uses")

    if promo.max_per_user and user_id:
        used = await reader.find(PROMO_REDEMPTIONS, {"promo_code_id": promo.id, "user_id": user_id})
        if len(used) >= promo.max_per_user:
            return PromoValidation(False, error="You have already used this promo code")

    applicable = [i for i in items if not promo.tier_ids or i.tier_id in promo.tier_ids]
    if not applicable:
        return PromoValidation(False, error="This promo code does not apply to your selected tickets")

    applicable_subtotal = 0.0
    for item in applicable:
        applicable_subtotal = round(applicable_subtotal + item.subtotal, 2)

    if promo.discount_type == "percent":
        amount = round(applicable_subtotal * promo.discount_value / 100, 2)
        label = f"{promo.discount_value:g}% off"
    else:
        amount = round(promo.discount_value, 2)
        label = f"{promo.discount_value:g} off"
    amount = min(amount, applicable_subtotal)

    return PromoValidation(True, amount=amount, label=label, promo=promo)


async def record_redemption(
    txn: Transaction,
    promo_code_id: str,
    order_id: str,
    user_id: Optional[str],
    discount_amount: float,
    now: datetime,
) -> None:
    redemption = PromoRedemption(
        id=f"{promo_code_id}-{order_id}",
        promo_code_id=promo_code_id,
        order_id=order_id,
        user_id=user_id,
        discount_amount=discount_amount,
        redeemed_at=now,
    )
    await txn.insert(PROMO_REDEMPTIONS, redemption.to_doc())
    await txn.update(PROMO_CODES, promo_code_id, inc={"redemption_count": 1}, set={"updated_at": now})


async def get_promoter_link(reader: DocumentReader, code: str) -> Optional[PromoterLink]:
    doc = await reader.find_one(PROMOTER_LINKS, {"code": code, "is_active": True})
    return PromoterLink(**doc) if doc else None


async def create_promo(store: DocumentStore, data: PromoCreate, created_by: str) -> Promo:
    if await get_promo_by_code(store, data.event_id, data.code):
        raise Conflict("Promo code already exists for this event", code="promo_exists")
    promo = Promo(id=str(uuid.uuid4()), created_by=created_by, **data.model_dump())
    await store.insert(PROMO_CODES, promo.to_doc())
    logger.info("Promo code %s created for event %s", promo.code, promo.event_id)
    return promo


async def list_promos(store: DocumentStore, created_by: str) -> List[Promo]:
    return [Promo(**doc) for doc in await store.find(PROMO_CODES, {"created_by": created_by}, limit=100)]


async def create_promoter_link(store: DocumentStore, data: PromoterLinkCreate) -> PromoterLink:
    if await store.find_one(PROMOTER_LINKS, {"code": data.code}):
        raise Conflict("Promoter code already in use", code="promoter_code_exists")
    link = PromoterLink(id=str(uuid.uuid4()), **data.model_dump())
    await store.insert(PROMOTER_LINKS, link.to_doc())
    return link
