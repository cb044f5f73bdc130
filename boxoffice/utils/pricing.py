# boxoffice/utils/pricing.py
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from boxoffice import config
from boxoffice.errors import NotFound
from boxoffice.models.event import Event, TicketTier
from boxoffice.models.order import Discount, Fees, PricedLine, PricingItem, PricingQuote
from boxoffice.services.catalog import get_event
from boxoffice.services.promotions import get_promoter_link, validate_promo_code
from boxoffice.store.base import DocumentReader
from boxoffice.utils.dates import ensure_utc, utcnow


@dataclass(frozen=True)
class ResolvedPrice:
    unit_price: float
    schedule_label: Optional[str]
    is_scheduled: bool


def resolve_unit_price(tier: TicketTier, at: Optional[datetime] = None) -> ResolvedPrice:
    """
    Effective unit price for a tier at a point in time.

    Windows are scanned in declaration order and the first one containing
    ``at`` (both ends inclusive) wins; otherwise the base price applies.
    """
    at = utcnow(at)
    for window in tier.price_windows:
        if ensure_utc(window.starts_at) <= at <= ensure_utc(window.ends_at):
            return ResolvedPrice(window.price, window.label, True)
    return ResolvedPrice(tier.base_price, None, False)


def calculate_promoter_discount(items: List[PricedLine], event: Event) -> float:
    settings = event.promoter_settings
    if not settings.enabled or not settings.buyer_discounts_enabled:
        return 0.0

    total_discount = 0.0
    for item in items:
        tier = event.tier(item.tier_id)
        if tier is None or not tier.promoter_enabled:
            continue

        rate = settings.discount if settings.discount is not None else config.DEFAULT_PROMOTER_DISCOUNT
        discount_type = settings.discount_type
        if not settings.use_default_discount and tier.promoter_discount is not None:
            rate = tier.promoter_discount
            discount_type = tier.promoter_discount_type

        if discount_type == "percent":
            line_discount = round(item.subtotal * rate / 100, 2)
        else:
            line_discount = round(rate * item.quantity, 2)
        total_discount = round(total_discount + min(line_discount, item.subtotal), 2)

    return total_discount


def price_lines(event: Event, items: List[PricingItem], at: Optional[datetime] = None) -> List[PricedLine]:
    lines = []
    for item in items:
        tier = event.tier(item.tier_id)
        if tier is None:
            raise NotFound(f"Tier {item.tier_id} not found", tier_id=item.tier_id)

        if item.unit_price is not None:
            unit_price, label = item.unit_price, None
        else:
            resolved = resolve_unit_price(tier, at)
            unit_price, label = resolved.unit_price, resolved.schedule_label
        if event.is_rsvp:
            unit_price = 0.0

        lines.append(PricedLine(
            tier_id=tier.id,
            tier_name=tier.name,
            entry_type=tier.entry_type,
            quantity=item.quantity,
            unit_price=unit_price,
            price_label=label,
            subtotal=round(unit_price * item.quantity, 2),
        ))
    return lines


async def calculate_pricing(
    reader: DocumentReader,
    event_id: str,
    items: List[PricingItem],
    promo_code: Optional[str] = None,
    promoter_code: Optional[str] = None,
    buyer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PricingQuote:
    """
    Calculate the grand total for a cart.

    Items carrying a ``unit_price`` keep it (prices frozen on a reservation);
    others are resolved from the tier. At most one promoter discount and one
    promo code apply, together never exceeding the subtotal. Fees are charged
    only when a paid event still costs something after discounts. An unusable
    promo code never fails the quote; it is reported in ``promo_code_error``.
    """
    now = utcnow(now)
    event = await get_event(reader, event_id)
    quote = PricingQuote(items=price_lines(event, items, now))

    for line in quote.items:
        quote.subtotal = round(quote.subtotal + line.subtotal, 2)

    if promoter_code and event.promoter_settings.enabled and event.promoter_settings.buyer_discounts_enabled:
        link = await get_promoter_link(reader, promoter_code)
        if link and link.event_id == event_id:
            amount = min(calculate_promoter_discount(quote.items, event), quote.subtotal)
            if amount > 0:
                quote.discounts.append(Discount(
                    type="promoter", code=promoter_code, amount=amount, label="Promoter Discount",
                ))
                quote.discount_total = round(quote.discount_total + amount, 2)

    if promo_code:
        promo = await validate_promo_code(reader, event_id, promo_code, quote.items, buyer_id, now)
        if promo.valid:
            amount = min(promo.amount, max(0.0, round(quote.subtotal - quote.discount_total, 2)))
            quote.discounts.append(Discount(
                type="promo", code=promo.promo.code, id=promo.promo.id, amount=amount, label=promo.label,
            ))
            quote.discount_total = round(quote.discount_total + amount, 2)
        else:
            quote.promo_code_error = promo.error

    discounted_subtotal = max(0.0, round(quote.subtotal - quote.discount_total, 2))

    if discounted_subtotal > 0 and not event.is_rsvp:
        platform = round(discounted_subtotal * config.PLATFORM_FEE_RATE, 2)
        payment = round(discounted_subtotal * config.PAYMENT_FEE_RATE, 2)
        tax = round((platform + payment) * config.TAX_RATE, 2)
        quote.fees = Fees(platform=platform, payment=payment, tax=tax,
                          total=round(platform + payment + tax, 2))

    quote.grand_total = round(discounted_subtotal + quote.fees.total, 2)
    quote.is_free = quote.grand_total == 0
    return quote
