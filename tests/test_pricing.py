# tests/test_pricing.py
from datetime import timedelta

import pytest

from boxoffice.models.event import PriceWindow, TicketTier
from boxoffice.models.order import PricingItem
from boxoffice.models.promo import PromoCreate, PromoterLinkCreate
from boxoffice.services.promotions import create_promo, create_promoter_link
from boxoffice.utils.pricing import calculate_pricing, resolve_unit_price

from conftest import EVENT_ID, NOW, RSVP_EVENT_ID

pytestmark = pytest.mark.anyio


def test_price_window_bounds_are_inclusive():
    window_start, window_end = NOW, NOW + timedelta(days=1)
    tier = TicketTier(
        id="t", name="T", base_price=100, quantity=1,
        price_windows=[PriceWindow(starts_at=window_start, ends_at=window_end, price=70, label="Launch")],
    )

    assert resolve_unit_price(tier, window_start).unit_price == 70
    assert resolve_unit_price(tier, window_end).unit_price == 70
    assert resolve_unit_price(tier, window_end).schedule_label == "Launch"

    after = resolve_unit_price(tier, window_end + timedelta(seconds=1))
    assert after.unit_price == 100
    assert after.is_scheduled is False


def test_first_matching_window_wins():
    tier = TicketTier(
        id="t", name="T", base_price=100, quantity=1,
        price_windows=[
            PriceWindow(starts_at=NOW - timedelta(days=1), ends_at=NOW + timedelta(days=1), price=60, label="A"),
            PriceWindow(starts_at=NOW - timedelta(hours=1), ends_at=NOW + timedelta(hours=1), price=80, label="B"),
        ],
    )
    assert resolve_unit_price(tier, NOW).schedule_label == "A"


async def test_fees_apply_to_paid_totals(store):
    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=2)], now=NOW)

    assert quote.subtotal == 1000
    assert quote.fees.platform == 50
    assert quote.fees.payment == 25
    assert quote.fees.tax == pytest.approx(13.5)
    assert quote.grand_total == pytest.approx(1088.5)
    assert quote.is_free is False


async def test_scheduled_price_is_used(store):
    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="early", quantity=1)], now=NOW)
    assert quote.items[0].unit_price == 600
    assert quote.items[0].price_label == "Early Bird"


async def test_frozen_unit_price_is_kept(store):
    quote = await calculate_pricing(
        store, EVENT_ID, [PricingItem(tier_id="early", quantity=1, unit_price=600)], now=NOW + timedelta(days=3),
    )
    assert quote.subtotal == 600


async def test_invalid_promo_code_does_not_fail_the_quote(store):
    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=1)],
                                    promo_code="NOPE", now=NOW)

    assert quote.promo_code_error == "Invalid promo code"
    assert quote.discount_total == 0
    assert quote.subtotal == 500


async def test_full_discount_promo_makes_order_free(store):
    await create_promo(store, PromoCreate(event_id=EVENT_ID, code="comp100", discount_type="percent",
                                          discount_value=100), created_by="u-manager")

    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=2)],
                                    promo_code="COMP100", now=NOW)

    assert quote.discount_total == 1000
    assert quote.fees.total == 0
    assert quote.grand_total == 0
    assert quote.is_free is True


async def test_fixed_promo_is_capped_at_subtotal(store):
    await create_promo(store, PromoCreate(event_id=EVENT_ID, code="BIGOFF", discount_type="fixed",
                                          discount_value=5000), created_by="u-manager")

    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=1)],
                                    promo_code="BIGOFF", now=NOW)
    assert quote.discount_total == 500
    assert quote.grand_total == 0


async def test_promo_restricted_to_other_tiers(store):
    await create_promo(store, PromoCreate(event_id=EVENT_ID, code="COUPLES", discount_type="percent",
                                          discount_value=20, tier_ids=["couple"]), created_by="u-manager")

    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=1)],
                                    promo_code="COUPLES", now=NOW)
    assert quote.promo_code_error == "This promo code does not apply to your selected tickets"


async def test_promo_outside_its_window(store):
    await create_promo(store, PromoCreate(event_id=EVENT_ID, code="LATER", discount_type="percent",
                                          discount_value=20, starts_at=NOW + timedelta(days=1)),
                       created_by="u-manager")

    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=1)],
                                    promo_code="LATER", now=NOW)
    assert quote.promo_code_error == "This promo code is not yet active"


async def test_promoter_discount_applies_to_enabled_tiers_only(store):
    await create_promoter_link(store, PromoterLinkCreate(event_id=EVENT_ID, promoter_id="p-1", code="DJ-MAX"))

    quote = await calculate_pricing(
        store, EVENT_ID,
        [PricingItem(tier_id="ga", quantity=2), PricingItem(tier_id="early", quantity=1)],
        promoter_code="DJ-MAX", now=NOW,
    )

    assert quote.subtotal == 1600
    assert [d.type for d in quote.discounts] == ["promoter"]
    assert quote.discount_total == 100
    assert quote.grand_total == pytest.approx(1500 + 75 + 37.5 + 20.25)


async def test_promoter_code_for_another_event_is_ignored(store):
    await create_promoter_link(store, PromoterLinkCreate(event_id=RSVP_EVENT_ID, promoter_id="p-1", code="ELSEWHERE"))

    quote = await calculate_pricing(store, EVENT_ID, [PricingItem(tier_id="ga", quantity=1)],
                                    promoter_code="ELSEWHERE", now=NOW)
    assert quote.discounts == []


async def test_rsvp_quotes_are_free_without_fees(store):
    quote = await calculate_pricing(store, RSVP_EVENT_ID, [PricingItem(tier_id="rsvp", quantity=1)], now=NOW)
    assert quote.grand_total == 0
    assert quote.fees.total == 0
    assert quote.is_free is True
