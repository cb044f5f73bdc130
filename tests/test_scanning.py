# tests/test_scanning.py
from datetime import timedelta

import anyio
import pytest

from boxoffice.models.ticket import ShareMode
from boxoffice.services.orders import cancel_order
from boxoffice.services.scanning import WAITING_FOR_PARTNER, validate_and_scan
from boxoffice.services.sharing import claim_slot, create_share_bundle
from boxoffice.utils.qr import TicketRef, sign_identifier, sign_ref

from conftest import EVENT_ID, NOW, RSVP_EVENT_ID

pytestmark = pytest.mark.anyio

DOORS = NOW + timedelta(days=10)


async def test_unit_ticket_scans_exactly_once(store, purchase):
    order = await purchase("ga", 1)
    payload = order.tickets_issued[0].qr_payload

    first = await validate_and_scan(store, payload, EVENT_ID, scanner_id="u-door", now=DOORS)
    second = await validate_and_scan(store, payload, EVENT_ID, scanner_id="u-door", now=DOORS)

    assert first.valid is True
    assert first.ticket["order_id"] == order.id
    assert second.valid is False
    assert second.reason == "already_used"
    assert second.scanned_at == DOORS


async def test_concurrent_scans_admit_one_holder(store, purchase):
    order = await purchase("ga", 1)
    payload = order.tickets_issued[0].qr_payload
    results = []

    async def scan():
        results.append(await validate_and_scan(store, payload, EVENT_ID, now=DOORS))

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(scan)

    assert sum(r.valid for r in results) == 1
    assert {r.reason for r in results if not r.valid} == {"already_used"}


async def test_tampered_payloads_are_rejected(store, purchase):
    order = await purchase("ga", 1)
    payload = order.tickets_issued[0].qr_payload
    identifier, _, signature = payload.rpartition(":")

    forged = sign_identifier(identifier, secret="someone-elses-secret")
    assert (await validate_and_scan(store, forged, EVENT_ID, now=DOORS)).reason == "invalid_signature"
    assert (await validate_and_scan(store, "garbage", EVENT_ID, now=DOORS)).reason == "invalid_signature"

    unreadable = sign_identifier("not-a-ticket-ref")
    assert (await validate_and_scan(store, unreadable, EVENT_ID, now=DOORS)).reason == "invalid_format"


async def test_wrong_event_is_rejected(store, purchase):
    order = await purchase("ga", 1)
    result = await validate_and_scan(store, order.tickets_issued[0].qr_payload, RSVP_EVENT_ID, now=DOORS)
    assert result.reason == "wrong_event"


async def test_cancelled_order_does_not_scan(store, purchase):
    order = await purchase("ga", 1)
    await cancel_order(store, order.id, "u-buyer", now=NOW)

    result = await validate_and_scan(store, order.tickets_issued[0].qr_payload, EVENT_ID, now=DOORS)
    assert result.reason == "order_cancelled"


async def test_unit_for_unknown_order(store):
    payload = sign_ref(TicketRef.unit("ORD-missing", "ga", 0))
    assert (await validate_and_scan(store, payload, EVENT_ID, now=DOORS)).reason == "not_found"


async def test_buyer_gender_is_checked_for_gated_tiers(store, purchase):
    # A male buyer can hold ladies-night tickets but cannot walk in on one.
    order = await purchase("ladies", 1)

    result = await validate_and_scan(store, order.tickets_issued[0].qr_payload, EVENT_ID, now=DOORS)

    assert result.valid is False
    assert result.reason == "gender_mismatch"
    assert result.required == "female"
    assert result.actual == "male"


async def test_couple_pair_waits_for_partner(store, purchase):
    order = await purchase("couple", 1)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    lead = await validate_and_scan(store, order.tickets_issued[0].qr_payload, EVENT_ID, now=DOORS)
    assert lead.valid is True
    assert lead.pair_complete is False
    assert lead.note == WAITING_FOR_PARTNER

    partner = await claim_slot(store, bundle.token, "u-alice", now=NOW)
    second = await validate_and_scan(store, partner.assignment.qr_payload, EVENT_ID, now=DOORS)

    assert second.valid is True
    assert second.pair_complete is True
    assert second.note is None

    again = await validate_and_scan(store, partner.assignment.qr_payload, EVENT_ID, now=DOORS)
    assert again.reason == "already_used"


async def test_couple_partner_scanned_first(store, purchase):
    order = await purchase("couple", 1)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)
    partner = await claim_slot(store, bundle.token, "u-alice", now=NOW)

    first = await validate_and_scan(store, partner.assignment.qr_payload, EVENT_ID, now=DOORS)
    assert first.note == WAITING_FOR_PARTNER

    lead = await validate_and_scan(store, order.tickets_issued[0].qr_payload, EVENT_ID, now=DOORS)
    assert lead.pair_complete is True


async def test_group_pass_spends_scan_credits(store, purchase):
    order = await purchase("ga", 2)
    bundle = await create_share_bundle(store, order.id, "u-buyer", mode=ShareMode.SHARED_QR, now=NOW)
    await claim_slot(store, bundle.token, "u-bob", now=NOW)

    first = await validate_and_scan(store, bundle.group_payload, EVENT_ID, now=DOORS)
    assert first.valid is True
    assert first.scans_remaining == 1
    assert {m["user_id"] for m in first.roster} == {"u-buyer", "u-bob"}

    second = await validate_and_scan(store, bundle.group_payload, EVENT_ID, now=DOORS)
    assert second.scans_remaining == 0

    third = await validate_and_scan(store, bundle.group_payload, EVENT_ID, now=DOORS)
    assert third.valid is False
    assert third.reason == "scan_credits_exhausted"
