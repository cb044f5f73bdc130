# tests/test_sharing.py
from datetime import timedelta

import pytest

from boxoffice.database import ORDERS, SHARE_BUNDLES
from boxoffice.errors import AlreadyClaimed, Conflict, Expired, GenderRestricted, SoldOut, Unauthorized
from boxoffice.models.ticket import BundleStatus, ClaimStatus, ShareMode, SlotType
from boxoffice.services.scanning import validate_and_scan
from boxoffice.services.sharing import claim_slot, create_share_bundle, get_share_bundle
from boxoffice.utils.qr import verify_payload

from conftest import EVENT_ID, NOW, tier_remaining

pytestmark = pytest.mark.anyio


async def test_bundle_layout_for_couple_tier(store, purchase):
    order = await purchase("couple", 2)

    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    assert bundle.total_slots == 4
    assert bundle.remaining_slots == 3
    assert bundle.expires_at == NOW + timedelta(days=10)
    first = bundle.slot(1)
    assert first.slot_type == SlotType.OWNER_LOCKED
    assert first.claim_status == ClaimStatus.CLAIMED
    assert first.current_owner_user_id == "u-buyer"
    assert [s.required_gender for s in bundle.slots] == ["male", "female", "male", "female"]
    assert bundle.slot(1).couple_pair_id == bundle.slot(2).couple_pair_id
    assert bundle.slot(2).couple_pair_id != bundle.slot(3).couple_pair_id


async def test_share_is_idempotent_per_order_line(store, purchase):
    order = await purchase("ga", 3)

    first = await create_share_bundle(store, order.id, "u-buyer", now=NOW)
    second = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    assert first.id == second.id
    assert first.token == second.token
    assert len(await store.find(SHARE_BUNDLES, {"order_id": order.id})) == 1


async def test_only_the_purchaser_can_share(store, purchase):
    order = await purchase("ga", 2)
    with pytest.raises(Unauthorized):
        await create_share_bundle(store, order.id, "u-bob", now=NOW)


async def test_gender_gated_claim(store, purchase):
    order = await purchase("couple", 1)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)
    assert bundle.slot(2).required_gender == "female"

    with pytest.raises(GenderRestricted) as exc:
        await claim_slot(store, bundle.token, "u-bob", now=NOW)
    assert exc.value.context["required"] == ["female"]

    result = await claim_slot(store, bundle.token, "u-alice", now=NOW)

    assert result.already_claimed is False
    assert result.assignment.slot_index == 2
    assert result.assignment.redeemer_id == "u-alice"
    assert verify_payload(result.assignment.qr_payload) is not None
    updated = await get_share_bundle(store, bundle.token, now=NOW)
    assert updated.remaining_slots == bundle.remaining_slots - 1
    assert updated.status == BundleStatus.EXHAUSTED


async def test_claim_is_idempotent_per_redeemer(store, purchase):
    order = await purchase("ga", 3)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    first = await claim_slot(store, bundle.token, "u-bob", now=NOW)
    second = await claim_slot(store, bundle.token, "u-bob", now=NOW)

    assert second.already_claimed is True
    assert second.assignment.id == first.assignment.id
    assert (await get_share_bundle(store, bundle.token, now=NOW)).remaining_slots == 1


async def test_owner_cannot_claim_own_bundle(store, purchase):
    order = await purchase("ga", 2)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    with pytest.raises(Unauthorized):
        await claim_slot(store, bundle.token, "u-buyer", now=NOW)


async def test_exhausted_bundle_rejects_new_claimants(store, purchase):
    order = await purchase("ga", 2)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)
    await claim_slot(store, bundle.token, "u-bob", now=NOW)

    with pytest.raises(AlreadyClaimed):
        await claim_slot(store, bundle.token, "u-alice", now=NOW)


async def test_expired_bundle_is_marked_before_rejecting(store, purchase):
    order = await purchase("ga", 2)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    with pytest.raises(Expired):
        await claim_slot(store, bundle.token, "u-bob", now=NOW + timedelta(days=11))

    doc = await store.get(SHARE_BUNDLES, bundle.id)
    assert doc["status"] == BundleStatus.EXPIRED.value
    assert doc["remaining_slots"] == 1


async def test_deferred_inventory_is_charged_on_claim(store, purchase):
    order = await purchase("ladies", 3, user_id="u-alice", email="alice@example.com")
    # Only the purchaser's own unit is charged up front.
    assert await tier_remaining(store, "ladies") == 2

    bundle = await create_share_bundle(store, order.id, "u-alice", now=NOW)
    assert all(s.required_gender == "female" for s in bundle.slots)

    result = await claim_slot(store, bundle.token, "u-carol", now=NOW)

    assert result.assignment.inventory_charged is True
    assert await tier_remaining(store, "ladies") == 1


async def test_claim_aborts_when_deferred_inventory_runs_out(store, purchase):
    order = await purchase("ladies", 3, user_id="u-alice", email="alice@example.com")
    other = await purchase("ladies", 2, user_id="u-carol", email="carol@example.com")
    assert await tier_remaining(store, "ladies") == 1
    bundle = await create_share_bundle(store, other.id, "u-carol", now=NOW)
    await claim_slot(store, bundle.token, "u-alice", now=NOW)
    assert await tier_remaining(store, "ladies") == 0

    alice_bundle = await create_share_bundle(store, order.id, "u-alice", now=NOW)
    with pytest.raises(SoldOut):
        await claim_slot(store, alice_bundle.token, "u-carol", now=NOW)

    doc = await store.get(SHARE_BUNDLES, alice_bundle.id)
    assert doc["remaining_slots"] == 2


async def test_shared_qr_bundle_uses_one_group_payload(store, purchase):
    order = await purchase("ga", 3)
    bundle = await create_share_bundle(store, order.id, "u-buyer", mode=ShareMode.SHARED_QR, now=NOW)

    assert bundle.scan_credits_remaining == 3
    assert verify_payload(bundle.group_payload) is not None

    result = await claim_slot(store, bundle.token, "u-bob", now=NOW)
    assert result.assignment.is_shared_qr is True
    assert result.assignment.qr_payload == bundle.group_payload


async def test_claim_retires_the_purchasers_unit_ticket(store, purchase):
    order = await purchase("ga", 2)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    claim = await claim_slot(store, bundle.token, "u-bob", now=NOW)

    assert claim.assignment.slot_index == 2
    stored = await store.get(ORDERS, order.id)
    assert [t["status"] for t in stored["tickets_issued"]] == ["active", "transferred"]

    doors = NOW + timedelta(days=10)
    payloads = [order.tickets_issued[0].qr_payload, order.tickets_issued[1].qr_payload, claim.assignment.qr_payload]
    results = [await validate_and_scan(store, p, EVENT_ID, now=doors) for p in payloads]
    assert [r.valid for r in results] == [True, False, True]
    assert results[1].reason == "ticket_transferred"


async def test_slots_whose_unit_ticket_was_scanned_are_skipped(store, purchase):
    order = await purchase("ga", 3)
    assert (await validate_and_scan(store, order.tickets_issued[1].qr_payload, EVENT_ID, now=NOW)).valid
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    claim = await claim_slot(store, bundle.token, "u-bob", now=NOW)
    assert claim.assignment.slot_index == 3

    with pytest.raises(Conflict) as exc:
        await claim_slot(store, bundle.token, "u-carol", now=NOW)
    assert exc.value.code == "already_used"


async def test_fully_scanned_order_has_nothing_to_claim(store, purchase):
    order = await purchase("ga", 2)
    for ticket in order.tickets_issued:
        await validate_and_scan(store, ticket.qr_payload, EVENT_ID, now=NOW)
    bundle = await create_share_bundle(store, order.id, "u-buyer", now=NOW)

    with pytest.raises(Conflict) as exc:
        await claim_slot(store, bundle.token, "u-bob", now=NOW)

    assert exc.value.code == "already_used"
    assert await store.find(SHARE_BUNDLES, {"id": bundle.id, "remaining_slots": 1})
