# boxoffice/services/sharing.py
"""
Share bundles: the claimable slots behind one order line.

A bundle has one slot per admission (two per couple unit). Slot 1 always
belongs to the purchaser; every other slot can be claimed once through the
bundle's share token.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Set

from boxoffice import config
from boxoffice.database import SHARE_BUNDLES, TICKET_ASSIGNMENTS
from boxoffice.errors import (
    AlreadyClaimed,
    Conflict,
    Expired,
    GenderRestricted,
    NotFound,
    Unauthorized,
    ValidationFailed,
)
from boxoffice.models.event import Event, GenderRequirement, TicketTier
from boxoffice.models.order import Order, OrderStatus
from boxoffice.models.ticket import (
    BundleStatus,
    ClaimResult,
    ClaimStatus,
    PartnerStatus,
    ShareBundle,
    ShareMode,
    Slot,
    SlotType,
    TicketAssignment,
)
from boxoffice.models.user import Profile
from boxoffice.services.catalog import charge_inventory, claim_charge, get_event, get_tier
from boxoffice.services.entitlements import retire_unit_ticket, slot_unit_ticket, unit_ticket_scanned
from boxoffice.services.orders import find_order, get_order
from boxoffice.services.profiles import get_profile
from boxoffice.store.base import DocumentReader, DocumentStore, DuplicateDocument, Transaction
from boxoffice.utils.dates import ensure_utc, utcnow
from boxoffice.utils.qr import TicketRef, sign_ref

logger = logging.getLogger(__name__)


def bundle_id_for(order_id: str, tier_id: str) -> str:
    return f"BND-{order_id}-{tier_id}"


def build_slots(bundle_id: str, tier: TicketTier, units: int, owner: Profile, now: datetime) -> List[Slot]:
    """
    Lay out the slots for ``units`` purchased admissions.

    Couple tiers get two slots per unit sharing a pair id; the second slot of
    each pair is for a female partner, the first takes the purchaser's gender
    on pair one and male on the rest. Other gated tiers put the tier's
    requirement on every slot.
    """
    slots = []
    total = units * 2 if tier.is_couple else units
    for index in range(1, total + 1):
        pair_id = None
        required = tier.gender_requirement
        if tier.is_couple:
            pair_id = f"PAIR-{bundle_id}-{(index + 1) // 2}"
            if index % 2 == 0:
                required = GenderRequirement.FEMALE
            elif index == 1:
                required = owner.gender or GenderRequirement.MALE
            else:
                required = GenderRequirement.MALE

        owned = index == 1
        slots.append(Slot(
            slot_index=index,
            slot_type=SlotType.OWNER_LOCKED if owned else SlotType.SHAREABLE,
            required_gender=required,
            couple_pair_id=pair_id,
            claim_status=ClaimStatus.CLAIMED if owned else ClaimStatus.UNCLAIMED,
            current_owner_user_id=owner.user_id if owned else None,
            claimed_at=now if owned else None,
        ))
    return slots


async def create_share_bundle(
    store: DocumentStore,
    order_id: str,
    owner_id: str,
    tier_id: Optional[str] = None,
    mode: ShareMode = ShareMode.INDIVIDUAL,
    now: Optional[datetime] = None,
) -> ShareBundle:
    """Create the bundle for an order line on first share; later calls return the same bundle."""
    now = utcnow(now)
    order = await get_order(store, order_id)
    if order.user_id != owner_id:
        raise Unauthorized("Only the purchaser can share these tickets")
    if order.status != OrderStatus.CONFIRMED:
        raise Conflict("Only confirmed orders can be shared", code="order_not_confirmed")

    if tier_id is None:
        if len(order.lines) != 1:
            raise ValidationFailed("Choose which ticket tier to share", code="tier_required")
        tier_id = order.lines[0].tier_id
    line = next((l for l in order.lines if l.tier_id == tier_id), None)
    if line is None:
        raise NotFound("Tier is not part of this order", tier_id=tier_id)

    bundle_id = bundle_id_for(order_id, tier_id)
    existing = await store.get(SHARE_BUNDLES, bundle_id)
    if existing:
        return ShareBundle(**existing)

    event = await get_event(store, order.event_id)
    tier = get_tier(event, tier_id)
    owner = await get_profile(store, owner_id)
    slots = build_slots(bundle_id, tier, line.quantity, owner, now)

    bundle = ShareBundle(
        id=bundle_id,
        order_id=order_id,
        event_id=order.event_id,
        tier_id=tier_id,
        owner_id=owner_id,
        mode=mode,
        is_couple=tier.is_couple,
        total_slots=len(slots),
        remaining_slots=len(slots) - 1,
        token=secrets.token_hex(16),
        slots=slots,
        created_at=now,
        expires_at=share_expiry(event, now),
    )
    if mode == ShareMode.SHARED_QR:
        bundle.group_payload = sign_ref(TicketRef.group(bundle_id))
        bundle.scan_credits_remaining = bundle.total_slots

    try:
        await store.insert(SHARE_BUNDLES, bundle.to_doc())
    except DuplicateDocument:
        return ShareBundle(**await store.get(SHARE_BUNDLES, bundle_id))

    logger.info("Share bundle %s created (%s slots, mode %s)", bundle_id, bundle.total_slots, bundle.mode)
    return bundle


def share_expiry(event: Event, now: datetime) -> datetime:
    if event.starts_at:
        return ensure_utc(event.starts_at)
    return now + timedelta(days=config.SHARE_LINK_DEFAULT_DAYS)


async def get_bundle_by_token(reader: DocumentReader, token: str) -> ShareBundle:
    doc = await reader.find_one(SHARE_BUNDLES, {"token": token})
    if not doc:
        raise NotFound("Share link not found")
    return ShareBundle(**doc)


async def get_share_bundle(store: DocumentStore, token: str, now: Optional[datetime] = None) -> ShareBundle:
    now = utcnow(now)
    bundle = await get_bundle_by_token(store, token)
    if bundle.status == BundleStatus.ACTIVE and now >= ensure_utc(bundle.expires_at):
        await store.update_where(
            SHARE_BUNDLES,
            {"id": bundle.id, "status": BundleStatus.ACTIVE.value},
            set={"status": BundleStatus.EXPIRED.value},
        )
        bundle.status = BundleStatus.EXPIRED
    return bundle


def first_claimable_slot(bundle: ShareBundle, profile: Profile, skip: Set[int] = frozenset()) -> Optional[Slot]:
    for slot in open_slots(bundle, skip):
        if profile.satisfies(slot.required_gender):
            return slot
    return None


def open_slots(bundle: ShareBundle, skip: Set[int] = frozenset()) -> List[Slot]:
    return [s for s in bundle.slots
            if s.slot_type == SlotType.SHAREABLE and s.claim_status == ClaimStatus.UNCLAIMED
            and s.slot_index not in skip]


async def _spent_slots(txn: Transaction, order: Optional[Order], bundle: ShareBundle, tier: TicketTier) -> Set[int]:
    """Slots whose unit ticket was already admitted at the door or handed to someone else."""
    spent = set()
    for slot in open_slots(bundle):
        ticket = order and slot_unit_ticket(order, bundle.tier_id, slot.slot_index, tier.is_couple)
        if ticket and (ticket.status != "active" or await unit_ticket_scanned(txn, ticket)):
            spent.add(slot.slot_index)
    return spent


async def claim_slot(
    store: DocumentStore,
    token: str,
    redeemer_id: str,
    now: Optional[datetime] = None,
) -> ClaimResult:
    """
    Claim the first open slot the redeemer is eligible for.

    A redeemer holds at most one slot per bundle; claiming again returns the
    existing assignment. The purchaser's unit ticket for the claimed slot stops
    scanning, and slots whose unit ticket was already used are never handed out.
    """
    now = utcnow(now)
    bundle = await get_bundle_by_token(store, token)
    if bundle.owner_id == redeemer_id:
        raise Unauthorized("You cannot claim your own ticket", code="own_bundle")
    profile = await get_profile(store, redeemer_id)
    event = await get_event(store, bundle.event_id)
    tier = get_tier(event, bundle.tier_id)

    expired = False
    async with store.transaction() as txn:
        bundle = ShareBundle(**await txn.get(SHARE_BUNDLES, bundle.id))

        held = await txn.find_one(TICKET_ASSIGNMENTS, {
            "bundle_id": bundle.id, "redeemer_id": redeemer_id, "source": "claim",
        })
        if held:
            return ClaimResult(already_claimed=True, assignment=TicketAssignment(**held))

        if bundle.status == BundleStatus.ACTIVE and now >= ensure_utc(bundle.expires_at):
            await txn.update(SHARE_BUNDLES, bundle.id, set={"status": BundleStatus.EXPIRED.value})
            expired = True
        elif bundle.status == BundleStatus.EXPIRED:
            expired = True
        elif bundle.status == BundleStatus.CANCELLED:
            raise Conflict("This share link has been cancelled", code="bundle_cancelled")
        elif bundle.status == BundleStatus.EXHAUSTED or bundle.remaining_slots <= 0:
            raise AlreadyClaimed("All tickets in this bundle have been claimed", code="bundle_exhausted")
        else:
            order = await find_order(txn, bundle.order_id)
            spent = await _spent_slots(txn, order, bundle, tier)
            slot = first_claimable_slot(bundle, profile, skip=spent)
            if slot is None:
                remaining_open = open_slots(bundle, skip=spent)
                if remaining_open:
                    wanted = sorted({s.required_gender for s in remaining_open})
                    raise GenderRestricted(
                        f"No slots available for your gender. Open slots require: {', '.join(wanted)}",
                        required=wanted,
                        actual=profile.gender,
                    )
                if spent:
                    raise Conflict("The remaining tickets in this bundle have already been used",
                                   code="already_used")
                raise AlreadyClaimed("All tickets in this bundle have been claimed", code="bundle_exhausted")

            charge = claim_charge(tier, slot.slot_index)
            if charge:
                await charge_inventory(txn, bundle.event_id, [(bundle.tier_id, charge)], now,
                                       sold_out_message="This ticket tier is now sold out")

            unit_ticket = order and slot_unit_ticket(order, bundle.tier_id, slot.slot_index, tier.is_couple)
            if unit_ticket:
                await retire_unit_ticket(txn, order, unit_ticket, now)

            assignment = _claim_assignment(bundle, slot, redeemer_id, now, inventory_charged=charge > 0)
            slot.claim_status = ClaimStatus.CLAIMED.value
            slot.current_owner_user_id = redeemer_id
            slot.claimed_at = now
            slot.assignment_id = assignment.id
            remaining = bundle.remaining_slots - 1
            await txn.update(SHARE_BUNDLES, bundle.id, set={
                "slots": [s.to_doc() for s in bundle.slots],
                "remaining_slots": remaining,
                "status": BundleStatus.EXHAUSTED.value if remaining == 0 else bundle.status,
            })
            await txn.insert(TICKET_ASSIGNMENTS, assignment.to_doc())

    if expired:
        raise Expired("This share link has expired", code="bundle_expired")

    logger.info("Slot %s of bundle %s claimed by %s", slot.slot_index, bundle.id, redeemer_id)
    return ClaimResult(already_claimed=False, assignment=assignment)


def _claim_assignment(
    bundle: ShareBundle, slot: Slot, redeemer_id: str, now: datetime, inventory_charged: bool
) -> TicketAssignment:
    assignment_id = f"CLM-{uuid.uuid4().hex}"
    if bundle.mode == ShareMode.SHARED_QR:
        payload, shared = bundle.group_payload, True
    else:
        payload, shared = sign_ref(TicketRef.assignment(assignment_id)), False
    return TicketAssignment(
        id=assignment_id,
        source="claim",
        bundle_id=bundle.id,
        slot_index=slot.slot_index,
        order_id=bundle.order_id,
        event_id=bundle.event_id,
        tier_id=bundle.tier_id,
        couple_pair_id=slot.couple_pair_id,
        partner_status=PartnerStatus.ASSIGNED if slot.couple_pair_id else None,
        required_gender=slot.required_gender,
        redeemer_id=redeemer_id,
        original_purchaser_id=bundle.owner_id,
        qr_payload=payload,
        is_shared_qr=shared,
        inventory_charged=inventory_charged,
        created_at=now,
    )
