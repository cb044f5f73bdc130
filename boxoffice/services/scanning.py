# boxoffice/services/scanning.py
"""
Door-side validation of signed ticket payloads.

The signature is checked without touching the store. Everything after that
runs inside one transaction per scan: the reads that decide validity and the
write that marks the ticket used commit together, so the same code presented
twice at once admits only one holder.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from boxoffice.database import SHARE_BUNDLES, TICKET_ASSIGNMENTS, TICKET_SCANS
from boxoffice.errors import NotFound
from boxoffice.models.event import Event
from boxoffice.models.order import OrderStatus
from boxoffice.models.ticket import (
    AssignmentStatus,
    ClaimStatus,
    ScanRecord,
    ScanResult,
    ShareBundle,
    ShareMode,
    TicketAssignment,
)
from boxoffice.services.catalog import get_event
from boxoffice.services.entitlements import slot_unit_index, unit_slot_index
from boxoffice.services.orders import find_order
from boxoffice.services.profiles import get_profile
from boxoffice.services.sharing import bundle_id_for
from boxoffice.store.base import DocumentStore, DuplicateDocument, Transaction, TransactionConflict
from boxoffice.utils.dates import utcnow
from boxoffice.utils.qr import ASSIGNMENT, GROUP, InvalidTicketRef, TicketRef, verify_payload

logger = logging.getLogger(__name__)

WAITING_FOR_PARTNER = "partial_couple_waiting_for_partner"
DEAD_ORDER_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value)


def _deny(reason: str, **extra: Any) -> ScanResult:
    return ScanResult(valid=False, reason=reason, **extra)


async def validate_and_scan(
    store: DocumentStore,
    payload: str,
    event_id: str,
    scanner_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScanResult:
    """
    Validate a presented payload for ``event_id`` and consume it.

    Denials come back as a result with ``valid=False`` and a machine reason
    (``invalid_signature``, ``invalid_format``, ``not_found``, ``wrong_event``,
    ``already_used``, ``ticket_cancelled``, ``order_cancelled``,
    ``order_not_confirmed``, ``ticket_transferred``, ``gender_mismatch``,
    ``scan_credits_exhausted``, ``scan_conflict``).
    """
    now = utcnow(now)
    identifier = verify_payload(payload)
    if identifier is None:
        result = _deny("invalid_signature")
    else:
        try:
            ref = TicketRef.decode(identifier)
        except InvalidTicketRef:
            result = _deny("invalid_format")
        else:
            result = await _scan(store, ref, identifier, event_id, scanner_id, now)

    if result.valid:
        logger.info("Scan accepted for event %s by %s%s", event_id, scanner_id,
                    f" ({result.note})" if result.note else "")
    else:
        logger.info("Scan denied for event %s by %s: %s", event_id, scanner_id, result.reason)
    return result


async def _scan(store, ref: TicketRef, identifier: str, event_id: str, scanner_id, now) -> ScanResult:
    try:
        event = await get_event(store, event_id)
    except NotFound:
        return _deny("wrong_event")

    try:
        async with store.transaction() as txn:
            if ref.kind == ASSIGNMENT:
                return await _scan_assignment(txn, ref, identifier, event, scanner_id, now)
            if ref.kind == GROUP:
                return await _scan_group(txn, ref, event, scanner_id, now)
            return await _scan_unit(txn, ref, identifier, event, scanner_id, now)
    except (TransactionConflict, DuplicateDocument):
        # Another scan of the same code committed first.
        return _deny("scan_conflict" if ref.kind == GROUP else "already_used")


def _ticket_view(identifier: str, kind: str, order_id: str, tier_id: str, event: Event,
                 holder_id: Optional[str], slot_index: Optional[int] = None) -> Dict[str, Any]:
    tier = event.tier(tier_id)
    return {
        "ticket_id": identifier,
        "kind": kind,
        "order_id": order_id,
        "tier_id": tier_id,
        "tier_name": tier.name if tier else "",
        "entry_type": tier.entry_type if tier else "general",
        "holder_id": holder_id,
        "slot_index": slot_index,
    }


async def _record_scan(txn: Transaction, scan_id: str, event: Event, order_id: Optional[str],
                       bundle_id: Optional[str], scanner_id, now: datetime, group: bool = False) -> None:
    record = ScanRecord(
        id=scan_id,
        ticket_id=scan_id,
        event_id=event.id,
        order_id=order_id,
        bundle_id=bundle_id,
        scanned_at=now,
        scanned_by=scanner_id,
        is_group_scan=group,
    )
    await txn.insert(TICKET_SCANS, record.to_doc())


async def _slot_used(txn: Transaction, bundle: ShareBundle, slot_index: int, order_id: str) -> bool:
    """Whether the holder of a bundle slot has been admitted."""
    slot = bundle.slot(slot_index)
    if slot is None:
        return False
    if slot.assignment_id:
        doc = await txn.get(TICKET_ASSIGNMENTS, slot.assignment_id)
        return bool(doc) and doc["status"] == AssignmentStatus.USED.value
    if slot_index % 2 == 1:
        # The first seat of a pair rides on the purchaser's unit ticket until someone takes it.
        unit = TicketRef.unit(order_id, bundle.tier_id, slot_unit_index(slot_index, bundle.is_couple))
        return await txn.get(TICKET_SCANS, unit.encode()) is not None
    return False


def _partner_index(slot_index: int) -> int:
    return slot_index + 1 if slot_index % 2 == 1 else slot_index - 1


async def _pair_state(txn: Transaction, bundle: Optional[ShareBundle], slot_index: int,
                      order_id: str) -> Dict[str, Any]:
    partner_used = False
    if bundle is not None:
        partner_used = await _slot_used(txn, bundle, _partner_index(slot_index), order_id)
    if partner_used:
        return {"pair_complete": True}
    return {"pair_complete": False, "note": WAITING_FOR_PARTNER}


async def _scan_assignment(txn, ref, identifier, event, scanner_id, now) -> ScanResult:
    doc = await txn.get(TICKET_ASSIGNMENTS, ref.assignment_id)
    if not doc:
        return _deny("not_found")
    assignment = TicketAssignment(**doc)
    if assignment.event_id != event.id:
        return _deny("wrong_event")
    if assignment.status == AssignmentStatus.USED:
        return _deny("already_used", scanned_at=assignment.used_at)
    if assignment.status == AssignmentStatus.CANCELLED or assignment.payload_revoked:
        return _deny("ticket_cancelled")

    order = await find_order(txn, assignment.order_id)
    if order is None:
        return _deny("not_found")
    if order.status in DEAD_ORDER_STATUSES:
        return _deny("order_cancelled")

    profile = await get_profile(txn, assignment.redeemer_id)
    if not profile.satisfies(assignment.required_gender):
        return _deny("gender_mismatch", required=assignment.required_gender, actual=profile.gender)

    used = await txn.update_where(
        TICKET_ASSIGNMENTS,
        {"id": assignment.id, "status": AssignmentStatus.ACTIVE.value},
        set={"status": AssignmentStatus.USED.value, "used_at": now, "scanned_by": scanner_id},
    )
    if not used:
        return _deny("already_used")
    await _record_scan(txn, identifier, event, assignment.order_id, assignment.bundle_id, scanner_id, now)

    extra: Dict[str, Any] = {}
    if assignment.couple_pair_id and assignment.slot_index:
        bundle_doc = await txn.get(SHARE_BUNDLES, assignment.bundle_id) if assignment.bundle_id else None
        bundle = ShareBundle(**bundle_doc) if bundle_doc else None
        extra = await _pair_state(txn, bundle, assignment.slot_index, assignment.order_id)

    return ScanResult(
        valid=True,
        ticket=_ticket_view(identifier, ASSIGNMENT, assignment.order_id, assignment.tier_id, event,
                            assignment.redeemer_id, assignment.slot_index),
        scanned_at=now,
        **extra,
    )


async def _scan_group(txn, ref, event, scanner_id, now) -> ScanResult:
    doc = await txn.get(SHARE_BUNDLES, ref.bundle_id)
    if not doc:
        return _deny("not_found")
    bundle = ShareBundle(**doc)
    if bundle.event_id != event.id:
        return _deny("wrong_event")
    if bundle.mode != ShareMode.SHARED_QR:
        return _deny("invalid_format")

    order = await find_order(txn, bundle.order_id)
    if order is None or order.status in DEAD_ORDER_STATUSES:
        return _deny("order_cancelled")

    credits = min(bundle.scan_credits_remaining or 0, bundle.total_slots)
    if credits <= 0:
        return _deny("scan_credits_exhausted", scans_remaining=0)

    await txn.update(SHARE_BUNDLES, bundle.id, set={"scan_credits_remaining": credits - 1})
    await _record_scan(txn, f"{bundle.id}-scan-{uuid.uuid4().hex[:12]}", event, bundle.order_id,
                       bundle.id, scanner_id, now, group=True)

    roster = [
        {
            "slot_index": slot.slot_index,
            "user_id": slot.current_owner_user_id,
            "required_gender": slot.required_gender,
            "claimed_at": slot.claimed_at,
        }
        for slot in bundle.slots
        if slot.claim_status == ClaimStatus.CLAIMED
    ]
    return ScanResult(
        valid=True,
        ticket=_ticket_view(bundle.group_payload or "", GROUP, bundle.order_id, bundle.tier_id, event,
                            bundle.owner_id),
        roster=roster,
        scans_remaining=credits - 1,
        scanned_at=now,
    )


async def _scan_unit(txn, ref, identifier, event, scanner_id, now) -> ScanResult:
    order = await find_order(txn, ref.order_id)
    if order is None:
        return _deny("not_found")
    if order.event_id != event.id:
        return _deny("wrong_event")
    if order.status in DEAD_ORDER_STATUSES:
        return _deny("order_cancelled")
    if order.status != OrderStatus.CONFIRMED:
        return _deny("order_not_confirmed")

    issued = next((t for t in order.tickets_issued
                   if t.tier_id == ref.tier_id and t.unit_index == ref.unit_index), None)
    if issued is None:
        return _deny("not_found")
    if issued.status != "active":
        return _deny("ticket_transferred")

    tier = event.tier(ref.tier_id)
    is_couple = bool(tier and tier.is_couple)
    slot_index = unit_slot_index(ref.unit_index, is_couple)
    bundle_doc = await txn.get(SHARE_BUNDLES, bundle_id_for(order.id, ref.tier_id))
    bundle = ShareBundle(**bundle_doc) if bundle_doc else None
    slot = bundle.slot(slot_index) if bundle else None
    if slot and slot.claim_status == ClaimStatus.CLAIMED and slot.current_owner_user_id != order.user_id:
        return _deny("ticket_transferred")

    required = slot.required_gender if slot else (tier.gender_requirement if tier else None)
    profile = await get_profile(txn, order.user_id)
    if not profile.satisfies(required):
        return _deny("gender_mismatch", required=required, actual=profile.gender)

    previous = await txn.get(TICKET_SCANS, identifier)
    if previous:
        return _deny("already_used", scanned_at=previous["scanned_at"])
    await _record_scan(txn, identifier, event, order.id, bundle.id if bundle else None, scanner_id, now)

    extra: Dict[str, Any] = {}
    if is_couple:
        extra = await _pair_state(txn, bundle, slot_index, order.id)

    return ScanResult(
        valid=True,
        ticket=_ticket_view(identifier, ref.kind, order.id, ref.tier_id, event, order.user_id, slot_index),
        scanned_at=now,
        **extra,
    )
