# boxoffice/services/transfers.py
"""
Ticket ownership transfers.

A transfer names one ticket (an issued unit ticket of an order or a claimed
assignment) and a recipient email. Accepting it revokes the sender's ticket
and mints a fresh assignment for the recipient; a transfer can be accepted
exactly once.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from boxoffice import config
from boxoffice.database import SHARE_BUNDLES, TICKET_ASSIGNMENTS, TRANSFERS
from boxoffice.errors import (
    AlreadyClaimed,
    AlreadyTransferred,
    Conflict,
    Expired,
    GenderRestricted,
    NotFound,
    Unauthorized,
    ValidationFailed,
)
from boxoffice.models.order import Order, OrderStatus
from boxoffice.models.ticket import (
    AssignmentStatus,
    ClaimStatus,
    PartnerStatus,
    ShareBundle,
    Slot,
    TicketAssignment,
    Transfer,
    TransferStatus,
)
from boxoffice.services.catalog import charge_inventory, claim_charge, get_event, get_tier
from boxoffice.services.entitlements import retire_unit_ticket, unit_slot_index, unit_ticket_scanned
from boxoffice.services.orders import find_order, get_order
from boxoffice.services.profiles import get_profile
from boxoffice.services.sharing import bundle_id_for
from boxoffice.store.base import DocumentReader, DocumentStore, Transaction
from boxoffice.utils.dates import ensure_utc, utcnow
from boxoffice.utils.qr import ASSIGNMENT, UNIT, InvalidTicketRef, TicketRef, sign_ref

logger = logging.getLogger(__name__)


def _decode_ticket(ticket_id: str) -> TicketRef:
    try:
        ref = TicketRef.decode(ticket_id)
    except InvalidTicketRef:
        raise ValidationFailed("Unrecognized ticket id", code="invalid_ticket")
    if ref.kind not in (UNIT, ASSIGNMENT):
        raise ValidationFailed("Group passes cannot be transferred", code="invalid_ticket")
    return ref


async def _get_assignment(reader: DocumentReader, assignment_id: str) -> TicketAssignment:
    doc = await reader.get(TICKET_ASSIGNMENTS, assignment_id)
    if not doc:
        raise NotFound("Ticket not found", ticket_id=assignment_id)
    return TicketAssignment(**doc)


async def _get_bundle(reader: DocumentReader, order_id: str, tier_id: str) -> Optional[ShareBundle]:
    doc = await reader.get(SHARE_BUNDLES, bundle_id_for(order_id, tier_id))
    return ShareBundle(**doc) if doc else None


async def _check_unit_owner(reader: DocumentReader, ref: TicketRef, sender_id: str) -> Order:
    order = await get_order(reader, ref.order_id)
    if order.user_id != sender_id:
        raise Unauthorized("You do not own this ticket")
    if order.status != OrderStatus.CONFIRMED:
        raise Conflict("Only confirmed tickets can be transferred", code="order_not_confirmed")

    issued = next((t for t in order.tickets_issued
                   if t.tier_id == ref.tier_id and t.unit_index == ref.unit_index), None)
    if issued is None:
        raise NotFound("Ticket not found", ticket_id=ref.encode())

    bundle = await _get_bundle(reader, order.id, ref.tier_id)
    if bundle:
        slot = bundle.slot(unit_slot_index(ref.unit_index, bundle.is_couple))
        if slot and slot.claim_status == ClaimStatus.CLAIMED and slot.current_owner_user_id != sender_id:
            raise Unauthorized("This ticket has been claimed by someone else")
    if issued.status != "active":
        raise AlreadyTransferred("This ticket has already been transferred")
    if await unit_ticket_scanned(reader, issued):
        raise Conflict("This ticket has already been used at the door", code="already_used")
    return order


async def initiate_transfer(
    store: DocumentStore,
    ticket_id: str,
    sender_id: str,
    recipient_email: str,
    now: Optional[datetime] = None,
) -> Transfer:
    now = utcnow(now)
    ref = _decode_ticket(ticket_id)
    recipient_email = recipient_email.strip().lower()
    if not recipient_email:
        raise ValidationFailed("Recipient email is required", code="recipient_required")

    if ref.kind == UNIT:
        order = await _check_unit_owner(store, ref, sender_id)
        order_id, event_id, tier_id = order.id, order.event_id, ref.tier_id
    else:
        assignment = await _get_assignment(store, ref.assignment_id)
        if assignment.redeemer_id != sender_id:
            raise Unauthorized("You do not own this ticket")
        if assignment.status != AssignmentStatus.ACTIVE or assignment.payload_revoked:
            raise AlreadyTransferred("This ticket is no longer transferable")
        order_id, event_id, tier_id = assignment.order_id, assignment.event_id, assignment.tier_id

    event = await get_event(store, event_id)
    if ensure_utc(event.starts_at) - now < timedelta(hours=config.TRANSFER_CUTOFF_HOURS):
        raise Conflict(
            f"Transfers close {config.TRANSFER_CUTOFF_HOURS} hours before the event starts",
            code="transfer_window_closed",
        )

    pending = await store.find_one(TRANSFERS, {"ticket_id": ticket_id, "status": TransferStatus.PENDING.value})
    if pending:
        if now < ensure_utc(pending["expires_at"]):
            raise Conflict("A transfer for this ticket is already pending", code="transfer_pending",
                           transfer_id=pending["id"])
        await _expire(store, pending["id"])

    transfer = Transfer(
        id=f"TRF-{uuid.uuid4().hex}",
        ticket_id=ticket_id,
        order_id=order_id,
        event_id=event_id,
        tier_id=tier_id,
        sender_id=sender_id,
        recipient_email=recipient_email,
        token=secrets.token_hex(20),
        created_at=now,
        expires_at=now + timedelta(hours=config.TRANSFER_TTL_HOURS),
    )
    await store.insert(TRANSFERS, transfer.to_doc())
    logger.info("Transfer %s initiated by %s for ticket %s", transfer.id, sender_id, ticket_id)
    return transfer


async def _expire(writer, transfer_id: str) -> None:
    await writer.update_where(
        TRANSFERS,
        {"id": transfer_id, "status": TransferStatus.PENDING.value},
        set={"status": TransferStatus.EXPIRED.value},
    )


async def get_transfer(reader: DocumentReader, transfer_id: str) -> Transfer:
    doc = await reader.get(TRANSFERS, transfer_id)
    if not doc:
        raise NotFound("Transfer not found", transfer_id=transfer_id)
    return Transfer(**doc)


async def accept_transfer(
    store: DocumentStore,
    transfer_id: str,
    recipient_id: str,
    now: Optional[datetime] = None,
) -> TicketAssignment:
    """Hand the ticket to the recipient. The sender's ticket stops scanning from here on."""
    now = utcnow(now)
    transfer = await get_transfer(store, transfer_id)
    if transfer.sender_id == recipient_id:
        raise Unauthorized("You cannot accept your own transfer")
    profile = await get_profile(store, recipient_id)
    if profile.email.lower() != transfer.recipient_email:
        raise Unauthorized("This transfer was sent to a different email address")

    ref = _decode_ticket(transfer.ticket_id)
    event = await get_event(store, transfer.event_id)
    tier = get_tier(event, transfer.tier_id)

    expired = False
    async with store.transaction() as txn:
        transfer = Transfer(**await txn.get(TRANSFERS, transfer_id))
        if transfer.status == TransferStatus.ACCEPTED:
            raise AlreadyTransferred("This transfer has already been accepted")
        if transfer.status == TransferStatus.CANCELLED:
            raise Conflict("This transfer was cancelled by the sender", code="transfer_cancelled")
        if transfer.status == TransferStatus.EXPIRED:
            expired = True
        elif now >= ensure_utc(transfer.expires_at):
            await _expire(txn, transfer_id)
            expired = True
        else:
            assignment = await _hand_over(txn, transfer, ref, tier, profile, recipient_id, now)

    if expired:
        raise Expired("This transfer has expired", code="transfer_expired")

    logger.info("Transfer %s accepted by %s (assignment %s)", transfer_id, recipient_id, assignment.id)
    return assignment


async def _hand_over(txn: Transaction, transfer: Transfer, ref: TicketRef, tier, profile,
                     recipient_id: str, now: datetime) -> TicketAssignment:
    bundle = await _get_bundle(txn, transfer.order_id, transfer.tier_id)
    order = await find_order(txn, transfer.order_id)
    if order is None or order.status != OrderStatus.CONFIRMED:
        raise Conflict("The order behind this ticket is no longer valid", code="order_not_confirmed")

    slot: Optional[Slot] = None
    issued = previous = None
    charge = 0
    if ref.kind == UNIT:
        slot_index = unit_slot_index(ref.unit_index, tier.is_couple)
        slot = bundle.slot(slot_index) if bundle else None
        required = slot.required_gender if slot else tier.gender_requirement
        issued = next(t for t in order.tickets_issued if t.tier_id == ref.tier_id and t.unit_index == ref.unit_index)
        if slot_index > 1 and (slot is None or slot.claim_status == ClaimStatus.UNCLAIMED):
            charge = claim_charge(tier, slot_index)
    else:
        previous = TicketAssignment(**await txn.get(TICKET_ASSIGNMENTS, ref.assignment_id))
        slot_index = previous.slot_index
        slot = bundle.slot(slot_index) if bundle and slot_index else None
        required = previous.required_gender

    if slot and slot.claim_status == ClaimStatus.CLAIMED and slot.current_owner_user_id != transfer.sender_id:
        raise AlreadyClaimed("This ticket was claimed by someone else after the transfer was sent",
                             code="slot_claimed")
    if issued is not None:
        if issued.status != "active":
            raise AlreadyTransferred("This ticket has already been transferred")
        if await unit_ticket_scanned(txn, issued):
            raise Conflict("This ticket has already been used at the door", code="already_used")
    if not profile.satisfies(required):
        raise GenderRestricted("This ticket requires a different gender",
                               required=required, actual=profile.gender)

    # Revoke whatever the sender was holding.
    if issued is not None:
        await retire_unit_ticket(txn, order, issued, now)
    else:
        revoked = await txn.update_where(
            TICKET_ASSIGNMENTS,
            {"id": previous.id, "status": AssignmentStatus.ACTIVE.value},
            set={"status": AssignmentStatus.CANCELLED.value, "payload_revoked": True},
        )
        if not revoked:
            raise AlreadyTransferred("This ticket is no longer transferable")

    if charge:
        await charge_inventory(txn, transfer.event_id, [(transfer.tier_id, charge)], now,
                               sold_out_message="This ticket tier is now sold out")

    assignment_id = f"XFR-{uuid.uuid4().hex}"
    shared = previous is not None and previous.is_shared_qr
    pair_id = slot.couple_pair_id if slot else (previous.couple_pair_id if previous else None)
    assignment = TicketAssignment(
        id=assignment_id,
        source="transfer",
        bundle_id=bundle.id if bundle else None,
        slot_index=slot_index,
        order_id=transfer.order_id,
        event_id=transfer.event_id,
        tier_id=transfer.tier_id,
        couple_pair_id=pair_id,
        partner_status=PartnerStatus.UNASSIGNED if tier.is_couple else None,
        required_gender=required,
        redeemer_id=recipient_id,
        original_purchaser_id=order.user_id or transfer.sender_id,
        replaces_ticket_id=transfer.ticket_id,
        qr_payload=previous.qr_payload if shared else sign_ref(TicketRef.assignment(assignment_id)),
        is_shared_qr=shared,
        inventory_charged=charge > 0,
        created_at=now,
    )
    await txn.insert(TICKET_ASSIGNMENTS, assignment.to_doc())

    if slot is not None:
        newly_taken = slot.claim_status == ClaimStatus.UNCLAIMED
        slot.claim_status = ClaimStatus.CLAIMED.value
        slot.current_owner_user_id = recipient_id
        slot.claimed_at = slot.claimed_at or now
        slot.assignment_id = assignment_id
        update = {"slots": [s.to_doc() for s in bundle.slots]}
        if newly_taken:
            update["remaining_slots"] = max(0, bundle.remaining_slots - 1)
        await txn.update(SHARE_BUNDLES, bundle.id, set=update)

    await txn.update(TRANSFERS, transfer.id, set={
        "status": TransferStatus.ACCEPTED.value,
        "accepted_by": recipient_id,
        "accepted_at": now,
        "assignment_id": assignment_id,
    })
    return assignment


async def cancel_transfer(
    store: DocumentStore, transfer_id: str, sender_id: str, now: Optional[datetime] = None
) -> Transfer:
    now = utcnow(now)
    transfer = await get_transfer(store, transfer_id)
    if transfer.sender_id != sender_id:
        raise Unauthorized("Only the sender can cancel this transfer")
    if transfer.status == TransferStatus.CANCELLED:
        return transfer
    if transfer.status != TransferStatus.PENDING:
        raise Conflict(f"Transfer is already {transfer.status}", code="transfer_not_pending")

    cancelled = await store.update_where(
        TRANSFERS,
        {"id": transfer_id, "status": TransferStatus.PENDING.value},
        set={"status": TransferStatus.CANCELLED.value, "cancelled_at": now},
    )
    if not cancelled:
        raise Conflict("Transfer is no longer pending", code="transfer_not_pending")
    logger.info("Transfer %s cancelled by %s", transfer_id, sender_id)
    return await get_transfer(store, transfer_id)


async def list_transfers(reader: DocumentReader, user_id: str, email: str = "") -> Dict[str, List[Transfer]]:
    sent = [Transfer(**doc) for doc in await reader.find(TRANSFERS, {"sender_id": user_id}, limit=100)]
    received = []
    if email:
        received = [Transfer(**doc) for doc in await reader.find(TRANSFERS, {
            "recipient_email": email.lower(), "status": TransferStatus.PENDING.value,
        }, limit=100)]
    sent.sort(key=lambda t: t.created_at, reverse=True)
    return {"sent": sent, "received": received}
