# boxoffice/services/entitlements.py
from datetime import datetime
from typing import List, Optional

from boxoffice.database import ORDERS, RSVP_ORDERS, TICKET_SCANS
from boxoffice.models.order import IssuedTicket, Order
from boxoffice.store.base import DocumentReader
from boxoffice.utils.qr import TicketRef, sign_ref


def mint_order_tickets(order: Order) -> List[IssuedTicket]:
    """One signed unit ticket per purchased unit; a couple unit is the first seat of its pair."""
    issued = []
    for line in order.lines:
        for unit_index in range(line.quantity):
            ref = TicketRef.unit(order.id, line.tier_id, unit_index)
            issued.append(IssuedTicket(
                ticket_id=ref.encode(),
                tier_id=line.tier_id,
                unit_index=unit_index,
                qr_payload=sign_ref(ref),
            ))
    return issued


def unit_slot_index(unit_index: int, is_couple: bool) -> int:
    """Bundle slot that a unit ticket stands for: units map to slots 1..n, couple units to the pair's first slot."""
    return unit_index * 2 + 1 if is_couple else unit_index + 1


def slot_unit_index(slot_index: int, is_couple: bool) -> int:
    return (slot_index - 1) // 2 if is_couple else slot_index - 1


def slot_unit_ticket(order: Order, tier_id: str, slot_index: int, is_couple: bool) -> Optional[IssuedTicket]:
    """The purchaser's unit ticket behind a bundle slot; None for the second seat of a couple pair."""
    unit_index = slot_unit_index(slot_index, is_couple)
    if unit_slot_index(unit_index, is_couple) != slot_index:
        return None
    return next((t for t in order.tickets_issued if t.tier_id == tier_id and t.unit_index == unit_index), None)


async def unit_ticket_scanned(reader: DocumentReader, ticket: IssuedTicket) -> bool:
    return await reader.get(TICKET_SCANS, ticket.ticket_id) is not None


async def retire_unit_ticket(writer, order: Order, ticket: IssuedTicket, now: datetime) -> None:
    """Stop the purchaser's unit ticket from scanning once its seat belongs to someone else."""
    tickets = list(order.tickets_issued)
    for issued in tickets:
        if issued.ticket_id == ticket.ticket_id:
            issued.status = "transferred"
    await writer.update(RSVP_ORDERS if order.is_rsvp else ORDERS, order.id, set={
        "tickets_issued": [t.model_dump() for t in tickets],
        "updated_at": now,
    })
