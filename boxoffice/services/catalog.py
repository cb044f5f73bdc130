# boxoffice/services/catalog.py
"""
Event and tier lookups, plus the only two code paths allowed to move a tier's
``remaining`` counter: charging units out of inventory and returning them.
Both must run on a transaction handle.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from boxoffice.database import EVENTS
from boxoffice.errors import NotFound, SoldOut
from boxoffice.models.event import Event, InventoryCharge, TicketTier
from boxoffice.store.base import DocumentReader, Transaction

logger = logging.getLogger(__name__)


async def get_event(reader: DocumentReader, event_id: str) -> Event:
    doc = await reader.get(EVENTS, event_id)
    if not doc:
        raise NotFound("Event not found", event_id=event_id)
    return Event(**doc)


def get_tier(event: Event, tier_id: str) -> TicketTier:
    tier = event.tier(tier_id)
    if tier is None:
        raise NotFound(f"Tier {tier_id} not found", tier_id=tier_id)
    return tier


async def charge_inventory(
    txn: Transaction,
    event_id: str,
    charges: Iterable[Tuple[str, int]],
    now: datetime,
    sold_out_message: str = "Ticket sold out during purchase",
) -> Event:
    """
    Take units out of tier inventory. ``remaining`` is re-read inside the
    transaction; the whole charge aborts if any tier is short.
    """
    event = await get_event(txn, event_id)
    wanted: Dict[str, int] = {}
    for tier_id, quantity in charges:
        wanted[tier_id] = wanted.get(tier_id, 0) + quantity

    for tier_id, quantity in wanted.items():
        tier = get_tier(event, tier_id)
        if tier.remaining < quantity:
            logger.warning("Sold out: event=%s tier=%s requested=%s available=%s",
                           event_id, tier_id, quantity, tier.remaining)
            raise SoldOut(
                f'{sold_out_message}: "{tier.name}". Available: {tier.remaining}',
                tier_id=tier_id,
                remaining=tier.remaining,
                requested=quantity,
            )
        tier.remaining -= quantity

    if wanted:
        await txn.update(EVENTS, event_id, set={
            "tiers": [t.to_doc() for t in event.tiers],
            "updated_at": now,
        })
    return event


async def restore_inventory(
    txn: Transaction,
    event_id: str,
    returns: Iterable[Tuple[str, int]],
    now: datetime,
) -> Optional[Event]:
    doc = await txn.get(EVENTS, event_id)
    if not doc:
        return None
    event = Event(**doc)
    for tier_id, quantity in returns:
        tier = event.tier(tier_id)
        if tier is not None:
            tier.remaining = min(tier.quantity, tier.remaining + quantity)
    await txn.update(EVENTS, event_id, set={
        "tiers": [t.to_doc() for t in event.tiers],
        "updated_at": now,
    })
    return event


def purchase_charges(event: Event, lines) -> list:
    """
    Units a confirmed order takes out of inventory per tier. Tiers charged on
    claim only give up the purchaser's own unit up front; the shared units are
    charged one by one as they are claimed.
    """
    charges = []
    for line in lines:
        tier = event.tier(line.tier_id)
        if tier is not None and tier.charge_mode == InventoryCharge.ON_CLAIM:
            charges.append((line.tier_id, 1))
        else:
            charges.append((line.tier_id, line.quantity))
    return charges


def claim_charge(tier: TicketTier, slot_index: int) -> int:
    """Units a slot claim takes out of inventory (a couple pair counts once)."""
    if tier.charge_mode != InventoryCharge.ON_CLAIM:
        return 0
    if tier.is_couple and slot_index % 2 == 0:
        return 0
    return 1
