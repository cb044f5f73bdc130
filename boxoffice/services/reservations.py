# boxoffice/services/reservations.py
"""
Cart reservations: time-boxed soft holds on tier inventory.

Availability here is an optimistic pre-check (remaining minus the quantities
held by other live reservations). The authoritative guard is the inventory
charge made when an order confirms.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from boxoffice import config
from boxoffice.database import RESERVATIONS
from boxoffice.errors import NotFound, Unauthorized, ValidationFailed
from boxoffice.models.event import Event
from boxoffice.models.reservation import (
    CartReservation,
    ReservationItem,
    ReservationItemRequest,
    ReservationStatus,
)
from boxoffice.services.catalog import get_event
from boxoffice.store.base import DocumentReader, DocumentStore, TransactionConflict
from boxoffice.utils.dates import utcnow
from boxoffice.utils.pricing import resolve_unit_price

logger = logging.getLogger(__name__)

# Statuses whose items may still be holding inventory.
HOLDING_STATUSES = [ReservationStatus.ACTIVE.value, ReservationStatus.CONVERTED.value]


async def live_reserved_count(
    reader: DocumentReader,
    event_id: str,
    tier_id: str,
    now: datetime,
    exclude_id: Optional[str] = None,
) -> int:
    """
    Units of a tier held by unexpired reservations. Converted reservations keep
    holding until their order settles inventory or the hold runs out.
    """
    holds = await reader.find(RESERVATIONS, {
        "event_id": event_id,
        "status": {"$in": HOLDING_STATUSES},
        "expires_at": {"$gt": now},
        "settled": {"$ne": True},
    })
    total = 0
    for hold in holds:
        if hold["id"] == exclude_id:
            continue
        total += sum(item["quantity"] for item in hold["items"] if item["tier_id"] == tier_id)
    return total


async def _validate_items(
    reader: DocumentReader,
    event: Event,
    items: List[ReservationItemRequest],
    now: datetime,
) -> List[Dict[str, Any]]:
    errors = []
    seen = set()
    for item in items:
        tier = event.tier(item.tier_id)
        if tier is None:
            errors.append({"tier_id": item.tier_id, "code": "tier_not_found",
                           "message": f"Tier {item.tier_id} not found"})
            continue
        if item.tier_id in seen:
            errors.append({"tier_id": item.tier_id, "code": "duplicate_tier",
                           "message": f"{tier.name} was requested more than once"})
            continue
        seen.add(item.tier_id)

        if not tier.sales_open(now) and not (tier.is_free or event.is_rsvp):
            errors.append({"tier_id": tier.id, "code": "sales_closed",
                           "message": f"Sales for {tier.name} are closed"})
            continue
        if item.quantity < max(1, tier.min_per_order):
            errors.append({"tier_id": tier.id, "code": "below_minimum",
                           "message": f"{tier.name} requires at least {max(1, tier.min_per_order)} per order",
                           "min_per_order": tier.min_per_order})
            continue
        if tier.max_per_order is not None and item.quantity > tier.max_per_order:
            errors.append({"tier_id": tier.id, "code": "above_maximum",
                           "message": f"{tier.name} allows at most {tier.max_per_order} per order",
                           "max_per_order": tier.max_per_order})
            continue

        held = await live_reserved_count(reader, event.id, tier.id, now)
        available = max(0, tier.remaining - held)
        if item.quantity > available:
            errors.append({"tier_id": tier.id, "code": "sold_out",
                           "message": f"{tier.name} is sold out or unavailable",
                           "remaining": available})
    return errors


async def find_reusable_reservation(
    reader: DocumentReader, queue_id: str, now: datetime
) -> Optional[CartReservation]:
    doc = await reader.find_one(RESERVATIONS, {
        "queue_id": queue_id,
        "status": ReservationStatus.ACTIVE.value,
        "expires_at": {"$gt": now},
    })
    return CartReservation(**doc) if doc else None


async def create_reservation(
    store: DocumentStore,
    event_id: str,
    items: List[ReservationItemRequest],
    customer_id: Optional[str] = None,
    device_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
    ttl_minutes: int = config.RESERVATION_MINUTES,
) -> CartReservation:
    """
    Hold inventory for a cart. Any invalid line rejects the whole request with
    the full list of line errors; nothing is held in that case.
    """
    now = utcnow(now)
    if not items:
        raise ValidationFailed("Select at least one ticket", errors=[])

    async def attempt() -> Tuple[CartReservation, bool]:
        async with store.transaction() as txn:
            if idempotency_key:
                existing = await find_reusable_reservation(txn, idempotency_key, now)
                if existing:
                    return existing, True

            event = await get_event(txn, event_id)
            errors = await _validate_items(txn, event, items, now)
            if errors:
                raise ValidationFailed("Some tickets could not be reserved", errors=errors)

            reserved = []
            for item in items:
                tier = event.tier(item.tier_id)
                price = resolve_unit_price(tier, now)
                reserved.append(ReservationItem(
                    tier_id=tier.id,
                    tier_name=tier.name,
                    entry_type=tier.entry_type,
                    quantity=item.quantity,
                    unit_price=price.unit_price,
                    price_label=price.schedule_label,
                    subtotal=round(price.unit_price * item.quantity, 2),
                ))

            reservation = CartReservation(
                id=str(uuid.uuid4()),
                event_id=event_id,
                customer_id=customer_id,
                device_id=device_id,
                queue_id=idempotency_key,
                items=reserved,
                created_at=now,
                expires_at=now + timedelta(minutes=ttl_minutes),
            )
            await txn.insert(RESERVATIONS, reservation.to_doc())
            return reservation, False

    try:
        reservation, reused = await attempt()
    except TransactionConflict:
        logger.info("Reservation pre-check conflicted for event %s, retrying once", event_id)
        reservation, reused = await attempt()

    if reused:
        logger.info("Reusing reservation %s for queue id %s", reservation.id, idempotency_key)
        return reservation
    logger.info("Reservation %s created for event %s (%s lines, expires %s)",
                reservation.id, event_id, len(reservation.items), reservation.expires_at.isoformat())
    return reservation


async def get_reservation(reader: DocumentReader, reservation_id: str) -> CartReservation:
    doc = await reader.get(RESERVATIONS, reservation_id)
    if not doc:
        raise NotFound("Reservation not found", reservation_id=reservation_id)
    return CartReservation(**doc)


async def get_owned_reservation(
    reader: DocumentReader, reservation_id: str, customer_id: Optional[str]
) -> CartReservation:
    reservation = await get_reservation(reader, reservation_id)
    if reservation.customer_id and reservation.customer_id != customer_id:
        raise Unauthorized("This reservation belongs to someone else")
    return reservation


async def release_reservation(
    store: DocumentStore,
    reservation_id: str,
    customer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CartReservation:
    """Give the hold back. Releasing a reservation that already ended is a no-op."""
    now = utcnow(now)
    reservation = await get_owned_reservation(store, reservation_id, customer_id)
    if reservation.status != ReservationStatus.ACTIVE:
        return reservation

    released = await store.update_where(
        RESERVATIONS,
        {"id": reservation_id, "status": ReservationStatus.ACTIVE.value},
        set={"status": ReservationStatus.RELEASED.value, "released_at": now},
    )
    if released:
        logger.info("Reservation %s released", reservation_id)
    return await get_reservation(store, reservation_id)


async def mark_expired(store: DocumentStore, reservation_id: str, now: datetime) -> bool:
    expired = await store.update_where(
        RESERVATIONS,
        {"id": reservation_id, "status": ReservationStatus.ACTIVE.value, "expires_at": {"$lte": now}},
        set={"status": ReservationStatus.EXPIRED.value, "expired_at": now},
    )
    return expired > 0


async def expire_sweep(
    store: DocumentStore,
    now: Optional[datetime] = None,
    batch_size: int = config.EXPIRE_SWEEP_BATCH,
) -> int:
    """
    Move overdue active reservations to ``expired``. Each transition is a
    conditional update, so concurrent sweeps never double count.
    """
    now = utcnow(now)
    overdue = await store.find(RESERVATIONS, {
        "status": ReservationStatus.ACTIVE.value,
        "expires_at": {"$lte": now},
    }, limit=batch_size)

    swept = 0
    for doc in overdue:
        if await mark_expired(store, doc["id"], now):
            swept += 1
    if swept:
        logger.info("Expired %s reservations", swept)
    return swept
