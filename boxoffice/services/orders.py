# boxoffice/services/orders.py
import logging
from datetime import datetime
from typing import List, Optional

from boxoffice.database import ORDERS, RESERVATIONS, RSVP_ORDERS, TICKET_ASSIGNMENTS
from boxoffice.errors import NotFound, Unauthorized
from boxoffice.models.order import Order, OrderStatus
from boxoffice.models.ticket import AssignmentStatus
from boxoffice.services.catalog import get_event, purchase_charges, restore_inventory
from boxoffice.store.base import DocumentReader, DocumentStore
from boxoffice.utils.dates import utcnow

logger = logging.getLogger(__name__)

BUCKETS = (ORDERS, RSVP_ORDERS)


def bucket_for(order: Order) -> str:
    return RSVP_ORDERS if order.is_rsvp else ORDERS


async def find_order(reader: DocumentReader, order_id: str) -> Optional[Order]:
    for bucket in BUCKETS:
        doc = await reader.get(bucket, order_id)
        if doc:
            return Order(**doc)
    return None


async def get_order(reader: DocumentReader, order_id: str) -> Order:
    order = await find_order(reader, order_id)
    if order is None:
        raise NotFound("Order not found", order_id=order_id)
    return order


async def get_order_by_reservation(reader: DocumentReader, reservation_id: str) -> Optional[Order]:
    for bucket in BUCKETS:
        doc = await reader.find_one(bucket, {"reservation_id": reservation_id})
        if doc:
            return Order(**doc)
    return None


async def has_confirmed_rsvp(
    reader: DocumentReader, event_id: str, user_id: Optional[str] = None, email: Optional[str] = None
) -> bool:
    """One RSVP per person per event, matched on account or contact address."""
    confirmed = OrderStatus.CONFIRMED.value
    if user_id and await reader.find_one(RSVP_ORDERS, {
        "event_id": event_id, "user_id": user_id, "status": confirmed,
    }):
        return True
    if email and await reader.find_one(RSVP_ORDERS, {
        "event_id": event_id, "user_email": email.lower(), "status": confirmed,
    }):
        return True
    return False


async def list_user_orders(reader: DocumentReader, user_id: str, limit: int = 50) -> List[Order]:
    orders = []
    for bucket in BUCKETS:
        orders.extend(Order(**doc) for doc in await reader.find(bucket, {"user_id": user_id}, limit=limit))
    orders.sort(key=lambda o: o.created_at, reverse=True)
    return orders[:limit]


async def cancel_order(
    store: DocumentStore, order_id: str, user_id: str, now: Optional[datetime] = None
) -> Order:
    """Cancel an order and give its units back to the tiers they were charged from."""
    now = utcnow(now)
    order = await get_order(store, order_id)
    if order.user_id != user_id:
        raise Unauthorized("Only the buyer can cancel this order")
    if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        return order

    bucket = bucket_for(order)
    async with store.transaction() as txn:
        current = Order(**await txn.get(bucket, order_id))
        if current.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            return current

        if current.status == OrderStatus.CONFIRMED:
            event = await get_event(txn, current.event_id)
            returns = purchase_charges(event, current.lines)
            claimed = await txn.find(TICKET_ASSIGNMENTS, {"order_id": order_id, "inventory_charged": True})
            returns.extend((a["tier_id"], 1) for a in claimed)
            await restore_inventory(txn, current.event_id, returns, now)

        await txn.update(bucket, order_id, set={"status": OrderStatus.CANCELLED.value, "updated_at": now})
        await txn.update_where(
            TICKET_ASSIGNMENTS,
            {"order_id": order_id, "status": AssignmentStatus.ACTIVE.value},
            set={"status": AssignmentStatus.CANCELLED.value},
        )
        if current.reservation_id:
            await txn.update(RESERVATIONS, current.reservation_id, set={"settled": True})

    logger.info("Order %s cancelled by %s", order_id, user_id)
    return await get_order(store, order_id)
