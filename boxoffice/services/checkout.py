# boxoffice/services/checkout.py
"""
Checkout orchestration: turns a live reservation into exactly one order.

The order id is derived from the reservation id and the reservation is flipped
to ``converted`` in the same transaction that writes the order, so retries
with the same reservation always land on the same order.
"""
import logging
from datetime import datetime
from typing import Optional

from boxoffice import config
from boxoffice.database import ORDERS, RESERVATIONS, RSVP_ORDERS
from boxoffice.errors import Conflict, Expired, PaymentError, Unauthorized, ValidationFailed
from boxoffice.models.event import Event
from boxoffice.models.order import (
    BuyerDetails,
    CheckoutResult,
    Order,
    OrderKind,
    OrderLine,
    OrderStatus,
    PaymentInitiation,
    PricingItem,
    PricingQuote,
)
from boxoffice.models.reservation import CartReservation, ReservationStatus
from boxoffice.services.catalog import charge_inventory, get_event, purchase_charges
from boxoffice.services.entitlements import mint_order_tickets
from boxoffice.services.orders import get_order, get_order_by_reservation, has_confirmed_rsvp
from boxoffice.services.payments import PaymentGateway, PaymentVerification
from boxoffice.services.promotions import record_redemption
from boxoffice.services.reservations import get_reservation, mark_expired
from boxoffice.store.base import DocumentStore, DuplicateDocument, Transaction
from boxoffice.utils.dates import utcnow
from boxoffice.utils.pricing import calculate_pricing

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Reservation has expired. Please select tickets again."


def order_kind(event: Event, quote: PricingQuote) -> OrderKind:
    if event.is_rsvp:
        return OrderKind.RSVP
    if quote.is_free:
        return OrderKind.PAID_ZERO
    return OrderKind.PAID_SETTLED


def order_id_for(kind: OrderKind, reservation_id: str) -> str:
    prefix = "RSVP" if kind == OrderKind.RSVP else "ORD"
    return f"{prefix}-{reservation_id}"


def _build_order(
    kind: OrderKind,
    reservation: CartReservation,
    event: Event,
    quote: PricingQuote,
    buyer: BuyerDetails,
    promoter_code: Optional[str],
    now: datetime,
) -> Order:
    promo = next((d for d in quote.discounts if d.type == "promo"), None)
    confirmed = kind != OrderKind.PAID_SETTLED
    return Order(
        id=order_id_for(kind, reservation.id),
        kind=kind,
        event_id=event.id,
        event_title=event.title,
        user_id=buyer.user_id,
        user_name=buyer.name,
        user_email=buyer.email.lower(),
        user_phone=buyer.phone,
        lines=[
            OrderLine(
                tier_id=item.tier_id,
                name=item.tier_name,
                entry_type=item.entry_type,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
            )
            for item in quote.items
        ],
        subtotal=quote.subtotal,
        discounts=quote.discounts,
        discount_total=quote.discount_total,
        fees=quote.fees,
        total_amount=quote.grand_total,
        currency=config.CURRENCY,
        status=OrderStatus.CONFIRMED if confirmed else OrderStatus.PENDING_PAYMENT,
        is_rsvp=kind == OrderKind.RSVP,
        payment_method="card" if kind == OrderKind.PAID_SETTLED else "free",
        reservation_id=reservation.id,
        promoter_code=promoter_code,
        promo_code_id=promo.id if promo else None,
        created_at=now,
        updated_at=now,
        confirmed_at=now if confirmed else None,
    )


def _replay(order: Order, message: str = "") -> CheckoutResult:
    """Result for a retried checkout whose order already exists."""
    pending = order.status == OrderStatus.PENDING_PAYMENT
    payment = None
    if pending and order.gateway_order_id:
        payment = PaymentInitiation(
            gateway_order_id=order.gateway_order_id,
            amount=order.total_amount,
            currency=order.currency,
            order_id=order.id,
        )
    return CheckoutResult(order=order, requires_payment=pending, payment=payment, replayed=True,
                          message=message or "Order already created for this reservation.")


async def _convert_reservation(txn: Transaction, reservation_id: str, order_id: str,
                               settled: bool, now: datetime) -> None:
    converted = await txn.update_where(
        RESERVATIONS,
        {"id": reservation_id, "status": ReservationStatus.ACTIVE.value},
        set={
            "status": ReservationStatus.CONVERTED.value,
            "order_id": order_id,
            "settled": settled,
            "updated_at": now,
        },
    )
    if not converted:
        raise Conflict("Reservation is no longer active", code="reservation_inactive",
                       reservation_id=reservation_id)


async def _commit_confirmed(store: DocumentStore, order: Order, event: Event, quote: PricingQuote,
                            message: str, now: datetime) -> CheckoutResult:
    """
    Write a confirmed order, charging inventory and converting the reservation
    atomically. RSVP orders also re-check the one-per-person rule in the same
    transaction.
    """
    bucket = RSVP_ORDERS if order.is_rsvp else ORDERS
    order.tickets_issued = mint_order_tickets(order)
    try:
        async with store.transaction() as txn:
            if order.is_rsvp and await has_confirmed_rsvp(txn, order.event_id, order.user_id, order.user_email):
                raise Conflict("Already registered. You can only hold one RSVP ticket for this event.",
                               code="already_registered")
            await charge_inventory(txn, order.event_id, purchase_charges(event, order.lines), now)
            await _convert_reservation(txn, order.reservation_id, order.id, True, now)
            await txn.insert(bucket, order.to_doc())
            if order.promo_code_id:
                promo = next(d for d in order.discounts if d.type == "promo")
                await record_redemption(txn, order.promo_code_id, order.id, order.user_id, promo.amount, now)
    except DuplicateDocument:
        return _replay(await get_order(store, order.id))
    return CheckoutResult(order=order, requires_payment=False, pricing=quote, message=message)


async def initiate_checkout(
    store: DocumentStore,
    reservation_id: str,
    buyer: BuyerDetails,
    promo_code: Optional[str] = None,
    promoter_code: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    now = utcnow(now)
    reservation = await get_reservation(store, reservation_id)

    if reservation.status == ReservationStatus.CONVERTED:
        existing = await get_order_by_reservation(store, reservation_id)
        if existing:
            return _replay(existing)
    if reservation.status == ReservationStatus.EXPIRED:
        raise Expired(EXPIRED_MESSAGE, code="reservation_expired")
    if reservation.status != ReservationStatus.ACTIVE:
        raise Conflict(f"Reservation is {reservation.status}", code="reservation_inactive")
    if reservation.customer_id and buyer.user_id and reservation.customer_id != buyer.user_id:
        raise Unauthorized("This reservation belongs to someone else")
    if reservation.is_expired(now):
        await mark_expired(store, reservation_id, now)
        raise Expired(EXPIRED_MESSAGE, code="reservation_expired")

    event = await get_event(store, reservation.event_id)
    quote = await calculate_pricing(
        store,
        event.id,
        [PricingItem(tier_id=i.tier_id, quantity=i.quantity, unit_price=i.unit_price)
         for i in reservation.items],
        promo_code=promo_code,
        promoter_code=promoter_code,
        buyer_id=buyer.user_id,
        now=now,
    )
    kind = order_kind(event, quote)

    if kind == OrderKind.RSVP:
        return await _checkout_rsvp(store, reservation, event, quote, buyer, promoter_code, now)
    if kind == OrderKind.PAID_ZERO:
        result = await _commit_confirmed(
            store, _build_order(kind, reservation, event, quote, buyer, promoter_code, now), event, quote,
            "Order confirmed! Your tickets are ready.", now)
        logger.info("Zero-total order %s confirmed for reservation %s", result.order.id, reservation_id)
        return result
    return await _checkout_paid(store, reservation, event, quote, buyer, promoter_code, gateway, now)


async def _checkout_rsvp(store, reservation, event, quote, buyer, promoter_code, now) -> CheckoutResult:
    existing = await get_order_by_reservation(store, reservation.id)
    if existing:
        return _replay(existing, "RSVP already confirmed!")

    if sum(item.quantity for item in reservation.items) != 1:
        raise ValidationFailed("RSVP events are limited to 1 ticket per person.", code="rsvp_single_ticket")

    result = await _commit_confirmed(
        store, _build_order(OrderKind.RSVP, reservation, event, quote, buyer, promoter_code, now), event, quote,
        "RSVP confirmed! Your tickets are ready.", now)
    logger.info("RSVP %s confirmed for event %s", result.order.id, event.id)
    return result


async def _checkout_paid(store, reservation, event, quote, buyer, promoter_code, gateway, now) -> CheckoutResult:
    if gateway is None:
        raise PaymentError("No payment gateway configured", code="gateway_unavailable")

    order = _build_order(OrderKind.PAID_SETTLED, reservation, event, quote, buyer, promoter_code, now)
    # A gateway failure propagates before anything is written; the reservation stays active.
    gateway_order = await gateway.create_order(order.id, order.total_amount, order.currency)
    order.gateway_order_id = gateway_order.gateway_order_id

    try:
        async with store.transaction() as txn:
            await _convert_reservation(txn, reservation.id, order.id, False, now)
            await txn.insert(ORDERS, order.to_doc())
    except DuplicateDocument:
        return _replay(await get_order(store, order.id))

    logger.info("Order %s awaiting payment of %s %s", order.id, order.total_amount, order.currency)
    return CheckoutResult(
        order=order,
        requires_payment=True,
        payment=PaymentInitiation(
            gateway_order_id=gateway_order.gateway_order_id,
            amount=order.total_amount,
            currency=order.currency,
            order_id=order.id,
        ),
        pricing=quote,
        message="Complete payment to confirm your tickets.",
    )


async def confirm_payment(
    store: DocumentStore,
    order_id: str,
    verification: PaymentVerification,
    gateway_order_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Finalize a pending order once the gateway has verified the payment.

    The transaction re-reads tier inventory and aborts with a sold-out error if
    the units went elsewhere between quote and payment.
    """
    now = utcnow(now)
    order = await get_order(store, order_id)
    if user_id and order.user_id and order.user_id != user_id:
        raise Unauthorized("This order belongs to someone else")
    if order.status == OrderStatus.CONFIRMED:
        return order
    if order.status != OrderStatus.PENDING_PAYMENT:
        raise Conflict(f"Order is {order.status}", code="order_not_payable", order_id=order_id)
    if gateway_order_id and order.gateway_order_id and gateway_order_id != order.gateway_order_id:
        raise PaymentError("Payment does not belong to this order", code="payment_mismatch")
    if not verification.verified:
        raise PaymentError("Payment could not be verified", code="payment_unverified")
    if round(verification.amount, 2) != round(order.total_amount, 2):
        raise PaymentError("Paid amount does not match the order total", code="amount_mismatch",
                           paid=verification.amount, expected=order.total_amount)

    event = await get_event(store, order.event_id)
    tickets = mint_order_tickets(order)
    async with store.transaction() as txn:
        current = Order(**await txn.get(ORDERS, order_id))
        if current.status == OrderStatus.CONFIRMED:
            return current
        if current.status != OrderStatus.PENDING_PAYMENT:
            raise Conflict(f"Order is {current.status}", code="order_not_payable", order_id=order_id)

        await charge_inventory(txn, current.event_id, purchase_charges(event, current.lines), now)
        await txn.update(ORDERS, order_id, set={
            "status": OrderStatus.CONFIRMED.value,
            "tickets_issued": [t.model_dump() for t in tickets],
            "confirmed_at": now,
            "updated_at": now,
            "payment_details": {
                "payment_id": payment_id,
                "gateway_order_id": gateway_order_id or current.gateway_order_id,
                "amount": verification.amount,
                "paid_at": now,
            },
        })
        if current.reservation_id:
            await txn.update(RESERVATIONS, current.reservation_id, set={"settled": True, "updated_at": now})
        if current.promo_code_id:
            promo = next(d for d in current.discounts if d.type == "promo")
            await record_redemption(txn, current.promo_code_id, order_id, current.user_id, promo.amount, now)

    logger.info("Payment confirmed for order %s", order_id)
    return await get_order(store, order_id)
