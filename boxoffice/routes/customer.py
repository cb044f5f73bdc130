# boxoffice/routes/customer.py
from fastapi import APIRouter, BackgroundTasks, Depends

from boxoffice.database import get_store
from boxoffice.models.order import BuyerDetails, CheckoutRequest, OrderStatus, PaymentConfirmRequest, PricingRequest
from boxoffice.models.reservation import ReservationRequest
from boxoffice.services import checkout, orders, reservations
from boxoffice.services.notifications import Notifier, dispatch_confirmation, get_notifier
from boxoffice.services.payments import PaymentGateway, get_gateway
from boxoffice.store.base import DocumentStore
from boxoffice.utils.auth_utils import customer_required
from boxoffice.utils.dates import utcnow
from boxoffice.utils.pricing import calculate_pricing

router = APIRouter()


@router.post("/reservations")
async def create_reservation(
    request: ReservationRequest,
    user=Depends(customer_required),
    store: DocumentStore = Depends(get_store),
):
    reservation = await reservations.create_reservation(
        store,
        request.event_id,
        request.items,
        customer_id=user["id"],
        device_id=request.device_id,
        idempotency_key=request.queue_id,
    )
    return {
        "success": True,
        "reservation": reservation,
        "expires_in_seconds": reservation.expires_in_seconds(utcnow()),
    }


@router.get("/reservations/{reservation_id}")
async def get_reservation(reservation_id: str, user=Depends(customer_required),
                          store: DocumentStore = Depends(get_store)):
    reservation = await reservations.get_owned_reservation(store, reservation_id, user["id"])
    return {
        "success": True,
        "reservation": reservation,
        "expires_in_seconds": reservation.expires_in_seconds(utcnow()),
    }


@router.post("/reservations/{reservation_id}/release")
async def release_reservation(reservation_id: str, user=Depends(customer_required),
                              store: DocumentStore = Depends(get_store)):
    reservation = await reservations.release_reservation(store, reservation_id, customer_id=user["id"])
    return {"success": True, "reservation": reservation}


@router.post("/pricing")
async def get_pricing(request: PricingRequest, user=Depends(customer_required),
                      store: DocumentStore = Depends(get_store)):
    quote = await calculate_pricing(
        store,
        request.event_id,
        request.items,
        promo_code=request.promo_code,
        promoter_code=request.promoter_code,
        buyer_id=user["id"],
    )
    return {"success": True, "pricing": quote}


@router.post("/checkout")
async def initiate_checkout(
    request: CheckoutRequest,
    background_tasks: BackgroundTasks,
    user=Depends(customer_required),
    store: DocumentStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    buyer = BuyerDetails(
        user_id=user["id"],
        name=request.name or user.get("username", ""),
        email=request.email or user.get("email", ""),
        phone=request.phone,
    )
    result = await checkout.initiate_checkout(
        store,
        request.reservation_id,
        buyer,
        promo_code=request.promo_code,
        promoter_code=request.promoter_code,
        gateway=gateway,
    )
    if result.order.status == OrderStatus.CONFIRMED and not result.replayed:
        background_tasks.add_task(dispatch_confirmation, notifier, result.order)
    return {"success": True, **result.model_dump()}


@router.post("/payments/confirm")
async def confirm_payment(
    request: PaymentConfirmRequest,
    background_tasks: BackgroundTasks,
    user=Depends(customer_required),
    store: DocumentStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    verification = await gateway.verify_payment(request.gateway_order_id, request.payment_id, request.signature)
    was_confirmed = (await orders.get_order(store, request.order_id)).status == OrderStatus.CONFIRMED
    order = await checkout.confirm_payment(
        store,
        request.order_id,
        verification,
        gateway_order_id=request.gateway_order_id,
        payment_id=request.payment_id,
        user_id=user["id"],
    )
    if not was_confirmed:
        background_tasks.add_task(dispatch_confirmation, notifier, order)
    return {"success": True, "order": order, "message": "Payment confirmed. Your tickets are ready."}


@router.get("/orders")
async def order_history(user=Depends(customer_required), store: DocumentStore = Depends(get_store)):
    return {"success": True, "orders": await orders.list_user_orders(store, user["id"])}


@router.post("/orders/{order_id}/cancel")
async def cancel_order(order_id: str, user=Depends(customer_required), store: DocumentStore = Depends(get_store)):
    order = await orders.cancel_order(store, order_id, user["id"])
    return {"success": True, "order": order}
