# boxoffice/models/order.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from boxoffice.models.common import StoreModel


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderKind(str, Enum):
    RSVP = "rsvp"
    PAID_ZERO = "paid_zero"
    PAID_SETTLED = "paid_settled"


class BuyerDetails(BaseModel):
    user_id: Optional[str] = None
    name: str = ""
    email: str = ""
    phone: str = ""


class OrderLine(BaseModel):
    tier_id: str
    name: str
    entry_type: str = "general"
    quantity: int
    unit_price: float
    subtotal: float


class Discount(BaseModel):
    type: str  # "promoter" or "promo"
    code: str
    amount: float
    label: str
    id: Optional[str] = None


class Fees(BaseModel):
    platform: float = 0.0
    payment: float = 0.0
    tax: float = 0.0
    total: float = 0.0


class IssuedTicket(BaseModel):
    ticket_id: str
    tier_id: str
    unit_index: int
    qr_payload: str
    status: str = "active"  # "active" or "transferred"


class Order(StoreModel):
    id: str
    kind: OrderKind
    event_id: str
    event_title: str = ""
    user_id: Optional[str] = None
    user_name: str = ""
    user_email: str = ""
    user_phone: str = ""
    lines: List[OrderLine]
    subtotal: float = 0.0
    discounts: List[Discount] = []
    discount_total: float = 0.0
    fees: Fees = Fees()
    total_amount: float = 0.0
    currency: str = "INR"
    status: OrderStatus
    is_rsvp: bool = False
    payment_method: str = "card"
    reservation_id: Optional[str] = None
    promoter_code: Optional[str] = None
    promo_code_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    payment_details: Dict[str, Any] = {}
    tickets_issued: List[IssuedTicket] = []
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None


class PricingItem(BaseModel):
    tier_id: str
    quantity: int
    unit_price: Optional[float] = None  # frozen price; resolved from the tier when absent


class PricingRequest(BaseModel):
    event_id: str
    items: List[PricingItem]
    promo_code: Optional[str] = None
    promoter_code: Optional[str] = None


class PricedLine(BaseModel):
    tier_id: str
    tier_name: str
    entry_type: str = "general"
    quantity: int
    unit_price: float
    price_label: Optional[str] = None
    subtotal: float


class PricingQuote(BaseModel):
    items: List[PricedLine] = []
    subtotal: float = 0.0
    discounts: List[Discount] = []
    discount_total: float = 0.0
    fees: Fees = Fees()
    grand_total: float = 0.0
    is_free: bool = False
    promo_code_error: Optional[str] = None


class CheckoutRequest(BaseModel):
    reservation_id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    promo_code: Optional[str] = None
    promoter_code: Optional[str] = None


class PaymentInitiation(BaseModel):
    gateway_order_id: str
    amount: float
    currency: str
    order_id: str


class CheckoutResult(BaseModel):
    order: Order
    requires_payment: bool
    payment: Optional[PaymentInitiation] = None
    pricing: Optional[PricingQuote] = None
    message: str = ""
    replayed: bool = False  # true when a retried checkout returns an order that already existed


class PaymentConfirmRequest(BaseModel):
    order_id: str
    gateway_order_id: str
    payment_id: str
    signature: str
