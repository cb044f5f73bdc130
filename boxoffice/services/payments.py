# boxoffice/services/payments.py
"""
Payment gateway boundary. Order creation at the gateway and signature
verification are owned by the gateway integration; the checkout core only
consumes the results.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Protocol

from boxoffice import config


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    amount: float
    currency: str


@dataclass(frozen=True)
class PaymentVerification:
    verified: bool
    amount: float


class PaymentGateway(Protocol):
    async def create_order(self, order_id: str, amount: float, currency: str) -> GatewayOrder: ...

    async def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> PaymentVerification: ...


class SandboxGateway:
    """
    Development gateway. Orders are remembered in memory and a payment is
    verified when its signature is the HMAC of ``gateway_order_id|payment_id``
    under ``secret``, mirroring how hosted gateways sign checkout callbacks.
    """

    def __init__(self, secret: str = "sandbox-secret") -> None:
        self.secret = secret
        self.orders = {}

    def sign(self, gateway_order_id: str, payment_id: str) -> str:
        message = f"{gateway_order_id}|{payment_id}".encode()
        return hmac.new(self.secret.encode(), message, hashlib.sha256).hexdigest()

    async def create_order(self, order_id: str, amount: float, currency: str) -> GatewayOrder:
        gateway_order = GatewayOrder(f"sandbox_{order_id}", amount, currency)
        self.orders[gateway_order.gateway_order_id] = gateway_order
        return gateway_order

    async def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> PaymentVerification:
        gateway_order = self.orders.get(gateway_order_id)
        if gateway_order is None:
            return PaymentVerification(False, 0.0)
        verified = hmac.compare_digest(self.sign(gateway_order_id, payment_id), signature)
        return PaymentVerification(verified, gateway_order.amount)


_gateway = None


def get_gateway() -> PaymentGateway:
    """FastAPI dependency returning the process-wide gateway client."""
    global _gateway
    if _gateway is None:
        _gateway = SandboxGateway(config.PAYMENT_GATEWAY_SECRET)
    return _gateway
