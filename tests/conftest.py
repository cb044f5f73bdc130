# tests/conftest.py
from datetime import datetime, timedelta, timezone

import anyio
import pytest

from boxoffice.database import EVENTS, USERS
from boxoffice.models.event import Event, PriceWindow, PromoterSettings, TicketTier
from boxoffice.models.order import BuyerDetails
from boxoffice.models.reservation import ReservationItemRequest
from boxoffice.services.checkout import confirm_payment, initiate_checkout
from boxoffice.services.payments import SandboxGateway
from boxoffice.services.reservations import create_reservation
from boxoffice.store.memory import MemoryStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
EVENT_ID = "evt-night"
RSVP_EVENT_ID = "evt-meetup"

USERS_SEED = [
    {"id": "u-buyer", "username": "buyer", "email": "buyer@example.com", "role": "customer", "gender": "male"},
    {"id": "u-alice", "username": "alice", "email": "alice@example.com", "role": "customer", "gender": "female"},
    {"id": "u-bob", "username": "bob", "email": "bob@example.com", "role": "customer", "gender": "male"},
    {"id": "u-carol", "username": "carol", "email": "carol@example.com", "role": "customer", "gender": "female"},
    {"id": "u-door", "username": "door", "email": "door@example.com", "role": "scanner"},
    {"id": "u-manager", "username": "manager", "email": "manager@example.com", "role": "manager"},
]


# Make anyio run on asyncio
@pytest.fixture
def anyio_backend():
    return "asyncio"


def night_event() -> Event:
    return Event(
        id=EVENT_ID,
        title="Friday Night Live",
        starts_at=NOW + timedelta(days=10),
        location="Warehouse 9",
        created_by="u-manager",
        promoter_settings=PromoterSettings(enabled=True, buyer_discounts_enabled=True, discount=10),
        tiers=[
            TicketTier(id="ga", name="General Admission", base_price=500, quantity=10, max_per_order=6),
            TicketTier(id="couple", name="Couple Entry", base_price=1500, quantity=5, is_couple=True,
                       entry_type="couple", max_per_order=2),
            TicketTier(id="ladies", name="Ladies Night", base_price=0, quantity=3,
                       gender_requirement="female", inventory_charge="on_claim"),
            TicketTier(
                id="early",
                name="Early Bird",
                base_price=800,
                quantity=20,
                price_windows=[PriceWindow(starts_at=NOW - timedelta(days=5), ends_at=NOW + timedelta(days=1),
                                           price=600, label="Early Bird")],
                promoter_enabled=False,
            ),
            TicketTier(id="closed", name="Door Sales", base_price=900, quantity=10,
                       sales_start=NOW + timedelta(days=9)),
        ],
    )


def rsvp_event() -> Event:
    return Event(
        id=RSVP_EVENT_ID,
        title="Community Meetup",
        starts_at=NOW + timedelta(days=3),
        is_rsvp=True,
        created_by="u-manager",
        tiers=[TicketTier(id="rsvp", name="RSVP", base_price=0, quantity=50)],
    )


class YieldingStore(MemoryStore):
    """Reads outside a transaction let other tasks run before the caller sees the result."""

    async def get(self, collection, doc_id):
        doc = await super().get(collection, doc_id)
        await anyio.sleep(0)
        return doc

    async def find(self, collection, query, limit=None):
        docs = await super().find(collection, query, limit=limit)
        await anyio.sleep(0)
        return docs


async def seed_store(store):
    for user in USERS_SEED:
        await store.insert(USERS, dict(user))
    await store.insert(EVENTS, night_event().to_doc())
    await store.insert(EVENTS, rsvp_event().to_doc())
    return store


@pytest.fixture
async def store():
    return await seed_store(MemoryStore())


@pytest.fixture
def gateway():
    return SandboxGateway("test-secret")


def buyer(user_id="u-buyer", email="buyer@example.com"):
    return BuyerDetails(user_id=user_id, name=user_id, email=email, phone="9999999999")


@pytest.fixture
def purchase(store, gateway):
    """Reserve and pay for tickets, returning the confirmed order."""

    async def _purchase(tier_id, quantity=1, user_id="u-buyer", email="buyer@example.com",
                        event_id=EVENT_ID, promo_code=None, now=NOW):
        reservation = await create_reservation(
            store, event_id, [ReservationItemRequest(tier_id=tier_id, quantity=quantity)],
            customer_id=user_id, now=now,
        )
        result = await initiate_checkout(store, reservation.id, buyer(user_id, email),
                                         promo_code=promo_code, gateway=gateway, now=now)
        if not result.requires_payment:
            return result.order
        payment_id = f"pay_{result.order.id}"
        verification = await gateway.verify_payment(
            result.payment.gateway_order_id, payment_id,
            gateway.sign(result.payment.gateway_order_id, payment_id),
        )
        return await confirm_payment(store, result.order.id, verification,
                                     gateway_order_id=result.payment.gateway_order_id,
                                     payment_id=payment_id, now=now)

    return _purchase


async def tier_remaining(store, tier_id, event_id=EVENT_ID):
    event = Event(**await store.get(EVENTS, event_id))
    return event.tier(tier_id).remaining
