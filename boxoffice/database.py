# boxoffice/database.py
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from boxoffice import config
from boxoffice.store.base import DocumentStore
from boxoffice.store.memory import MemoryStore
from boxoffice.store.mongo import MongoStore

# Define your collections
EVENTS = "events"
USERS = "users"
RESERVATIONS = "cart_reservations"
ORDERS = "orders"
RSVP_ORDERS = "rsvp_orders"
PROMO_CODES = "promo_codes"
PROMO_REDEMPTIONS = "promo_redemptions"
PROMOTER_LINKS = "promoter_links"
SHARE_BUNDLES = "share_bundles"
TICKET_ASSIGNMENTS = "ticket_assignments"
TRANSFERS = "transfers"
TICKET_SCANS = "ticket_scans"

_store: Optional[DocumentStore] = None


def build_store(backend: str = config.STORE_BACKEND) -> DocumentStore:
    if backend == "memory":
        return MemoryStore()
    client = AsyncIOMotorClient(config.MONGO_URI, tz_aware=True)
    return MongoStore(client, config.DATABASE_NAME)


def get_store() -> DocumentStore:
    """FastAPI dependency returning the process-wide store."""
    global _store
    if _store is None:
        _store = build_store()
    return _store
