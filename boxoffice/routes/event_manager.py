# boxoffice/routes/event_manager.py
import uuid
from typing import List

from fastapi import APIRouter, Depends

from boxoffice.database import EVENTS, get_store
from boxoffice.errors import NotFound
from boxoffice.models.event import Event, EventCreate
from boxoffice.models.promo import Promo, PromoCreate, PromoterLinkCreate
from boxoffice.services import promotions
from boxoffice.services.catalog import get_event
from boxoffice.services.reservations import expire_sweep
from boxoffice.store.base import DocumentStore
from boxoffice.utils.auth_utils import manager_required

router = APIRouter()


@router.post("/events", response_model=Event)
async def create_event(event: EventCreate, user=Depends(manager_required), store: DocumentStore = Depends(get_store)):
    event_data = event.model_dump()
    event_data["id"] = str(uuid.uuid4())
    event_data["created_by"] = user["id"]
    created = Event(**event_data)

    await store.insert(EVENTS, created.to_doc())
    return created


async def _owned_event(store: DocumentStore, event_id: str, user) -> Event:
    event = await get_event(store, event_id)
    if event.created_by and event.created_by != user["id"]:
        raise NotFound("Event not found", event_id=event_id)
    return event


@router.post("/promos", response_model=Promo)
async def create_promo(promo: PromoCreate, user=Depends(manager_required), store: DocumentStore = Depends(get_store)):
    """Create a new promo code for one of the manager's events."""
    await _owned_event(store, promo.event_id, user)
    return await promotions.create_promo(store, promo, created_by=user["id"])


@router.get("/promos", response_model=List[Promo])
async def get_promos(user=Depends(manager_required), store: DocumentStore = Depends(get_store)):
    """Retrieve all promo codes created by the logged-in manager."""
    return await promotions.list_promos(store, user["id"])


@router.post("/promoter-links")
async def create_promoter_link(link: PromoterLinkCreate, user=Depends(manager_required),
                               store: DocumentStore = Depends(get_store)):
    await _owned_event(store, link.event_id, user)
    return {"success": True, "link": await promotions.create_promoter_link(store, link)}


@router.post("/reservations/expire")
async def sweep_reservations(user=Depends(manager_required), store: DocumentStore = Depends(get_store)):
    return {"success": True, "expired": await expire_sweep(store)}
