# boxoffice/routes/tickets.py
from fastapi import APIRouter, Depends

from boxoffice.database import get_store
from boxoffice.models.ticket import ShareBundleRequest, TransferRequest
from boxoffice.services import sharing, transfers
from boxoffice.store.base import DocumentStore
from boxoffice.utils.auth_utils import get_current_user

router = APIRouter()


@router.post("/share-bundles")
async def create_share_bundle(request: ShareBundleRequest, user=Depends(get_current_user),
                              store: DocumentStore = Depends(get_store)):
    bundle = await sharing.create_share_bundle(store, request.order_id, user["id"],
                                               tier_id=request.tier_id, mode=request.mode)
    return {"success": True, "bundle": bundle}


@router.get("/share-bundles/{token}")
async def get_share_bundle(token: str, user=Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return {"success": True, "bundle": await sharing.get_share_bundle(store, token)}


@router.post("/claim/{token}")
async def claim_slot(token: str, user=Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    result = await sharing.claim_slot(store, token, user["id"])
    message = "You already claimed this ticket." if result.already_claimed else "Ticket claimed."
    return {"success": True, "message": message, **result.model_dump()}


@router.get("/transfers")
async def list_transfers(user=Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    listing = await transfers.list_transfers(store, user["id"], user.get("email", ""))
    return {"success": True, **listing}


@router.post("/transfers")
async def initiate_transfer(request: TransferRequest, user=Depends(get_current_user),
                            store: DocumentStore = Depends(get_store)):
    transfer = await transfers.initiate_transfer(store, request.ticket_id, user["id"], request.recipient_email)
    return {"success": True, "transfer": transfer}


@router.post("/transfers/{transfer_id}/accept")
async def accept_transfer(transfer_id: str, user=Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    assignment = await transfers.accept_transfer(store, transfer_id, user["id"])
    return {"success": True, "assignment": assignment}


@router.post("/transfers/{transfer_id}/cancel")
async def cancel_transfer(transfer_id: str, user=Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return {"success": True, "transfer": await transfers.cancel_transfer(store, transfer_id, user["id"])}
