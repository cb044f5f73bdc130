# boxoffice/routes/scan.py
from fastapi import APIRouter, Depends

from boxoffice.database import get_store
from boxoffice.models.ticket import ScanRequest
from boxoffice.services.scanning import validate_and_scan
from boxoffice.store.base import DocumentStore
from boxoffice.utils.auth_utils import scanner_required

router = APIRouter()


@router.post("/validate")
async def validate_ticket(request: ScanRequest, user=Depends(scanner_required),
                          store: DocumentStore = Depends(get_store)):
    # Denied scans are a normal outcome at the door, not an error response.
    result = await validate_and_scan(store, request.payload, request.event_id, scanner_id=user["id"])
    return {"success": result.valid, **result.model_dump()}
