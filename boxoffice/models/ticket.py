# boxoffice/models/ticket.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from boxoffice.models.common import StoreModel
from boxoffice.models.event import GenderRequirement


class ShareMode(str, Enum):
    INDIVIDUAL = "individual"
    SHARED_QR = "shared_qr"


class SlotType(str, Enum):
    OWNER_LOCKED = "owner_locked"
    SHAREABLE = "shareable"


class ClaimStatus(str, Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"


class BundleStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Slot(StoreModel):
    slot_index: int
    slot_type: SlotType
    required_gender: GenderRequirement = GenderRequirement.ANY
    couple_pair_id: Optional[str] = None
    claim_status: ClaimStatus = ClaimStatus.UNCLAIMED
    current_owner_user_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    assignment_id: Optional[str] = None


class ShareBundle(StoreModel):
    id: str
    order_id: str
    event_id: str
    tier_id: str
    owner_id: str
    mode: ShareMode = ShareMode.INDIVIDUAL
    is_couple: bool = False
    total_slots: int
    remaining_slots: int
    scan_credits_remaining: Optional[int] = None
    group_payload: Optional[str] = None
    token: str
    status: BundleStatus = BundleStatus.ACTIVE
    slots: List[Slot]
    created_at: datetime
    expires_at: datetime

    def slot(self, slot_index: int) -> Optional[Slot]:
        return next((s for s in self.slots if s.slot_index == slot_index), None)


class ShareBundleRequest(BaseModel):
    order_id: str
    tier_id: Optional[str] = None
    mode: ShareMode = ShareMode.INDIVIDUAL


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"


class PartnerStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"


class TicketAssignment(StoreModel):
    id: str
    source: str  # "claim" or "transfer"
    bundle_id: Optional[str] = None
    slot_index: Optional[int] = None
    order_id: str
    event_id: str
    tier_id: str
    couple_pair_id: Optional[str] = None
    partner_status: Optional[PartnerStatus] = None
    required_gender: GenderRequirement = GenderRequirement.ANY
    redeemer_id: str
    original_purchaser_id: str
    replaces_ticket_id: Optional[str] = None
    qr_payload: str
    is_shared_qr: bool = False
    inventory_charged: bool = False
    payload_revoked: bool = False
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    created_at: datetime
    used_at: Optional[datetime] = None
    scanned_by: Optional[str] = None


class ClaimResult(BaseModel):
    already_claimed: bool
    assignment: TicketAssignment


class TransferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Transfer(StoreModel):
    id: str
    ticket_id: str
    order_id: str
    event_id: str
    tier_id: str
    sender_id: str
    recipient_email: str
    token: str
    status: TransferStatus = TransferStatus.PENDING
    created_at: datetime
    expires_at: datetime
    accepted_by: Optional[str] = None
    accepted_at: Optional[datetime] = None
    assignment_id: Optional[str] = None


class TransferRequest(BaseModel):
    ticket_id: str
    recipient_email: str


class ScanRecord(StoreModel):
    id: str
    ticket_id: str
    event_id: str
    order_id: Optional[str] = None
    bundle_id: Optional[str] = None
    scanned_at: datetime
    scanned_by: Optional[str] = None
    is_group_scan: bool = False


class ScanRequest(BaseModel):
    payload: str
    event_id: str


class ScanResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    note: Optional[str] = None
    pair_complete: Optional[bool] = None
    ticket: Optional[Dict[str, Any]] = None
    roster: List[Dict[str, Any]] = []
    scans_remaining: Optional[int] = None
    scanned_at: Optional[datetime] = None
    required: Optional[str] = None
    actual: Optional[str] = None
