# boxoffice/utils/qr.py
"""
Signed ticket payloads.

A payload is ``identifier:signature`` where the identifier is a URL-safe
base64 encoding of a structured TicketRef and the signature is an HMAC-SHA256
of the identifier under TICKET_SECRET. Signing and verification never touch
the store.
"""
import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Optional

from boxoffice import config

UNIT = "unit"
ASSIGNMENT = "assignment"
GROUP = "group"


class InvalidTicketRef(ValueError):
    pass


@dataclass(frozen=True)
class TicketRef:
    kind: str
    order_id: Optional[str] = None
    tier_id: Optional[str] = None
    unit_index: Optional[int] = None
    assignment_id: Optional[str] = None
    bundle_id: Optional[str] = None

    @classmethod
    def unit(cls, order_id: str, tier_id: str, unit_index: int) -> "TicketRef":
        return cls(kind=UNIT, order_id=order_id, tier_id=tier_id, unit_index=unit_index)

    @classmethod
    def assignment(cls, assignment_id: str) -> "TicketRef":
        return cls(kind=ASSIGNMENT, assignment_id=assignment_id)

    @classmethod
    def group(cls, bundle_id: str) -> "TicketRef":
        return cls(kind=GROUP, bundle_id=bundle_id)

    def encode(self) -> str:
        if self.kind == UNIT:
            body = {"k": UNIT, "o": self.order_id, "t": self.tier_id, "i": self.unit_index}
        elif self.kind == ASSIGNMENT:
            body = {"k": ASSIGNMENT, "a": self.assignment_id}
        else:
            body = {"k": GROUP, "b": self.bundle_id}
        raw = json.dumps(body, separators=(",", ":"), sort_keys=True).encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    @classmethod
    def decode(cls, identifier: str) -> "TicketRef":
        try:
            padded = identifier + "=" * (-len(identifier) % 4)
            body = json.loads(base64.urlsafe_b64decode(padded.encode()))
            kind = body["k"]
            if kind == UNIT:
                return cls.unit(str(body["o"]), str(body["t"]), int(body["i"]))
            if kind == ASSIGNMENT:
                return cls.assignment(str(body["a"]))
            if kind == GROUP:
                return cls.group(str(body["b"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidTicketRef(identifier) from exc
        raise InvalidTicketRef(identifier)


def sign_identifier(identifier: str, secret: str = config.TICKET_SECRET) -> str:
    digest = hmac.new(secret.encode(), identifier.encode(), hashlib.sha256).hexdigest()
    return f"{identifier}:{digest[:32]}"


def sign_ref(ref: TicketRef, secret: str = config.TICKET_SECRET) -> str:
    return sign_identifier(ref.encode(), secret)


def verify_payload(payload: str, secret: str = config.TICKET_SECRET) -> Optional[str]:
    """Return the identifier when the signature checks out, otherwise None."""
    identifier, sep, _signature = payload.rpartition(":")
    if not sep or not identifier:
        return None
    if not hmac.compare_digest(sign_identifier(identifier, secret), payload):
        return None
    return identifier
