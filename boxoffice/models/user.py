# boxoffice/models/user.py
from typing import Optional

from pydantic import BaseModel

from boxoffice.models.event import GenderRequirement


class Profile(BaseModel):
    """What the checkout core needs to know about a person."""

    user_id: str
    email: str = ""
    gender: Optional[str] = None

    def satisfies(self, requirement: str) -> bool:
        if requirement in (None, GenderRequirement.ANY, GenderRequirement.ANY.value):
            return True
        return self.gender == requirement


class TokenData(BaseModel):
    username: Optional[str] = None
