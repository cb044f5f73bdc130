# boxoffice/services/profiles.py
from boxoffice.database import USERS
from boxoffice.models.user import Profile
from boxoffice.store.base import DocumentReader


async def get_profile(reader: DocumentReader, user_id: str) -> Profile:
    """Gender and contact address for gating checks; unknown users get an empty profile."""
    user = await reader.get(USERS, user_id) if user_id else None
    if not user:
        return Profile(user_id=user_id or "")
    return Profile(user_id=user_id, email=user.get("email", ""), gender=user.get("gender"))
