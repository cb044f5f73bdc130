# boxoffice/utils/auth_utils.py
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from boxoffice import config
from boxoffice.database import USERS, get_store
from boxoffice.models.user import TokenData
from boxoffice.store.base import DocumentStore


def create_access_token(data: dict, expires_delta: timedelta = None):
    """Generate JWT access token. Sessions are issued by the identity service; this is for tooling and tests."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta if expires_delta else timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


async def get_user(store: DocumentStore, username: str):
    """Fetch user from the store by username."""
    return await store.find_one(USERS, {"username": username})


async def get_current_user(request: Request, store: DocumentStore = Depends(get_store)):
    """Extract JWT token from Authorization header and validate user."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = auth_header.split(" ")[1]

    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        token_data = TokenData(username=username)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await get_user(store, token_data.username)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


def role_required(*roles: str):
    """Dependency factory admitting only callers whose role is one of ``roles``."""

    def check(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=f"Only {' or '.join(roles)} users can perform this action")
        return user

    return check


customer_required = role_required("customer")
manager_required = role_required("manager")
scanner_required = role_required("scanner", "manager")
