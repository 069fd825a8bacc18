"""
Order Service — Security helper (JWT decode, shared secret)

Tokens are issued by the identity provider; this service only verifies them
and trusts the userId / role / restaurantId claims they carry.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt, JWTError

from order_service.core.config import get_settings

settings = get_settings()

ROLES = ("ADMIN", "WAITER", "KITCHEN", "CASHIER")


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    restaurant_id: str


def create_access_token(data: dict[str, Any]) -> str:
    payload = data.copy()
    expire = datetime.now(tz=timezone.utc) + timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload.update({"exp": expire, "type": "access", "jti": str(uuid.uuid4())})
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def principal_from_token(token: str) -> Principal:
    """Decode a token into the caller's identity. Raises JWTError when claims are missing."""
    claims = decode_token(token)
    user_id = claims.get("userId")
    role = claims.get("role")
    restaurant_id = claims.get("restaurantId")
    if not user_id or not restaurant_id or role not in ROLES:
        raise JWTError("Token is missing userId, role or restaurantId claims")
    return Principal(user_id=user_id, role=role, restaurant_id=restaurant_id)
