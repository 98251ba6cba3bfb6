from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from panaderia.core.config import get_settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    email: str,
    user_id: int,
    role: str,
    token_version: int = 0,
    expires_minutes: int | None = None,
) -> str:
    settings = get_settings()
    minutes = expires_minutes if expires_minutes else settings.access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    claims: dict[str, Any] = {
        "sub": email,
        "uid": user_id,
        "role": role,
        "ver": token_version,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> tuple[dict[str, Any] | None, str]:
    """Return ``(claims, "")`` or ``(None, reason)`` where reason is ``expired`` or ``invalid``."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm]), ""
    except ExpiredSignatureError:
        return None, "expired"
    except JWTError:
        return None, "invalid"
