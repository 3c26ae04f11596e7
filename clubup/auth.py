import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session

from .config import SECRET_KEY
from .database import get_db
from .errors import Unauthorized
from .models import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

security = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a session token for a user

    Args:
        user_id: Stored as the ``sub`` claim
        expires_delta: Token lifetime (default 60 minutes)
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode: dict[str, Any] = {"sub": str(user_id), "exp": expire}
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """Decode a session token, returning None when invalid or expired"""
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from the session token"""
    if not credentials:
        logger.warning("❌ No credentials provided")
        raise Unauthorized("Unauthorized")

    payload = verify_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise Unauthorized("Unauthorized")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Token subject is not a user id: {payload.get('sub')!r}")
        raise Unauthorized("Unauthorized")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"⚠️ Token for unknown user {user_id}")
        raise Unauthorized("Unauthorized")

    logger.debug(f"✅ User authenticated: {user.email}")
    return user
