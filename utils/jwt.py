import os
from datetime import datetime, timedelta, timezone
from jose import jwt
from typing import Optional
import logging

# FastAPI imports for dependency-based auth
from fastapi import Header, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from models.user import Principal

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60

http_bearer = HTTPBearer(auto_error=False)
logger = logging.getLogger("auth")


def _secret_key() -> str:
    return os.getenv("JWT_SECRET", "your_jwt_secret_here")


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, _secret_key(), algorithm=ALGORITHM)


def verify_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])
    except Exception as err:  # broad to log actual cause
        logger.warning("JWT verification failed: %s", str(err))
        return None


def _strip_bearer(raw: str) -> str:
    raw = raw.strip()
    return raw.split(" ", 1)[1].strip() if raw.lower().startswith("bearer ") else raw


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    Authorization: Optional[str] = Header(None, include_in_schema=False),
) -> Principal:
    """
    FastAPI dependency resolving the bearer token into the acting Principal.
    Prefers standard HTTP Bearer auth and falls back to the raw Authorization header.
    Returns 401 when the header is missing or invalid.
    """
    token: Optional[str] = None

    if credentials and credentials.scheme and credentials.credentials:
        if credentials.scheme.lower() == "bearer":
            token = _strip_bearer(credentials.credentials)
    elif Authorization:
        token = _strip_bearer(Authorization)

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")

    payload = verify_access_token(token)
    if not payload or "id" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return Principal(id=int(payload["id"]), email=payload.get("sub", ""))
