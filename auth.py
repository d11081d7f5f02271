from datetime import datetime, timedelta
from typing import Optional
from jose import ExpiredSignatureError, JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from auth_providers import UserRecord, get_auth_provider
import logging
import os
import secrets

logger = logging.getLogger(__name__)


def get_secret_key():
    secret = os.getenv("SECRET_KEY") or os.getenv("JWT_SECRET")
    if not secret:
        logger.warning(
            "SECRET_KEY not set in environment! Using a generated key; "
            "issued tokens will not survive a restart."
        )
        return secrets.token_urlsafe(32)
    return secret


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", 60 * 24 * 7))
REFRESH_TOKEN_EXPIRE_MINUTES = int(os.getenv("REFRESH_TOKEN_EXPIRES_MINUTES", 60 * 24 * 30))

security = HTTPBearer(auto_error=False)


def _claims(user: UserRecord) -> dict:
    return {"userId": user.id, "email": user.email, "username": user.display_name}


def _encode(data: dict, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.utcnow() + expires_delta})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(user: UserRecord, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(_claims(user), expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user: UserRecord, expires_delta: Optional[timedelta] = None) -> str:
    data = {"userId": user.id, "type": "refresh"}
    return _encode(data, expires_delta or timedelta(minutes=REFRESH_TOKEN_EXPIRE_MINUTES))


def decode_token(token: str) -> dict:
    """Decode and verify a token; raises ExpiredSignatureError or JWTError."""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_user(token: str, token_type: str = "access") -> UserRecord:
    """Map a bearer token of the expected type to a live identity."""
    try:
        payload = decode_token(token)
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")

    if payload.get("type", "access") != token_type or not payload.get("userId"):
        raise _unauthorized("Invalid token")

    # The identity must still exist, not just the signature
    user = get_auth_provider().get_user(payload["userId"])
    if user is None:
        raise _unauthorized("Invalid or expired token")
    return user


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UserRecord:
    if credentials is None:
        raise _unauthorized("Access token is required")

    user = resolve_user(credentials.credentials)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is suspended")

    request.state.user = user
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[UserRecord]:
    if credentials is None:
        return None
    try:
        return resolve_user(credentials.credentials)
    except HTTPException:
        return None


def require_admin(request: Request, current_user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Admin access required", "error": "Insufficient permissions"},
        )
    request.state.admin_user = current_user
    return current_user


def require_super_admin(current_user: UserRecord = Depends(require_admin)) -> UserRecord:
    if not current_user.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Super admin access required", "error": "Insufficient permissions"},
        )
    return current_user
