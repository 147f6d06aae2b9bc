"""Authentication for the bounty board API.

This module provides:
1. HS256 JWT bearer tokens identifying contributors, developers and moderators
2. FastAPI dependencies for authenticated and admin-only routes
3. Shared-secret verification for inbound webhooks
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel

from config import settings_conf

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_EXPIRY_DAYS = 30

ROLE_ADMIN = 'admin'
ROLE_USER = 'user'

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class TokenExpiredError(AuthError):
    """Raised when a token has expired."""
    pass

class Principal(BaseModel):
    """The authenticated caller."""
    user_id: int
    name: Optional[str] = None
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN and self.user_id in settings_conf['admin_ids']

def _secret() -> str:
    secret = settings_conf['jwt_secret']
    if not secret:
        raise AuthError("jwt_secret is not configured")
    return secret

def create_token(
    user_id: int,
    name: Optional[str] = None,
    role: str = ROLE_USER,
    expires_in: timedelta = timedelta(days=TOKEN_EXPIRY_DAYS)
) -> str:
    """Issue a signed bearer token."""
    expires_at = datetime.now(timezone.utc) + expires_in
    return jwt.encode(
        {
            'sub': str(user_id),
            'name': name,
            'role': role,
            'exp': int(expires_at.timestamp())
        },
        _secret(),
        algorithm=JWT_ALGORITHM
    )

def decode_token(token: str) -> Principal:
    """Verify a bearer token and return its principal.

    Raises:
        TokenExpiredError: If the token has expired
        AuthError: If the token is invalid
    """
    try:
        payload = jwt.decode(token, _secret(), algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except JWTError as e:
        raise AuthError(f"Invalid token: {str(e)}")

    try:
        return Principal(
            user_id=int(payload['sub']),
            name=payload.get('name'),
            role=payload.get('role') or ROLE_USER
        )
    except (KeyError, TypeError, ValueError):
        raise AuthError("Token is missing a valid subject")

# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token required"
)

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> Principal:
    """FastAPI dependency for the authenticated caller.

    Raises:
        HTTPException: If authentication fails
    """
    try:
        return decode_token(credentials.credentials)
    except TokenExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

async def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
    """FastAPI dependency for moderator-only routes."""
    if not user.is_admin:
        logger.warning(f"Admin route refused for user {user.user_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Moderator access required"
        )
    return user

def verify_shared_secret(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of a provided secret against the configured one."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())

async def require_webhook_secret(authorization: Optional[str] = Header(None)) -> None:
    """FastAPI dependency for webhook routes.

    The caller sends ``Authorization: Basic <secret>`` with the shared secret
    registered on the processor.
    """
    provided = None
    if authorization and authorization.startswith('Basic '):
        provided = authorization[len('Basic '):].strip()

    if not verify_shared_secret(provided, settings_conf['processor_webhook_secret']):
        logger.warning("Webhook authorization failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing webhook secret"
        )

__all__ = [
    'AuthError',
    'TokenExpiredError',
    'Principal',
    'create_token',
    'decode_token',
    'get_current_user',
    'require_admin',
    'require_webhook_secret',
    'verify_shared_secret',
    'ROLE_ADMIN',
    'ROLE_USER'
]
