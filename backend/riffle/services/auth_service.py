"""
Riffle Backend — Login Token Verification
===========================================

What:  Turns the login JWT on a request into the calling user.
How:   PyJWT HS256 verification against settings.jwt_secret. The token is
       read from `Authorization: Bearer <jwt>` first, then from the
       `riffle_auth` cookie the web app sets at login.
Who:   FastAPI dependencies used by the journal routes.

Claims used:
    id                   user id (required)
    email                informational
    subscription_status  "pro" / "active" lift the free-tier quota

Issuing tokens is the login service's job; this module only verifies them.
"""

import logging
from typing import Optional

import jwt
from fastapi import Request
from pydantic import BaseModel

from riffle.config import settings
from riffle.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

PRO_STATUSES = frozenset({"pro", "active"})


class CurrentUser(BaseModel):
    id: int
    email: Optional[str] = None
    subscription_status: Optional[str] = None

    @property
    def is_pro(self) -> bool:
        return self.subscription_status in PRO_STATUSES


def decode_token(token: str) -> CurrentUser:
    """
    Verify a login token and return its user.

    Raises:
        AuthenticationError: expired, badly signed, or missing the id claim
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        logger.debug("Login token expired")
        raise AuthenticationError(context={"reason": "expired"}) from e
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid login token: %s", e)
        raise AuthenticationError(context={"reason": "invalid"}) from e

    user_id = payload.get("id")
    if user_id is None:
        raise AuthenticationError(context={"reason": "missing id claim"})
    try:
        return CurrentUser(
            id=int(user_id),
            email=payload.get("email"),
            subscription_status=payload.get("subscription_status"),
        )
    except (TypeError, ValueError) as e:
        raise AuthenticationError(context={"reason": "malformed id claim"}) from e


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.auth_cookie_name) or None


async def get_current_user(request: Request) -> CurrentUser:
    """Dependency: the authenticated caller, or 401."""
    token = _token_from_request(request)
    if not token:
        raise AuthenticationError(context={"reason": "no token"})
    return decode_token(token)


async def get_optional_user(request: Request) -> Optional[CurrentUser]:
    """Dependency: the caller if a token was sent, else None (public feed)."""
    token = _token_from_request(request)
    if not token:
        return None
    return decode_token(token)
