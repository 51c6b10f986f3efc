# creditwise/core/security/identity.py
"""
Caller identity for the chat API and the edge proxy.

An authenticated caller presents a bearer JWT (HS256, shared secret) whose
``sub`` claim is the user id. Anyone else is a guest, identified by an opaque
guest id the client keeps and sends back in ``X-Guest-Id``. The Identity
object is the only thing the rest of the system inspects to choose durable
vs ephemeral storage and whether usage is metered.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt  # PyJWT
from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from creditwise.core.config import settings
from creditwise.core.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

GUEST_ID_PATTERN = re.compile(r"^guest_[A-Za-z0-9\-]{8,64}$")


@dataclass(frozen=True)
class Identity:
    user_id: str
    is_guest: bool
    token: Optional[str] = None
    display_name: Optional[str] = None
    is_new_guest: bool = False

    @property
    def durable(self) -> bool:
        """Authenticated users get durable storage and metering"""
        return not self.is_guest

    @classmethod
    def guest(cls, guest_id: Optional[str] = None) -> "Identity":
        if guest_id:
            return cls(user_id=guest_id, is_guest=True)
        return cls(user_id=new_guest_id(), is_guest=True, is_new_guest=True)

    @classmethod
    def authenticated(cls, user_id: str, token: Optional[str] = None,
                      display_name: Optional[str] = None) -> "Identity":
        return cls(user_id=user_id, is_guest=False, token=token, display_name=display_name)


def new_guest_id() -> str:
    return f"guest_{uuid.uuid4().hex}"


def is_valid_guest_id(guest_id: Optional[str]) -> bool:
    return bool(guest_id) and bool(GUEST_ID_PATTERN.match(guest_id))


class TokenVerifier:
    """Decodes bearer tokens into identities"""

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret = secret if secret is not None else settings.AUTH_JWT_SECRET
        self.algorithm = algorithm or settings.AUTH_JWT_ALGORITHM

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify signature and expiry.

        Raises:
            ConfigurationError: If no secret is configured
            AuthenticationError: For invalid or expired tokens
        """
        if not self.secret:
            raise ConfigurationError("AUTH_JWT_SECRET is not configured", component="auth")

        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            raise AuthenticationError("Token expired", error_type="expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            raise AuthenticationError("Invalid token", error_type="invalid")

    def verify(self, token: str) -> Identity:
        payload = self.decode(token)
        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Token has no subject", error_type="invalid")
        return Identity.authenticated(
            user_id=str(user_id),
            token=token,
            display_name=payload.get("name") or payload.get("display_name")
        )


_verifier: Optional[TokenVerifier] = None


def get_token_verifier() -> TokenVerifier:
    global _verifier
    if _verifier is None:
        _verifier = TokenVerifier()
    return _verifier


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_guest_id: Optional[str] = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier)
) -> Identity:
    """
    FastAPI dependency resolving the caller.

    Bearer token wins; otherwise the supplied guest id, otherwise a fresh one.
    """
    if credentials:
        return verifier.verify(credentials.credentials)

    if x_guest_id:
        if not is_valid_guest_id(x_guest_id):
            raise AuthenticationError("Malformed guest id", error_type="invalid_guest")
        return Identity.guest(x_guest_id)

    return Identity.guest()


async def require_authenticated(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.is_guest:
        raise AuthenticationError("Authentication required", error_type="missing")
    return identity
