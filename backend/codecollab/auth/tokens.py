"""Session token extraction and verification.

Session tokens are JWTs issued by the user service and signed with the
shared secret from ``codecollab.secrets.yaml``. The same lookup order is used
for WebSocket handshakes and HTTP routes:

1. ``token`` cookie (URL-decoded)
2. ``Authorization: Bearer <token>`` header
3. ``token`` query parameter
"""
import logging
from typing import Mapping, Optional
from urllib.parse import unquote

import jwt
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class HandshakeError(Exception):
    """Base class for errors that refuse a connection before admission."""
    error_type = "HANDSHAKE_ERROR"


class MissingCredential(HandshakeError):
    """No session token in cookie, header, or query."""
    error_type = "MISSING_CREDENTIAL"

    def __init__(self, message: str = "Authentication error: No token provided"):
        super().__init__(message)


class InvalidCredential(HandshakeError):
    """Token present but its signature, expiry or claims do not verify."""
    error_type = "INVALID_CREDENTIAL"


class Identity(BaseModel):
    """Authenticated user, decoded from the session token.

    Attributes:
        id: User id (``_id`` claim, falling back to ``sub`` then ``email``).
        displayName: Shown as the sender name (``email`` or ``name`` claim).
        claims: The full decoded claim set.
    """
    id: str = Field(..., description="User id")
    displayName: str = Field(default="", description="Display name")
    claims: dict = Field(default_factory=dict, description="Decoded token claims")

    @classmethod
    def from_claims(cls, claims: dict) -> "Identity":
        user_id = claims.get("_id") or claims.get("sub") or claims.get("email")
        if not user_id:
            raise InvalidCredential("Authentication error: token has no user identity")
        display_name = claims.get("email") or claims.get("name") or str(user_id)
        return cls(id=str(user_id), displayName=str(display_name), claims=claims)


def extract_credential(
    cookies: Mapping[str, str],
    headers: Mapping[str, str],
    query: Mapping[str, str],
    cookie_name: str = "token",
    query_param: str = "token",
) -> Optional[str]:
    """Find the bearer credential, checking cookie, then header, then query.

    Returns:
        The raw token string, or None if no source carries one.
    """
    token = cookies.get(cookie_name)
    if token:
        return unquote(token)

    authorization = headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()

    token = query.get(query_param)
    if token:
        return token
    return None


def decode_token(token: Optional[str], secret_key: str, algorithm: str = "HS256") -> Identity:
    """Verify a session token and return the identity it carries.

    Raises:
        MissingCredential: If no token was supplied.
        InvalidCredential: On bad signature, expiry, or malformed token.
    """
    if not token:
        raise MissingCredential()
    try:
        claims = jwt.decode(token, secret_key, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise InvalidCredential("Authentication error: jwt expired")
    except jwt.PyJWTError as e:
        raise InvalidCredential(f"Authentication error: {e}")
    return Identity.from_claims(claims)


def create_token(claims: dict, secret_key: str, algorithm: str = "HS256") -> str:
    """Sign a session token. Used by tooling and tests; the user service issues real ones."""
    return jwt.encode(claims, secret_key, algorithm=algorithm)
