"""
Identity gate: resolves the bearer token offered at the Socket.IO handshake.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from formsync.core.errors import AuthenticationError
from formsync.core.security import extract_user_id, verify_token
from formsync.db.store import CollaborationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    role: str


def extract_token(auth: Optional[Dict[str, Any]] = None, environ: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Find the token in the handshake: `auth={"token": ...}` first, then an
    `Authorization: Bearer` header, then a `token` query parameter.
    """
    if isinstance(auth, dict) and auth.get("token"):
        return str(auth["token"])

    environ = environ or {}
    header = environ.get("HTTP_AUTHORIZATION", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None

    tokens = parse_qs(environ.get("QUERY_STRING", "")).get("token")
    return tokens[0] if tokens else None


class IdentityGate:
    """Authenticates sessions against signed tokens and the users table."""

    def __init__(self, store: CollaborationStore):
        self.store = store

    async def authenticate(
        self, auth: Optional[Dict[str, Any]] = None, environ: Optional[Dict[str, Any]] = None
    ) -> Identity:
        token = extract_token(auth, environ)
        if not token:
            raise AuthenticationError("Authentication error: No token provided")

        return await self.authenticate_token(token)

    async def authenticate_token(self, token: str) -> Identity:
        payload = verify_token(token)
        if payload is None:
            raise AuthenticationError()

        user_id = extract_user_id(payload)
        if not user_id:
            raise AuthenticationError("Authentication error: Token has no subject")

        user = await self.store.get_user(user_id)
        if user is None:
            logger.warning(f"Rejected token for unknown user {user_id}")
            raise AuthenticationError("Authentication error: User not found")

        role = user.role.value if hasattr(user.role, "value") else str(user.role)
        return Identity(user_id=user.id, email=user.email, role=role)
