"""
ProBD Backend - Identity Service
================================

What:  Issues guest sessions and resolves the caller identity for HTTP
       requests and the live WebSocket.
How:   Session tokens are HS256 JWTs signed with AUTH_SECRET_KEY
       (python-jose). Members signed in through the OAuth backend present the
       same kind of bearer token; older clients send only `X-User-ID`.

Resolution order:
    1. Authorization: Bearer <jwt>   → claims (sub, name, role, guest)
    2. X-User-ID header              → bare member/guest id
    3. nothing                       → None (routes pick their own default)
"""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError
from jose import jwt as jose_jwt

from probd.config import settings
from probd.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    ProBDError,
    ValidationError,
)
from probd.schemas.identity import GUEST_PREFIX, Identity, Role

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def is_guest(user_id: str) -> bool:
    """Guest ids are minted by create_guest_session and always carry the prefix."""
    return user_id.startswith(GUEST_PREFIX)


def _slugify(name: str) -> str:
    slug = _SLUG_RE.sub("_", name.lower()).strip("_")
    return slug[:24] or "member"


class IdentityService:

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret_key = secret_key if secret_key is not None else settings.auth_secret_key
        self.algorithm = algorithm or settings.auth_algorithm

    # ── Token handling ────────────────────────────────────────────────────

    def issue_token(self, identity: Identity) -> Tuple[str, int]:
        """Sign a session token for `identity`. Returns (token, ttl_seconds)."""
        if not self.secret_key:
            raise ProBDError(
                message="Session signing is not configured on this server.",
                context={"setting": "AUTH_SECRET_KEY"},
            )
        now = datetime.now(timezone.utc)
        ttl = settings.auth_token_ttl
        claims = {
            "sub": identity.user_id,
            "name": identity.name,
            "role": identity.role.value,
            "guest": identity.is_guest,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        }
        return jose_jwt.encode(claims, self.secret_key, algorithm=self.algorithm), ttl

    def decode_token(self, token: str) -> Identity:
        """
        Verify a session token and rebuild the identity it carries.

        Raises:
            AuthenticationError for bad signatures, expiry, or missing claims.
        """
        if not self.secret_key:
            raise AuthenticationError(message="Bearer tokens are not accepted by this server.")
        try:
            claims = jose_jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning("Session token rejected: %s", str(e))
            raise AuthenticationError(
                message="Your session has expired or is invalid. Please sign in again.",
                context={"reason": type(e).__name__},
            )

        user_id = claims.get("sub")
        if not user_id:
            raise AuthenticationError(message="Session token has no subject.")
        try:
            role = Role(claims.get("role", Role.USER.value))
        except ValueError:
            raise AuthenticationError(
                message="Session token carries an unknown role.",
                context={"role": claims.get("role")},
            )

        return Identity(
            user_id=user_id,
            name=claims.get("name") or "Premium Member",
            role=role,
            is_guest=bool(claims.get("guest", is_guest(user_id))),
        )

    # ── Operations ────────────────────────────────────────────────────────

    def create_guest_session(self, name: str) -> Tuple[Identity, str, int]:
        """
        Mint a guest identity for someone joining a private session by link.

        Returns:
            (identity, token, ttl_seconds)
        """
        display_name = (name or "").strip()
        if not display_name:
            raise ValidationError(message="Please enter your name to join the session.", field="name")

        user_id = f"{GUEST_PREFIX}{_slugify(display_name)}_{secrets.token_hex(4)}"
        identity = Identity(user_id=user_id, name=display_name, role=Role.USER, is_guest=True)
        token, ttl = self.issue_token(identity)
        logger.info("Guest session created: %s", user_id)
        return identity, token, ttl

    def switch_role(self, identity: Identity, role: Role) -> Tuple[Identity, str, int]:
        """Re-issue a member's token with a different role (client ↔ professional view)."""
        if identity.is_guest:
            raise PermissionDeniedError(message="Guests cannot switch roles.")
        updated = identity.model_copy(update={"role": role})
        token, ttl = self.issue_token(updated)
        logger.info("User %s switched role %s → %s", identity.user_id, identity.role.value, role.value)
        return updated, token, ttl

    def resolve_identity(
        self,
        authorization: Optional[str] = None,
        x_user_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[Identity]:
        """Resolve the caller from headers (or equivalent WebSocket query params)."""
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer" and credentials.strip():
                return self.decode_token(credentials.strip())
            raise AuthenticationError(message="Unsupported Authorization scheme.")

        if x_user_id and x_user_id.strip():
            user_id = x_user_id.strip()
            return Identity(
                user_id=user_id,
                name=(name or "").strip() or "Premium Member",
                is_guest=is_guest(user_id),
            )

        return None


identity_service = IdentityService()
