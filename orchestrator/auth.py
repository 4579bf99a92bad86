"""
Session Authenticator - Bearer session tokens and the agent shared secret

Session tokens are compact signed tokens of the form
header.payload.signature, each segment base64url encoded without padding.
The payload carries {sub, name, exp}; the signature is HMAC-SHA256 over
"header.payload" with the service secret.

Agent nodes authenticate their heartbeats with a single static shared
secret instead; that credential is not user scoped.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from shared.schemas import AuditEntry, User
from orchestrator.audit_log import AuditLog

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 7 * 24 * 60 * 60
AGENT_SECRET_HEADER = "X-Agent-Secret"

_TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _encode_segment(data: Dict[str, Any]) -> str:
    return _b64url_encode(json.dumps(data, separators=(",", ":")).encode("utf-8"))


class SessionAuthenticator:
    """Issues and verifies bearer session tokens"""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._key = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, user: User) -> str:
        """
        Issue a session token for a user.

        Args:
            user: Authenticated user

        Returns:
            Signed token string
        """
        payload = {
            "sub": user.id,
            "name": user.name,
            "exp": int(self._clock()) + self.ttl_seconds,
        }
        signing_input = f"{_encode_segment(_TOKEN_HEADER)}.{_encode_segment(payload)}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Verify a session token.

        Every failure (malformed token, signature mismatch, undecodable
        payload, expiry) returns None so callers cannot tell them apart.

        Args:
            token: Token string from the Authorization header

        Returns:
            The token claims, or None if the token is invalid or expired
        """
        parts = token.split(".") if token else []
        if len(parts) != 3 or not all(parts):
            return None

        header, payload, signature = parts
        expected = self._sign(f"{header}.{payload}")
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            return None

        try:
            claims = json.loads(_b64url_decode(payload))
        except ValueError:
            return None

        if not isinstance(claims, dict) or not claims.get("sub"):
            return None

        exp = claims.get("exp")
        if exp is not None and (not isinstance(exp, (int, float)) or self._clock() > exp):
            return None

        return claims

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode("utf-8"), hashlib.sha256).digest()
        return _b64url_encode(digest)


class SharedSecretGuard:
    """
    Static shared-secret check for inter-node calls.

    Protects the agent heartbeat endpoint. Every rejected attempt is written
    to the audit log with the caller's identifier.
    """

    def __init__(self, secret: str, audit_log: AuditLog):
        self.secret = secret
        self.audit_log = audit_log

    def applies_to(self, path: str) -> bool:
        return "/heartbeat" in path

    def check(self, presented: Optional[str], source: str) -> bool:
        """
        Compare a presented secret with the configured one.

        Args:
            presented: Value of the X-Agent-Secret header (may be None)
            source: Caller identifier, recorded on rejection

        Returns:
            True if the secret matches
        """
        if presented is not None and hmac.compare_digest(presented.encode("utf-8"), self.secret.encode("utf-8")):
            return True

        logger.warning(f"[AUTH] Rejected heartbeat credential from {source}")
        self.audit_log.append(AuditEntry(
            action="DENY",
            description=f"Unauthorized heartbeat attempt from {source}",
            actor="Unknown",
        ))
        return False
