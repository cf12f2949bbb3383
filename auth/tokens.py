"""
auth/tokens.py -- Password hashing, signed credentials, and opaque invitation tokens.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force expensive for low-entropy secrets. DUMMY_HASH lets
       login run the same bcrypt work for unknown emails so response time does
       not reveal whether an account exists.

  Credentials: python-jose with HS256. Tokens carry sub (account id), email,
       role, typ ("access" | "refresh"), and exp. verify() raises AuthError on
       any failure -- expired, tampered, wrong type -- and never says which.

  Invitation tokens: secrets.token_urlsafe(32) -- 256 bits, opaque, no
       embedded claims. Only HMAC-SHA256(SECRET_KEY, token) is stored, so the
       lookup is O(1) and a database dump yields no usable token. bcrypt's
       slowness is unnecessary for high-entropy random values.

Layer rule: imports from core/ only.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from auth.models import Credentials
from core.config import Settings, get_settings
from core.errors import AuthError

if TYPE_CHECKING:
    from auth.models import Account

logger = logging.getLogger("teamgate.auth")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class PasswordHasher:
    """One-way hash + verify. Passwords longer than 72 bytes are truncated by
    bcrypt; the API layer caps input length well below that."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first failed login is not measurably slower.
        self.dummy_hash = self.hash("teamgate_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PasswordHasher":
        settings = settings or get_settings()
        return cls(rounds=settings.bcrypt_rounds)

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes count as a mismatch."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False


# ---------------------------------------------------------------------------
# Signed credentials
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Sign and verify bearer credentials."""

    def __init__(self, secret_key: str, access_ttl: int = 900, refresh_ttl: int = 7 * 24 * 3600) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TokenIssuer":
        settings = settings or get_settings()
        return cls(
            settings.secret_key,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
        )

    def sign(self, claims: dict[str, Any], ttl: int) -> str:
        payload = dict(claims)
        payload["exp"] = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, credential: str, expected_type: str = ACCESS) -> dict[str, Any]:
        """Decode and check a credential. Raises AuthError on any failure."""
        try:
            payload = jwt.decode(credential, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise AuthError("Invalid or expired credential.") from exc
        if payload.get("typ") != expected_type or "sub" not in payload:
            raise AuthError("Invalid or expired credential.")
        return payload

    def issue(self, account: Account) -> Credentials:
        """Issue an access/refresh pair for an account."""
        claims = {
            "sub": str(account.id),
            "email": account.email,
            "role": account.platform_role.value,
        }
        return Credentials(
            access_token=self.sign({**claims, "typ": ACCESS}, self.access_ttl),
            refresh_token=self.sign({**claims, "typ": REFRESH}, self.refresh_ttl),
            expires_in=self.access_ttl,
        )


# ---------------------------------------------------------------------------
# Invitation tokens
# ---------------------------------------------------------------------------


def generate_invitation_token() -> str:
    """32 random bytes, base64url -- 43 characters, 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def hash_invitation_token(raw_token: str, secret_key: str | None = None) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as hex.

    Deterministic, so the store can look invitations up by digest.
    """
    key = secret_key or get_settings().secret_key
    return hmac.new(key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()
