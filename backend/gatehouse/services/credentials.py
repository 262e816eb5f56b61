"""
Gatehouse Backend: Credential Service
=====================================

What:  Password hashing/verification and signed bearer token issuance.
Who:   Auth routes (register, login, user CRUD) and the identity stage of
       the security pipeline.

Password format:
    "<salt>$<digest>"
    salt:   16 random bytes, hex encoded
    digest: PBKDF2-HMAC-SHA256(password, salt), hex encoded

    Stored hashes are never compared to plaintext. Verification re-derives
    the digest with the stored salt and compares with hmac.compare_digest.

Token format:
    header.payload.signature (three base64url segments, encoded by PyJWT)
    header:    {"alg": "HS256", "typ": "JWT"}
    payload:   {...claims, "iat": <issued>, "exp": <expires>}
    signature: HMAC-SHA256(header + "." + payload, secret)

    Expiry is checked against the service clock rather than PyJWT's, so a
    token is valid exactly while now < exp for whatever clock the service
    was given.
"""

import hashlib
import hmac
import logging
import secrets
import time
from typing import Any, Callable, Dict, Optional

import jwt

from gatehouse.exceptions import ConfigurationError, EmptyInputError

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = 24 * 60 * 60
DEFAULT_ITERATIONS = 210_000
SALT_BYTES = 16


class CredentialService:
    """
    Hashes passwords and issues/verifies HS256 bearer tokens.

    Args:
        secret:            Process-wide signing secret. Empty → ConfigurationError.
        default_ttl:       Token lifetime in seconds when issue_token gets no ttl.
        iterations:        PBKDF2 iteration count (fixed for the lifetime of stored hashes).
        clock:             Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        secret: str,
        default_ttl: int = DEFAULT_TOKEN_TTL,
        iterations: int = DEFAULT_ITERATIONS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ConfigurationError("Token signing secret is not configured")
        self._secret = secret
        self.default_ttl = default_ttl
        self.iterations = iterations
        self._clock = clock

    # ── Passwords ─────────────────────────────────────────────────────────

    def _digest(self, password: str, salt: str) -> str:
        return hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt.encode("utf-8"), self.iterations
        ).hex()

    def hash_password(self, password: str) -> str:
        """
        Hash a password with a fresh random salt.

        Raises:
            EmptyInputError: password is empty.
        """
        if not password:
            raise EmptyInputError("password")
        salt = secrets.token_hex(SALT_BYTES)
        return f"{salt}${self._digest(password, salt)}"

    def verify_password(self, password: str, hash_string: Optional[str]) -> bool:
        """Check a password against a stored hash. Malformed hashes fail closed."""
        if not hash_string or "$" not in hash_string:
            return False
        salt, _, expected = hash_string.partition("$")
        if not salt or not expected:
            return False
        candidate = self._digest(password or "", salt)
        # Bytes, not str: a corrupted stored hash may hold non-ASCII characters
        return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8", "surrogateescape"))

    # ── Tokens ────────────────────────────────────────────────────────────

    def issue_token(self, claims: Dict[str, Any], ttl: Optional[int] = None) -> str:
        """
        Issue a signed token carrying `claims` plus iat/exp.

        Args:
            claims: Custom claims. By convention "sub" (subject id) and
                    "email". A non-string "sub" is issued as its str().
            ttl:    Lifetime in seconds; defaults to `default_ttl`.
        """
        now = int(self._clock())
        lifetime = self.default_ttl if ttl is None else ttl
        payload = {**claims, "iat": now, "exp": now + lifetime}
        # PyJWT rejects a non-string "sub" on decode (RFC 7519 StringOrURI)
        if payload.get("sub") is not None and not isinstance(payload["sub"], str):
            payload["sub"] = str(payload["sub"])
        return jwt.encode(payload, self._secret, algorithm=TOKEN_ALGORITHM)

    def verify_token(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Return the token's claims, or None if it is malformed, forged or expired.

        Never raises: absence of claims is the only failure signal.
        """
        if not token or token.count(".") != 2:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "iat"]},
            )
        except jwt.PyJWTError as e:
            logger.debug("Rejected bearer token: %s", e)
            return None

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock():
            logger.debug("Rejected expired bearer token (exp=%s)", exp)
            return None
        return payload
