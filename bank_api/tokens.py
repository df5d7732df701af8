"""
Token Module

Issues and verifies the HMAC-signed JWTs carried in the ``x-jwt-token``
header. Claims are decoded into a typed structure at parse time so callers
never deal with raw payload values.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional
import logging

import jwt

from .accounts import Account
from .errors import ClaimTypeMismatch, InvalidSignature, MalformedToken, TokenInvalid

logger = logging.getLogger("bank_api.tokens")


HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")

ACCOUNT_NUMBER_CLAIM = "AccountNumber"
EXPIRES_AT_CLAIM = "ExpiresAt"


def _integral_claim(payload: Dict[str, Any], name: str) -> int:
    """Read a claim that must be an integral JSON number"""
    if name not in payload:
        raise ClaimTypeMismatch(f"missing claim {name}")

    value = payload[name]
    # bool is an int subclass; "true" is not an account number
    if isinstance(value, bool):
        raise ClaimTypeMismatch(f"claim {name} is not numeric")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ClaimTypeMismatch(f"claim {name} is not an integer: {value!r}")


@dataclass(frozen=True)
class TokenClaims:
    """Signed payload of an access token"""
    account_number: int
    expires_at: int  # Unix seconds

    @classmethod
    def from_payload(cls, payload: Any) -> 'TokenClaims':
        if not isinstance(payload, dict):
            raise MalformedToken("token payload is not an object")
        return cls(
            account_number=_integral_claim(payload, ACCOUNT_NUMBER_CLAIM),
            expires_at=_integral_claim(payload, EXPIRES_AT_CLAIM),
        )

    def to_payload(self) -> Dict[str, int]:
        return {
            ACCOUNT_NUMBER_CLAIM: self.account_number,
            EXPIRES_AT_CLAIM: self.expires_at,
        }

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= int(now.timestamp())


@dataclass(frozen=True)
class ParsedToken:
    """
    Result of parsing a token.

    ``valid`` is False when the signature does not verify or the token has
    expired; parsing itself still succeeds in that case.
    """
    raw: str
    algorithm: str
    claims: TokenClaims
    valid: bool


class TokenValidator:
    """
    Signs and verifies access tokens with a shared HMAC secret.

    The secret, algorithm and lifetime are injected from configuration at
    startup.
    """

    def __init__(self, secret: str, algorithm: str = "HS256",
                 expiry: timedelta = timedelta(minutes=15)):
        if algorithm not in HMAC_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.expiry = expiry

    def issue(self, account: Account, now: Optional[datetime] = None) -> str:
        """Create a signed token for an account"""
        now = now or datetime.now(timezone.utc)
        claims = TokenClaims(
            account_number=account.number,
            expires_at=int((now + self.expiry).timestamp()),
        )
        return jwt.encode(claims.to_payload(), self._secret, algorithm=self.algorithm)

    def parse(self, token: Optional[str], now: Optional[datetime] = None) -> ParsedToken:
        """
        Parse a token and check its signature and expiry.

        Raises:
            MalformedToken: token is empty or cannot be decoded
            InvalidSignature: header names an algorithm outside the HMAC family
            ClaimTypeMismatch: a claim is missing or not an integer
        """
        if not token:
            raise MalformedToken("token is empty")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"cannot decode token header: {e}") from e

        algorithm = header.get("alg")
        if algorithm not in HMAC_ALGORITHMS:
            raise InvalidSignature(f"unexpected signing method: {algorithm}")

        valid = True
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[algorithm],
                options={"verify_exp": False},
            )
        except jwt.InvalidSignatureError:
            valid = False
            try:
                payload = jwt.decode(token, options={"verify_signature": False})
            except jwt.InvalidTokenError as e:
                raise MalformedToken(f"cannot decode token payload: {e}") from e
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"cannot decode token: {e}") from e

        claims = TokenClaims.from_payload(payload)
        if valid and claims.is_expired(now):
            logger.debug("Token for account %s expired at %s", claims.account_number, claims.expires_at)
            valid = False

        return ParsedToken(raw=token, algorithm=algorithm, claims=claims, valid=valid)

    def validate(self, token: Optional[str], now: Optional[datetime] = None) -> TokenClaims:
        """Parse a token and require it to be valid"""
        parsed = self.parse(token, now=now)
        if not parsed.valid:
            raise TokenInvalid("token signature or expiry check failed")
        return parsed.claims
