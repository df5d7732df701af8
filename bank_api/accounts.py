"""
Account Model Module

Defines the Account record, account-number generation and password hashing.
The account number is the external-facing identifier; the numeric id is
assigned by the store and only used in URLs.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import hashlib
import hmac
import secrets

from .errors import AccountNumberTaken, BankAPIError, StorageError


ACCOUNT_NUMBER_LIMIT = 1_000_000
PASSWORD_SCHEME = "scrypt"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    """
    Bank account identity record
    """
    first_name: str
    last_name: str
    number: int
    encrypted_password: str = ""
    balance: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None  # Assigned by the store on create

    def valid_password(self, password: str) -> bool:
        """Check a plaintext password against the stored hash"""
        return verify_password(self.encrypted_password, password)

    def to_dict(self) -> Dict[str, Any]:
        """Public representation (no password material)"""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "number": self.number,
            "balance": self.balance,
            "created_at": self.created_at.isoformat(),
        }

    def to_record(self) -> Dict[str, Any]:
        """Full representation for storage backends"""
        record = self.to_dict()
        record["encrypted_password"] = self.encrypted_password
        return record

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> 'Account':
        """Create instance from a stored row"""
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return cls(
            id=int(data["id"]) if data.get("id") is not None else None,
            first_name=data["first_name"],
            last_name=data["last_name"],
            number=int(data["number"]),
            encrypted_password=data.get("encrypted_password") or "",
            balance=int(data.get("balance") or 0),
            created_at=created_at,
        )


def generate_account_number() -> int:
    """Random account number in [0, 1_000_000)"""
    return secrets.randbelow(ACCOUNT_NUMBER_LIMIT)


def _scrypt(password: str, salt: str) -> str:
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def hash_password(password: str) -> str:
    """Hash a password as ``scrypt$<salt>$<hex digest>``"""
    salt = secrets.token_hex(16)
    return f"{PASSWORD_SCHEME}${salt}${_scrypt(password, salt)}"


def verify_password(encrypted_password: str, password: str) -> bool:
    """Constant-time comparison of a password against its stored hash"""
    try:
        scheme, salt, expected = encrypted_password.split("$", 2)
    except ValueError:
        return False
    if scheme != PASSWORD_SCHEME:
        return False
    return hmac.compare_digest(_scrypt(password, salt), expected)


def new_account(first_name: str, last_name: str, password: str,
                number: Optional[int] = None) -> Account:
    """
    Build an unsaved account with a hashed password.

    Args:
        first_name: Holder first name
        last_name: Holder last name
        password: Plaintext password, hashed before it is stored
        number: Specific account number (random if not provided)

    Returns:
        Account without an id
    """
    if not password:
        raise BankAPIError("password must not be empty")

    return Account(
        first_name=first_name,
        last_name=last_name,
        number=generate_account_number() if number is None else number,
        encrypted_password=hash_password(password),
    )


def open_account(store, first_name: str, last_name: str, password: str,
                 max_attempts: int = 5) -> Account:
    """
    Create and persist an account with a number that was never used.

    The store rejects numbers held by live or deleted accounts, so a
    collision is retried with a fresh draw.

    Raises:
        StorageError: no free number found in ``max_attempts`` draws, or the
            backend failed
    """
    account = new_account(first_name, last_name, password)
    for _ in range(max_attempts):
        try:
            return store.create_account(account)
        except AccountNumberTaken:
            account.number = generate_account_number()

    raise StorageError("could not allocate a unique account number")
