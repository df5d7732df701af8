"""
Authentication and authorization dependencies
"""

from datetime import timedelta
from typing import Optional
import logging
import re

from fastapi import Depends, Header, Request

from .accounts import Account
from .config import BankAPIConfig, get_config
from .errors import AccountNotFound, AuthError, InvalidAccountID, PermissionDenied
from .logging_config import log_action
from .storage import AccountStore, create_account_store
from .tokens import TokenValidator

logger = logging.getLogger("bank_api.auth")


JWT_HEADER = "x-jwt-token"

ACCOUNT_ID_PATTERN = re.compile(r"[+-]?[0-9]+")
MIN_ACCOUNT_ID = -(2 ** 63)
MAX_ACCOUNT_ID = 2 ** 63 - 1


class BankSystem:
    """Account store and token validator shared by all requests"""

    def __init__(self, config: Optional[BankAPIConfig] = None,
                 store: Optional[AccountStore] = None,
                 tokens: Optional[TokenValidator] = None):
        self.config = config or get_config()

        if store is None:
            store = create_account_store(self.config.database_url)
            store.init()
        self.store = store

        if tokens is None:
            tokens = TokenValidator(
                secret=self.config.jwt_secret,
                algorithm=self.config.jwt_algorithm,
                expiry=timedelta(minutes=self.config.jwt_expiry_minutes),
            )
        self.tokens = tokens

    def close(self) -> None:
        self.store.close()


def get_bank_system(request: Request) -> BankSystem:
    """Dependency returning the application's BankSystem"""
    return request.app.state.bank_system


def parse_account_id(raw_id: str) -> int:
    """
    Convert a path segment to an account id.

    Only ASCII digits with an optional sign are accepted, and the value must
    fit a signed 64-bit store id.
    """
    if not isinstance(raw_id, str) or not ACCOUNT_ID_PATTERN.fullmatch(raw_id):
        raise InvalidAccountID(raw_id)
    account_id = int(raw_id)
    if not MIN_ACCOUNT_ID <= account_id <= MAX_ACCOUNT_ID:
        raise InvalidAccountID(raw_id)
    return account_id


def _deny(reason: str, account_number: Optional[int] = None, account_id: Optional[str] = None):
    log_action(
        logger, "warning", f"Permission denied: {reason}",
        account_number=account_number, action="authorize", resource="account",
        extra={"account_id": account_id} if account_id is not None else None
    )
    raise PermissionDenied(reason)


def require_account_access(
    account_id: str,
    x_jwt_token: Optional[str] = Header(default=None),
    system: BankSystem = Depends(get_bank_system)
) -> Account:
    """
    Gate ``/account/{account_id}`` behind the caller's token.

    The token must parse, carry a valid signature and not be expired, and its
    AccountNumber claim must equal the number of the account addressed by the
    path. Every failure raises PermissionDenied; a store outage propagates as
    StorageError.
    """
    try:
        token = system.tokens.parse(x_jwt_token)
    except AuthError as e:
        _deny(f"token rejected: {e}", account_id=account_id)

    if not token.valid:
        _deny("token failed signature or expiry check",
              account_number=token.claims.account_number, account_id=account_id)

    try:
        account = system.store.get_account_by_id(parse_account_id(account_id))
    except (InvalidAccountID, AccountNotFound) as e:
        _deny(str(e), account_number=token.claims.account_number, account_id=account_id)

    if token.claims.account_number != account.number:
        _deny("token account number does not match account",
              account_number=token.claims.account_number, account_id=account_id)

    return account
