"""
Error types raised by the token, store and authorization layers.

The API layer maps these onto the ``{"error": ...}`` JSON envelope.
"""


class BankAPIError(ValueError):
    """Base class for all handled service errors"""


class InvalidAccountID(BankAPIError):
    """Path identifier is not an integer"""

    def __init__(self, raw_id: str):
        super().__init__(f"invalid id given {raw_id}")
        self.raw_id = raw_id


# Authentication / authorization

class AuthError(BankAPIError):
    """Base class for token and permission failures"""


class MalformedToken(AuthError):
    """Token is absent or cannot be decoded"""


class InvalidSignature(AuthError):
    """Token was signed with an algorithm outside the HMAC family"""


class TokenInvalid(AuthError):
    """Token parsed but failed signature or expiry checks"""


class ClaimTypeMismatch(AuthError):
    """A required claim is missing or not an integral number"""


class PermissionDenied(AuthError):
    """Caller may not access the requested resource"""

    def __init__(self, reason: str = "permission denied"):
        super().__init__(reason)
        self.reason = reason


# Storage

class AccountNotFound(BankAPIError):
    """No account row matches the lookup"""

    def __init__(self, key: str, value):
        super().__init__(f"account {key} {value} not found")
        self.key = key
        self.value = value


class StorageError(BankAPIError):
    """Backend failure (connectivity, driver or constraint errors)"""


class AccountNumberTaken(StorageError):
    """Account number belongs to a live or deleted account"""

    def __init__(self, number: int):
        super().__init__(f"account number {number} already taken")
        self.number = number
