from typing import Optional, Tuple


class RulesError(Exception):
    """Base class for every error raised by the rules core."""


class ValidationError(RulesError):
    """Bad user input: rule name length, out-of-range or malformed condition value."""

    def __init__(
        self,
        message: str,
        type_key: Optional[str] = None,
        bound: Optional[Tuple[float, float]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.type_key = type_key
        self.bound = bound


class UnrecognizedAction(RulesError):
    """Callback token that matches no grammar entry."""

    def __init__(self, token, reason: str = ""):
        message = f"Unrecognized action: {token!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.token = token
        self.reason = reason


class TokenTooLong(RulesError):
    """Encoded token does not fit the callback byte budget."""

    def __init__(self, token: str, size: int, limit: int):
        super().__init__(f"Token is {size} bytes, limit is {limit}: {token!r}")
        self.token = token
        self.size = size
        self.limit = limit


class NotFound(RulesError):
    """Missing rule, condition or condition schema."""

    def __init__(self, kind: str, key):
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class StoreError(RulesError):
    """Persistence failure. Nothing from the failed operation was kept."""
