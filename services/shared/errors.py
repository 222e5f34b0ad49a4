"""Error taxonomy shared by the ledger transports and the invoicing services.

Every operation either returns a complete result or raises exactly one of
these. The API layer maps them to HTTP status codes in one place.
"""

from typing import TypeVar

T = TypeVar("T")


class LedgerServiceError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerServiceError):
    """A referenced contract has no active match."""

    status_code = 404


class MalformedInputError(LedgerServiceError):
    """Caller-supplied input cannot be interpreted (bad template id, bad blob)."""

    status_code = 400


class QueryTransportError(LedgerServiceError):
    """The ledger, its query service or the registry is unavailable."""

    status_code = 503


class LedgerRejectionError(LedgerServiceError):
    """The ledger rejected a submitted command.

    The ledger's own message is kept verbatim in ``message``.
    """

    status_code = 409

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


def ensure_present(value: T | None, message: str, *args: object) -> T:
    """Return ``value`` or raise NotFoundError with a formatted message.

    Args:
        value: Result of a by-id lookup, possibly None
        message: printf-style message template
        *args: Template arguments

    Returns:
        The non-None value

    Raises:
        NotFoundError: If value is None
    """
    if value is None:
        raise NotFoundError(message % args)
    return value
