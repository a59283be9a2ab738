# bulkdispatch/core/errors.py
"""
Typed errors for the dispatch pipeline.

Per-recipient errors (``TransportQueryError``, ``TransportSendError``) are
contained by the send loop and turned into a ``failed`` status.
``StoreError`` and ``ValidationError`` abort at most the current session.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch errors."""


class StoreError(DispatchError):
    """Recipient persistence is unreachable or inconsistent."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Recipient store {operation} failed: {detail}")


class ValidationError(DispatchError):
    """Invalid start command or empty recipient set."""


class TransportError(DispatchError):
    """Error raised by a message transport.

    Attributes:
        retryable: Whether retrying the same call could succeed.
                   False for auth failures or a logged-out session.
    """

    def __init__(self, message: str, *, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class TransportConnectError(TransportError):
    """Connecting or authenticating the transport failed."""


class TransportQueryError(TransportError):
    """The network-existence check for a recipient failed."""


class TransportSendError(TransportError):
    """Sending a message to a recipient failed."""
