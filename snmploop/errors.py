"""
Exceptions raised by snmploop.

API-boundary failures (open, send, blocking calls) raise subclasses of
SnmpLoopError. Per-request terminal failures are delivered to continuations
as reason strings and only become RequestError for awaiting or blocking
callers.

InvariantError marks queue/engine desynchronization. It is raised explicitly
(so it survives python -O) and is never caught by the session layer.
"""

from typing import Optional


class SnmpLoopError(Exception):
    """Base class for snmploop errors."""


class OpenFailedError(SnmpLoopError):
    """Raised when a protocol session (transport) cannot be created."""

    def __init__(self, peer: str, message: Optional[str] = None):
        self.peer = peer
        if message:
            super().__init__(f"cannot open snmp session to {peer}: {message}")
        else:
            super().__init__(f"cannot open snmp session to {peer}")

    def __repr__(self):
        return f"OpenFailedError(peer={self.peer!r})"


class EncodingError(SnmpLoopError, ValueError):
    """Raised for malformed OID input, before any network activity."""


class SendFailedError(SnmpLoopError):
    """Raised when a query cannot be handed to the transport."""

    def __init__(self, message: str = "cannot send query"):
        super().__init__(message)


class RequestError(SnmpLoopError):
    """Terminal failure of a single request.

    Attributes:
        reason: Failure reason string ("timeout", "send failed", ...) or the
            protocol error-status text reported by the agent.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)

    def __repr__(self):
        return f"RequestError({self.reason!r})"


class ValueDecodeError(SnmpLoopError):
    """Raised when a reply variable has a type the value codec cannot map."""


class InvariantError(SnmpLoopError, AssertionError):
    """Hard consistency violation between the request queue and the engine."""
