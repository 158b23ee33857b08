"""Exception types raised across the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay errors."""


class ValidationError(RelayError, ValueError):
    """Handshake parameters are missing or invalid.

    Raised before the WebSocket upgrade; the client gets an HTTP 400.
    """


class AuthError(RelayError):
    """A host supplied a password that does not match the stored one."""

    def __init__(self, host_id: str) -> None:
        super().__init__(f"password mismatch for host {host_id!r}")
        self.host_id = host_id


class ProtocolError(RelayError, ValueError):
    """An inbound frame could not be decoded or is missing required fields."""
