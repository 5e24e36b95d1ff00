"""Exception hierarchy shared by the transport, reconciliation and command layers."""

from __future__ import annotations


class OvpnMgrError(Exception):
    """Base exception for all ovpnmgr errors."""


class BusError(OvpnMgrError):
    """A D-Bus call, property read or subscription failed.

    ``name`` carries the D-Bus error name (e.g.
    ``org.freedesktop.DBus.Error.ServiceUnknown``) when the bus reported one.
    """

    def __init__(self, message: str, name: str = "") -> None:
        super().__init__(message)
        self.name = name


class BusUnavailableError(OvpnMgrError):
    """No bus connection could be established (missing bindings or bus)."""


class TransientBackendError(OvpnMgrError):
    """The backend service did not become ready within the retry budget."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class InvalidArgumentError(OvpnMgrError, ValueError):
    """A required identifier was missing or malformed. Never retried."""


class ProtocolMismatchError(OvpnMgrError):
    """A bus reply did not have the documented shape."""


class CommandFailureError(OvpnMgrError):
    """The backend rejected a lifecycle command (connect, disconnect, ...)."""


class StatisticsUnavailableError(OvpnMgrError):
    """No counter source could produce a bandwidth sample."""
