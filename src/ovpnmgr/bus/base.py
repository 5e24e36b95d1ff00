"""BusConnection protocol. All bus implementations must satisfy this."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

# handler(object_path, args)
SignalHandler = Callable[[str, tuple], None]


@runtime_checkable
class BusConnection(Protocol):
    """Protocol for synchronous message-bus connections.

    Every method raises ``ovpnmgr.errors.BusError`` on failure.
    """

    def call(
        self,
        service: str,
        path: str,
        interface: str,
        method: str,
        args: tuple = (),
        signature: str | None = None,
    ) -> tuple:
        """Invoke a method and return the unpacked reply tuple."""
        ...

    def get_property(
        self, service: str, path: str, interface: str, name: str
    ) -> Any:
        """Read a single property and return its unpacked value."""
        ...

    def subscribe(
        self,
        service: str,
        path: str,
        interface: str,
        signal: str,
        handler: SignalHandler,
    ) -> int:
        """Subscribe to a signal on an object path. Returns a handle."""
        ...

    def unsubscribe(self, handle: int) -> None:
        """Drop a subscription created by subscribe()."""
        ...

    def process_pending(self) -> None:
        """Dispatch any signals that arrived since the last call."""
        ...
