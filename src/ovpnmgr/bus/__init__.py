"""D-Bus transport: connection protocol, Gio adapter and typed gateway."""

from ovpnmgr.bus.base import BusConnection
from ovpnmgr.bus.gateway import BusNames, TransportGateway, UserInputRequest

__all__ = ["BusConnection", "BusNames", "TransportGateway", "UserInputRequest"]
