"""ovpnmgr: connection state reconciliation for OpenVPN3 sessions on D-Bus."""

__version__ = "0.1.0"
