"""Extract server details from OpenVPN profile text."""

from __future__ import annotations

from ovpnmgr.session.models import RemoteServer

_COMMENT_PREFIXES = ("#", ";")


def parse_remote(content: str) -> RemoteServer | None:
    """Return the first usable ``remote <host> <port> [proto]`` directive."""
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue

        parts = line.split()
        if parts[0] != "remote" or len(parts) < 3:
            continue

        try:
            port = int(parts[2])
        except ValueError:
            continue

        protocol = parts[3] if len(parts) > 3 else "udp"
        return RemoteServer(host=parts[1], port=port, protocol=protocol)

    return None
