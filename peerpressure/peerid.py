"""Azureus-style peer IDs for this client."""

from __future__ import annotations

import secrets

CLIENT_ID = "PP"
VERSION = "0.1.0"
PEER_ID_LENGTH = 20

KNOWN_CLIENTS = {
    "PP": "Peer Pressure",
    "qB": "qBittorrent",
    "TR": "Transmission",
    "DE": "Deluge",
    "AZ": "Vuze",
    "UT": "µTorrent",
    "lt": "libtorrent",
    "LT": "libtorrent (Rasterbar)",
    "BI": "BiglyBT",
}


def format_version_prefix(version: str) -> str:
    """Build the 8-character prefix, e.g. ``"1.2.3"`` -> ``"-PP1230-"``."""
    parts = version.split(".", 2)
    digits = [part[0] if part else "0" for part in parts]
    digits += ["0"] * (3 - len(digits))
    return f"-{CLIENT_ID}{''.join(digits)}0-"


def generate_peer_id() -> bytes:
    """Create a 20-byte peer ID: the version prefix and 12 random bytes."""
    prefix = format_version_prefix(VERSION).encode("ascii")
    return prefix + secrets.token_bytes(PEER_ID_LENGTH - len(prefix))


def parse_peer_id(peer_id: bytes) -> tuple[str, str] | None:
    """Return ``(client_name, version)`` for an Azureus-style ID, else None."""
    if len(peer_id) != PEER_ID_LENGTH:
        raise ValueError(f"peer ID must be {PEER_ID_LENGTH} bytes, got {len(peer_id)}")
    if peer_id[0] != ord("-") or peer_id[7] != ord("-"):
        return None
    code = peer_id[1:3].decode("latin-1")
    version = peer_id[3:7].decode("latin-1")
    name = KNOWN_CLIENTS.get(code, f"Unknown ({code})")
    return name, version


def user_agent() -> str:
    """Client string sent in extension handshakes."""
    return f"Peer Pressure {VERSION}"