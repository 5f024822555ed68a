"""Compact binary encodings of nodes, peers and infohash samples (BEP 5, 32, 51)."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable
from ipaddress import IPv4Address, IPv6Address
from typing import Optional, Union

from peerpressure.dht.table import NODE_ID_LENGTH, Node

NODE_V4_LENGTH = NODE_ID_LENGTH + 4 + 2
NODE_V6_LENGTH = NODE_ID_LENGTH + 16 + 2
PEER_V4_LENGTH = 4 + 2
PEER_V6_LENGTH = 16 + 2
HASH_LENGTH = 20

_PORT_RE = re.compile(r"\s*([+-]?[0-9]+)")
_V4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"


def _parse_ip(host: str) -> Optional[Union[IPv4Address, IPv6Address]]:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def _to4(host: str) -> Optional[bytes]:
    addr = _parse_ip(host)
    if isinstance(addr, IPv4Address):
        return addr.packed
    if isinstance(addr, IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped.packed
    return None


def _to16(host: str) -> Optional[bytes]:
    addr = _parse_ip(host)
    if isinstance(addr, IPv4Address):
        return _V4_MAPPED_PREFIX + addr.packed
    if isinstance(addr, IPv6Address):
        return addr.packed
    return None


def _ip_text(packed: bytes) -> str:
    addr = IPv6Address(packed)
    if addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return str(addr)


def _join_host_port(host: str, port: int) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _split_host_port(addr: str) -> Optional[tuple[str, str]]:
    if addr.startswith("["):
        close = addr.find("]")
        if close == -1 or addr[close + 1 : close + 2] != ":":
            return None
        return addr[1:close], addr[close + 2 :]
    host, sep, port = addr.rpartition(":")
    if not sep or ":" in host:
        return None
    return host, port


def _parse_port(text: str) -> int:
    match = _PORT_RE.match(text)
    port = int(match.group(1)) if match else 0
    return port % 0x10000


def _chunks(data: bytes, size: int) -> Iterable[bytes]:
    data = bytes(data)
    for start in range(0, len(data) - size + 1, size):
        yield data[start : start + size]


def encode_compact_nodes(nodes: Iterable[Node]) -> bytes:
    """Encode nodes as 26-byte records: ID, IPv4 address, port."""
    out = bytearray()
    for node in nodes:
        host, port = node.addr
        out += node.id
        out += _to4(host) or bytes(4)
        out += (port % 0x10000).to_bytes(2, "big")
    return bytes(out)


def decode_compact_nodes(data: bytes) -> list[Node]:
    """Parse 26-byte node records; a trailing partial record is ignored."""
    return [
        Node(chunk[:20], (str(IPv4Address(chunk[20:24])), int.from_bytes(chunk[24:26], "big")))
        for chunk in _chunks(data, NODE_V4_LENGTH)
    ]


def encode_compact_peers(addrs: Iterable[str]) -> bytes:
    """Encode ``"ip:port"`` strings as 6-byte records; non-IPv4 entries are skipped."""
    out = bytearray()
    for addr in addrs:
        parts = _split_host_port(addr)
        if parts is None:
            continue
        host, port_text = parts
        packed = _to4(host)
        if packed is None:
            continue
        out += packed
        out += _parse_port(port_text).to_bytes(2, "big")
    return bytes(out)


def decode_compact_peers(data: bytes) -> list[str]:
    """Parse 6-byte peer records into ``"ip:port"`` strings."""
    return [
        f"{IPv4Address(chunk[:4])}:{int.from_bytes(chunk[4:6], 'big')}"
        for chunk in _chunks(data, PEER_V4_LENGTH)
    ]


def encode_compact_nodes6(nodes: Iterable[Node]) -> bytes:
    """Encode nodes as 38-byte records: ID, IPv6 address, port."""
    out = bytearray()
    for node in nodes:
        host, port = node.addr
        out += node.id
        out += _to16(host) or bytes(16)
        out += (port % 0x10000).to_bytes(2, "big")
    return bytes(out)


def decode_compact_nodes6(data: bytes) -> list[Node]:
    """Parse 38-byte IPv6 node records; a trailing partial record is ignored."""
    return [
        Node(chunk[:20], (_ip_text(chunk[20:36]), int.from_bytes(chunk[36:38], "big")))
        for chunk in _chunks(data, NODE_V6_LENGTH)
    ]


def decode_compact_peers6(data: bytes) -> list[str]:
    """Parse 18-byte IPv6 peer records into ``"[ip]:port"`` strings."""
    return [
        _join_host_port(_ip_text(chunk[:16]), int.from_bytes(chunk[16:18], "big"))
        for chunk in _chunks(data, PEER_V6_LENGTH)
    ]


def encode_samples(hashes: Iterable[bytes]) -> bytes:
    """Concatenate 20-byte infohashes into a samples field."""
    out = bytearray()
    for digest in hashes:
        if len(digest) != HASH_LENGTH:
            raise ValueError(f"infohash must be {HASH_LENGTH} bytes, got {len(digest)}")
        out += digest
    return bytes(out)


def decode_samples(data: Optional[bytes]) -> list[bytes]:
    """Split a samples field into 20-byte infohashes; leftovers are ignored."""
    if not data:
        return []
    return list(_chunks(data, HASH_LENGTH))