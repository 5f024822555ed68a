"""Node ID security (BEP 42) and external IP detection."""

from __future__ import annotations

import ipaddress
import threading
from collections import Counter
from ipaddress import IPv4Address, IPv6Address
from typing import Optional, Union

from peerpressure.dht.krpc import random_node_id

IPLike = Union[str, bytes, int, IPv4Address, IPv6Address]

V4_MASK = bytes([0x03, 0x0F, 0x3F, 0xFF])
V6_MASK = bytes([0x01, 0x03, 0x07, 0x0F, 0x1F, 0x3F, 0x7F, 0xFF])

_CRC32C_POLY = 0x82F63B78
_IPV6_LOOPBACK = IPv6Address("::1")


def _make_crc_table() -> tuple[int, ...]:
    table = []
    for n in range(256):
        c = n
        for _ in range(8):
            c = (c >> 1) ^ _CRC32C_POLY if c & 1 else c >> 1
        table.append(c)
    return tuple(table)


_CRC_TABLE = _make_crc_table()


def crc32c(data: bytes) -> int:
    """CRC-32C (Castagnoli) checksum."""
    crc = 0xFFFFFFFF
    for byte in data:
        crc = _CRC_TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def _ip(ip: IPLike) -> Union[IPv4Address, IPv6Address]:
    addr = ip if isinstance(ip, (IPv4Address, IPv6Address)) else ipaddress.ip_address(ip)
    if isinstance(addr, IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _prefix_source(ip: IPLike) -> tuple[bytes, bytes]:
    addr = _ip(ip)
    if isinstance(addr, IPv4Address):
        return addr.packed, V4_MASK
    return addr.packed[:8], V6_MASK


def _masked_crc(ip_bytes: bytes, mask: bytes, r: int) -> int:
    if len(ip_bytes) < len(mask):
        raise ValueError(f"need {len(mask)} address bytes, got {len(ip_bytes)}")
    buf = bytearray(b & m for b, m in zip(ip_bytes, mask))
    buf[0] |= r << 5
    return crc32c(bytes(buf))


def apply_bep42(node_id: bytes, ip_bytes: bytes, mask: bytes) -> bytes:
    """Return ``node_id`` with its first 21 bits derived from the address bytes.

    The random value ``r`` is taken from the low 3 bits of the last byte.
    """
    out = bytearray(node_id)
    r = out[19] & 0x07
    crc = _masked_crc(ip_bytes, mask, r)
    out[0] = (crc >> 24) & 0xFF
    out[1] = (crc >> 16) & 0xFF
    out[2] = ((crc >> 8) & 0xF8) | (out[2] & 0x07)
    out[19] = r | (out[19] & 0xF8)
    return bytes(out)


def generate_secure_node_id(ip: IPLike) -> bytes:
    """A random node ID that satisfies BEP 42 for the given external IP."""
    ip_bytes, mask = _prefix_source(ip)
    return apply_bep42(random_node_id(), ip_bytes, mask)


def validate_node_id(node_id: bytes, ip: IPLike) -> bool:
    """Whether the ID's 21-bit prefix matches the IP; local IPs always pass."""
    if is_local_ip(ip):
        return True
    ip_bytes, mask = _prefix_source(ip)
    crc = _masked_crc(ip_bytes, mask, node_id[19] & 0x07)
    return (
        node_id[0] == (crc >> 24) & 0xFF
        and node_id[1] == (crc >> 16) & 0xFF
        and node_id[2] & 0xF8 == (crc >> 8) & 0xF8
    )


def is_local_ip(ip: IPLike) -> bool:
    """Whether the IP is private, link-local or loopback and so exempt from BEP 42."""
    addr = _ip(ip)
    if isinstance(addr, IPv6Address):
        return addr == _IPV6_LOOPBACK
    a, b = addr.packed[0], addr.packed[1]
    return (
        a == 10
        or (a == 172 and 16 <= b <= 31)
        or (a == 192 and b == 168)
        or (a == 169 and b == 254)
        or a == 127
    )


def parse_ip_field(data: bytes) -> Optional[Union[IPv4Address, IPv6Address]]:
    """Read the compact ``ip`` response field (address + port); None if malformed."""
    if len(data) == 6:
        return IPv4Address(bytes(data[:4]))
    if len(data) == 18:
        return _ip(IPv6Address(bytes(data[:16])))
    return None


def encode_ip_field(ip: IPLike, port: int) -> bytes:
    """Encode an address and port as the compact ``ip`` response field."""
    return _ip(ip).packed + port.to_bytes(2, "big")


class ExternalIPVote:
    """Tallies what remote nodes report as our external IP."""

    def __init__(self) -> None:
        self._votes: Counter = Counter()
        self._lock = threading.Lock()

    def add(self, ip: Optional[IPLike]) -> None:
        """Record one vote; None is ignored."""
        if ip is None:
            return
        addr = _ip(ip)
        with self._lock:
            self._votes[addr] += 1

    def winner(self) -> Optional[Union[IPv4Address, IPv6Address]]:
        """The IP with the most votes, or None if there are none."""
        with self._lock:
            top = self._votes.most_common(1)
        return top[0][0] if top else None

    def count(self) -> int:
        """Total number of votes."""
        with self._lock:
            return sum(self._votes.values())