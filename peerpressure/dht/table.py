"""Kademlia routing table with 160 k-buckets and XOR distance."""

from __future__ import annotations

import threading
from dataclasses import dataclass

NODE_ID_LENGTH = 20
BUCKET_SIZE = 8
BUCKET_COUNT = NODE_ID_LENGTH * 8


def _check_id(node_id: bytes) -> None:
    if len(node_id) != NODE_ID_LENGTH:
        raise ValueError(f"node ID must be {NODE_ID_LENGTH} bytes, got {len(node_id)}")


@dataclass(frozen=True)
class Node:
    """A DHT peer: its 20-byte ID and its UDP address as ``(host, port)``."""

    id: bytes
    addr: tuple[str, int]

    def __post_init__(self) -> None:
        _check_id(self.id)


def xor(a: bytes, b: bytes) -> bytes:
    """Bitwise XOR of two node IDs, the Kademlia distance."""
    _check_id(a)
    _check_id(b)
    return bytes(x ^ y for x, y in zip(a, b))


def bucket_index(distance: bytes) -> int:
    """Position of the highest set bit (0-159), or -1 for a zero distance."""
    _check_id(distance)
    return int.from_bytes(distance, "big").bit_length() - 1


def compare_dist(a: bytes, b: bytes) -> int:
    """Compare two distances as big-endian numbers: -1, 0 or 1."""
    return (a > b) - (a < b)


class RoutingTable:
    """Buckets of known nodes, indexed by their distance from our own ID."""

    def __init__(self, own: bytes) -> None:
        _check_id(own)
        self.own = bytes(own)
        self._buckets: list[list[Node]] = [[] for _ in range(BUCKET_COUNT)]
        self._lock = threading.RLock()

    def insert(self, node: Node) -> bool:
        """Add or refresh a node; return False if it is us or its bucket is full."""
        idx = bucket_index(xor(self.own, node.id))
        if idx < 0:
            return False
        with self._lock:
            bucket = self._buckets[idx]
            for existing in bucket:
                if existing.id == node.id:
                    bucket.remove(existing)
                    bucket.append(node)
                    return True
            if len(bucket) >= BUCKET_SIZE:
                return False
            bucket.append(node)
            return True

    def remove(self, node_id: bytes) -> None:
        """Drop the node with this ID, if present."""
        idx = bucket_index(xor(self.own, node_id))
        if idx < 0:
            return
        with self._lock:
            bucket = self._buckets[idx]
            for existing in bucket:
                if existing.id == node_id:
                    bucket.remove(existing)
                    return

    def closest(self, target: bytes, n: int) -> list[Node]:
        """The ``n`` known nodes nearest to ``target``, nearest first."""
        _check_id(target)
        with self._lock:
            nodes = [node for bucket in self._buckets for node in bucket]
        nodes.sort(key=lambda node: xor(node.id, target))
        return nodes[:n]

    def non_empty_buckets(self) -> list[int]:
        """Indices of the buckets that hold at least one node."""
        with self._lock:
            return [idx for idx, bucket in enumerate(self._buckets) if bucket]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._buckets)