"""A BitTorrent DHT node (BEP 5) with iterative Kademlia lookups."""

from __future__ import annotations

import secrets
import socket
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from peerpressure.dht.compact import (
    decode_compact_nodes,
    decode_compact_nodes6,
    decode_compact_peers,
    decode_compact_peers6,
    decode_samples,
)
from peerpressure.dht.krpc import KrpcError, Message, Transport, random_node_id
from peerpressure.dht.table import (
    BUCKET_COUNT,
    BUCKET_SIZE,
    NODE_ID_LENGTH,
    Node,
    RoutingTable,
    xor,
)

ALPHA = 3
QUERY_TIMEOUT = 5.0

DEFAULT_BOOTSTRAP_NODES = (
    "router.bittorrent.com:6881",
    "dht.transmissionbt.com:6881",
    "router.utorrent.com:6881",
)


class DHTError(Exception):
    """A DHT operation failed."""


@dataclass
class SampleInfohashesResult:
    """The answer to a BEP 51 ``sample_infohashes`` query."""

    samples: list[bytes] = field(default_factory=list)
    num: int = 0
    interval: int = 0
    nodes: list[Node] = field(default_factory=list)


@dataclass
class _LookupReply:
    nodes: list[Node]
    peers: list[str] = field(default_factory=list)
    token: bytes = b""


def sort_by_distance(nodes: Iterable[Node], target: bytes) -> list[Node]:
    """The nodes ordered by XOR distance to ``target``, nearest first."""
    return sorted(nodes, key=lambda node: xor(node.id, target))


def random_id_in_bucket(own: bytes, bucket_idx: int) -> bytes:
    """A random ID whose distance from ``own`` falls in bucket ``bucket_idx``."""
    if not 0 <= bucket_idx < BUCKET_COUNT:
        raise ValueError(f"bucket index must be in 0..{BUCKET_COUNT - 1}, got {bucket_idx}")
    distance = (1 << bucket_idx) | secrets.randbits(bucket_idx) if bucket_idx else 1
    value = int.from_bytes(own, "big") ^ distance
    return value.to_bytes(NODE_ID_LENGTH, "big")


def _normalize_addr(addr: Any) -> tuple[str, int]:
    return str(addr[0]), int(addr[1])


def _resolve(hostport: str) -> tuple[str, int]:
    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {hostport!r}")
    host = host.strip("[]")
    infos = socket.getaddrinfo(host, int(port), socket.AF_INET, socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"cannot resolve {hostport!r}")
    return _normalize_addr(infos[0][4])


def _nodes_from_reply(reply: dict) -> list[Node]:
    nodes: list[Node] = []
    packed = reply.get("nodes")
    if isinstance(packed, bytes):
        nodes.extend(decode_compact_nodes(packed))
    packed6 = reply.get("nodes6")
    if isinstance(packed6, bytes):
        nodes.extend(decode_compact_nodes6(packed6))
    return nodes


class DHT:
    """A DHT node bound to a UDP socket.

    Run ``transport.listen`` in a thread so that replies are received.
    """

    def __init__(self, sock: socket.socket) -> None:
        self.id = random_node_id()
        self.table = RoutingTable(self.id)
        self.transport = Transport(sock)
        self.read_only = False
        self.query_timeout = QUERY_TIMEOUT
        self._tokens: dict[bytes, bytes] = {}
        self._tokens_lock = threading.Lock()

    def __enter__(self) -> "DHT":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def new_query(self, method: str, args: dict) -> Message:
        """A query message, flagged read-only (BEP 43) if this node is."""
        return Message(kind="q", method=method, args=args, read_only=self.read_only)

    def _ask(self, addr: Any, method: str, args: dict) -> dict:
        resp = self.transport.send(addr, self.new_query(method, args), self.query_timeout)
        if resp.kind == "e":
            raise DHTError(f"{method} error: {resp.error}")
        return resp.reply

    def ping(self, addr: Any) -> bytes:
        """Ping a node and return its ID; the node is added to the routing table."""
        addr = _normalize_addr(addr)
        reply = self._ask(addr, "ping", {"id": self.id})
        node_id = reply.get("id")
        if not isinstance(node_id, bytes) or len(node_id) != NODE_ID_LENGTH:
            raise DHTError("ping: invalid id in response")
        self.table.insert(Node(node_id, addr))
        return node_id

    def _query_all(
        self, candidates: list[Node], query: Callable[[Node], _LookupReply]
    ) -> list[tuple[Node, _LookupReply]]:
        results = []
        with ThreadPoolExecutor(max_workers=len(candidates)) as pool:
            futures = {pool.submit(query, node): node for node in candidates}
            for future in as_completed(futures):
                try:
                    results.append((futures[future], future.result()))
                except (KrpcError, DHTError, OSError):
                    continue
        return results

    def _lookup(
        self,
        target: bytes,
        query: Callable[[Node], _LookupReply],
        on_reply: Optional[Callable[[Node, _LookupReply], None]] = None,
    ) -> dict[bytes, Node]:
        seeds = self.table.closest(target, ALPHA)
        if not seeds:
            return {}
        queried = {self.id}
        shortlist = {node.id: node for node in seeds}
        while True:
            pending = [node for node in shortlist.values() if node.id not in queried]
            candidates = sort_by_distance(pending, target)[:ALPHA]
            if not candidates:
                break
            queried.update(node.id for node in candidates)
            added = False
            for origin, reply in self._query_all(candidates, query):
                self.table.insert(origin)
                if on_reply is not None:
                    on_reply(origin, reply)
                for node in reply.nodes:
                    if node.id not in shortlist:
                        shortlist[node.id] = node
                        self.table.insert(node)
                        added = True
            if not added:
                break
        return shortlist

    def _send_find_node(self, node: Node, target: bytes) -> _LookupReply:
        reply = self._ask(node.addr, "find_node", {"id": self.id, "target": target})
        nodes = _nodes_from_reply(reply)
        if not nodes:
            raise DHTError("find_node: no nodes in response")
        return _LookupReply(nodes)

    def find_node(self, target: bytes) -> list[Node]:
        """Iteratively look up the nodes closest to ``target``."""
        shortlist = self._lookup(target, lambda node: self._send_find_node(node, target))
        return sort_by_distance(shortlist.values(), target)[:BUCKET_SIZE]

    def _send_get_peers(self, node: Node, info_hash: bytes) -> _LookupReply:
        reply = self._ask(node.addr, "get_peers", {"id": self.id, "info_hash": info_hash})
        result = _LookupReply(_nodes_from_reply(reply))
        token = reply.get("token")
        if isinstance(token, bytes):
            result.token = token
        for key, decoder in (("values", decode_compact_peers), ("values6", decode_compact_peers6)):
            values = reply.get(key)
            if isinstance(values, list):
                for packed in values:
                    if isinstance(packed, bytes):
                        result.peers.extend(decoder(packed))
        return result

    def get_peers(self, info_hash: bytes) -> list[str]:
        """Iteratively look up peers for ``info_hash``, caching announce tokens."""
        found: list[str] = []
        seen: set[str] = set()

        def on_reply(origin: Node, reply: _LookupReply) -> None:
            if reply.token:
                with self._tokens_lock:
                    self._tokens[origin.id] = reply.token
            for peer in reply.peers:
                if peer not in seen:
                    seen.add(peer)
                    found.append(peer)

        self._lookup(
            bytes(info_hash),
            lambda node: self._send_get_peers(node, info_hash),
            on_reply,
        )
        return found

    def cached_token(self, node_id: bytes) -> Optional[bytes]:
        """The announce token last received from ``node_id``, if any."""
        with self._tokens_lock:
            return self._tokens.get(bytes(node_id))

    def announce_peer(self, info_hash: bytes, port: int) -> None:
        """Announce ourselves for ``info_hash`` to the nearest nodes we hold tokens for."""
        closest = self.table.closest(bytes(info_hash), BUCKET_SIZE)
        announced = 0
        for node in closest:
            token = self.cached_token(node.id)
            if token is None:
                continue
            query = self.new_query(
                "announce_peer",
                {"id": self.id, "info_hash": bytes(info_hash), "port": port, "token": token},
            )
            try:
                self.transport.send(node.addr, query, self.query_timeout)
            except (KrpcError, OSError):
                continue
            announced += 1
        if announced == 0 and closest:
            raise DHTError(f"announce_peer: no nodes accepted (tried {len(closest)})")

    def bootstrap(self, addrs: Iterable[str]) -> None:
        """Ping the given ``host:port`` nodes, then look up our own ID."""
        addrs = list(addrs)

        def attempt(hostport: str) -> None:
            addr = _resolve(hostport)
            node_id = self.ping(addr)
            self.table.insert(Node(node_id, addr))

        reached = 0
        if addrs:
            with ThreadPoolExecutor(max_workers=len(addrs)) as pool:
                for future in [pool.submit(attempt, hostport) for hostport in addrs]:
                    try:
                        future.result()
                    except (KrpcError, DHTError, OSError, ValueError):
                        continue
                    reached += 1
        if reached == 0:
            raise DHTError(f"bootstrap: all {len(addrs)} nodes unreachable")
        self.find_node(self.id)

    def maintain(self, stop: threading.Event, interval: float) -> None:
        """Refresh buckets every ``interval`` seconds until ``stop`` is set."""
        while not stop.wait(interval):
            self.refresh_buckets()

    def refresh_buckets(self) -> None:
        """Look up a random ID in the range of every non-empty bucket."""
        for idx in self.table.non_empty_buckets():
            self.find_node(random_id_in_bucket(self.table.own, idx))

    def sample_infohashes(self, addr: Any, target: bytes) -> SampleInfohashesResult:
        """Send a BEP 51 ``sample_infohashes`` query to one node."""
        reply = self._ask(
            _normalize_addr(addr), "sample_infohashes", {"id": self.id, "target": bytes(target)}
        )
        result = SampleInfohashesResult()
        samples = reply.get("samples")
        if isinstance(samples, bytes):
            result.samples = decode_samples(samples)
        num = reply.get("num")
        if isinstance(num, int):
            result.num = num
        interval = reply.get("interval")
        if isinstance(interval, int):
            result.interval = interval
        result.nodes = _nodes_from_reply(reply)
        return result

    def close(self) -> None:
        """Close the transport and its socket."""
        self.transport.close()