"""KRPC messages (bencoded RPC over UDP) and a transport that matches replies."""

from __future__ import annotations

import dataclasses
import queue
import secrets
import selectors
import socket
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from peerpressure import bencode

NODE_ID_LENGTH = 20
_MAX_PACKET = 4096
_TEXT = ("utf-8", "surrogateescape")

Handler = Callable[["Message", Any], None]


class KrpcError(Exception):
    """A KRPC message could not be decoded or sent."""


class TransportTimeout(KrpcError, TimeoutError):
    """No reply arrived for a query in time."""


def random_node_id() -> bytes:
    """A cryptographically random 20-byte node ID."""
    return secrets.token_bytes(NODE_ID_LENGTH)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode(*_TEXT)
    return bytes(value)


@dataclass
class Message:
    """A KRPC query (``q``), response (``r``) or error (``e``)."""

    txn_id: bytes = b""
    kind: str = ""
    method: str = ""
    args: dict = field(default_factory=dict)
    reply: dict = field(default_factory=dict)
    error: list = field(default_factory=list)
    read_only: bool = False


def encode_message(msg: Message) -> bytes:
    """Bencode a message for the wire."""
    d: dict[str, Any] = {"t": _as_bytes(msg.txn_id), "y": _as_bytes(msg.kind)}
    if msg.kind == "q":
        d["q"] = _as_bytes(msg.method)
        d["a"] = msg.args
        if msg.read_only:
            d["ro"] = 1
    elif msg.kind == "r":
        d["r"] = msg.reply
    elif msg.kind == "e":
        d["e"] = [
            _as_bytes(item) if isinstance(item, (str, bytes)) else item
            for item in msg.error
            if isinstance(item, (str, bytes))
            or (isinstance(item, int) and not isinstance(item, bool))
        ]
    return bencode.encode(d)


def decode_message(data: bytes) -> Message:
    """Parse a bencoded KRPC message."""
    try:
        value = bencode.decode(data)
    except bencode.BencodeError as exc:
        raise KrpcError(f"decode krpc: {exc}") from exc
    if not isinstance(value, dict):
        raise KrpcError("krpc message is not a dict")

    msg = Message()
    if "t" not in value:
        raise KrpcError("krpc: missing 't' (transaction ID)")
    if isinstance(value["t"], bytes):
        msg.txn_id = value["t"]
    if "y" not in value:
        raise KrpcError("krpc: missing 'y' (message type)")
    if isinstance(value["y"], bytes):
        msg.kind = value["y"].decode(*_TEXT)

    if msg.kind == "q":
        method = value.get("q")
        if isinstance(method, bytes):
            msg.method = method.decode(*_TEXT)
        args = value.get("a")
        if isinstance(args, dict):
            msg.args = args
        msg.read_only = value.get("ro") == 1
    elif msg.kind == "r":
        reply = value.get("r")
        if isinstance(reply, dict):
            msg.reply = reply
    elif msg.kind == "e":
        items = value.get("e")
        if isinstance(items, list):
            for item in items:
                if isinstance(item, int):
                    msg.error.append(item)
                elif isinstance(item, bytes):
                    msg.error.append(item.decode(*_TEXT))
    return msg


class Transport:
    """Exchanges KRPC messages over a UDP socket, matching replies to queries.

    Run :meth:`listen` in a thread to receive; :meth:`send` blocks until the
    matching reply arrives or the timeout passes.
    """

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._lock = threading.Lock()
        self._pending: dict[bytes, queue.Queue] = {}
        self._counter = 0
        self._closed = False
        self._listeners = 0
        self._wake_r, self._wake_w = socket.socketpair()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def listen(self, handler: Optional[Handler] = None) -> None:
        """Receive until closed; replies go to waiting senders, queries to ``handler``."""
        with self._lock:
            if self._closed:
                return
            self._listeners += 1
        try:
            self._receive_loop(handler)
        finally:
            with self._lock:
                self._listeners -= 1
                last = self._closed and self._listeners == 0
            if last:
                self._wake_r.close()

    def _receive_loop(self, handler: Optional[Handler]) -> None:
        try:
            selector = selectors.DefaultSelector()
            selector.register(self.sock, selectors.EVENT_READ)
            selector.register(self._wake_r, selectors.EVENT_READ)
        except (OSError, ValueError):
            return
        with selector:
            while True:
                try:
                    selector.select()
                except (OSError, ValueError):
                    return
                with self._lock:
                    if self._closed:
                        return
                try:
                    data, addr = self.sock.recvfrom(_MAX_PACKET)
                except (BlockingIOError, InterruptedError, ConnectionError):
                    continue
                except OSError:
                    return
                self._dispatch(data, addr, handler)

    def _dispatch(self, data: bytes, addr: Any, handler: Optional[Handler]) -> None:
        try:
            msg = decode_message(data)
        except KrpcError:
            return
        if msg.kind in ("r", "e"):
            with self._lock:
                box = self._pending.pop(msg.txn_id, None)
            if box is not None:
                box.put_nowait(msg)
            return
        if handler is not None:
            handler(msg, addr)

    def _forget(self, txn_id: bytes) -> None:
        with self._lock:
            self._pending.pop(txn_id, None)

    def send(self, addr: Any, msg: Message, timeout: float) -> Message:
        """Send a query to ``addr`` and wait up to ``timeout`` seconds for the reply."""
        with self._lock:
            self._counter = (self._counter + 1) & 0xFFFF
            txn_id = f"{self._counter:02x}".encode("ascii")
            box: queue.Queue = queue.Queue(maxsize=1)
            self._pending[txn_id] = box

        data = encode_message(dataclasses.replace(msg, txn_id=txn_id))
        try:
            self.sock.sendto(data, addr)
        except OSError as exc:
            self._forget(txn_id)
            raise KrpcError(f"send krpc: {exc}") from exc

        try:
            return box.get(timeout=timeout)
        except queue.Empty:
            self._forget(txn_id)
            raise TransportTimeout(f"krpc timeout after {timeout}s") from None

    def close(self) -> None:
        """Close the socket and stop any running :meth:`listen`."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle = self._listeners == 0
        self._wake_w.close()
        self.sock.close()
        if idle:
            self._wake_r.close()