"""Storage of arbitrary DHT items (BEP 44), immutable and mutable."""

from __future__ import annotations

import dataclasses
import hashlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from peerpressure import bencode

MAX_VALUE_SIZE = 1000
MAX_SALT_SIZE = 64
KEY_LENGTH = 32
SIG_LENGTH = 64
TARGET_LENGTH = 20

Salt = Union[str, bytes]


class StoreError(Exception):
    """An item was rejected by the store."""


@dataclass
class Item:
    """A stored BEP 44 item."""

    value: Any
    key: bytes = field(default=bytes(KEY_LENGTH))
    sig: bytes = field(default=bytes(SIG_LENGTH))
    seq: int = 0
    salt: Salt = ""
    mutable: bool = False
    stored: float = 0.0


def _salt_bytes(salt: Salt) -> bytes:
    return salt.encode("utf-8") if isinstance(salt, str) else bytes(salt)


def immutable_target(value: Any) -> bytes:
    """Target hash of an immutable item: SHA-1 of its bencoding."""
    return hashlib.sha1(bencode.encode(value)).digest()


def mutable_target(public_key: bytes, salt: Salt) -> bytes:
    """Target hash of a mutable item: SHA-1 of the public key and salt."""
    return hashlib.sha1(bytes(public_key) + _salt_bytes(salt)).digest()


def mutable_sign_buffer(salt: Salt, seq: int, encoded_value: bytes) -> bytes:
    """The bytes signed for a mutable item: ``[4:salt<salt>]3:seqi<n>e1:v<value>``."""
    salt_raw = _salt_bytes(salt)
    buf = bytearray()
    if salt_raw:
        buf += b"4:salt" + bencode.encode(salt_raw)
    buf += b"3:seq" + bencode.encode(seq)
    buf += b"1:v" + bytes(encoded_value)
    return bytes(buf)


def sign_mutable(
    private_key: Union[Ed25519PrivateKey, bytes], salt: Salt, seq: int, value: Any
) -> bytes:
    """Sign a mutable item value; ``private_key`` may be a key or a 32-byte seed."""
    if not isinstance(private_key, Ed25519PrivateKey):
        private_key = Ed25519PrivateKey.from_private_bytes(bytes(private_key)[:32])
    return private_key.sign(mutable_sign_buffer(salt, seq, bencode.encode(value)))


def _encoded_value(value: Any) -> bytes:
    encoded = bencode.encode(value)
    if len(encoded) > MAX_VALUE_SIZE:
        raise StoreError(f"value too big: {len(encoded)} bytes (max {MAX_VALUE_SIZE})")
    return encoded


class Store:
    """BEP 44 items keyed by their 20-byte target hash."""

    def __init__(self) -> None:
        self._items: dict[bytes, Item] = {}
        self._lock = threading.Lock()

    def get(self, target: bytes) -> Optional[Item]:
        """A copy of the item stored under ``target``, or None."""
        with self._lock:
            item = self._items.get(bytes(target))
            return dataclasses.replace(item) if item is not None else None

    def put_immutable(self, target: bytes, value: Any) -> None:
        """Store an immutable item after checking its hash matches ``target``."""
        encoded = _encoded_value(value)
        got = hashlib.sha1(encoded).digest()
        if got != bytes(target):
            raise StoreError(f"hash mismatch: computed {got.hex()}, target {bytes(target).hex()}")
        with self._lock:
            self._items[got] = Item(value=value, stored=time.time())

    def put_mutable(
        self,
        key: bytes,
        salt: Salt,
        seq: int,
        sig: bytes,
        value: Any,
        cas: Optional[int] = None,
    ) -> None:
        """Store a mutable item after checking its signature, sequence and CAS."""
        if len(key) != KEY_LENGTH:
            raise ValueError(f"public key must be {KEY_LENGTH} bytes, got {len(key)}")
        if len(sig) != SIG_LENGTH:
            raise ValueError(f"signature must be {SIG_LENGTH} bytes, got {len(sig)}")
        salt_raw = _salt_bytes(salt)
        if len(salt_raw) > MAX_SALT_SIZE:
            raise StoreError(f"salt too big: {len(salt_raw)} bytes (max {MAX_SALT_SIZE})")
        encoded = _encoded_value(value)

        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes(key))
            public_key.verify(bytes(sig), mutable_sign_buffer(salt_raw, seq, encoded))
        except (InvalidSignature, ValueError):
            raise StoreError("invalid signature") from None

        target = mutable_target(key, salt_raw)
        with self._lock:
            existing = self._items.get(target)
            if existing is not None:
                if cas is not None and cas != existing.seq:
                    raise StoreError(f"CAS mismatch: stored seq={existing.seq}, cas={cas}")
                if seq < existing.seq:
                    raise StoreError(f"sequence number {seq} < stored {existing.seq}")
                if seq == existing.seq:
                    existing.stored = time.time()
                    return
            self._items[target] = Item(
                value=value,
                key=bytes(key),
                sig=bytes(sig),
                seq=seq,
                salt=salt,
                mutable=True,
                stored=time.time(),
            )

    def prune(self, max_age: float) -> int:
        """Remove items stored more than ``max_age`` seconds ago; return how many."""
        cutoff = time.time() - max_age
        with self._lock:
            stale = [target for target, item in self._items.items() if item.stored < cutoff]
            for target in stale:
                del self._items[target]
        return len(stale)