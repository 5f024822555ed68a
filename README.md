# peerpressure

Building blocks for a BitTorrent client, written as a plain Python library:

- **`peerpressure.bencode`** – encoding and decoding of the bencode format
  (BEP 3), including raw-byte preserving decoders needed to compute an
  info hash.
- **`peerpressure.peerid`** – Azureus-style peer IDs (`-PP0100-…`) and
  recognition of well-known clients from a peer ID.
- **`peerpressure.dht`** – a Mainline DHT node (BEP 5):
  - `dht.table` – Kademlia routing table with 160 k-buckets of 8 nodes;
  - `dht.krpc` – KRPC messages and a UDP transport that matches responses
    to queries by transaction ID;
  - `dht.node` – the `DHT` node itself: ping, iterative `find_node`,
    `get_peers`, `announce_peer`, bootstrapping, bucket refresh and
    BEP 51 `sample_infohashes`; read-only mode (BEP 43);
  - `dht.compact` – compact node and peer formats for IPv4 and IPv6 (BEP 32)
    and BEP 51 sample lists;
  - `dht.security` – BEP 42 secure node IDs and external IP voting;
  - `dht.store` – BEP 44 storage of immutable and Ed25519-signed mutable
    items.
- **`peerpressure.discovery`** – a `Manager` that queries several peer
  sources at once and yields each peer address only once.

## Installation

```
pip install .
```

The only runtime dependency is `cryptography`, used for Ed25519 signatures
in BEP 44 mutable items. To run the test suite:

```
pip install ".[test]"
pytest
```

## Bencode

```python
from peerpressure.bencode import decode, decode_first, encode, InvalidFormatError

value = decode(b"d3:cow3:moo4:spam4:eggse")
assert encode(value) == b"d3:cow3:moo4:spam4:eggse"

# Trailing data is an error for decode(), but not for decode_first(),
# which also reports how many bytes the value used.
value, used = decode_first(b"i42eXXX")
assert used == 4

try:
    decode(b"i03e")          # leading zeros are not allowed
except InvalidFormatError as exc:
    print(exc)
```

Dictionary keys are always written in sorted order, and decoding rejects
dictionaries whose keys are unsorted or repeated. Every decoding failure is a
`BencodeError`; truncated input raises `UnexpectedEndError` and malformed
input raises `InvalidFormatError`.

`decode_raw` and `decode_dict_raw` return `RawValue` objects that keep the
exact bytes each value was decoded from – hash the raw bytes of a torrent's
`info` entry to get its info hash.

## Peer IDs

```python
from peerpressure.peerid import format_version_prefix, generate_peer_id, parse_peer_id, user_agent

peer_id = generate_peer_id()                 # 20 bytes: "-PP0100-" + 12 random bytes
assert format_version_prefix("1.2.3") == "-PP1230-"

print(parse_peer_id(b"-qB4620-randomrandom"))  # client name and version
print(user_agent())                            # "Peer Pressure 0.1.0"
```

## DHT

Create a node on a bound UDP socket, bootstrap it, and look up peers:

```python
import socket

from peerpressure.dht.node import DHT

sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
sock.bind(("0.0.0.0", 6881))

node = DHT(sock)
try:
    node.bootstrap(["router.example.com:6881"])
    info_hash = bytes(20)
    peers = node.get_peers(info_hash)        # list of "ip:port" strings
    node.announce_peer(info_hash, 6881)      # uses tokens cached by get_peers
finally:
    node.close()
```

Lookups query up to three nodes at a time and stop when no new nodes are
learned. Setting the node's read-only flag marks every outgoing query with
`ro=1` (BEP 43). `maintain` refreshes every non-empty bucket at a fixed
interval until its stop event is set.

BEP 42 secure IDs:

```python
from peerpressure.dht.security import generate_secure_node_id, validate_node_id

node_id = generate_secure_node_id("124.31.75.21")
assert validate_node_id(node_id, "124.31.75.21")
```

BEP 44 storage:

```python
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from peerpressure.dht.store import Store, immutable_target, sign_mutable

store = Store()
store.put_immutable(immutable_target(b"hello"), b"hello")
```

Mutable items are signed with `sign_mutable` and stored with
`Store.put_mutable`, which checks the signature, the sequence number and an
optional compare-and-swap value; problems are raised as `StoreError`.

## Peer discovery

Implement `PeerSource` for each way of finding peers and hand the sources to
a `Manager`:

```python
from peerpressure.discovery import Manager, PeerSource


class StaticSource(PeerSource):
    def __init__(self, addrs):
        self._addrs = addrs

    def name(self):
        return "static"

    async def peers(self, info_hash):
        return self._addrs


manager = Manager(StaticSource(["1.1.1.1:6881"]), StaticSource(["1.1.1.1:6881", "2.2.2.2:6881"]))
```

`Manager.discover` runs all sources concurrently and yields each address
once; sources that fail are skipped. `seen`, `count` and `reset` inspect and
clear the set of addresses already delivered.