import pytest

from peerpressure.dht.compact import (
    decode_compact_nodes,
    decode_compact_nodes6,
    decode_compact_peers,
    decode_compact_peers6,
    decode_samples,
    encode_compact_nodes,
    encode_compact_nodes6,
    encode_compact_peers,
    encode_samples,
)
from peerpressure.dht.table import Node


def node_id(*lead):
    return bytes(lead) + bytes(20 - len(lead))


def test_compact_nodes_round_trip():
    nodes = [
        Node(node_id(0x01), ("10.0.0.1", 6881)),
        Node(node_id(0x02), ("192.168.1.1", 51413)),
        Node(node_id(0xFF), ("8.8.8.8", 80)),
    ]
    encoded = encode_compact_nodes(nodes)
    assert len(encoded) == 78
    decoded = decode_compact_nodes(encoded)
    assert decoded == nodes


def test_compact_nodes_layout():
    encoded = encode_compact_nodes([Node(node_id(0x01), ("10.0.0.1", 6881))])
    assert encoded[20:] == bytes([10, 0, 0, 1, 0x1A, 0xE1])


def test_compact_peers_round_trip():
    addrs = ["10.0.0.1:6881", "192.168.1.1:51413"]
    encoded = encode_compact_peers(addrs)
    assert len(encoded) == 12
    assert decode_compact_peers(encoded) == addrs


def test_compact_peers_skips_invalid():
    encoded = encode_compact_peers(["bad", "[::1]:80", "host:80", "1.2.3.4:80"])
    assert encoded == bytes([1, 2, 3, 4, 0, 80])
    assert decode_compact_peers(encoded) == ["1.2.3.4:80"]


def test_decode_compact_nodes_ignores_partial():
    assert decode_compact_nodes(bytes(25)) == []


def test_encode_decode_compact_nodes6():
    nodes = [
        Node(node_id(1), ("2001:db8::1", 6881)),
        Node(node_id(2), ("::1", 8080)),
    ]
    encoded = encode_compact_nodes6(nodes)
    assert len(encoded) == 76
    decoded = decode_compact_nodes6(encoded)
    assert len(decoded) == 2
    assert decoded[0].id == nodes[0].id
    assert decoded[0].addr == ("2001:db8::1", 6881)
    assert decoded[1].addr == ("::1", 8080)


def test_decode_compact_nodes6_empty():
    assert decode_compact_nodes6(b"") == []


def test_decode_compact_nodes6_short():
    assert decode_compact_nodes6(bytes(37)) == []


def test_decode_compact_peers6():
    import ipaddress

    data = (
        ipaddress.IPv6Address("2001:db8::42").packed
        + bytes([0x1A, 0xE1])
        + ipaddress.IPv6Address("fe80::1").packed
        + bytes([0x1F, 0x90])
    )
    assert decode_compact_peers6(data) == ["[2001:db8::42]:6881", "[fe80::1]:8080"]


def test_decode_compact_peers6_empty():
    assert decode_compact_peers6(b"") == []


def test_decode_compact_peers6_short():
    assert decode_compact_peers6(bytes(17)) == []


def test_encode_samples_round_trip():
    hashes = [bytes(range(1, 21)), bytes(range(0x21, 0x35))]
    encoded = encode_samples(hashes)
    assert len(encoded) == 40
    assert decode_samples(encoded) == hashes


def test_decode_samples_empty():
    assert decode_samples(None) == []


def test_decode_samples_short():
    assert decode_samples(bytes(19)) == []


def test_decode_samples_partial():
    data = b"\xaa" + bytes(29)
    hashes = decode_samples(data)
    assert len(hashes) == 1
    assert hashes[0][0] == 0xAA


def test_encode_samples_rejects_wrong_length():
    with pytest.raises(ValueError):
        encode_samples([bytes(19)])