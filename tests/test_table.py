import pytest

from peerpressure.dht.table import (
    BUCKET_SIZE,
    Node,
    RoutingTable,
    bucket_index,
    compare_dist,
    xor,
)

ZEROS = bytes(20)
ONES = b"\xff" * 20


def make_id(first: int) -> bytes:
    return bytes([first]) + bytes(19)


def make_node(b: int) -> Node:
    return Node(id=make_id(b), addr=("127.0.0.1", b + 1000))


def test_xor_distance():
    assert xor(ZEROS, ONES) == ONES
    assert xor(ONES, ONES) == ZEROS


def test_xor_rejects_wrong_length():
    with pytest.raises(ValueError):
        xor(b"\x01", ZEROS)


@pytest.mark.parametrize(
    "index,value,want",
    [
        (0, 0x80, 159),
        (0, 0x40, 158),
        (19, 0x01, 0),
        (10, 0x04, 74),
    ],
)
def test_bucket_index(index, value, want):
    dist = bytearray(20)
    dist[index] = value
    assert bucket_index(bytes(dist)) == want


def test_bucket_index_zero_distance():
    assert bucket_index(ZEROS) == -1


def test_compare_dist():
    assert compare_dist(make_id(1), make_id(2)) == -1
    assert compare_dist(make_id(2), make_id(1)) == 1
    assert compare_dist(make_id(3), make_id(3)) == 0


def test_node_requires_20_byte_id():
    with pytest.raises(ValueError):
        Node(id=b"short", addr=("127.0.0.1", 1))


def test_insert_and_closest():
    rt = RoutingTable(ZEROS)
    for i in range(1, 21):
        rt.insert(make_node(i))
    assert len(rt) == 20

    target = make_id(0x05)
    closest = rt.closest(target, 8)
    assert len(closest) == 8
    assert closest[0].id[0] == 0x05
    for a, b in zip(closest, closest[1:]):
        assert compare_dist(xor(a.id, target), xor(b.id, target)) <= 0


def test_bucket_full():
    rt = RoutingTable(ZEROS)
    results = [
        rt.insert(Node(id=make_id(0x80 | i), addr=("127.0.0.1", 1000 + i)))
        for i in range(9)
    ]
    assert results[:8] == [True] * 8
    assert results[8] is False
    assert len(rt) == BUCKET_SIZE


def test_insert_duplicate():
    rt = RoutingTable(ZEROS)
    node = make_node(0x42)
    rt.insert(node)
    assert rt.insert(node) is True
    assert len(rt) == 1


def test_insert_duplicate_refreshes_address():
    rt = RoutingTable(ZEROS)
    rt.insert(make_node(0x42))
    moved = Node(id=make_id(0x42), addr=("10.0.0.9", 7000))
    rt.insert(moved)
    assert rt.closest(make_id(0x42), 1) == [moved]


def test_insert_self_rejected():
    own = make_id(0x11)
    rt = RoutingTable(own)
    assert rt.insert(Node(id=own, addr=("127.0.0.1", 1))) is False
    assert len(rt) == 0


def test_remove():
    rt = RoutingTable(ZEROS)
    node = make_node(0x42)
    rt.insert(node)
    assert len(rt) == 1
    rt.remove(node.id)
    assert len(rt) == 0


def test_closest_order():
    rt = RoutingTable(ZEROS)
    values = [0x10, 0x08, 0x04, 0x02, 0x01, 0x20, 0x40, 0x80]
    for b in values:
        rt.insert(make_node(b))
    target = make_id(0x03)
    closest = rt.closest(target, len(values))
    assert len(closest) == len(values)
    assert [n.id[0] for n in closest[:3]] == [0x02, 0x01, 0x04]
    for a, b in zip(closest, closest[1:]):
        assert compare_dist(xor(a.id, target), xor(b.id, target)) <= 0


def test_non_empty_buckets():
    rt = RoutingTable(ZEROS)
    rt.insert(make_node(0x80))
    rt.insert(make_node(0x01))
    assert rt.non_empty_buckets() == [152, 159]