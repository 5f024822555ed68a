import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from peerpressure import bencode
from peerpressure.dht.krpc import (
    KrpcError,
    Message,
    Transport,
    TransportTimeout,
    decode_message,
    encode_message,
    random_node_id,
)

NODE_ID = b"12345678901234567890"


def _udp_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    return sock


def _start(transport, handler=None) -> threading.Thread:
    thread = threading.Thread(target=transport.listen, args=(handler,), daemon=True)
    thread.start()
    return thread


@pytest.fixture
def pair():
    client_sock, server_sock = _udp_socket(), _udp_socket()
    client, server = Transport(client_sock), Transport(server_sock)
    yield client, server
    client.close()
    server.close()


def test_encode_decode_ping():
    node_id = b"abcdefghij0123456789"
    msg = Message(txn_id=b"aa", kind="q", method="ping", args={"id": node_id})
    got = decode_message(encode_message(msg))
    assert got.txn_id == b"aa"
    assert got.kind == "q"
    assert got.method == "ping"
    assert got.args["id"] == node_id


def test_decode_response():
    msg = Message(txn_id=b"bb", kind="r", reply={"id": NODE_ID})
    got = decode_message(encode_message(msg))
    assert got.kind == "r"
    assert got.reply == {"id": NODE_ID}


def test_decode_error():
    msg = Message(txn_id=b"cc", kind="e", error=[201, "A Generic Error Occurred"])
    got = decode_message(encode_message(msg))
    assert got.kind == "e"
    assert got.error == [201, "A Generic Error Occurred"]


def test_decode_garbage_raises():
    with pytest.raises(KrpcError):
        decode_message(b"not bencode")


def test_decode_non_dict_raises():
    with pytest.raises(KrpcError):
        decode_message(b"i42e")


def test_decode_missing_txn_raises():
    with pytest.raises(KrpcError):
        decode_message(bencode.encode({"y": b"q"}))


def test_decode_missing_type_raises():
    with pytest.raises(KrpcError):
        decode_message(bencode.encode({"t": b"aa"}))


def test_transport_round_trip(pair):
    client, server = pair
    server_id = b"\x01" + bytes(19)

    def handler(msg, addr):
        if msg.method == "ping":
            resp = Message(txn_id=msg.txn_id, kind="r", reply={"id": server_id})
            server.sock.sendto(encode_message(resp), addr)

    _start(server, handler)
    _start(client)

    resp = client.send(
        server.sock.getsockname(),
        Message(kind="q", method="ping", args={"id": b"\x02" + bytes(19)}),
        2.0,
    )
    assert resp.kind == "r"
    assert resp.reply["id"] == server_id


def test_transport_timeout():
    with Transport(_udp_socket()) as transport:
        _start(transport)
        with pytest.raises(TransportTimeout):
            transport.send(
                ("127.0.0.1", 1),
                Message(kind="q", method="ping", args={"id": bytes(20)}),
                0.2,
            )


def test_transport_concurrent(pair):
    client, server = pair

    def handler(msg, addr):
        resp = Message(
            txn_id=msg.txn_id,
            kind="r",
            reply={"id": bytes(20), "echo": msg.args["val"]},
        )
        time.sleep(0.01)
        server.sock.sendto(encode_message(resp), addr)

    _start(server, handler)
    _start(client)
    server_addr = server.sock.getsockname()

    def query(idx):
        val = chr(ord("A") + idx).encode()
        resp = client.send(
            server_addr,
            Message(kind="q", method="echo", args={"id": bytes(20), "val": val}),
            2.0,
        )
        return resp.reply["echo"]

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(query, range(5)))
    assert results == [b"A", b"B", b"C", b"D", b"E"]


def test_listen_stops_on_close():
    transport = Transport(_udp_socket())
    thread = _start(transport)
    time.sleep(0.05)
    transport.close()
    thread.join(2.0)
    assert not thread.is_alive()


def test_random_node_id():
    a = random_node_id()
    b = random_node_id()
    assert len(a) == 20
    assert a != b
    assert a != bytes(20)


def test_encode_query_with_ro():
    msg = Message(txn_id=b"aa", kind="q", method="ping", args={"id": NODE_ID}, read_only=True)
    assert decode_message(encode_message(msg)).read_only is True


def test_encode_query_without_ro():
    msg = Message(txn_id=b"aa", kind="q", method="ping", args={"id": NODE_ID})
    decoded = bencode.decode(encode_message(msg))
    assert "ro" not in decoded
    assert decoded["q"] == b"ping"


def test_encode_response_ignores_ro():
    msg = Message(txn_id=b"bb", kind="r", reply={"id": NODE_ID}, read_only=True)
    decoded = bencode.decode(encode_message(msg))
    assert "ro" not in decoded
    assert decoded["r"] == {"id": NODE_ID}


@pytest.mark.parametrize("ro,expected", [(1, True), (0, False), (None, False)])
def test_decode_query_ro_flag(ro, expected):
    d = {"t": b"aa", "y": b"q", "q": b"ping", "a": {"id": NODE_ID}}
    if ro is not None:
        d["ro"] = ro
    assert decode_message(bencode.encode(d)).read_only is expected