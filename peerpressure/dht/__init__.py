"""Mainline DHT: routing table, KRPC transport, node, BEP 42 and BEP 44 support."""

__all__ = ["table", "krpc", "security", "compact", "store", "node"]