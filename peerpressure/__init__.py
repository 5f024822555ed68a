"""BitTorrent building blocks: bencode, peer IDs, DHT and peer discovery."""

__version__ = "0.1.0"
__all__ = ["bencode", "peerid", "discovery", "dht"]