"""Peer discovery aggregated over several sources, with deduplication."""

from __future__ import annotations

import abc
import asyncio
from collections.abc import AsyncIterator

_DONE = object()


class PeerSource(abc.ABC):
    """A mechanism that finds peers for a torrent (tracker, DHT, PEX, ...)."""

    @abc.abstractmethod
    def name(self) -> str:
        """A short identifier such as ``"tracker"`` or ``"dht"``."""

    @abc.abstractmethod
    async def peers(self, info_hash: bytes) -> list[str]:
        """The latest known peer addresses for ``info_hash``."""


class Manager:
    """Queries all sources concurrently and yields each address once."""

    def __init__(self, *args: PeerSource) -> None:
        self._sources = list(args)
        self._seen: set[str] = set()

    async def discover(self, info_hash: bytes) -> AsyncIterator[str]:
        """Yield new peer addresses as sources report them.

        Each source is queried once; failing sources are skipped. Stopping the
        iteration or cancelling the consumer cancels the outstanding queries.
        """
        results: asyncio.Queue = asyncio.Queue()

        async def run(source: PeerSource) -> None:
            try:
                try:
                    found = await source.peers(info_hash)
                except Exception:
                    return
                for addr in found:
                    if self._add_if_new(addr):
                        results.put_nowait(addr)
            finally:
                results.put_nowait(_DONE)

        tasks = [asyncio.ensure_future(run(source)) for source in self._sources]
        try:
            remaining = len(tasks)
            while remaining:
                item = await results.get()
                if item is _DONE:
                    remaining -= 1
                    continue
                yield item
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def seen(self, addr: str) -> bool:
        """Whether ``addr`` has already been discovered."""
        return addr in self._seen

    def count(self) -> int:
        """Number of unique peers discovered so far."""
        return len(self._seen)

    def reset(self) -> None:
        """Forget discovered peers so they are reported again."""
        self._seen = set()

    def _add_if_new(self, addr: str) -> bool:
        if addr in self._seen:
            return False
        self._seen.add(addr)
        return True