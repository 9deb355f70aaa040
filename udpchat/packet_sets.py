"""
Ordered packet collections used as send/receive transcripts.

A set here is keyed by a single ordering key, not by full packet equality:
adding a packet whose key is already present keeps the stored packet and
drops the new one, even when the two differ in payload.
"""
import threading
from bisect import bisect_left
from typing import Any, Callable, Iterable, Iterator, List, Optional

from .common import Packet, sequence_key, timestamp_key

PacketKey = Callable[[Packet], Any]


class OrderedPacketSet:
    """Packets kept in ascending key order, at most one per key. Not thread-safe."""

    def __init__(self, key: PacketKey, packets: Iterable[Packet] = ()):
        self.key = key
        self._keys: List[Any] = []
        self._packets: List[Packet] = []
        for packet in packets:
            self.add(packet)

    def _find(self, k: Any) -> int:
        i = bisect_left(self._keys, k)
        if i < len(self._keys) and self._keys[i] == k:
            return i
        return -1

    def add(self, packet: Packet) -> bool:
        """Insert ``packet``. Returns False if its key is already taken."""
        k = self.key(packet)
        i = bisect_left(self._keys, k)
        if i < len(self._keys) and self._keys[i] == k:
            return False
        self._keys.insert(i, k)
        self._packets.insert(i, packet)
        return True

    def discard(self, packet: Packet) -> bool:
        i = self._find(self.key(packet))
        if i < 0:
            return False
        del self._keys[i]
        del self._packets[i]
        return True

    def first(self) -> Optional[Packet]:
        return self._packets[0] if self._packets else None

    def last(self) -> Optional[Packet]:
        return self._packets[-1] if self._packets else None

    def poll_first(self) -> Optional[Packet]:
        """Remove and return the lowest-keyed packet, or None when empty."""
        if not self._packets:
            return None
        del self._keys[0]
        return self._packets.pop(0)

    def poll_last(self) -> Optional[Packet]:
        if not self._packets:
            return None
        del self._keys[-1]
        return self._packets.pop()

    def clear(self) -> None:
        self._keys.clear()
        self._packets.clear()

    def snapshot(self) -> List[Packet]:
        return list(self._packets)

    def __contains__(self, packet: object) -> bool:
        if not isinstance(packet, Packet):
            return False
        return self._find(self.key(packet)) >= 0

    def __len__(self) -> int:
        return len(self._packets)

    def __iter__(self) -> Iterator[Packet]:
        return iter(self._packets)

    def __reversed__(self) -> Iterator[Packet]:
        return reversed(self._packets)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._packets!r})"


class SequenceOrderedPackets(OrderedPacketSet):
    """Per-endpoint transcript ordered by sequence number."""

    def __init__(self, packets: Iterable[Packet] = ()):
        super().__init__(sequence_key, packets)


class TimestampOrderedPackets(OrderedPacketSet):
    """Transcript ordered by local creation or receipt time."""

    def __init__(self, packets: Iterable[Packet] = ()):
        super().__init__(timestamp_key, packets)


class SynchronizedPacketSet:
    """
    Lock-guarded view over an ordered packet set.

    Use this for any set written from more than one thread. Iteration walks
    a snapshot taken under the lock.
    """

    def __init__(self, inner: OrderedPacketSet):
        self._inner = inner
        self._lock = threading.RLock()

    @property
    def key(self) -> PacketKey:
        return self._inner.key

    def add(self, packet: Packet) -> bool:
        with self._lock:
            return self._inner.add(packet)

    def discard(self, packet: Packet) -> bool:
        with self._lock:
            return self._inner.discard(packet)

    def first(self) -> Optional[Packet]:
        with self._lock:
            return self._inner.first()

    def last(self) -> Optional[Packet]:
        with self._lock:
            return self._inner.last()

    def poll_first(self) -> Optional[Packet]:
        with self._lock:
            return self._inner.poll_first()

    def poll_last(self) -> Optional[Packet]:
        with self._lock:
            return self._inner.poll_last()

    def clear(self) -> None:
        with self._lock:
            self._inner.clear()

    def snapshot(self) -> List[Packet]:
        with self._lock:
            return self._inner.snapshot()

    def __contains__(self, packet: object) -> bool:
        with self._lock:
            return packet in self._inner

    def __len__(self) -> int:
        with self._lock:
            return len(self._inner)

    def __iter__(self) -> Iterator[Packet]:
        return iter(self.snapshot())

    def __reversed__(self) -> Iterator[Packet]:
        return reversed(self.snapshot())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._inner!r})"
