"""
Type-keyed routing of decoded packets to handlers.

Handlers are plain callables taking ``(packet, address)``. Each packet type
owns an ordered list of them and ``dispatch`` runs the list for the
resolved type synchronously on the calling thread.
"""
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .common import Address, Packet, PacketType

Handler = Callable[[Packet, Address], None]


class PacketDispatcher:
    """Registry mapping every PacketType to the handlers run for it."""

    def __init__(self, log: Optional[Any] = None):
        self.log = log if log is not None else logger
        # every member, UNKNOWN included, starts with an empty list
        self._handlers: Dict[PacketType, List[Handler]] = {
            packet_type: [] for packet_type in PacketType
        }

    @classmethod
    def with_logging_handlers(cls, log: Optional[Any] = None) -> "PacketDispatcher":
        """Dispatcher that logs every MESSAGE and ACK it sees."""
        dispatcher = cls(log)
        dispatcher.register(PacketType.MESSAGE, dispatcher._log_message)
        dispatcher.register(PacketType.ACK, dispatcher._log_ack)
        return dispatcher

    def _log_message(self, packet: Packet, addr: Address):
        self.log.info("Got a MESSAGE from {}: {}", addr, packet)

    def _log_ack(self, packet: Packet, addr: Address):
        self.log.info("Got an ACK from {}: {}", addr, packet)

    def register(self, packet_type: PacketType, *handlers: Handler) -> None:
        # no duplicate detection, a handler registered twice runs twice
        self._handlers[packet_type].extend(handlers)

    def unregister(self, packet_type: PacketType, handler: Handler) -> bool:
        """Remove the first matching handler. Returns whether one was found."""
        try:
            self._handlers[packet_type].remove(handler)
        except ValueError:
            return False
        return True

    def get_handlers(self, packet_type: PacketType) -> List[Handler]:
        return list(self._handlers[packet_type])

    def dispatch(self, packet: Packet, addr: Address) -> int:
        """
        Run every handler registered for the packet's type, in order.

        A handler that raises is logged and skipped; the rest still run.
        Handlers registered or removed while dispatching take effect from
        the next call.

        Returns:
            Number of handlers that raised
        """
        packet_type = packet.packet_type
        failures = 0
        for handler in list(self._handlers[packet_type]):
            try:
                handler(packet, addr)
            except Exception:
                failures += 1
                self.log.exception("Handler {!r} failed on {} from {}", handler, packet, addr)
        return failures
