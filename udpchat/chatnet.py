"""
UDP chat endpoints: ChatServer and ChatClient.

Both run on asyncio datagram endpoints. Every datagram received is decoded
and handed to a PacketDispatcher; a datagram that fails to decode is logged
and dropped without stopping the endpoint. The server answers each MESSAGE
with an ACK carrying the message's sequence number. Nothing waits for ACKs
and nothing is retransmitted.
"""
import asyncio
import signal
import socket as socket_module
from typing import Any, Dict, Optional, Union

from loguru import logger

from .common import (
    DEFAULT_CONFIG, DEFAULT_PORT, HEADER_SIZE,
    Address, BufferTooSmallError, ChatPacketError, EndpointClosedError,
    Packet, PacketType,
    decode_packet, encode_packet
)
from .dispatcher import Handler, PacketDispatcher
from .factory import PacketFactory
from .packet_sets import SequenceOrderedPackets, TimestampOrderedPackets


# ============================================================================
# Transport Protocol Base
# ============================================================================

class ChatProtocol(asyncio.DatagramProtocol):
    """
    DatagramProtocol that decodes datagrams and dispatches them.
    """

    def __init__(self, dispatcher: PacketDispatcher, log: Any, config: Dict[str, Any]):
        self.dispatcher = dispatcher
        self.log = log
        self.config = config
        self.transport: Optional[asyncio.DatagramTransport] = None

        self.stats: Dict[str, int] = {
            "tx_total": 0,
            "rx_total": 0,
            "rx_dropped": 0,
            "handler_errors": 0,
        }

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore

        sock = transport.get_extra_info('socket')
        if sock:
            try:
                sock.setsockopt(
                    socket_module.SOL_SOCKET,
                    socket_module.SO_RCVBUF,
                    self.config["socket_rcvbuf"]
                )
                sock.setsockopt(
                    socket_module.SOL_SOCKET,
                    socket_module.SO_SNDBUF,
                    self.config["socket_sndbuf"]
                )
            except OSError as exc:
                self.log.debug("Could not resize socket buffers: {}", exc)

    def datagram_received(self, data: bytes, addr: Address):
        try:
            packet = decode_packet(data)
        except ChatPacketError as exc:
            self.stats["rx_dropped"] += 1
            self.log.warning("Dropping datagram from {}: {}", addr, exc)
            return

        self.stats["rx_total"] += 1
        self.log.debug("Got a datagram from {}: {}", addr, packet)
        self.stats["handler_errors"] += self.dispatcher.dispatch(packet, addr)

    def error_received(self, exc: Optional[Exception]):
        self.log.error("Socket error: {}", exc)

    def send_packet(self, packet: Packet, addr: Address) -> None:
        if self.transport is None or self.transport.is_closing():
            raise EndpointClosedError(f"Cannot send {packet} to {addr}: transport is closed")
        data = encode_packet(packet, max_size=self.config["max_datagram_size"])
        self.transport.sendto(data, addr)
        self.stats["tx_total"] += 1
        self.log.debug("Sent {} to {}", packet, addr)


class _Endpoint:
    # lazy endpoint creation shared by the server and the client

    def __init__(self, local_addr: Address, log: Any, config: Optional[Dict[str, Any]]):
        self.local_addr = local_addr
        self.log = log if log is not None else logger
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.factory = PacketFactory(self.config["protocol_version"])

        self.protocol: Optional[ChatProtocol] = None
        self.transport: Optional[asyncio.DatagramTransport] = None

        self._closed = False
        self._initialized = False
        self._init_lock = asyncio.Lock()

    def _make_protocol(self) -> ChatProtocol:
        raise NotImplementedError

    def _check_open(self):
        if self._closed or (self.transport is not None and self.transport.is_closing()):
            raise EndpointClosedError(f"{type(self).__name__} is closed")

    async def _ensure_initialized(self):
        self._check_open()
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            loop = asyncio.get_running_loop()
            transport, protocol = await loop.create_datagram_endpoint(
                self._make_protocol,
                local_addr=self.local_addr
            )

            self.transport = transport
            self.protocol = protocol
            self._initialized = True

    @property
    def address(self) -> Optional[Address]:
        """Locally bound (host, port), once the endpoint is up."""
        if self.transport is None:
            return None
        return self.transport.get_extra_info('sockname')[:2]

    @property
    def stats(self) -> Dict[str, int]:
        return self.protocol.stats if self.protocol else {}

    async def close(self) -> None:
        self._closed = True
        if self.transport:
            self.transport.close()


# ============================================================================
# Server Implementation
# ============================================================================

class ChatServer(_Endpoint):
    """
    Receives chat messages and acknowledges them.

    Every MESSAGE is recorded in ``received_messages`` (by sequence) and in
    ``all_messages`` (by timestamp, and possibly shared with other
    endpoints), then answered with an ACK.
    """

    def __init__(
        self,
        bind_addr: Address = ("0.0.0.0", DEFAULT_PORT),
        *,
        all_messages: Optional[Any] = None,
        dispatcher: Optional[PacketDispatcher] = None,
        log: Optional[Any] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            bind_addr: Bind (host, port) tuple
            all_messages: Transcript to record into, shared with other
                endpoints; wrap it in SynchronizedPacketSet if other threads
                write to it
            dispatcher: Dispatcher for incoming packets, defaults to one
                with logging handlers
            log: Logger, defaults to loguru's
            config: Optional config overrides
        """
        super().__init__(bind_addr, log, config)
        self.received_messages = SequenceOrderedPackets()
        self.all_messages = all_messages if all_messages is not None else TimestampOrderedPackets()
        self.dispatcher = dispatcher if dispatcher is not None else \
            PacketDispatcher.with_logging_handlers(self.log)

        self.dispatcher.register(
            PacketType.MESSAGE,
            lambda packet, addr: self.received_messages.add(packet),
            lambda packet, addr: self.all_messages.add(packet),
            self._acknowledge
        )

    def _make_protocol(self) -> ChatProtocol:
        return ChatProtocol(self.dispatcher, self.log, self.config)

    def _acknowledge(self, packet: Packet, addr: Address):
        ack = self.factory.create_ack(packet.sequence)
        self.log.info("Sending ACK to {}: {}", addr, ack)
        self.protocol.send_packet(ack, addr)

    def register(self, packet_type: PacketType, *handlers: Handler) -> None:
        self.dispatcher.register(packet_type, *handlers)

    async def start(self):
        await self._ensure_initialized()
        self.log.info("Chat server listening on {}", self.address)

    async def run_until_shutdown(self):
        await self.start()

        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()

        def signal_handler():
            shutdown_event.set()

        loop.add_signal_handler(signal.SIGINT, signal_handler)
        loop.add_signal_handler(signal.SIGTERM, signal_handler)

        try:
            await shutdown_event.wait()
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)


# ============================================================================
# Client Implementation
# ============================================================================

class ChatClient(_Endpoint):
    """
    Sends chat messages to one server.

    Outgoing MESSAGE packets go through ``sent_events`` before hitting the
    socket, which records them in ``sent_messages`` and ``all_messages``.
    Whatever the server sends back goes through ``dispatcher``.
    """

    def __init__(
        self,
        server_addr: Address,
        *,
        all_messages: Optional[Any] = None,
        dispatcher: Optional[PacketDispatcher] = None,
        log: Optional[Any] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        super().__init__(('0.0.0.0', 0), log, config)
        self.server_addr = server_addr
        self.sent_messages = SequenceOrderedPackets()
        self.all_messages = all_messages if all_messages is not None else TimestampOrderedPackets()
        self.dispatcher = dispatcher if dispatcher is not None else \
            PacketDispatcher.with_logging_handlers(self.log)

        self.sent_events = PacketDispatcher(self.log)
        self.sent_events.register(
            PacketType.MESSAGE,
            lambda packet, addr: self.sent_messages.add(packet),
            lambda packet, addr: self.all_messages.add(packet)
        )

    def _make_protocol(self) -> ChatProtocol:
        return ChatProtocol(self.dispatcher, self.log, self.config)

    def register(self, packet_type: PacketType, *handlers: Handler) -> None:
        self.dispatcher.register(packet_type, *handlers)

    async def send_message(self, message: Union[str, bytes]) -> Packet:
        """
        Send one chat message.

        Raises:
            BufferTooSmallError: if the message does not fit in one datagram
            EndpointClosedError: if the client has been closed
        """
        await self._ensure_initialized()
        # nothing is numbered or recorded once the socket is gone
        self._check_open()

        payload = message.encode("utf-8") if isinstance(message, str) else memoryview(message).tobytes()
        max_size = self.config["max_datagram_size"]
        if len(payload) + HEADER_SIZE > max_size:
            raise BufferTooSmallError(
                f"Payload too large: {len(payload)} + {HEADER_SIZE} > {max_size}")

        packet = self.factory.create_with_payload(PacketType.MESSAGE, payload)
        self.log.info("Sending to {}: {}", self.server_addr, packet)
        self.sent_events.dispatch(packet, self.server_addr)
        self.protocol.send_packet(packet, self.server_addr)
        return packet
