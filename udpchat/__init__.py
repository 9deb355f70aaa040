"""
udpchat: a minimal chat transport over UDP datagrams.

One packet per datagram, a 4-byte header (type, version, sequence) and a
raw payload. Packets are built by a PacketFactory, routed by type through a
PacketDispatcher and recorded in ordered packet sets.
"""

from .common import (
    DEFAULT_CONFIG, HEADER_SIZE, MAX_DATAGRAM_SIZE, MAX_PAYLOAD_SIZE,
    BufferTooSmallError, ChatPacketError, EndpointClosedError, MalformedPacketError,
    Packet, PacketType, UnsupportedPacketTypeError,
    decode_packet, encode_packet, encode_packet_into, read_acked_sequence,
    sequence_key, timestamp_key
)
from .factory import PacketFactory
from .dispatcher import PacketDispatcher
from .packet_sets import (
    OrderedPacketSet, SequenceOrderedPackets, SynchronizedPacketSet,
    TimestampOrderedPackets
)
from .chatnet import ChatClient, ChatServer

__version__ = "1.0.0"
__all__ = [
    "ChatClient", "ChatServer", "PacketDispatcher", "PacketFactory",
    "Packet", "PacketType", "DEFAULT_CONFIG",
    "HEADER_SIZE", "MAX_DATAGRAM_SIZE", "MAX_PAYLOAD_SIZE",
    "ChatPacketError", "MalformedPacketError", "BufferTooSmallError",
    "UnsupportedPacketTypeError", "EndpointClosedError",
    "encode_packet", "encode_packet_into", "decode_packet", "read_acked_sequence",
    "sequence_key", "timestamp_key",
    "OrderedPacketSet", "SequenceOrderedPackets", "TimestampOrderedPackets",
    "SynchronizedPacketSet",
]
