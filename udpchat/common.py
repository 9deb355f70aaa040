"""
Common constants, enums, errors and the packet codec for UDP chat.

Chat Packet Format (4-byte header + variable payload):

 0                   1                   2                   3
 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
|     Type      |    Version    |        Sequence Number        |
|  (0x00/0x01)  |               |          (0-65535)            |
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
|                         Payload (variable)                    |
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

Header Fields:
- Byte 0:    Type (0x00=MESSAGE, 0x01=ACK, anything else resolves to UNKNOWN)
- Byte 1:    Protocol version (never validated on decode)
- Bytes 2-3: Sequence number (uint16, big-endian)
- Bytes 4+:  Payload, every remaining byte of the datagram

There is no length field, so one datagram carries exactly one packet.
"""
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

# ============================================================================
# Protocol Constants
# ============================================================================

HEADER_FORMAT = '!BBH'  # network byte order: uint8, uint8, uint16
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 4 bytes

ACK_FORMAT = '!H'
ACK_SIZE = struct.calcsize(ACK_FORMAT)

MAX_DATAGRAM_SIZE = 2048
MAX_PAYLOAD_SIZE = MAX_DATAGRAM_SIZE - HEADER_SIZE
SEQUENCE_MODULO = 65536

DEFAULT_PORT = 65434

# default configuration values
DEFAULT_CONFIG = {
    "max_datagram_size": MAX_DATAGRAM_SIZE,
    "protocol_version": 0,
    "socket_rcvbuf": 1 << 20,  # 1MB buffer size for the receive buffer
    "socket_sndbuf": 1 << 20,  # 1MB buffer size for the send buffer
}

Address = Tuple[str, int]
BytesLike = Union[bytes, bytearray, memoryview]


# ============================================================================
# Errors
# ============================================================================

class ChatPacketError(Exception):
    """Base class for every error raised by the chat packet layer."""


class MalformedPacketError(ChatPacketError, ValueError):
    """Raised when bytes are too short to hold what they claim to hold."""


class BufferTooSmallError(ChatPacketError, ValueError):
    """Raised when an encode target cannot hold header plus payload."""


class UnsupportedPacketTypeError(ChatPacketError, ValueError):
    """Raised when asked to build a packet whose type has no wire ID of its own."""


class EndpointClosedError(ChatPacketError):
    """Raised when sending through an endpoint that has been closed."""


# ============================================================================
# Packet Types
# ============================================================================

class PacketType(Enum):
    # values are names rather than wire IDs since UNKNOWN shares MESSAGE's ID
    MESSAGE = "MESSAGE"
    ACK = "ACK"
    UNKNOWN = "UNKNOWN"

    @property
    def wire_id(self) -> int:
        return _WIRE_IDS[self]

    @classmethod
    def from_wire(cls, type_id: int) -> "PacketType":
        """Resolve a raw type byte. Every value maps to exactly one member."""
        return _TYPES_BY_WIRE_ID.get(type_id, cls.UNKNOWN)


_WIRE_IDS: Dict[PacketType, int] = {
    PacketType.MESSAGE: 0x00,
    PacketType.ACK: 0x01,
    # FIXME: collides with MESSAGE, so UNKNOWN is only ever a decode fallback
    PacketType.UNKNOWN: 0x00,
}

_TYPES_BY_WIRE_ID: Dict[int, PacketType] = {
    0x00: PacketType.MESSAGE,
    0x01: PacketType.ACK,
}


# ============================================================================
# Data Structures
# ============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Packet:
    """
    One chat protocol message.

    ``timestamp`` is when this host created or decoded the packet. It is
    never written to the wire but it does take part in equality, so two
    independently built packets are almost never equal.
    """
    type: int          # raw type byte, see PacketType.from_wire
    version: int       # protocol version of the originating factory
    sequence: int      # 0-65535
    payload: bytes
    timestamp: datetime

    def __post_init__(self):
        if not 0 <= self.type <= 0xFF:
            raise ValueError(f"type out of range: {self.type}")
        if not 0 <= self.version <= 0xFF:
            raise ValueError(f"version out of range: {self.version}")
        if not 0 <= self.sequence < SEQUENCE_MODULO:
            raise ValueError(f"sequence out of range: {self.sequence}")
        if not isinstance(self.payload, bytes):
            object.__setattr__(self, "payload", bytes(self.payload))

    @property
    def packet_type(self) -> PacketType:
        return PacketType.from_wire(self.type)

    def __str__(self) -> str:
        return (f"Packet(type={self.packet_type.name}, version={self.version}, "
                f"sequence={self.sequence}, payload={len(self.payload)} bytes)")


def sequence_key(packet: Packet) -> int:
    # orders by sequence only; no wraparound awareness
    return packet.sequence


def timestamp_key(packet: Packet) -> datetime:
    return packet.timestamp


# ============================================================================
# Codec Functions
# ============================================================================

def encoded_size(packet: Packet) -> int:
    return HEADER_SIZE + len(packet.payload)


def encode_packet(packet: Packet, max_size: Optional[int] = None) -> bytes:
    """
    Encode a packet into wire format.

    Args:
        packet: Packet to encode
        max_size: Optional upper bound on the encoded size, usually the
            datagram size of the transport

    Returns:
        Encoded packet bytes

    Raises:
        BufferTooSmallError: if ``max_size`` cannot hold the packet
    """
    size = encoded_size(packet)
    if max_size is not None and size > max_size:
        raise BufferTooSmallError(f"Packet too large: {size} > {max_size}")
    header = struct.pack(HEADER_FORMAT, packet.type, packet.version, packet.sequence)
    return header + packet.payload


def encode_packet_into(packet: Packet, buffer: Any, offset: int = 0) -> int:
    """
    Encode a packet into a writable buffer starting at ``offset``.

    Nothing is written when the buffer is too small.

    Returns:
        Number of bytes written
    """
    size = encoded_size(packet)
    available = len(buffer) - offset
    if available < size:
        raise BufferTooSmallError(f"Buffer too small: {available} < {size}")
    struct.pack_into(HEADER_FORMAT, buffer, offset, packet.type, packet.version, packet.sequence)
    start = offset + HEADER_SIZE
    buffer[start:start + len(packet.payload)] = packet.payload
    return size


def decode_packet(data: BytesLike, timestamp: Optional[datetime] = None) -> Packet:
    """
    Decode a packet from wire format.

    Args:
        data: Raw datagram bytes
        timestamp: Receipt time to record, defaults to now

    Returns:
        Parsed Packet. Type and version are taken verbatim.

    Raises:
        MalformedPacketError: if ``data`` is shorter than the header
    """
    if len(data) < HEADER_SIZE:
        raise MalformedPacketError(
            f"Packet too short: {len(data)} bytes, need at least {HEADER_SIZE}")

    type_id, version, seq = struct.unpack_from(HEADER_FORMAT, data)
    return Packet(
        type=type_id,
        version=version,
        sequence=seq,
        payload=bytes(data[HEADER_SIZE:]),
        timestamp=timestamp if timestamp is not None else utc_now()
    )


def read_acked_sequence(packet: Packet) -> int:
    # the sequence an ACK acknowledges is the first two bytes of its payload
    if len(packet.payload) < ACK_SIZE:
        raise MalformedPacketError(
            f"ACK payload too short: {len(packet.payload)} bytes, need {ACK_SIZE}")
    (seq,) = struct.unpack_from(ACK_FORMAT, packet.payload)
    return seq
