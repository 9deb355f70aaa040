"""
Packet construction with per-sender sequence numbering.
"""
import struct
from datetime import datetime
from typing import Any, Callable, Optional

from .common import (
    ACK_FORMAT, MAX_DATAGRAM_SIZE, SEQUENCE_MODULO,
    BytesLike, Packet, PacketType, UnsupportedPacketTypeError,
    decode_packet, utc_now
)

PacketBuilder = Callable[[int, int, int, bytes, datetime], Packet]


def _read_available(content: Any) -> bytes:
    # readable streams are consumed from their current position to the end
    if hasattr(content, "read"):
        content = content.read()
        if content is None:
            raise ValueError("Stream has no bytes available, is it non-blocking?")
    # memoryview refuses ints and str, which bytes() would accept
    return memoryview(content).tobytes()


class PacketFactory:
    """
    Builds packets for one logical sender.

    The sequence counter starts at 0, advances by one for every packet
    built and wraps from 65535 back to 0. Not thread-safe.
    """

    def __init__(self, version: int = 0, builder: PacketBuilder = Packet):
        if not 0 <= version <= 0xFF:
            raise ValueError(f"version out of range: {version}")
        self._version = version
        self._builder = builder
        self._sequence = 0

    @property
    def version(self) -> int:
        return self._version

    @property
    def sequence(self) -> int:
        """Sequence number the next packet will carry."""
        return self._sequence

    def create_empty(self, packet_type: PacketType) -> Packet:
        return self._create(packet_type, bytes(MAX_DATAGRAM_SIZE))

    def create_with_payload(self, packet_type: PacketType, content: Any) -> Packet:
        """
        Build a packet whose payload is a copy of the bytes available in
        ``content``, either a bytes-like object or a readable binary stream.
        """
        return self._create(packet_type, _read_available(content))

    def create_ack(self, acked_sequence: int) -> Packet:
        if not 0 <= acked_sequence < SEQUENCE_MODULO:
            raise ValueError(f"acked sequence out of range: {acked_sequence}")
        return self._create(PacketType.ACK, struct.pack(ACK_FORMAT, acked_sequence))

    def _create(self, packet_type: PacketType, payload: bytes) -> Packet:
        if packet_type is PacketType.UNKNOWN:
            raise UnsupportedPacketTypeError(
                "UNKNOWN has no wire ID of its own and cannot be sent")

        packet = self._builder(
            packet_type.wire_id,
            self._version,
            self._sequence,
            payload,
            utc_now()
        )
        self._sequence = (self._sequence + 1) % SEQUENCE_MODULO
        return packet

    @staticmethod
    def parse(data: BytesLike, timestamp: Optional[datetime] = None) -> Packet:
        return decode_packet(data, timestamp)
