"""
Tests for the chat packet codec, factory, dispatcher and packet sets.

Run with: pytest
"""
import io
import struct
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from udpchat.common import (
    HEADER_SIZE, MAX_DATAGRAM_SIZE,
    BufferTooSmallError, MalformedPacketError, UnsupportedPacketTypeError,
    Packet, PacketType,
    decode_packet, encode_packet, encode_packet_into, read_acked_sequence,
    sequence_key
)
from udpchat.dispatcher import PacketDispatcher
from udpchat.factory import PacketFactory
from udpchat.packet_sets import (
    SequenceOrderedPackets, SynchronizedPacketSet, TimestampOrderedPackets
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ADDR = ("127.0.0.1", 5000)


def make_packet(seq=0, payload=b"", type_id=0x00, version=0, timestamp=EPOCH):
    return Packet(type=type_id, version=version, sequence=seq,
                  payload=payload, timestamp=timestamp)


# ============================================================================
# Codec
# ============================================================================

def test_header_codec():
    """Test packet encoding/decoding."""
    packet = make_packet(seq=12345, payload=b"Hello, World!", type_id=0x01, version=7)

    data = encode_packet(packet)

    assert len(data) == HEADER_SIZE + len(packet.payload)
    assert data[:HEADER_SIZE] == bytes([0x01, 7, 0x30, 0x39])
    assert data[HEADER_SIZE:] == b"Hello, World!"

    assert decode_packet(data, packet.timestamp) == packet


def test_round_trip_keeps_timestamp():
    packet = make_packet(seq=0, payload=bytes([1, 2, 10, 30, 32]))
    assert decode_packet(encode_packet(packet), EPOCH) == packet


def test_decode_edge_values():
    packet = decode_packet(b"\xff\xff\xff\xff", EPOCH)
    assert packet.type == 0xFF
    assert packet.version == 0xFF
    assert packet.sequence == 65535
    assert packet.payload == b""
    assert packet.packet_type is PacketType.UNKNOWN


def test_decode_rejects_short_input():
    for data in [b"", b"\x00", b"\x00\x01\x02"]:
        with pytest.raises(MalformedPacketError):
            decode_packet(data)


def test_decode_defaults_timestamp_to_now():
    before = datetime.now(timezone.utc)
    packet = decode_packet(b"\x00\x00\x00\x01hi")
    after = datetime.now(timezone.utc)
    assert before <= packet.timestamp <= after


def test_decode_accepts_memoryview():
    buf = bytearray(b"\x00\x03\x00\x02abc")
    packet = decode_packet(memoryview(buf), EPOCH)
    assert packet.version == 3
    assert packet.payload == b"abc"
    assert isinstance(packet.payload, bytes)


def test_encode_respects_max_size():
    packet = make_packet(payload=bytes(10))
    assert len(encode_packet(packet, max_size=14)) == 14
    with pytest.raises(BufferTooSmallError):
        encode_packet(packet, max_size=13)


def test_encode_into_buffer():
    packet = make_packet(seq=258, payload=b"xyz", type_id=0x01)
    buf = bytearray(16)

    written = encode_packet_into(packet, buf, offset=2)

    assert written == 7
    assert bytes(buf[2:9]) == b"\x01\x00\x01\x02xyz"
    assert decode_packet(bytes(buf[2:2 + written]), EPOCH) == packet


def test_encode_into_small_buffer_writes_nothing():
    packet = make_packet(payload=b"abcdef")
    buf = bytearray(9)
    with pytest.raises(BufferTooSmallError):
        encode_packet_into(packet, buf)
    assert buf == bytearray(9)


def test_packet_validation():
    with pytest.raises(ValueError):
        make_packet(seq=65536)
    with pytest.raises(ValueError):
        make_packet(type_id=256)
    with pytest.raises(ValueError):
        make_packet(version=-1)

    packet = make_packet(payload=bytearray(b"ab"))
    assert packet.payload == b"ab"
    assert isinstance(packet.payload, bytes)


def test_equality_includes_timestamp():
    a = make_packet(seq=1, payload=b"a")
    b = make_packet(seq=1, payload=b"a", timestamp=EPOCH + timedelta(microseconds=1))
    assert a != b
    assert a == make_packet(seq=1, payload=b"a")


def test_packet_type_resolution():
    assert PacketType.from_wire(0x00) is PacketType.MESSAGE
    assert PacketType.from_wire(0x01) is PacketType.ACK
    for type_id in range(2, 256):
        assert PacketType.from_wire(type_id) is PacketType.UNKNOWN

    assert PacketType.MESSAGE.wire_id == 0x00
    assert PacketType.ACK.wire_id == 0x01


def test_sequence_key_ignores_other_fields():
    a = make_packet(seq=0, payload=b"a", type_id=0x00)
    b = make_packet(seq=0, payload=b"b", type_id=0x01, version=3)
    assert sequence_key(a) == sequence_key(b)


def test_ack_payload():
    packet = make_packet(type_id=0x01, payload=struct.pack("!H", 4242))
    assert read_acked_sequence(packet) == 4242

    with pytest.raises(MalformedPacketError):
        read_acked_sequence(make_packet(type_id=0x01, payload=b"\x01"))


# ============================================================================
# Factory
# ============================================================================

def test_factory_sequence_monotonic():
    factory = PacketFactory()
    sequences = [factory.create_with_payload(PacketType.MESSAGE, b"x").sequence
                 for _ in range(5)]
    assert sequences == [0, 1, 2, 3, 4]
    assert factory.sequence == 5


def test_factory_sequence_wraps():
    factory = PacketFactory()
    for expected in range(65536):
        assert factory.create_with_payload(PacketType.ACK, b"").sequence == expected
    assert factory.sequence == 0
    assert factory.create_with_payload(PacketType.MESSAGE, b"").sequence == 0


def test_factory_create_empty():
    factory = PacketFactory(version=2)
    packet = factory.create_empty(PacketType.MESSAGE)

    assert packet.type == PacketType.MESSAGE.wire_id
    assert packet.version == 2
    assert packet.sequence == 0
    assert packet.payload == bytes(MAX_DATAGRAM_SIZE)
    assert packet.timestamp.tzinfo is not None
    assert factory.sequence == 1


def test_factory_create_with_payload_copies():
    content = bytearray(b"Hello")
    packet = PacketFactory().create_with_payload(PacketType.MESSAGE, content)
    content[0] = ord("J")
    assert packet.payload == b"Hello"


def test_factory_consumes_remaining_stream():
    stream = io.BytesIO(b"skip:keep")
    stream.read(5)
    packet = PacketFactory().create_with_payload(PacketType.MESSAGE, stream)
    assert packet.payload == b"keep"
    assert stream.read() == b""


def test_factory_rejects_non_bytes_content():
    factory = PacketFactory()
    for bad in [5, "text"]:
        with pytest.raises(TypeError):
            factory.create_with_payload(PacketType.MESSAGE, bad)
    assert factory.sequence == 0


def test_factory_rejects_stream_without_data():
    stream = Mock()
    stream.read.return_value = None
    factory = PacketFactory()
    with pytest.raises(ValueError):
        factory.create_with_payload(PacketType.MESSAGE, stream)
    assert factory.sequence == 0


def test_factory_create_ack():
    factory = PacketFactory()
    ack = factory.create_ack(513)
    assert ack.packet_type is PacketType.ACK
    assert ack.payload == b"\x02\x01"
    assert read_acked_sequence(ack) == 513


def test_factory_create_ack_range():
    factory = PacketFactory()
    for bad in [-1, 65536, 70000]:
        with pytest.raises(ValueError):
            factory.create_ack(bad)
    assert factory.sequence == 0
    assert read_acked_sequence(factory.create_ack(65535)) == 65535


def test_factory_rejects_unknown_type():
    factory = PacketFactory()
    with pytest.raises(UnsupportedPacketTypeError):
        factory.create_with_payload(PacketType.UNKNOWN, b"")
    assert factory.sequence == 0


def test_factory_custom_builder():
    built = []

    def builder(type_id, version, seq, payload, timestamp):
        built.append(seq)
        return Packet(type_id, version, seq, payload, timestamp)

    factory = PacketFactory(builder=builder)
    factory.create_with_payload(PacketType.MESSAGE, b"a")
    factory.create_with_payload(PacketType.MESSAGE, b"b")
    assert built == [0, 1]


def test_factory_parse():
    packet = make_packet(seq=9, payload=b"hi")
    assert PacketFactory.parse(encode_packet(packet), EPOCH) == packet
    with pytest.raises(MalformedPacketError):
        PacketFactory.parse(b"\x00")


# ============================================================================
# Dispatcher
# ============================================================================

def test_dispatch_routing_order():
    calls = []
    dispatcher = PacketDispatcher(log=Mock())
    h1 = lambda p, a: calls.append("h1")
    h2 = lambda p, a: calls.append("h2")
    h3 = lambda p, a: calls.append("h3")
    dispatcher.register(PacketType.MESSAGE, h1, h2)
    dispatcher.register(PacketType.ACK, h3)

    packet = decode_packet(encode_packet(make_packet(seq=1, payload=b"m")))
    dispatcher.dispatch(packet, ADDR)

    assert calls == ["h1", "h2"]


def test_dispatch_passes_packet_and_address():
    seen = []
    dispatcher = PacketDispatcher(log=Mock())
    dispatcher.register(PacketType.ACK, lambda p, a: seen.append((p, a)))
    packet = make_packet(type_id=0x01)

    dispatcher.dispatch(packet, ADDR)

    assert seen == [(packet, ADDR)]


def test_dispatch_unknown_type():
    seen = []
    dispatcher = PacketDispatcher(log=Mock())
    dispatcher.register(PacketType.UNKNOWN, lambda p, a: seen.append(p.type))
    dispatcher.register(PacketType.MESSAGE, lambda p, a: seen.append("message"))

    dispatcher.dispatch(make_packet(type_id=0x7F), ADDR)

    assert seen == [0x7F]


def test_every_type_starts_empty():
    dispatcher = PacketDispatcher()
    for packet_type in PacketType:
        assert dispatcher.get_handlers(packet_type) == []


def test_duplicate_registration_runs_twice():
    calls = []
    handler = lambda p, a: calls.append(1)
    dispatcher = PacketDispatcher(log=Mock())
    dispatcher.register(PacketType.MESSAGE, handler)
    dispatcher.register(PacketType.MESSAGE, handler)

    dispatcher.dispatch(make_packet(), ADDR)

    assert len(calls) == 2


def test_unregister():
    dispatcher = PacketDispatcher()
    h1 = lambda p, a: None
    h2 = lambda p, a: None
    dispatcher.register(PacketType.MESSAGE, h1, h2, h1)

    assert dispatcher.unregister(PacketType.ACK, h1) is False
    assert dispatcher.get_handlers(PacketType.MESSAGE) == [h1, h2, h1]

    assert dispatcher.unregister(PacketType.MESSAGE, h1) is True
    assert dispatcher.get_handlers(PacketType.MESSAGE) == [h2, h1]

    assert dispatcher.unregister(PacketType.MESSAGE, h1) is True
    assert dispatcher.unregister(PacketType.MESSAGE, h1) is False
    assert dispatcher.get_handlers(PacketType.MESSAGE) == [h2]


def test_get_handlers_returns_copy():
    dispatcher = PacketDispatcher()
    handler = lambda p, a: None
    dispatcher.register(PacketType.MESSAGE, handler)

    handlers = dispatcher.get_handlers(PacketType.MESSAGE)
    handlers.clear()

    assert dispatcher.get_handlers(PacketType.MESSAGE) == [handler]


def test_failing_handler_is_isolated():
    calls = []
    log = Mock()

    def broken(packet, addr):
        raise RuntimeError("boom")

    dispatcher = PacketDispatcher(log=log)
    dispatcher.register(PacketType.MESSAGE, broken, lambda p, a: calls.append("after"))

    failures = dispatcher.dispatch(make_packet(), ADDR)

    assert failures == 1
    assert calls == ["after"]
    assert log.exception.call_count == 1


def test_registration_during_dispatch_applies_next_time():
    calls = []
    dispatcher = PacketDispatcher(log=Mock())
    late = lambda p, a: calls.append("late")
    dispatcher.register(PacketType.MESSAGE,
                        lambda p, a: dispatcher.register(PacketType.MESSAGE, late))

    dispatcher.dispatch(make_packet(), ADDR)
    assert calls == []

    dispatcher.dispatch(make_packet(), ADDR)
    assert calls == ["late"]


def test_logging_handlers():
    log = Mock()
    dispatcher = PacketDispatcher.with_logging_handlers(log)

    assert len(dispatcher.get_handlers(PacketType.MESSAGE)) == 1
    assert len(dispatcher.get_handlers(PacketType.ACK)) == 1
    assert dispatcher.get_handlers(PacketType.UNKNOWN) == []

    dispatcher.dispatch(make_packet(), ADDR)
    dispatcher.dispatch(make_packet(type_id=0x01), ADDR)

    assert log.info.call_count == 2
    assert "MESSAGE" in log.info.call_args_list[0][0][0]
    assert "ACK" in log.info.call_args_list[1][0][0]


# ============================================================================
# Packet sets
# ============================================================================

def test_sequence_ordering():
    packets = SequenceOrderedPackets()
    for seq, data in [(5, b"\x00"), (2, b"\x01"), (19, b"\x02"), (0, b"\x03")]:
        packets.add(make_packet(seq=seq, payload=data))

    assert [p.sequence for p in packets] == [0, 2, 5, 19]
    assert packets.poll_first().payload == b"\x03"
    assert packets.poll_first().payload == b"\x01"
    assert packets.poll_first().payload == b"\x00"
    assert packets.poll_first().payload == b"\x02"
    assert packets.poll_first() is None


def test_sequence_collision_keeps_first():
    packets = SequenceOrderedPackets()
    first = make_packet(seq=7, payload=b"first")
    second = make_packet(seq=7, payload=b"second", type_id=0x01)

    assert packets.add(first) is True
    assert packets.add(second) is False

    assert len(packets) == 1
    assert packets.first() is first
    assert second in packets


def test_sequence_ordering_is_flat():
    packets = SequenceOrderedPackets([make_packet(seq=0), make_packet(seq=65535)])
    assert [p.sequence for p in packets] == [0, 65535]


def test_ordered_set_operations():
    packets = SequenceOrderedPackets(make_packet(seq=s) for s in [3, 1, 2])

    assert packets.first().sequence == 1
    assert packets.last().sequence == 3
    assert [p.sequence for p in reversed(packets)] == [3, 2, 1]

    assert packets.discard(make_packet(seq=2, payload=b"other")) is True
    assert packets.discard(make_packet(seq=2)) is False
    assert packets.poll_last().sequence == 3
    assert [p.sequence for p in packets.snapshot()] == [1]

    packets.clear()
    assert len(packets) == 0
    assert packets.first() is None
    assert packets.poll_last() is None
    assert "not a packet" not in packets


def test_timestamp_ordering():
    packets = TimestampOrderedPackets()
    late = make_packet(seq=0, timestamp=EPOCH + timedelta(seconds=2))
    early = make_packet(seq=1, timestamp=EPOCH)
    middle = make_packet(seq=2, timestamp=EPOCH + timedelta(seconds=1))
    for packet in [late, early, middle]:
        packets.add(packet)

    assert list(packets) == [early, middle, late]
    assert packets.add(make_packet(seq=9, timestamp=EPOCH)) is False
    assert len(packets) == 3


def test_synchronized_set_across_threads():
    shared = SynchronizedPacketSet(SequenceOrderedPackets())

    def writer(start):
        for seq in range(start, 1000, 4):
            shared.add(make_packet(seq=seq))

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(shared) == 1000
    assert [p.sequence for p in shared] == list(range(1000))
    assert shared.first().sequence == 0
    assert shared.poll_last().sequence == 999
    assert make_packet(seq=500) in shared
