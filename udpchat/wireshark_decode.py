#!/usr/bin/env python3
"""
Helper script to decode chat packets from a Wireshark hex dump.

Usage:
1. In Wireshark, right-click packet → Copy → ...as Hex Stream
2. Run: udpchat-decode <hex_string>

Or pipe directly:
echo "0000000548656c6c6f" | udpchat-decode
"""
import sys

from .common import (
    HEADER_SIZE, ChatPacketError, PacketType,
    decode_packet, read_acked_sequence
)


def decode_chat_packet(hex_string: str) -> bool:
    """Print a decoded chat packet. Returns False if it could not be decoded."""
    hex_string = hex_string.replace(' ', '').replace('\n', '')

    try:
        data = bytes.fromhex(hex_string)
    except ValueError as e:
        print(f"Error: Invalid hex string: {e}")
        return False

    try:
        packet = decode_packet(data)
    except ChatPacketError as e:
        print(f"Error: {e}")
        return False

    packet_type = packet.packet_type

    print("=" * 70)
    print("CHAT PACKET DECODE")
    print("=" * 70)
    print(f"Total Length:    {len(data)} bytes")
    print(f"Header:          {HEADER_SIZE} bytes")
    print(f"Payload:         {len(packet.payload)} bytes")
    print()
    print("HEADER FIELDS:")
    print(f"  Type:          0x{packet.type:02x} ({packet_type.name})")
    print(f"  Version:       {packet.version}")
    print(f"  Sequence:      {packet.sequence}")
    print()

    if packet.payload:
        print("PAYLOAD:")
        print(f"  Hex:           {packet.payload.hex()}")
        print(f"  Text:          {packet.payload.decode('utf-8', errors='replace')!r}")
    else:
        print("PAYLOAD:         (empty)")

    print()
    print("INTERPRETATION:")
    if packet_type is PacketType.ACK:
        try:
            print(f"  → ACK for sequence {read_acked_sequence(packet)}")
        except ChatPacketError:
            print("  → ACK without an acknowledged sequence")
    elif packet_type is PacketType.MESSAGE:
        print(f"  → MESSAGE {packet.sequence}")
    else:
        print(f"  → Unrecognised type 0x{packet.type:02x}")
    print("=" * 70)
    return True


def main():
    if len(sys.argv) > 1:
        hex_string = ' '.join(sys.argv[1:])
    else:
        print("Paste hex string (or Ctrl+D when done):")
        hex_string = sys.stdin.read().strip()

    if not hex_string:
        print("Usage: udpchat-decode <hex_string>")
        print()
        print("Example:")
        print("  udpchat-decode 0000000548656c6c6f")
        sys.exit(2)

    if not decode_chat_packet(hex_string):
        sys.exit(1)


if __name__ == "__main__":
    main()
