"""
UDP chat receiver application.

Runs a ChatServer until SIGINT or SIGTERM and prints what it received.
"""
import argparse
import asyncio

from .chatnet import ChatServer
from .common import DEFAULT_PORT, Packet, Address, PacketType
from .log import configure_logging


async def main(bind_ip: str, bind_port: int):
    stats = {
        "messages": 0,
        "bytes": 0,
        "senders": set(),
        "out_of_order": 0,
        "last_seq": {},
    }

    def on_message(packet: Packet, addr: Address):
        stats["messages"] += 1
        stats["bytes"] += len(packet.payload)
        stats["senders"].add(addr)

        # sequences are per sender, so only compare against the same address
        last = stats["last_seq"].get(addr)
        if last is not None and packet.sequence < last:
            stats["out_of_order"] += 1
        stats["last_seq"][addr] = packet.sequence

        print(f"CHAT {addr[0]}:{addr[1]} seq={packet.sequence:5d} "
              f"{packet.payload.decode('utf-8', errors='replace')[:60]}")

    server = ChatServer(bind_addr=(bind_ip, bind_port))
    server.register(PacketType.MESSAGE, on_message)

    try:
        await server.run_until_shutdown()
        print("\nShutting down...")
    finally:
        await server.close()

        print("\n" + "=" * 60)
        print("FINAL STATISTICS FOR SERVER")
        print("=" * 60)
        print(f"  Messages:     {stats['messages']:6d}")
        print(f"  Bytes:        {stats['bytes']:6d}")
        print(f"  Senders:      {len(stats['senders']):6d}")
        print(f"  Out of order: {stats['out_of_order']:6d}")

        if server.protocol:
            proto = server.stats
            print(f"\n  Protocol Stats:")
            print(f"    RX: {proto['rx_total']:6d} decoded, {proto['rx_dropped']:6d} dropped")
            print(f"    TX: {proto['tx_total']:6d} (ACKs)")
            print(f"    Handler errors: {proto['handler_errors']:6d}")


def cli():
    parser = argparse.ArgumentParser(description="UDP chat receiver")
    parser.add_argument("--bind-ip", default="0.0.0.0", help="Bind IP")
    parser.add_argument("--bind-port", type=int, default=DEFAULT_PORT, help="Bind port")
    parser.add_argument("--log-level", default="INFO", help="Log level")

    args = parser.parse_args()
    configure_logging(args.log_level)
    asyncio.run(main(args.bind_ip, args.bind_port))


if __name__ == "__main__":
    cli()
