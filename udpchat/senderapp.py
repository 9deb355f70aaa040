"""
UDP chat sender application.

Sends a handful of chat messages to a server and reports how many ACKs
came back.
"""
import argparse
import asyncio
from typing import List

from .chatnet import ChatClient
from .common import DEFAULT_PORT, Packet, Address, PacketType, read_acked_sequence
from .log import configure_logging


async def main(server_ip: str, server_port: int, messages: List[str],
               count: int, interval: float):
    acked = set()

    def on_ack(packet: Packet, addr: Address):
        acked.add(read_acked_sequence(packet))

    client = ChatClient(server_addr=(server_ip, server_port))
    client.register(PacketType.ACK, on_ack)

    print(f"Sending to {server_ip}:{server_port}")

    try:
        for i in range(count):
            text = messages[i % len(messages)]
            await client.send_message(text)
            if interval > 0:
                await asyncio.sleep(interval)
    except KeyboardInterrupt:
        print("\nInterrupted")
    finally:
        await asyncio.sleep(0.5)  # Wait for final ACKs
        await client.close()

        print("\n" + "=" * 60)
        print("FINAL STATISTICS")
        print("=" * 60)
        print(f"  Sent:  {len(client.sent_messages):6d}")
        print(f"  ACKed: {len(acked):6d}")

        if client.protocol:
            proto = client.stats
            print(f"\n  Protocol Stats:")
            print(f"    TX: {proto['tx_total']:6d} total")
            print(f"    RX: {proto['rx_total']:6d} decoded, {proto['rx_dropped']:6d} dropped")


def cli():
    parser = argparse.ArgumentParser(description="UDP chat sender")
    parser.add_argument("messages", nargs="*", default=["Hello, how are you?"],
                        help="Messages to send, cycled until --count is reached")
    parser.add_argument("--server-ip", default="127.0.0.1", help="Server IP")
    parser.add_argument("--server-port", type=int, default=DEFAULT_PORT, help="Server port")
    parser.add_argument("--count", type=int, default=None,
                        help="Messages to send (default: one per message argument)")
    parser.add_argument("--interval", type=float, default=0.1, help="Seconds between messages")
    parser.add_argument("--log-level", default="INFO", help="Log level")

    args = parser.parse_args()
    configure_logging(args.log_level)
    count = args.count if args.count is not None else len(args.messages)
    asyncio.run(main(args.server_ip, args.server_port, args.messages,
                     count, args.interval))


if __name__ == "__main__":
    cli()
