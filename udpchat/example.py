"""
Simple example of using the UDP chat endpoints.

Runs a server and a client in one event loop. Both record into one
timestamp-ordered transcript, which is printed at the end.
"""
import argparse
import asyncio

from .chatnet import ChatClient, ChatServer
from .common import PacketType, read_acked_sequence
from .log import configure_logging
from .packet_sets import SynchronizedPacketSet, TimestampOrderedPackets


async def run_demo(count: int = 10, message: str = "Hello, how are you?"):
    all_messages = SynchronizedPacketSet(TimestampOrderedPackets())

    server = ChatServer(("127.0.0.1", 0), all_messages=all_messages)
    await server.start()

    client = ChatClient(server.address, all_messages=all_messages)
    acked = []
    client.register(PacketType.ACK, lambda packet, addr: acked.append(read_acked_sequence(packet)))

    try:
        for _ in range(count):
            await client.send_message(message)
            await asyncio.sleep(0.05)

        # give the last ACK time to arrive
        await asyncio.sleep(0.2)
    finally:
        await client.close()
        await server.close()

    print("\n" + "=" * 60)
    print("TRANSCRIPT")
    print("=" * 60)
    for packet in all_messages:
        print(f"  {packet.timestamp:%H:%M:%S.%f}  {packet}  "
              f"{packet.payload.decode('utf-8', errors='replace')!r}")
    print(f"\n  Sent:     {len(client.sent_messages):6d}")
    print(f"  Received: {len(server.received_messages):6d}")
    print(f"  ACKed:    {len(acked):6d}")
    return all_messages


def main():
    parser = argparse.ArgumentParser(description="UDP chat demo")
    parser.add_argument("--count", type=int, default=10, help="Messages to send")
    parser.add_argument("--log-level", default="INFO", help="Log level")

    args = parser.parse_args()
    configure_logging(args.log_level)
    asyncio.run(run_demo(args.count))


if __name__ == "__main__":
    main()
