"""Entry point: python -m gitterstream"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from .api.client import GitterClient
from .config import ClientConfig
from .errors import GitterError
from .logging_config import setup_logging
from .models import Message

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat service client")
    parser.add_argument("--token", default=None, help="Bearer token (default: $GITTER_TOKEN)")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--log-dir", default=None, help="Also write JSON logs to this directory")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("rooms", help="List joined rooms")

    messages = commands.add_parser("messages", help="Print recent messages of a room")
    messages.add_argument("room_id")
    messages.add_argument("--limit", type=int, default=50)

    send = commands.add_parser("send", help="Post a message to a room")
    send.add_argument("room_id")
    send.add_argument("text")

    tail = commands.add_parser("tail", help="Follow a room's messages in real time")
    tail.add_argument("room_id")

    return parser


def format_message(message: Message) -> str:
    author = message.from_user.username if message.from_user else "?"
    sent = message.sent.isoformat() if message.sent else ""
    return f"{sent} <{author}> {message.text}"


async def run(args: argparse.Namespace, config: ClientConfig) -> int:
    client = GitterClient(token=args.token, config=config)

    if args.command == "rooms":
        for room in await client.get_rooms():
            print(f"{room.id}\t{room.name}")

    elif args.command == "messages":
        for message in await client.get_room_messages(args.room_id, limit=args.limit):
            print(format_message(message))

    elif args.command == "send":
        message = await client.send_message(args.room_id, args.text)
        print(message.id)

    elif args.command == "tail":
        async for message in client.realtime_messages(args.room_id):
            print(format_message(message), flush=True)

    return 0


def main() -> None:
    args = build_parser().parse_args()

    config = ClientConfig()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_dir:
        config.log_dir = args.log_dir

    setup_logging(config.log_dir, config.log_level)

    try:
        code = asyncio.run(run(args, config))
    except GitterError as exc:
        log.error("command_failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
