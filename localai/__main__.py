"""Local AI command line.

Usage::

    python -m localai discover [--timeout S] [--service-type TYPE]
    python -m localai chat MESSAGE [--host IP] [--port N] [--timeout S]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from localai.client import LocalAIClient
from localai.config import ClientConfig
from localai.models import Complete, Disconnected, Error, PartialUpdate


async def _discover(client: LocalAIClient, timeout: float) -> int:
    if not await client.start_discovery():
        return 1
    try:
        await asyncio.sleep(timeout)
        await client.engine.settle()
    finally:
        await client.stop_discovery()

    services = client.services()
    if not services:
        print("No services found.")
        return 1
    for svc in services:
        print(f"{svc.name}\t{svc.host}:{svc.port}")
    return 0


async def _chat(client: LocalAIClient, message: str, host: str | None, port: int | None,
                timeout: float) -> int:
    if host:
        state = await client.connect_to(host, port)
    else:
        code = await _discover(client, timeout)
        if code:
            return code
        state = await client.connect(client.services()[0])
    if not state.is_connected:
        print(f"Connection failed: {state.reason}", file=sys.stderr)
        return 1

    printed = 0
    async for event in client.chat(message):
        if isinstance(event, (PartialUpdate, Complete)):
            # Updates carry the whole reply so far; print only the new tail.
            sys.stdout.write(event.text[printed:])
            sys.stdout.flush()
            printed = len(event.text)
        elif isinstance(event, Error):
            print(f"\nError: {event.reason}", file=sys.stderr)
            return 1
        elif isinstance(event, Disconnected):
            print("\nServer disconnected", file=sys.stderr)
            return 1
    print()
    return 0


async def _run(args: argparse.Namespace) -> int:
    config = ClientConfig.load(args.config) if args.config else ClientConfig()
    config = ClientConfig.from_env(config)
    if args.service_type:
        config.service_type = args.service_type

    client = LocalAIClient(config)
    try:
        if args.command == "discover":
            return await _discover(client, args.timeout)
        return await _chat(client, args.message, args.host, args.port, args.timeout)
    finally:
        await client.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="python -m localai",
        description="Discover a Local AI server on the LAN and chat with it",
    )
    parser.add_argument("--config", metavar="PATH", default=None, help="JSON config file")
    parser.add_argument("--service-type", default=None, help="DNS-SD type (default: _http._tcp.)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_discover = sub.add_parser("discover", help="List advertised servers")
    p_discover.add_argument("--timeout", type=float, default=3.0, help="Seconds to browse")

    p_chat = sub.add_parser("chat", help="Send one message and stream the reply")
    p_chat.add_argument("message")
    p_chat.add_argument("--host", default=None, help="Server IP (skips discovery)")
    p_chat.add_argument("--port", type=int, default=None)
    p_chat.add_argument("--timeout", type=float, default=3.0, help="Seconds to browse")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    try:
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(1)


if __name__ == "__main__":
    main()
