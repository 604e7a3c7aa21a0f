"""
Chat relay command line.

Usage:
    chat-relay serve                      # Run the API server
    chat-relay serve --port 8080 --reload
    chat-relay ask "hello"                # Submit and poll (async mode server)
    chat-relay ask "hello" --stream       # Read a streamed reply (stream mode server)
"""

import argparse
import asyncio
import sys
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    uvicorn.run("chat_relay.main:create_app", host=host, port=port, reload=reload, factory=True)


async def ask(url: str, message: str, stream: bool) -> int:
    from chat_relay.client import ChatClientError, ChatPoller
    from chat_relay.config import get_settings

    settings = get_settings()
    async with ChatPoller(
        url,
        interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
    ) as poller:
        try:
            if stream:
                async for fragment in poller.stream(message):
                    print(fragment, end="", flush=True)
                print()
                return 0

            result = await poller.ask(message)
        except ChatClientError as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1

    if result.ok:
        print(result.result)
        return 0
    print(f"❌ {result.error}", file=sys.stderr)
    return 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="chat-relay", description="Chat relay service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    ask_parser = subparsers.add_parser("ask", help="Send one message to a running server")
    ask_parser.add_argument("message")
    ask_parser.add_argument("--url", default="http://localhost:8000")
    ask_parser.add_argument("--stream", action="store_true", help="Server runs in stream mode")

    args = parser.parse_args(argv)

    if args.command == "serve":
        serve(args.host, args.port, args.reload)
        return 0
    return asyncio.run(ask(args.url, args.message, args.stream))


if __name__ == "__main__":
    sys.exit(main())
