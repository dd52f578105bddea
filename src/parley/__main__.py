"""Entry point for `python -m parley` / `parley`.

Subcommands:
    parley              Run the bot service (default)
    parley notify       Ask a running instance to broadcast now
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import aiohttp

_DEFAULT_HOST = "localhost:3978"


def _run() -> None:
    from parley.app import ParleyApp

    app = ParleyApp()
    asyncio.run(app.run())


async def _notify(host: str) -> int:
    url = f"{host.rstrip('/')}/api/notify"
    try:
        async with aiohttp.ClientSession() as session, session.get(url) as resp:
            print(f"{resp.status} {resp.reason}")
            return 0 if resp.status == 200 else 1
    except aiohttp.ClientError as exc:
        print(f"Error: could not reach {url}: {exc}", file=sys.stderr)
        return 1


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Conversational bot with proactive notifications",
    )
    sub = parser.add_subparsers(dest="command")
    notify = sub.add_parser("notify", help="Trigger an immediate broadcast on a running instance")
    notify.add_argument(
        "--host",
        default=_DEFAULT_HOST,
        help=f"Host:port of the parley server (default: {_DEFAULT_HOST})",
    )

    args = parser.parse_args()

    match args.command:
        case "notify":
            host = args.host
            if "://" not in host:
                host = f"http://{host}"
            sys.exit(asyncio.run(_notify(host)))
        case _:
            _run()


if __name__ == "__main__":
    main()
