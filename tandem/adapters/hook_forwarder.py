"""Forward one hook payload from stdin to the local hook receiver.

Usage: python -m tandem.adapters.hook_forwarder PORT

Run by the assistant for each configured hook. Delivery problems are
ignored so a hook can never fail the assistant; only a bad PORT argument
exits non-zero.
"""
from __future__ import annotations

import asyncio
import sys

import aiohttp

FORWARD_TIMEOUT_SECONDS = 5.0


def parse_port(argv: list[str]) -> int | None:
    if len(argv) < 2:
        return None
    try:
        port = int(argv[1])
    except ValueError:
        return None
    return port if 0 < port < 65536 else None


async def forward(port: int, body: bytes, timeout: float = FORWARD_TIMEOUT_SECONDS) -> bool:
    """POST body to the receiver. Returns False if delivery failed."""
    url = f"http://127.0.0.1:{port}/hook"
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.post(
                url, data=body, headers={"Content-Type": "application/json"},
            ) as resp:
                await resp.read()
                return resp.status == 200
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
        return False


def main(argv: list[str] | None = None) -> int:
    port = parse_port(sys.argv if argv is None else argv)
    if port is None:
        return 1
    body = sys.stdin.buffer.read()
    asyncio.run(forward(port, body))
    return 0


if __name__ == "__main__":
    sys.exit(main())
