from __future__ import annotations

import asyncio
import os
import sys

from libs.common import configure_logging, get_settings

from .client import StorefrontApiClient
from .flow import CallLoginFlow, CallLoginTiming, LoginOutcome


def _print_update(outcome: LoginOutcome) -> None:
    if outcome.messages:
        print(outcome.messages[-1])
    elif outcome.call_phone:
        print(f"Call {outcome.call_phone} from {outcome.phone} to confirm the number")


async def main(phone: str) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    client = StorefrontApiClient(os.environ.get("API_BASE_URL", "http://localhost:8000"))
    flow = CallLoginFlow(client, CallLoginTiming.from_settings(settings), on_update=_print_update)
    try:
        outcome = await flow.login(phone)
    finally:
        await client.close()

    if outcome.verified:
        print("Phone verified, session established")
        return 0
    print(outcome.error or "Login failed")
    return 1


def run() -> None:
    if len(sys.argv) != 2:
        print("usage: python -m apps.call_login.main <phone>")
        raise SystemExit(2)
    raise SystemExit(asyncio.run(main(sys.argv[1])))


if __name__ == "__main__":
    run()
