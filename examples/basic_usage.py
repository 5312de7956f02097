#!/usr/bin/env python3
"""
Basic usage examples for formrelay.

Shows the admission queue on its own, then a relay run against a Marketo
instance configured through MARKETO_* environment variables.
"""

import asyncio
import sys

from formrelay import AdmissionQueue, UploadedFile, UploadRelay
from formrelay.core.config import get_settings
from formrelay.marketo import MarketoClient
from formrelay.relay.validation import UploadLimits


async def bounded_concurrency():
    """Admit five tasks through a queue that runs two at a time."""
    print("\n=== Admission Queue ===\n")

    queue = AdmissionQueue(limit=2)

    async def job(n: int) -> int:
        print(f"start {n} (running={queue.running}, pending={queue.pending})")
        await asyncio.sleep(0.2)
        return n * n

    futures = [queue.admit(lambda n=n: job(n)) for n in range(5)]
    print(f"Results: {await asyncio.gather(*futures)}")
    print(f"Peak running: {queue.stats.peak_running}")


async def relay_files(paths: list[str], email: str):
    """Relay local files to Marketo and update the lead."""
    print("\n=== Relay ===\n")

    settings = get_settings()
    files = []
    for path in paths:
        with open(path, "rb") as f:
            files.append(UploadedFile(filename=path.rsplit("/", 1)[-1], content=f.read()))

    async with MarketoClient(settings.marketo) as client:
        relay = UploadRelay(client, UploadLimits.from_settings(settings.relay))
        response = await relay.process(files, email)

    print(f"Success: {response.success} ({response.message})")
    for item in response.files:
        status = "ok" if item.success else item.error
        print(f"  {item.original_name} -> {item.name}: {status}")
    print(f"Lead updated: {response.lead_updated}")


async def main():
    await bounded_concurrency()

    if len(sys.argv) > 2 and get_settings().marketo.is_configured:
        await relay_files(sys.argv[2:], sys.argv[1])
    else:
        print("\nSet MARKETO_* and pass EMAIL FILE... to run the relay example")


if __name__ == "__main__":
    asyncio.run(main())
