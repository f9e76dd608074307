"""
Open requests on a running simulated ledger.

Usage:
    # Terminal 1: Start the simulated ledger
    python -m sim.server

    # Terminal 2: Start the coordinator
    python -m coordinator.service --pool-size 20 --status-port 8080

    # Terminal 3: Open a flight status request
    python scripts/open_request.py --subject "AA:ND1309"

    # Open five requests and show the recorded responses
    python scripts/open_request.py --count 5 --show
"""

import argparse
import asyncio
import logging
import sys
import time

import httpx


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def open_requests(ledger_url: str, subject: str, count: int, wait: float, show: bool) -> int:
    async with httpx.AsyncClient(base_url=ledger_url, timeout=10.0) as client:
        for i in range(count):
            payload = {
                "subject_id": subject if count == 1 else f"{subject}#{i}",
                "timestamp": int(time.time())
            }
            try:
                response = await client.post("/requests", json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Failed to open request: {e}")
                return 1

            data = response.json()
            logger.info(f"Opened {data['subject_id']} with key {data['request_key']}")

        if not show:
            return 0

        # Give the coordinator time to submit
        await asyncio.sleep(wait)

        response = await client.get("/requests")
        for request in response.json()["requests"]:
            answers = sorted(request["responses"].values())
            logger.info(
                f"{request['subject_id']} key={request['request_key']}: "
                f"{len(answers)} responses {answers}"
            )

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Open requests on the simulated ledger")
    parser.add_argument("--ledger-url", type=str, default="http://localhost:8545")
    parser.add_argument("--subject", type=str, default="AA:ND1309", help="Request subject")
    parser.add_argument("--count", type=int, default=1, help="Number of requests to open")
    parser.add_argument("--show", action="store_true", help="Print recorded responses")
    parser.add_argument("--wait", type=float, default=2.0, help="Seconds to wait before --show")

    args = parser.parse_args()
    return asyncio.run(open_requests(args.ledger_url, args.subject, args.count, args.wait, args.show))


if __name__ == "__main__":
    sys.exit(main())
