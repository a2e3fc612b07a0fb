"""Fire identical payment submissions concurrently to exercise duplicate suppression."""

import argparse
import asyncio
from collections import Counter
from uuid import uuid4

import httpx


async def main() -> None:
    """CLI entrypoint for double-submit smoke tests against a running gateway."""

    parser = argparse.ArgumentParser(description="Send the same payment many times at once.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--collection-slug", default="spring-fees")
    parser.add_argument("--source-id", default="cnon:card-nonce-ok")
    parser.add_argument("--amount", default="25.00")
    parser.add_argument("--email", default="burst@example.com")
    parser.add_argument("--count", type=int, default=10)
    args = parser.parse_args()

    payload = {
        "sourceId": args.source_id,
        "collectionSlug": args.collection_slug,
        "amount": args.amount,
        "payerEmail": args.email,
        "payerName": "Burst Tester",
    }

    async with httpx.AsyncClient(base_url=args.base_url, timeout=30.0) as client:
        responses = await asyncio.gather(
            *[
                client.post("/payments", json=payload, headers={"x-correlation-id": str(uuid4())})
                for _ in range(args.count)
            ]
        )

    statuses: Counter = Counter()
    charge_ids = set()
    for resp in responses:
        body = resp.json()
        outcome = "duplicate" if body.get("isDuplicate") else ("charged" if body.get("success") else "rejected")
        statuses[(resp.status_code, outcome)] += 1
        if body.get("paymentId"):
            charge_ids.add(body["paymentId"])
        print(resp.status_code, resp.text)

    print("status_counts=", dict(statuses))
    print("distinct_charges=", len(charge_ids))


if __name__ == "__main__":
    asyncio.run(main())
