#!/usr/bin/env python3
"""Send a burst of concurrent requests that the debug server will hold."""

from __future__ import annotations

import argparse
import asyncio
import json
import statistics
import time
from dataclasses import dataclass

import httpx


@dataclass
class HeldResult:
    index: int
    status_code: int = 0
    headers_after: float = 0.0
    body_after: float = 0.0
    body_at: float = 0.0
    timestamp: str | None = None
    error: str | None = None


def percentile(values: list[float], quantile: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, int(round((len(ordered) - 1) * quantile)))
    return ordered[index]


async def held_request(
    client: httpx.AsyncClient,
    index: int,
    base_url: str,
    method: str,
    path: str,
) -> HeldResult:
    result = HeldResult(index=index)
    started = time.monotonic()
    try:
        async with client.stream(method, f"{base_url}{path}") as response:
            result.status_code = response.status_code
            result.headers_after = time.monotonic() - started
            body = await response.aread()
        result.body_at = time.monotonic()
        result.body_after = result.body_at - started
        result.timestamp = json.loads(body).get("timestamp")
    except (httpx.HTTPError, ValueError) as exc:
        result.error = f"{type(exc).__name__}: {exc}"
    return result


async def run_herd(base_url: str, requests: int, method: str, path: str) -> list[HeldResult]:
    # Held bodies have no upper bound on wait time.
    timeout = httpx.Timeout(10.0, read=None)
    limits = httpx.Limits(max_connections=requests, max_keepalive_connections=0)
    async with httpx.AsyncClient(timeout=timeout, limits=limits) as client:
        tasks = [
            asyncio.create_task(
                held_request(
                    client=client,
                    index=i,
                    base_url=base_url,
                    method=method,
                    path=path,
                )
            )
            for i in range(requests)
        ]
        return list(await asyncio.gather(*tasks))


def main() -> None:
    parser = argparse.ArgumentParser(description="Fire concurrent held requests at the debug server.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080")
    parser.add_argument("--requests", type=int, default=10)
    parser.add_argument("--method", default="GET")
    parser.add_argument("--path", default="/herd")
    args = parser.parse_args()

    results = asyncio.run(
        run_herd(
            base_url=args.base_url,
            requests=args.requests,
            method=args.method,
            path=args.path,
        )
    )

    succeeded = [result for result in results if result.error is None]
    arrivals = [result.body_at for result in succeeded]
    header_latencies = [result.headers_after for result in succeeded]
    report = {
        "requests": args.requests,
        "succeeded": len(succeeded),
        "failed": len(results) - len(succeeded),
        "errors": sorted({result.error for result in results if result.error}),
        "headers_p50_ms": percentile(header_latencies, 0.50) * 1000,
        "headers_p95_ms": percentile(header_latencies, 0.95) * 1000,
        "held_avg_s": statistics.mean(r.body_after for r in succeeded) if succeeded else 0.0,
        "release_spread_ms": (max(arrivals) - min(arrivals)) * 1000 if arrivals else 0.0,
        "distinct_timestamps": sorted({r.timestamp for r in succeeded if r.timestamp}),
    }
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
