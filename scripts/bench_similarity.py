#!/usr/bin/env python3
"""Benchmark POST /v1/similarity latency and throughput."""

from __future__ import annotations

import argparse
import asyncio
import base64
from dataclasses import dataclass
import io
import json
import math
from pathlib import Path
import statistics
import sys
import time

import httpx
import numpy as np
from PIL import Image


def percentile(values: list[float], p: float) -> float:
    """Compute a percentile using linear interpolation."""
    if not values:
        return 0.0
    if len(values) == 1:
        return values[0]

    pos = (len(values) - 1) * (p / 100.0)
    lower = math.floor(pos)
    upper = math.ceil(pos)
    if lower == upper:
        return values[int(pos)]

    lower_val = values[lower]
    upper_val = values[upper]
    return lower_val + (upper_val - lower_val) * (pos - lower)


def make_image_source(size: int, index: int) -> str:
    """Build a deterministic noise PNG as a data URI."""
    rng = np.random.default_rng(index)
    pixels = rng.integers(0, 256, size=(size, size, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


@dataclass
class RequestResult:
    ok: bool
    status_code: int
    latency_ms: float
    error_code: str | None


async def send_similarity_request(
    client: httpx.AsyncClient,
    *,
    url: str,
    image_a: str,
    image_b: str,
) -> RequestResult:
    """Send one similarity request and time it."""
    started = time.perf_counter()
    try:
        response = await client.post(url, json={"image_a": image_a, "image_b": image_b})
    except httpx.HTTPError:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return RequestResult(ok=False, status_code=0, latency_ms=elapsed_ms, error_code="request_exception")

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    if response.status_code == 200:
        return RequestResult(ok=True, status_code=200, latency_ms=elapsed_ms, error_code=None)

    error_code: str | None = None
    try:
        error_code = response.json().get("error", {}).get("code")
    except ValueError:
        error_code = None
    return RequestResult(ok=False, status_code=response.status_code, latency_ms=elapsed_ms, error_code=error_code)


async def run_load(args: argparse.Namespace) -> tuple[list[RequestResult], float]:
    """Run concurrent requests and collect request-level results."""
    url = f"{args.base_url.rstrip('/')}/v1/similarity"
    timeout = httpx.Timeout(args.timeout_seconds)
    limits = httpx.Limits(max_connections=args.concurrency, max_keepalive_connections=args.concurrency)
    pool = [make_image_source(args.image_size, i) for i in range(args.distinct_images)]

    results: list[RequestResult] = []
    lock = asyncio.Lock()
    req_counter = 0

    def pair(index: int) -> tuple[str, str]:
        return pool[index % len(pool)], pool[(index * 7 + 1) % len(pool)]

    async with httpx.AsyncClient(timeout=timeout, limits=limits) as client:
        for i in range(args.warmup):
            image_a, image_b = pair(i)
            await send_similarity_request(client, url=url, image_a=image_a, image_b=image_b)

        async def worker() -> None:
            nonlocal req_counter
            while True:
                async with lock:
                    if req_counter >= args.requests:
                        return
                    current = req_counter
                    req_counter += 1

                image_a, image_b = pair(current + args.warmup)
                results.append(await send_similarity_request(client, url=url, image_a=image_a, image_b=image_b))

        workers = [asyncio.create_task(worker()) for _ in range(args.concurrency)]
        started = time.perf_counter()
        await asyncio.gather(*workers)
        total_seconds = time.perf_counter() - started

    return results, total_seconds


def build_summary(args: argparse.Namespace, results: list[RequestResult], total_seconds: float) -> dict[str, object]:
    """Build benchmark summary metrics."""
    success = [r for r in results if r.ok]
    failures = [r for r in results if not r.ok]
    success_latencies = sorted(r.latency_ms for r in success)

    error_breakdown: dict[str, int] = {}
    for item in failures:
        key = item.error_code or f"http_{item.status_code}"
        error_breakdown[key] = error_breakdown.get(key, 0) + 1

    return {
        "config": {
            "base_url": args.base_url,
            "requests": args.requests,
            "warmup": args.warmup,
            "concurrency": args.concurrency,
            "image_size": args.image_size,
            "distinct_images": args.distinct_images,
            "timeout_seconds": args.timeout_seconds,
        },
        "results": {
            "total_requests": len(results),
            "success_requests": len(success),
            "failed_requests": len(failures),
            "error_breakdown": error_breakdown,
            "elapsed_seconds": total_seconds,
            "requests_per_second": (len(results) / total_seconds) if total_seconds > 0 else 0.0,
            "images_per_second": (2 * len(success) / total_seconds) if total_seconds > 0 else 0.0,
            "latency_ms": {
                "min": success_latencies[0] if success_latencies else 0.0,
                "mean": statistics.fmean(success_latencies) if success_latencies else 0.0,
                "p50": percentile(success_latencies, 50),
                "p95": percentile(success_latencies, 95),
                "p99": percentile(success_latencies, 99),
                "max": success_latencies[-1] if success_latencies else 0.0,
            },
        },
    }


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark lookalike-server similarity endpoint.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8181")
    parser.add_argument("--requests", type=int, default=200)
    parser.add_argument("--warmup", type=int, default=10)
    parser.add_argument("--concurrency", type=int, default=8)
    parser.add_argument("--image-size", type=int, default=224)
    parser.add_argument("--distinct-images", type=int, default=16)
    parser.add_argument("--timeout-seconds", type=float, default=60.0)
    parser.add_argument("--output", type=Path)
    return parser.parse_args()


def validate_args(args: argparse.Namespace) -> None:
    if args.requests <= 0:
        raise SystemExit("--requests must be > 0")
    if args.warmup < 0:
        raise SystemExit("--warmup must be >= 0")
    if args.concurrency <= 0:
        raise SystemExit("--concurrency must be > 0")
    if args.image_size <= 0:
        raise SystemExit("--image-size must be > 0")
    if args.distinct_images <= 0:
        raise SystemExit("--distinct-images must be > 0")
    if args.timeout_seconds <= 0:
        raise SystemExit("--timeout-seconds must be > 0")


def main() -> None:
    args = parse_args()
    validate_args(args)
    results, total_seconds = asyncio.run(run_load(args))
    summary = build_summary(args, results, total_seconds)

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote benchmark report: {args.output}", file=sys.stderr)


if __name__ == "__main__":
    main()
