"""
Load benchmark for the streaming chat endpoint.

Fires concurrent POST /ai/chat/stream requests and reports time to first
answer chunk and total stream time. Because every upstream call goes
through one FIFO queue, first-chunk latency grows with concurrency; this
makes the queueing visible.

Usage: python scripts/benchmark.py http://localhost:8000 [-n 20] [-c 5] [-m "What is mitosis?"]
"""
import argparse
import asyncio
import json
import sys
import time
from statistics import mean, median
from typing import Dict, List, Optional, Tuple

import httpx


async def stream_chat(client: httpx.AsyncClient, url: str, message: str) -> Tuple[Optional[float], float, Dict[str, int], bool]:
    """One streamed chat; returns (first_chunk_s, total_s, event_counts, ok)."""
    start = time.time()
    first_chunk: Optional[float] = None
    counts: Dict[str, int] = {}
    try:
        async with client.stream("POST", url, json={"message": message}, timeout=120.0) as response:
            if response.status_code != 200:
                return None, time.time() - start, counts, False
            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                event_type = json.loads(line[len("data: "):]).get("type", "unknown")
                counts[event_type] = counts.get(event_type, 0) + 1
                if event_type == "chunk" and first_chunk is None:
                    first_chunk = time.time() - start
        return first_chunk, time.time() - start, counts, "answer" in counts
    except Exception as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return None, time.time() - start, counts, False


def describe(label: str, values: List[float]) -> None:
    if not values:
        print(f"{label:<22} n/a")
        return
    print(
        f"{label:<22} mean {mean(values) * 1000:8.1f} ms | median {median(values) * 1000:8.1f} ms"
        f" | min {min(values) * 1000:8.1f} ms | max {max(values) * 1000:8.1f} ms"
    )


async def run_benchmark(base_url: str, num_requests: int, concurrency: int, message: str):
    url = f"{base_url.rstrip('/')}/ai/chat/stream"
    print(f"Benchmarking {url}")
    print(f"Requests: {num_requests}, Concurrency: {concurrency}\n")

    async with httpx.AsyncClient() as client:
        semaphore = asyncio.Semaphore(concurrency)

        async def bounded_request():
            async with semaphore:
                return await stream_chat(client, url, message)

        start_time = time.time()
        results = await asyncio.gather(*(bounded_request() for _ in range(num_requests)))
        total_time = time.time() - start_time

    successful = [r for r in results if r[3]]
    event_totals: Dict[str, int] = {}
    for _, _, counts, _ in results:
        for event_type, count in counts.items():
            event_totals[event_type] = event_totals.get(event_type, 0) + count

    print("=" * 60)
    print("Benchmark Results")
    print("=" * 60)
    print(f"Total runs:            {num_requests}")
    print(f"Answered runs:         {len(successful)}")
    print(f"Failed runs:           {num_requests - len(successful)}")
    print(f"Total time:            {total_time:.3f} seconds")
    describe("Time to first chunk:", [r[0] for r in successful if r[0] is not None])
    describe("Total stream time:", [r[1] for r in successful])

    print("\nEvents received:")
    for event_type in sorted(event_totals):
        print(f"  {event_type}: {event_totals[event_type]}")


def main():
    parser = argparse.ArgumentParser(description="Benchmark the streaming chat endpoint")
    parser.add_argument("base_url", help="Service base URL, e.g. http://localhost:8000")
    parser.add_argument("-n", "--requests", type=int, default=20, help="Number of chats (default: 20)")
    parser.add_argument("-c", "--concurrency", type=int, default=5, help="Concurrency level (default: 5)")
    parser.add_argument("-m", "--message", default="What is mitosis?", help="Question to ask")

    args = parser.parse_args()

    asyncio.run(run_benchmark(args.base_url, args.requests, args.concurrency, args.message))


if __name__ == "__main__":
    main()
