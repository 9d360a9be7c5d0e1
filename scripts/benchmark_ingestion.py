#!/usr/bin/env python3
"""
Benchmark Script for the Portfolio Analytics API

Submits events concurrently and checks that every accepted event
got its own (partition, offset) placement.

Usage:
    python scripts/benchmark_ingestion.py [base_url] [total_events] [workers]
"""

import sys
import time
import requests
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
import statistics


def make_event(i: int, start_date: datetime) -> dict:
    """Generate one test event"""
    event_types = ["page_view", "button_click", "form_submit", "scroll", "outbound_link"]
    return {
        "event_type": event_types[i % len(event_types)],
        "page": f"/projects/{i % 20}",
        "timestamp": (start_date + timedelta(seconds=i)).isoformat(),
        "session_id": f"bench_{i % 500}",
        "screen_width": 1920,
        "screen_height": 1080
    }


def submit(session: requests.Session, base_url: str, event: dict):
    start = time.time()
    response = session.post(f"{base_url}/api/analytics", json=event, timeout=30)
    elapsed_ms = (time.time() - start) * 1000

    if response.status_code != 201:
        return None, elapsed_ms

    data = response.json()
    return (data["partition"], data["offset"]), elapsed_ms


def benchmark_ingestion(base_url: str, total_events: int = 1000, workers: int = 20):
    """Benchmark concurrent single-event publishing"""
    print(f"\n{'=' * 60}")
    print(f"BENCHMARK: Publishing {total_events:,} events with {workers} workers")
    print(f"{'=' * 60}")

    start_date = datetime.now(timezone.utc)
    session = requests.Session()

    start_time = time.time()
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(
            lambda i: submit(session, base_url, make_event(i, start_date)),
            range(total_events)
        ))
    total_time = time.time() - start_time

    placements = [placement for placement, _ in results if placement is not None]
    latencies = [elapsed for _, elapsed in results]
    failed = total_events - len(placements)

    print(f"\n{'=' * 60}")
    print(f"INGESTION RESULTS")
    print(f"{'=' * 60}")
    print(f"Total events:        {total_events:,}")
    print(f"Accepted:            {len(placements):,}")
    print(f"Failed:              {failed:,}")
    print(f"Distinct placements: {len(set(placements)):,}")
    print(f"Total time:          {total_time:.2f}s")
    print(f"Events/sec:          {total_events / total_time:,.0f}")
    print(f"P50 latency:         {statistics.median(latencies):.0f}ms")
    print(f"Max latency:         {max(latencies):.0f}ms")
    print(f"{'=' * 60}\n")

    if len(set(placements)) != len(placements):
        print("Error: duplicate placements returned")
        sys.exit(1)

    return total_time


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8080"
    total_events = int(sys.argv[2]) if len(sys.argv) > 2 else 1000
    workers = int(sys.argv[3]) if len(sys.argv) > 3 else 20

    print("\n" + "=" * 60)
    print("PORTFOLIO ANALYTICS API - BENCHMARK")
    print("=" * 60)
    print(f"Target: {base_url}")
    print("=" * 60)

    # Test connection
    try:
        response = requests.get(f"{base_url}/api/health", timeout=5)
        if response.status_code != 200:
            print("Error: API is not healthy")
            sys.exit(1)
    except Exception as e:
        print(f"Error: Cannot connect to API: {e}")
        sys.exit(1)

    benchmark_ingestion(base_url, total_events=total_events, workers=workers)

    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
