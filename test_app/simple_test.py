#!/usr/bin/env python3
"""
Pulsewatch Simple Test - Direct HTTP Requests

Sends hand-built report batches to /report without the client SDK.
Useful for debugging the ingestion path.

Usage:
    python simple_test.py --host localhost --port 8000 --dsn test-app
"""

import argparse
import random
import time

import httpx


# =============================================================================
# Sample Event Data
# =============================================================================

SAMPLE_USERS = [
    {"id": "1001", "email": "john@example.com", "username": "john_doe"},
    {"id": "1002", "email": "jane@example.com", "username": "jane_smith"},
    {"id": "1003", "email": "bob@example.com", "username": "bob_wilson"},
]

SAMPLE_ERRORS = [
    {
        "message": "TypeError: Cannot read properties of undefined (reading 'id')",
        "function": "renderCart",
        "file": "https://shop.example/assets/app.3f9a2b7c.js",
    },
    {
        "message": "ReferenceError: checkoutConfig is not defined",
        "function": "submitOrder",
        "file": "https://shop.example/assets/checkout.91ab02ef.js",
    },
    {
        "message": "Error: Request failed with status code 500",
        "function": "fetchOrders",
        "file": "https://shop.example/assets/api.c07d11aa.js",
    },
]

SAMPLE_PAGES = ["https://shop.example/", "https://shop.example/cart", "https://shop.example/orders/42"]


# =============================================================================
# Event Creation
# =============================================================================

def now_ms() -> int:
    return int(time.time() * 1000)


def create_error_event() -> dict:
    """Create one error event in wire format."""
    error = random.choice(SAMPLE_ERRORS)
    line, column = 1, random.randint(100, 5000)
    stack = (
        f"{error['message']}\n"
        f"    at {error['function']} ({error['file']}:{line}:{column})\n"
        f"    at dispatch ({error['file']}:1:{random.randint(10, 99)})"
    )

    return {
        "type": "error",
        "message": error["message"],
        "stack": stack,
        "filename": error["file"],
        "lineno": line,
        "colno": column,
        "timestamp": now_ms(),
        "url": random.choice(SAMPLE_PAGES),
        "user": random.choice(SAMPLE_USERS),
        "release": "1.0.0",
        "breadcrumbs": [
            {"type": "click", "category": "ui.click", "message": "button#checkout", "timestamp": now_ms()},
        ],
    }


def create_performance_event() -> dict:
    return {
        "url": random.choice(SAMPLE_PAGES),
        "fcp": round(random.uniform(300, 1800), 1),
        "lcp": round(random.uniform(800, 3500), 1),
        "ttfb": round(random.uniform(40, 400), 1),
        "cls": round(random.uniform(0, 0.3), 3),
        "timestamp": now_ms(),
    }


# =============================================================================
# HTTP Requests
# =============================================================================

def send_report(host: str, port: int, dsn: str, events: list) -> bool:
    """POST one batch to /report."""
    url = f"http://{host}:{port}/report"

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(url, json={"dsn": dsn, "events": events})

            if response.status_code == 200:
                data = response.json()
                print(f"  [OK] {data.get('errors')} errors, {data.get('performance')} samples")
                return True
            else:
                print(f"  [ERROR] {response.status_code} - {response.text}")
                return False

    except httpx.HTTPError as e:
        print(f"  [ERROR] Connection failed: {e}")
        return False


def test_health(host: str, port: int) -> bool:
    """Server health check."""
    url = f"http://{host}:{port}/health"

    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(url)

            if response.status_code == 200:
                print(f"[OK] Server healthy: {response.json()}")
                return True
            else:
                print(f"[ERROR] Server not responding: {response.status_code}")
                return False

    except httpx.HTTPError as e:
        print(f"[ERROR] Connection failed: {e}")
        return False


# =============================================================================
# Main Functions
# =============================================================================

def run_test(host: str, port: int, dsn: str, count: int = 5, batch: int = 3, delay: float = 0.5):
    """Run test."""
    print("\n=== Pulsewatch Test Starting ===")
    print(f"   Host: {host}:{port}")
    print(f"   DSN: {dsn}")
    print(f"   Batches: {count} x {batch} events")
    print("-" * 50)

    print("\n[*] Health check...")
    if not test_health(host, port):
        print("[!] Server not reachable, continuing anyway...")

    print(f"\n[*] Sending {count} batches...")
    success = 0

    for i in range(count):
        print(f"\n[{i + 1}/{count}]", end="")
        events = [create_error_event() for _ in range(batch)] + [create_performance_event()]

        if send_report(host, port, dsn, events):
            success += 1

        if i < count - 1:
            time.sleep(delay)

    print(f"\n{'=' * 50}")
    print(f"[*] Result: {success}/{count} batches accepted")

    return success


def main():
    parser = argparse.ArgumentParser(
        description="Pulsewatch Simple Test - Direct HTTP Requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Simple test (5 batches)
  python simple_test.py --host localhost --port 8000 --dsn test-app

  # 20 batches of 10 errors
  python simple_test.py --dsn test-app -n 20 -b 10

  # Health check only
  python simple_test.py --health
        """,
    )

    parser.add_argument("--host", default="localhost", help="Pulsewatch host (default: localhost)")
    parser.add_argument("--port", type=int, default=8000, help="Pulsewatch port (default: 8000)")
    parser.add_argument("--dsn", default="test-app", help="Project DSN (default: test-app)")
    parser.add_argument("--count", "-n", type=int, default=5, help="Number of batches to send (default: 5)")
    parser.add_argument("--batch", "-b", type=int, default=3, help="Errors per batch (default: 3)")
    parser.add_argument("--delay", "-d", type=float, default=0.5, help="Delay between batches (default: 0.5s)")
    parser.add_argument("--health", action="store_true", help="Health check only")

    args = parser.parse_args()

    if args.health:
        test_health(args.host, args.port)
        return

    run_test(
        host=args.host,
        port=args.port,
        dsn=args.dsn,
        count=args.count,
        batch=args.batch,
        delay=args.delay,
    )


if __name__ == "__main__":
    main()
