#!/usr/bin/env python3
"""
Pulsewatch Test App - Error Generator

Raises a variety of errors and reports them through the Pulsewatch client
SDK, together with breadcrumbs and a performance sample, so that grouping
and alerting can be tried end to end.

Usage:
    python error_generator.py --url http://localhost:8000/report --dsn test-app
    python error_generator.py --url http://localhost:8000/report --dsn test-app --random 20
"""

import argparse
import logging
import random
import time

from pulsewatch.sdk import Monitor


# =============================================================================
# Error Classes
# =============================================================================

class DatabaseConnectionError(Exception):
    """Database connection error."""


class PaymentProcessingError(Exception):
    """Payment processing error."""


class ExternalServiceError(Exception):
    """External service error."""


SAMPLE_USERS = [
    {"id": "user-1001", "email": "john@example.com", "username": "john_doe"},
    {"id": "user-1002", "email": "jane@example.com", "username": "jane_smith"},
    {"id": "user-1003", "email": "bob@example.com", "username": "bob_wilson"},
]

SAMPLE_PAGES = [
    "https://shop.example/",
    "https://shop.example/cart",
    "https://shop.example/orders/1024",
    "https://shop.example/checkout",
]

logger = logging.getLogger("test_app")


# =============================================================================
# Error Scenarios
# =============================================================================

def simulate_database_error():
    logger.warning("retrying database connection")
    raise DatabaseConnectionError(
        f"PostgreSQL connection failed: connection refused (10.0.0.{random.randint(2, 250)}:5432)"
    )


def simulate_payment_error():
    order_id = random.randint(1000, 9999)
    raise PaymentProcessingError(f"Payment for order {order_id} failed: insufficient balance")


def simulate_external_service_error():
    raise ExternalServiceError("Shipping API returned 503 Service Unavailable")


def simulate_key_error():
    data = {"name": "test", "value": 123}
    return data["missing_key"]


def simulate_type_error():
    return "string" + 123


def simulate_attribute_error():
    obj = None
    return obj.some_attribute


def simulate_division_by_zero():
    return 1 / 0


ERROR_SCENARIOS = {
    "database": {"func": simulate_database_error, "description": "Database connection error"},
    "payment": {"func": simulate_payment_error, "description": "Payment processing error"},
    "external": {"func": simulate_external_service_error, "description": "External service error"},
    "key": {"func": simulate_key_error, "description": "KeyError - missing key"},
    "type": {"func": simulate_type_error, "description": "TypeError - type mismatch"},
    "attribute": {"func": simulate_attribute_error, "description": "AttributeError - None object"},
    "division": {"func": simulate_division_by_zero, "description": "Division by zero"},
}


# =============================================================================
# Main Functions
# =============================================================================

def generate_single_error(monitor: Monitor, error_type: str) -> bool:
    """Raise one scenario and report it."""
    if error_type not in ERROR_SCENARIOS:
        print(f"[ERROR] Unknown error type: {error_type}")
        print(f"   Valid types: {', '.join(ERROR_SCENARIOS.keys())}")
        return False

    scenario = ERROR_SCENARIOS[error_type]
    user = random.choice(SAMPLE_USERS)
    page = random.choice(SAMPLE_PAGES)

    monitor.set_user(user)
    monitor.set_url(page)
    monitor.add_breadcrumb(type="route", category="navigation", message=f"navigate to {page}")
    monitor.add_breadcrumb(type="click", category="ui.click", message=f"button#{error_type}")

    print(f"\n[*] Generating: {scenario['description']}")
    print(f"   User: {user['username']}  Page: {page}")

    try:
        scenario["func"]()
    except Exception as e:
        queued = monitor.capture_exception(e)
        print(f"   {'[OK] Queued' if queued else '[SKIP] Filtered'}: {type(e).__name__}")
        return queued

    return False


def generate_random_errors(monitor: Monitor, count: int, delay: float = 0.5) -> int:
    """Report ``count`` random errors."""
    print(f"\n[*] Generating {count} random errors (delay: {delay}s)...")

    generated = 0
    for i in range(count):
        print(f"\n[{i + 1}/{count}]", end="")
        if generate_single_error(monitor, random.choice(list(ERROR_SCENARIOS))):
            generated += 1
        if i < count - 1:
            time.sleep(delay)

    print(f"\n\n[*] Result: {generated}/{count} errors queued")
    return generated


def send_performance_sample(monitor: Monitor) -> None:
    monitor.capture_performance(
        url=random.choice(SAMPLE_PAGES),
        fcp=random.uniform(300, 1800),
        lcp=random.uniform(800, 3500),
        ttfb=random.uniform(40, 400),
        layout_shift=random.uniform(0, 0.3),
        dom_ready=random.uniform(500, 2000),
        load=random.uniform(900, 4000),
    )
    print("[OK] Performance sample queued")


def main():
    parser = argparse.ArgumentParser(
        description="Pulsewatch Test App - Error Generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One error of each type
  python error_generator.py --dsn test-app

  # 20 random errors with a 0.2s delay
  python error_generator.py --dsn test-app --random 20 --delay 0.2

  # A single scenario
  python error_generator.py --dsn test-app --type payment
        """,
    )

    parser.add_argument("--url", default="http://localhost:8000/report", help="Report endpoint")
    parser.add_argument("--dsn", default="test-app", help="Project DSN (default: test-app)")
    parser.add_argument("--release", default="1.0.0", help="Release attached to events")
    parser.add_argument("--type", "-t", help="Generate one error of this type")
    parser.add_argument("--random", "-r", type=int, help="Generate N random errors")
    parser.add_argument("--delay", "-d", type=float, default=0.5, help="Delay between errors (default: 0.5s)")
    parser.add_argument("--worker", action="store_true", help="Deliver from a worker process")

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    with Monitor(
        dsn=args.dsn,
        report_url=args.url,
        release=args.release,
        environment="test",
        use_worker=args.worker,
    ) as monitor:
        if args.type:
            generate_single_error(monitor, args.type)
        elif args.random:
            generate_random_errors(monitor, args.random, args.delay)
        else:
            for error_type in ERROR_SCENARIOS:
                generate_single_error(monitor, error_type)

        send_performance_sample(monitor)
        print("\n[*] Flushing queued events...")

    print("[*] Done")


if __name__ == "__main__":
    main()
