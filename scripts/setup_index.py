#!/usr/bin/env python3
"""
Setup OpenSearch indices, templates and the retention ISM policy.

Run this script before starting the application to ensure
proper index configuration.

Usage:
    python scripts/setup_index.py
    python scripts/setup_index.py --hosts http://localhost:9200 --retention-days 30
"""

import argparse
import sys

from pulsewatch.config import Settings
from pulsewatch.opensearch.client import OpenSearchClient
from pulsewatch.opensearch.mappings import index_names


def main():
    parser = argparse.ArgumentParser(description="Setup OpenSearch indices")
    parser.add_argument(
        "--hosts",
        default="http://localhost:9200",
        help="OpenSearch hosts (comma-separated)",
    )
    parser.add_argument(
        "--username",
        default=None,
        help="OpenSearch username",
    )
    parser.add_argument(
        "--password",
        default=None,
        help="OpenSearch password",
    )
    parser.add_argument(
        "--prefix",
        default="pulsewatch",
        help="Index prefix",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=90,
        help="Days to keep occurrence and performance indices",
    )

    args = parser.parse_args()

    settings = Settings(
        opensearch_hosts=args.hosts.split(","),
        opensearch_username=args.username,
        opensearch_password=args.password,
        opensearch_index_prefix=args.prefix,
    )

    print(f"Connecting to OpenSearch: {settings.opensearch_hosts}")

    client = OpenSearchClient(settings)

    # Check connection
    try:
        health = client.health_check()
        print(f"Cluster health: {health.get('status')}")
        print(f"Cluster name: {health.get('cluster_name')}")
        print(f"Number of nodes: {health.get('number_of_nodes')}")
    except Exception as e:
        print(f"ERROR: Failed to connect to OpenSearch: {e}")
        sys.exit(1)

    print("\nCreating index templates for daily indices...")
    if client.ensure_index_templates():
        print("✓ Templates created/updated")
    else:
        print("✗ Failed to create index templates")

    print("\nCreating fixed indices...")
    if client.ensure_indices():
        for name in index_names(args.prefix).values():
            print(f"✓ {name}")
    else:
        print("✗ Failed to create one or more indices")

    print(f"\nCreating ISM policy ({args.retention_days} days)...")
    if client.ensure_ism_policy(args.retention_days):
        print("✓ ISM policy created/updated")
    else:
        print("⚠ ISM policy creation skipped (may not be supported)")

    print("\nSetup complete!")
    client.close()


if __name__ == "__main__":
    main()
