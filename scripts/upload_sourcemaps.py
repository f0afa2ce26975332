#!/usr/bin/env python3
"""
Upload the source maps of a build to Pulsewatch.

Scans the build output directory for .map files, uploads them for one
release and, unless told otherwise, deletes the uploaded maps so they are
not deployed alongside the bundles.

Usage:
    python scripts/upload_sourcemaps.py dist --dsn shop --version 1.4.2
    python scripts/upload_sourcemaps.py dist --dsn shop --version-command "git rev-parse --short HEAD"
"""

import argparse
import subprocess
import sys

import structlog

from pulsewatch.sourcemap.uploader import SourceMapUploader, collect_sourcemaps


def header(value: str):
    name, sep, content = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {value!r}")
    return name.strip(), content.strip()


def command_version(command: str):
    def compute() -> str:
        return subprocess.run(command, shell=True, check=True, capture_output=True, text=True).stdout

    return compute


def main():
    parser = argparse.ArgumentParser(description="Upload source maps to Pulsewatch")
    parser.add_argument("output_dir", help="Build output directory to scan")
    parser.add_argument("--server", default="http://localhost:8000", help="Pulsewatch server URL")
    parser.add_argument("--dsn", required=True, help="Project DSN")

    version = parser.add_mutually_exclusive_group(required=True)
    version.add_argument("--version", dest="release", help="Release the maps belong to")
    version.add_argument("--version-command", help="Shell command printing the release")

    parser.add_argument("--include", help="Only upload maps whose name matches this regex")
    parser.add_argument("--exclude", help="Skip maps whose name matches this regex")
    parser.add_argument("--header", type=header, action="append", default=[], help="Extra request header")
    parser.add_argument("--timeout", type=float, default=30.0, help="Per-file timeout in seconds")
    parser.add_argument("--keep-files", action="store_true", help="Do not delete uploaded maps")

    args = parser.parse_args()

    structlog.configure(processors=[structlog.processors.add_log_level, structlog.dev.ConsoleRenderer()])

    files = collect_sourcemaps(args.output_dir, include=args.include, exclude=args.exclude)
    print(f"Found {len(files)} source map(s) in {args.output_dir}")

    try:
        uploader = SourceMapUploader(
            args.server,
            args.dsn,
            args.release if args.release is not None else command_version(args.version_command),
            headers=dict(args.header),
            timeout=args.timeout,
            delete_after_upload=not args.keep_files,
        )
    except (ValueError, subprocess.CalledProcessError) as e:
        print(f"ERROR: Could not determine version: {e}")
        sys.exit(2)

    with uploader:
        results = uploader.upload(files)

    for result in results:
        mark = "✓" if result.success else "✗"
        print(f"{mark} {result.filename}" + (f": {result.error}" if result.error else ""))

    failed = [r for r in results if not r.success]
    print(f"\nUploaded {len(results) - len(failed)}/{len(results)} for version {uploader.version}")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
