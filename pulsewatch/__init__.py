"""Lightweight application monitoring: client SDK and ingestion service."""

__version__ = "1.0.0"
