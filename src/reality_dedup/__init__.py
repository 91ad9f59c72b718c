"""Duplicate detection and price comparison for Slovak real-estate listings."""

__version__ = "0.1.0"
