"""
Feed fetching.

This package downloads RSS feeds and turns their entries into RawItems.
"""

from .fetcher import fetch_feed, parse_feed

__all__ = ["fetch_feed", "parse_feed"]
