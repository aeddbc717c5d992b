#!/usr/bin/env python3
"""
Utility functions for the feed ingestor.

Small helpers shared by the pipeline, the metrics line and the orchestrator.
"""

from typing import List

from config import get_logger

logger = get_logger("utils")


def validate_url(url: str) -> bool:
    """Validate if a string is a properly formatted http(s) URL.

    Args:
        url: The URL string to validate

    Returns:
        True if the URL appears to be valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url:
        return False

    return url.startswith(('http://', 'https://')) and '.' in url


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1h 23m 45s")
    """
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:  # Always show seconds if nothing else
        parts.append(f"{secs}s")

    return " ".join(parts)


def load_feed_urls(feeds_path: str, skip_first: int = 0) -> List[str]:
    """Read the newline-delimited feed list.

    Blank lines and lines starting with '#' are ignored. The first
    ``skip_first`` feeds are dropped so a long pass can be resumed.

    Raises:
        OSError: If the file cannot be read.
    """
    with open(feeds_path, 'r', encoding='utf-8') as f:
        feeds = [
            line.strip()
            for line in f
            if line.strip() and not line.lstrip().startswith('#')
        ]
    if skip_first:
        logger.info(f"Skipping the first {min(skip_first, len(feeds))} of {len(feeds)} feeds")
        feeds = feeds[skip_first:]
    logger.info(f"Loaded {len(feeds)} feed URLs from {feeds_path}")
    return feeds
