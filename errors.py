#!/usr/bin/env python3
"""Common error types shared across modules.

Kept in a leaf module so the pipeline, extractor and store can raise them
without importing each other.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for ingestion failures."""


class FeedFetchError(IngestError):
    """Raised when a feed document cannot be downloaded.

    Attributes:
        status: HTTP status code, when the server answered at all.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class FeedParseError(IngestError):
    """Raised when a feed document cannot be parsed into entries."""


class ExtractionError(IngestError):
    """Raised by the extraction service for a page it cannot turn into an article."""


class StoreError(IngestError):
    """Raised when a persistence operation fails.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


__all__ = ["IngestError", "FeedFetchError", "FeedParseError", "ExtractionError", "StoreError"]
