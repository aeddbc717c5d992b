#!/usr/bin/env python3
"""
Per-feed ingestion pipeline.

Fetch one feed document, list its article links, skip the ones already known
and extract the rest concurrently. Every network operation is bounded by the
shared AdmissionController.
"""

from asyncio import gather, get_event_loop
from concurrent.futures import Executor
from functools import partial
from typing import List, Optional

import feedparser
from aiohttp import ClientSession, ClientTimeout

from admission import AdmissionController
from config import config, get_logger
from errors import FeedFetchError, FeedParseError
from extractor import ArticleExtractor
from metrics import RollingMetrics
from models import Article
from registry import DedupRegistry
from telemetry import trace_span
from utils import validate_url

logger = get_logger("pipeline")

HTTP_OK = 200


def first_entry_link(entry) -> Optional[str]:
    """Return the first link of a feed entry, or None."""
    links = entry.get('links') or []
    for link in links[:1]:
        href = link.get('href') if hasattr(link, 'get') else None
        if href:
            return href.strip()
    link = entry.get('link')
    return link.strip() if link else None


def parse_candidate_urls(content: bytes) -> List[str]:
    """Parse a feed document and return one candidate URL per usable entry (blocking).

    Raises:
        FeedParseError: If the document could not be parsed and yielded no entries.
    """
    feed = feedparser.parse(content)
    entries = feed.get('entries') or []
    if feed.get('bozo') and not entries:
        reason = feed.get('bozo_exception')
        raise FeedParseError(f"Unparseable feed document: {reason}")

    urls = []
    for entry in entries:
        url = first_entry_link(entry)
        if not url or not validate_url(url):
            continue
        urls.append(url)
    return urls


class FeedPipeline:
    """Processes one feed at a time for the orchestrator.

    Args:
        session: Shared aiohttp session.
        admission: Controller shared by feed and article work.
        registry: Process-wide set of known article URLs.
        extractor: Turns article URLs into Article records.
        metrics: Shared counters.
        strict_reservation: Claim URLs in the registry before extraction so two
            feeds never extract the same new URL. Defaults to STRICT_URL_RESERVATION.
        executor: Pool for feed parsing; the loop default when None.
    """

    def __init__(
        self,
        session: ClientSession,
        admission: AdmissionController,
        registry: DedupRegistry,
        extractor: ArticleExtractor,
        metrics: RollingMetrics,
        strict_reservation: Optional[bool] = None,
        executor: Optional[Executor] = None,
    ):
        self.session = session
        self.admission = admission
        self.registry = registry
        self.extractor = extractor
        self.metrics = metrics
        self.strict_reservation = (
            config.STRICT_URL_RESERVATION if strict_reservation is None else strict_reservation
        )
        self.executor = executor

    @trace_span(
        "fetch_feed_document",
        tracer_name="pipeline",
        attr_from_args=lambda self, url: {"feed.url": url},
    )
    async def fetch_feed_document(self, url: str) -> bytes:
        """Download a feed document.

        Raises:
            FeedFetchError: On a non-200 response.
            aiohttp.ClientError, asyncio.TimeoutError: Transport failures.
        """
        request_kwargs = {
            'headers': {'User-Agent': config.USER_AGENT},
            'timeout': ClientTimeout(total=config.HTTP_TIMEOUT),
            'max_redirects': config.MAX_REDIRECTS,
        }
        async with self.session.get(url, **request_kwargs) as response:
            if response.status != HTTP_OK:
                raise FeedFetchError(f"HTTP {response.status} fetching feed {url}", status=response.status)
            return await response.read()

    async def parse_candidate_urls(self, content: bytes) -> List[str]:
        loop = get_event_loop()
        return await loop.run_in_executor(self.executor, partial(parse_candidate_urls, content))

    def _is_new(self, url: str) -> bool:
        if self.strict_reservation:
            return self.registry.claim(url)
        return not self.registry.contains(url)

    async def _extract_with_slot(self, url: str) -> Optional[Article]:
        async with self.admission.slot():
            return await self.extractor.extract(url)

    @trace_span(
        "process_feed",
        tracer_name="pipeline",
        attr_from_args=lambda self, feed_url: {"feed.url": feed_url},
    )
    async def process_feed(self, feed_url: str) -> List[Article]:
        """Run one feed end to end and return the batch to persist.

        The caller must hold one admission slot; it is released here as soon
        as the feed document download ends, before any article asks for a slot.
        """
        try:
            content = await self.fetch_feed_document(feed_url)
        finally:
            self.admission.release()

        candidates = await self.parse_candidate_urls(content)

        fresh = []
        seen_in_feed = set()
        for url in candidates:
            # A link repeated within one feed counts as already seen
            if url not in seen_in_feed and self._is_new(url):
                seen_in_feed.add(url)
                fresh.append(url)
            else:
                self.metrics.increment_already_seen()

        logger.debug(f"{feed_url}: {len(candidates)} entries, {len(fresh)} new")
        if not fresh:
            return []

        results = await gather(*(self._extract_with_slot(url) for url in fresh))
        batch = [article for article in results if article is not None]
        for article in batch:
            self.registry.add(article.url)
        return batch
