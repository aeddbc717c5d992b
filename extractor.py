#!/usr/bin/env python3
"""
Article extraction.

ReadabilityService downloads a page and runs readability over it to get
the title, plain-text body, publication date and featured image.
ArticleExtractor turns that result into an Article: a stand-in when
extraction fails, nothing when the page is not readable.
"""

from asyncio import get_event_loop, TimeoutError
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import partial
from typing import Callable, Optional, Protocol
from urllib.parse import urljoin

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from readability import Document
from readability.readability import Unparseable

from config import config, get_logger
from errors import ExtractionError
from metrics import RollingMetrics
from models import Article
from telemetry import trace_span

logger = get_logger("extractor")

HTTP_OK = 200

# Checked in order; the first parseable value wins
PUBLISHED_META = (
    ("property", "article:published_time"),
    ("property", "og:published_time"),
    ("itemprop", "datePublished"),
    ("name", "pubdate"),
    ("name", "publishdate"),
    ("name", "date"),
    ("name", "DC.date.issued"),
    ("name", "dcterms.created"),
)
IMAGE_META = (
    ("property", "og:image"),
    ("name", "twitter:image"),
    ("itemprop", "image"),
)


@dataclass(frozen=True)
class ExtractionResult:
    """What the extraction service knows about one page."""

    is_readable: bool
    title: str = ""
    text: str = ""
    published: Optional[datetime] = None
    image: str = ""


class ExtractionService(Protocol):
    async def extract(self, url: str) -> ExtractionResult:
        ...


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO-8601 or RFC 2822 timestamps; naive values are taken as UTC."""
    if not value:
        return None
    value = value.strip()
    dt = None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _meta_content(page: BeautifulSoup, candidates) -> Optional[str]:
    for attr, name in candidates:
        tag = page.find("meta", attrs={attr: name})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def find_publication_date(page: BeautifulSoup) -> Optional[datetime]:
    published = parse_datetime(_meta_content(page, PUBLISHED_META))
    if published:
        return published
    for time_tag in page.find_all("time", attrs={"datetime": True}):
        published = parse_datetime(time_tag["datetime"])
        if published:
            return published
    return None


def find_featured_image(page: BeautifulSoup, base_url: str) -> str:
    image = _meta_content(page, IMAGE_META)
    if not image:
        return ""
    resolved = urljoin(base_url, image)
    return resolved if resolved.startswith(("http://", "https://")) else ""


class ReadabilityService:
    """Extraction service backed by aiohttp and readability-lxml.

    Parsing is CPU-bound, so it runs in the given executor (the loop's
    default executor when none is given).
    """

    def __init__(
        self,
        session: ClientSession,
        executor: Optional[Executor] = None,
        min_readable_chars: Optional[int] = None,
    ):
        self.session = session
        self.executor = executor
        self.min_readable_chars = (
            config.MIN_READABLE_CHARS if min_readable_chars is None else min_readable_chars
        )

    @trace_span(
        "extract_page",
        tracer_name="extractor",
        attr_from_args=lambda self, url: {"entry.url": url},
    )
    async def extract(self, url: str) -> ExtractionResult:
        """Download and parse one page.

        Raises:
            ExtractionError: Non-200 response or unparseable document.
            aiohttp.ClientError, asyncio.TimeoutError: Transport failures.
        """
        request_kwargs = {
            'headers': {'User-Agent': config.USER_AGENT},
            'timeout': ClientTimeout(total=config.HTTP_TIMEOUT),
            'max_redirects': config.MAX_REDIRECTS,
        }
        async with self.session.get(url, **request_kwargs) as response:
            if response.status != HTTP_OK:
                raise ExtractionError(f"HTTP {response.status} fetching {url}")
            html = await response.text(errors="replace")

        loop = get_event_loop()
        return await loop.run_in_executor(self.executor, partial(self.parse, html, url))

    def parse(self, html: str, url: str) -> ExtractionResult:
        """Run readability over a page (blocking)."""
        if not html or not html.strip():
            raise ExtractionError(f"Empty document at {url}")
        try:
            document = Document(html, url=url)
            body_html = document.summary(html_partial=True)
            title = document.short_title() or ""
        except Unparseable as e:
            raise ExtractionError(f"Unparseable document at {url}: {e}") from e

        text = BeautifulSoup(body_html, "html.parser").get_text("\n", strip=True)
        page = BeautifulSoup(html, "html.parser")
        return ExtractionResult(
            is_readable=len(text) >= self.min_readable_chars,
            title=title.strip(),
            text=text,
            published=find_publication_date(page),
            image=find_featured_image(page, url),
        )


class ArticleExtractor:
    """Turns a URL into an Article, a stand-in, or nothing.

    - service error: stand-in article (the URL is still recorded as attempted)
    - page not readable: None, silently dropped
    - readable page: populated article, grand total incremented once
    """

    FAILURES = (ExtractionError, ClientError, TimeoutError, OSError, ValueError)

    def __init__(
        self,
        service: ExtractionService,
        metrics: RollingMetrics,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.service = service
        self.metrics = metrics
        self._now = now

    async def extract(self, url: str) -> Optional[Article]:
        try:
            result = await self.service.extract(url)
        except self.FAILURES as e:
            logger.warning(f"Extraction failed for {url}, storing stand-in: {e.__class__.__name__}: {e}")
            return Article.stand_in(url)

        if not result.is_readable or not (result.text or "").strip():
            logger.debug(f"Dropping non-readable page {url}")
            return None

        self.metrics.increment_grand_total()
        published = result.published or self._now()
        return Article(
            title=result.title or "",
            content=result.text,
            publish_date=published.isoformat(),
            top_image=result.image or "",
            url=url,
        )
