import asyncio
import os

# Tracing stays off under test; must be set before main/telemetry are imported
os.environ.setdefault("DISABLE_TELEMETRY", "true")

from extractor import ExtractionResult
from pipeline import FeedPipeline
from sampler import ResourceSample

READABLE_TEXT = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 5


def build_rss(*links: str) -> bytes:
    """Minimal RSS 2.0 document with one item per link."""
    items = "".join(
        f"<item><title>Item {i}</title><link>{link}</link><guid>{link}</guid></item>"
        for i, link in enumerate(links)
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Test feed</title>'
        '<link>https://example.com/</link><description>Test</description>'
        f"{items}</channel></rss>"
    ).encode("utf-8")


def readable(url: str) -> ExtractionResult:
    return ExtractionResult(is_readable=True, title=f"Title for {url}", text=READABLE_TEXT, image="")


class FakeService:
    """Extraction service double.

    Results are looked up by URL; an Exception instance is raised instead of
    returned. Unknown URLs are readable. Tracks calls and peak concurrency.
    """

    def __init__(self, results=None, delay: float = 0.0):
        self.results = dict(results or {})
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def extract(self, url: str) -> ExtractionResult:
        self.calls.append(url)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.results.get(url, readable(url))
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.in_flight -= 1


class StaticFeedPipeline(FeedPipeline):
    """FeedPipeline serving feed documents from memory instead of HTTP."""

    def __init__(self, documents, *args, **kwargs):
        super().__init__(None, *args, **kwargs)
        self.documents = documents

    async def fetch_feed_document(self, url: str) -> bytes:
        document = self.documents[url]
        if isinstance(document, Exception):
            raise document
        return document


class FakeSampler:
    current_cpu = 1.5
    average_cpu = 1.0
    current_memory_mb = 42.0
    average_memory_mb = 40.0

    def __init__(self):
        self.started = False
        self.stopped = False

    def sample(self) -> ResourceSample:
        return ResourceSample(self.current_cpu, self.current_memory_mb)

    async def run(self, stop: asyncio.Event) -> None:
        self.started = True
        await stop.wait()
        self.stopped = True


class ScriptedReader:
    """Command reader returning queued lines, then None."""

    def __init__(self, *lines):
        self.lines = list(lines)

    def poll(self):
        return self.lines.pop(0) if self.lines else None
