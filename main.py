#!/usr/bin/env python3
"""
Feed Ingestion Orchestrator

Runs one ingestion pass over the configured feed list:
1. Load the feed list and the URLs already stored
2. Download every feed and extract the articles that are new
3. Persist each feed's batch as soon as it completes
4. Report progress after every feed

The operator can change the concurrency tier mid-run by typing low, high or
max on stdin. Use `status` mode to inspect the database without fetching.
"""

import argparse
import asyncio
import sqlite3
import sys
from asyncio import Event, create_task, gather
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from aiohttp import ClientSession, ClientTimeout

from admission import AdmissionController
from config import config, get_logger, TIER_NAMES
from control import CommandReader, ControlChannel
from errors import StoreError
from extractor import ArticleExtractor, ReadabilityService
from metrics import RollingMetrics, format_progress_line
from models import Article, ArticleStore
from pipeline import FeedPipeline
from registry import DedupRegistry
from sampler import ResourceSampler
from telemetry import init_telemetry, trace_span
from utils import format_duration, load_feed_urls

# Module-specific logger
logger = get_logger("orchestrator")
progress_logger = get_logger("progress")
init_telemetry("feed-ingest")


class OrchestratorState(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


@dataclass
class FeedOutcome:
    """Result of ingesting one feed."""

    feed_url: str
    articles: List[Article] = field(default_factory=list)
    stored: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    total_feeds: int
    processed: int
    failed: int
    stored: int
    grand_total: int
    already_seen: int
    elapsed: float
    outcomes: List[FeedOutcome] = field(default_factory=list)


# Factory signatures: (session, executor) -> collaborator
PipelineFactory = Callable[[ClientSession, ThreadPoolExecutor], FeedPipeline]


class IngestionOrchestrator:
    """Drives one ingestion pass from feed list to stored articles.

    Args:
        feeds_path: Feed list file (defaults to FEEDS_FILE).
        database_path: SQLite database (defaults to DATABASE_PATH).
        skip_first: Feeds to skip at the top of the list (defaults to FEED_SKIP_FIRST).
        admission: Shared admission controller; built from the configured tiers when None.
        metrics: Shared counters.
        registry: Dedup registry, preloaded from the store at start.
        sampler: Resource sampler feeding the progress line.
        control_reader: Source of operator commands (stdin when None).
        service_factory: Builds the extraction service for a session.
        pipeline_factory: Builds the feed pipeline; overrides service_factory.
    """

    def __init__(
        self,
        feeds_path: Optional[str] = None,
        database_path: Optional[str] = None,
        skip_first: Optional[int] = None,
        admission: Optional[AdmissionController] = None,
        metrics: Optional[RollingMetrics] = None,
        registry: Optional[DedupRegistry] = None,
        sampler: Optional[ResourceSampler] = None,
        control_reader: Optional[CommandReader] = None,
        service_factory: Optional[Callable] = None,
        pipeline_factory: Optional[PipelineFactory] = None,
    ) -> None:
        self.feeds_path = feeds_path or config.FEEDS_FILE
        self.database_path = database_path or config.DATABASE_PATH
        self.skip_first = config.FEED_SKIP_FIRST if skip_first is None else skip_first
        self.admission = admission if admission is not None else AdmissionController()
        self.metrics = metrics if metrics is not None else RollingMetrics()
        self.registry = registry if registry is not None else DedupRegistry()
        self.sampler = sampler if sampler is not None else ResourceSampler()
        self.control = ControlChannel(self.admission, reader=control_reader)
        self.service_factory = service_factory or ReadabilityService
        self.pipeline_factory = pipeline_factory or self._default_pipeline
        self.store = ArticleStore(self.database_path)

        self.state = OrchestratorState.INITIALIZING
        self.total_feeds = 0
        self.processed = 0

    def _default_pipeline(self, session: ClientSession, executor: ThreadPoolExecutor) -> FeedPipeline:
        service = self.service_factory(session, executor)
        extractor = ArticleExtractor(service, self.metrics)
        return FeedPipeline(
            session,
            self.admission,
            self.registry,
            extractor,
            self.metrics,
            executor=executor,
        )

    def _set_state(self, state: OrchestratorState) -> None:
        logger.debug(f"Orchestrator {self.state.value} -> {state.value}")
        self.state = state

    def progress_line(self) -> str:
        return format_progress_line(
            self.metrics.snapshot(),
            self.processed,
            self.total_feeds,
            self.admission.tier_label,
            self.sampler.current_cpu,
            self.sampler.average_cpu,
            self.sampler.current_memory_mb,
            self.sampler.average_memory_mb,
        )

    @trace_span("ingest_feed", tracer_name="orchestrator", attr_from_args=lambda self, pipeline, feed_url: {"feed.url": feed_url})
    async def _ingest_feed(self, pipeline: FeedPipeline, feed_url: str) -> FeedOutcome:
        """Run one feed and persist its batch. Never raises for feed-level failures."""
        outcome = FeedOutcome(feed_url)
        try:
            outcome.articles = await pipeline.process_feed(feed_url)
            if outcome.articles:
                outcome.stored = await self.store.execute('bulk_insert', articles=outcome.articles)
        except Exception as e:
            # One broken feed must not abort the pass
            outcome.error = f"{e.__class__.__name__}: {e}"
            logger.warning(f"Skipping feed {feed_url}: {outcome.error}")

        self.processed += 1
        progress_logger.info(self.progress_line())
        return outcome

    @trace_span("ingestion_run", tracer_name="orchestrator")
    async def run(self) -> RunSummary:
        """Run a full ingestion pass.

        Raises:
            OSError: If the feed list cannot be read.
            StoreError: If the database cannot be opened or preloaded.
        """
        self._set_state(OrchestratorState.INITIALIZING)
        logger.info("🚀 Starting ingestion pass")
        logger.info(f"Paths: FEEDS_FILE={self.feeds_path} DATABASE_PATH={self.database_path}")
        logger.debug(f"Configuration: {config.get_config_summary()}")

        feeds = load_feed_urls(self.feeds_path, self.skip_first)
        self.total_feeds = len(feeds)
        self.processed = 0

        stop = Event()
        background = []
        outcomes: List[FeedOutcome] = []
        executor = ThreadPoolExecutor(max_workers=max(self.admission.tiers.values()))

        try:
            await self.store.start()
            existing = await self.store.execute('load_existing_keys')
            self.registry.preload(existing)

            background = [
                create_task(self.control.listen(stop)),
                create_task(self.sampler.run(stop)),
            ]

            self._set_state(OrchestratorState.RUNNING)
            logger.info(
                f"Ingesting {self.total_feeds} feeds at tier {self.admission.tier_label} "
                f"(ceiling {self.admission.ceiling})"
            )
            session_kwargs = {
                'headers': {'User-Agent': config.USER_AGENT},
                'timeout': ClientTimeout(total=config.HTTP_TIMEOUT),
            }
            async with ClientSession(**session_kwargs) as session:
                pipeline = self.pipeline_factory(session, executor)
                tasks = []
                for feed_url in feeds:
                    # Released by the pipeline once the feed document is downloaded
                    await self.admission.acquire()
                    tasks.append(create_task(self._ingest_feed(pipeline, feed_url)))
                outcomes = list(await gather(*tasks))

            self._set_state(OrchestratorState.DRAINING)
        finally:
            stop.set()
            for result in await gather(*background, return_exceptions=True):
                if isinstance(result, Exception):
                    logger.error(f"Background task failed: {result}")
            await self.store.stop()
            executor.shutdown(wait=False)
            self._set_state(OrchestratorState.TERMINATED)

        snapshot = self.metrics.snapshot()
        summary = RunSummary(
            total_feeds=self.total_feeds,
            processed=self.processed,
            failed=sum(1 for o in outcomes if not o.ok),
            stored=sum(o.stored for o in outcomes),
            grand_total=snapshot.grand_total,
            already_seen=snapshot.already_seen,
            elapsed=snapshot.elapsed,
            outcomes=outcomes,
        )
        logger.info(
            f"🎉 Ingestion pass completed in {format_duration(summary.elapsed)}: "
            f"{summary.processed}/{summary.total_feeds} feeds, {summary.failed} failed, "
            f"{summary.stored} articles stored, {summary.already_seen} already seen"
        )
        return summary

    async def check_status(self) -> dict:
        """Check the current status of the ingestion database and feed list.

        Returns:
            Dictionary with status information
        """
        logger.info("📊 Checking system status")

        status = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'checks': {}
        }

        # Opening the store would create the file, so check for it first
        if Path(self.database_path).exists():
            try:
                await self.store.start()
                total_articles = await self.store.execute('count_articles')
                stand_ins = await self.store.execute('count_stand_ins')
                status['checks']['database'] = {
                    'status': 'ok',
                    'total_articles': total_articles,
                    'stand_ins': stand_ins,
                    'extraction_rate': (
                        f"{((total_articles - stand_ins) / total_articles * 100):.1f}%" if total_articles > 0 else "0%"
                    ),
                }
            except (StoreError, sqlite3.Error) as e:
                status['checks']['database'] = {
                    'status': 'error',
                    'message': str(e)
                }
            finally:
                await self.store.stop()
        else:
            status['checks']['database'] = {
                'status': 'missing',
                'message': 'Database file not found'
            }

        try:
            feed_count = len(load_feed_urls(self.feeds_path))
            status['checks']['feeds'] = {'status': 'ok', 'count': feed_count, 'path': self.feeds_path}
        except OSError as e:
            status['checks']['feeds'] = {'status': 'missing', 'message': str(e), 'path': self.feeds_path}

        all_ok = (
            status['checks']['database'].get('status') == 'ok' and
            status['checks']['feeds'].get('status') == 'ok'
        )
        status['overall_status'] = 'healthy' if all_ok else 'issues_detected'
        return status

    def print_status(self, status: dict):
        """Print formatted status information."""
        print(f"\n📊 Feed Ingestion Status")
        print(f"⏰ {status['timestamp']}")
        print(f"🏥 Overall: {status['overall_status'].upper()}")

        db = status['checks']['database']
        if db['status'] == 'ok':
            print(f"\n💾 Database:")
            print(f"   📰 Articles: {db['total_articles']}")
            print(f"   🕳️ Stand-ins: {db['stand_ins']} (extracted {db['extraction_rate']})")
        else:
            print(f"\n💾 Database: {db['status'].upper()} - {db.get('message', 'Unknown error')}")

        feeds = status['checks']['feeds']
        if feeds['status'] == 'ok':
            print(f"\n📡 Feeds: {feeds['count']} in {feeds['path']}")
        else:
            print(f"\n📡 Feeds: {feeds['status'].upper()} - {feeds.get('message', 'Unknown error')}")


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='Feed Ingestion Orchestrator')
    parser.add_argument('mode', nargs='?', default='run', choices=['run', 'status'],
                        help='Operation mode (default: run)')
    parser.add_argument('--feeds', type=str,
                        help='Feed list file (one URL per line)')
    parser.add_argument('--database', type=str,
                        help='SQLite database path')
    parser.add_argument('--tier', choices=TIER_NAMES,
                        help='Initial concurrency tier')
    parser.add_argument('--skip', type=int,
                        help='Skip the first N feeds of the list')

    args = parser.parse_args()

    try:
        orchestrator = IngestionOrchestrator(
            feeds_path=args.feeds,
            database_path=args.database,
            skip_first=args.skip,
            admission=AdmissionController(initial_tier=args.tier) if args.tier else None,
        )

        if args.mode == 'run':
            asyncio.run(orchestrator.run())
            sys.exit(0)

        elif args.mode == 'status':
            status = asyncio.run(orchestrator.check_status())
            orchestrator.print_status(status)

    except KeyboardInterrupt:
        logger.info("👋 Orchestrator shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
