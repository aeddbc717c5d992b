#!/usr/bin/env python3
"""
Article record and SQLite persistence.

The store follows a queue-and-worker design: every operation is submitted by
name to a single worker coroutine, so the sqlite3 connection is only ever
touched by one task and each batch is written in its own transaction.
"""

from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from dataclasses import dataclass
from datetime import datetime, timezone
from os import path
from sqlite3 import connect, Row
from typing import Any, Dict, Iterable, Set
from uuid import uuid4

from config import get_logger
from errors import StoreError
from telemetry import trace_span

logger = get_logger("models")

STAND_IN_TITLE = "No title"
STAND_IN_CONTENT = "Article text unavailable"
EPOCH_ISO = datetime.fromtimestamp(0, tz=timezone.utc).isoformat()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS raw_articles (
    url TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    article_text TEXT NOT NULL,
    publish_date TEXT,
    top_image TEXT,
    stored_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
);
"""


@dataclass(frozen=True)
class Article:
    """An extracted article, keyed by URL."""

    title: str
    content: str
    publish_date: str
    top_image: str
    url: str

    @classmethod
    def stand_in(cls, url: str) -> "Article":
        """Placeholder recorded when extraction fails, marking the URL as attempted."""
        return cls(
            title=STAND_IN_TITLE,
            content=STAND_IN_CONTENT,
            publish_date=EPOCH_ISO,
            top_image="",
            url=url,
        )

    @property
    def is_stand_in(self) -> bool:
        return (
            self.title == STAND_IN_TITLE
            and self.content == STAND_IN_CONTENT
            and self.publish_date == EPOCH_ISO
        )


class ArticleStore:
    """Serialized access to the articles database.

    Usage:
        store = ArticleStore("articles.db")
        await store.start()
        urls = await store.execute('load_existing_keys')
        await store.execute('bulk_insert', articles=batch)
        await store.stop()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None

    async def start(self) -> None:
        """Open the database, ensure the schema and start the worker."""
        if self.running:
            return

        if path.isfile(self.db_path):
            logger.info(f"Using existing database at {self.db_path}")
        else:
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")

        self.conn = connect(self.db_path)
        self.conn.row_factory = Row
        self.ensure_schema()

        self.running = True
        self.worker_task = create_task(self._worker())
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the worker and close the connection."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release anyone still waiting so they fail instead of hanging
        for operation_id, event in self.events.items():
            self.results.setdefault(operation_id, {"error": StoreError("Store stopped")})
            event.set()
        self.events.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing queued operations one at a time."""
        while self.running:
            try:
                operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                method = getattr(self, operation_name, None)
                if operation_name.startswith('_') or not callable(method):
                    self.results[operation_id] = {"error": StoreError(f"Unknown operation: {operation_name}")}
                else:
                    self.results[operation_id] = {"result": method(**params)}
            except Exception as e:
                # Delivered to the caller via execute(); the worker keeps serving
                logger.error(f"Database operation error in {operation_name}: {e}")
                self.results[operation_id] = {"error": e}
            finally:
                if operation_id in self.events:
                    self.events[operation_id].set()
                self.queue.task_done()

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {"db.operation": operation_name},
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Run a named operation on the worker and return its result.

        Raises:
            StoreError: If the store is not running or the operation failed.
        """
        if not self.running:
            raise StoreError("Store is not running", operation=operation_name)

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()
            result = self.results.pop(operation_id, {"error": StoreError("Store stopped")})
        finally:
            self.events.pop(operation_id, None)

        if "error" in result:
            error = result["error"]
            if isinstance(error, StoreError):
                error.operation = error.operation or operation_name
                raise error
            raise StoreError(f"{operation_name} failed: {error}", operation=operation_name) from error
        return result["result"]

    # Schema
    def ensure_schema(self) -> bool:
        """Create the articles table if it does not exist (idempotent)."""
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        return True

    # Article operations
    def load_existing_keys(self) -> Set[str]:
        """Return every stored article URL."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT url FROM raw_articles")
            return {row[0] for row in cursor.fetchall()}
        finally:
            cursor.close()

    def bulk_insert(self, articles: Iterable[Article]) -> int:
        """Insert a batch in one transaction, ignoring URLs already stored.

        Returns:
            Number of rows actually inserted.

        Raises:
            sqlite3.Error: The whole batch is rolled back.
        """
        inserted = 0
        cursor = self.conn.cursor()
        try:
            with self.conn:
                for article in articles:
                    cursor.execute(
                        '''
                        INSERT OR IGNORE INTO raw_articles (url, title, article_text, publish_date, top_image)
                        VALUES (?, ?, ?, ?, ?)
                        ''',
                        (article.url, article.title, article.content, article.publish_date, article.top_image),
                    )
                    if cursor.rowcount > 0:
                        inserted += 1
        finally:
            cursor.close()
        return inserted

    def count_articles(self) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT COUNT(*) FROM raw_articles")
            row = cursor.fetchone()
            return int(row[0]) if row else 0
        finally:
            cursor.close()

    def count_stand_ins(self) -> int:
        """Count placeholder rows left by failed extractions."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "SELECT COUNT(*) FROM raw_articles WHERE title = ? AND article_text = ?",
                (STAND_IN_TITLE, STAND_IN_CONTENT),
            )
            row = cursor.fetchone()
            return int(row[0]) if row else 0
        finally:
            cursor.close()
