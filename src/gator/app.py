import asyncio
import logging
import logging.handlers
import re
import signal
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .database import Database
from .errors import FetchCancelled, GatorError, NetworkError, ParseError, PersistenceError
from .models import Feed
from .rss import BaseFetcher, HttpFetcher

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# RFC 1123 with a numeric zone, e.g. "Mon, 02 Jan 2006 15:04:05 -0700"
PUB_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"
# strptime alone also takes single digit fields and "Z" or "+07:00" zones
_PUB_DATE_SHAPE = re.compile(r"[A-Z][a-z]{2}, \d{2} [A-Z][a-z]{2} \d{4} \d{2}:\d{2}:\d{2} [+-]\d{4}")

SCRAPE_JOB_ID = "scrape_feeds"


def setup_logging(log_dir: Optional[Path] = None, level: int = logging.INFO) -> None:
    """Configure logging

    - stream output
    - file output rotated at midnight, 30 days kept
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stream_handler)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_dir / "gator.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.suffix = "%Y-%m-%d"
        root_logger.addHandler(file_handler)

    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def parse_pub_date(value: str) -> Optional[datetime]:
    """Parse an RSS pubDate, None when it is not RFC 1123 with a numeric zone"""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not _PUB_DATE_SHAPE.fullmatch(value):
        return None
    try:
        return datetime.strptime(value, PUB_DATE_FORMAT)
    except ValueError:
        return None


@dataclass
class ScrapeResult:
    """Outcome of one fetch cycle"""
    feed: Optional[Feed] = None
    fetched: int = 0
    created: int = 0
    skipped: int = 0
    error: Optional[GatorError] = None


class Aggregator:
    """Fetches one feed per tick, always the one fetched least recently"""

    def __init__(
        self,
        db: Database,
        interval: timedelta,
        fetcher: Optional[BaseFetcher] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.interval = interval
        self.fetcher = fetcher or HttpFetcher()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.scheduler = AsyncIOScheduler()
        self._cancel = threading.Event()
        self._stopped: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._current: Optional[asyncio.Task] = None

    def scrape_feeds(self) -> ScrapeResult:
        """Run one fetch cycle against the stalest feed"""
        feed = self.db.get_next_feed_to_fetch()
        if feed is None:
            logger.info("No feeds to fetch")
            return ScrapeResult()

        # Stamp before fetching so a slow or failing feed is not picked again next tick
        try:
            self.db.mark_feed_fetched(feed.id, self.clock())
        except PersistenceError as e:
            logger.error(f"❌ {e}")
            return ScrapeResult(feed=feed, error=e)

        logger.info(f"📡 Fetching {feed.name} ({feed.url})")
        try:
            document = self.fetcher.fetch(feed.url, self._cancel)
        except FetchCancelled as e:
            logger.info(f"🛑 {e}")
            return ScrapeResult(feed=feed, error=e)
        except (NetworkError, ParseError) as e:
            logger.warning(f"⚠️ Fetching {feed.name} failed: {e}")
            return ScrapeResult(feed=feed, error=e)

        result = ScrapeResult(feed=feed, fetched=len(document.items))
        for item in document.items:
            try:
                post = self.db.create_post(
                    title=item.title,
                    url=item.link,
                    description=item.description,
                    published_at=parse_pub_date(item.pub_date),
                    feed_id=feed.id,
                )
            except PersistenceError as e:
                logger.error(f"❌ Saving posts for {feed.name} failed: {e}")
                result.error = e
                return result
            if post is None:
                result.skipped += 1
            else:
                result.created += 1

        logger.info(
            f"✅ {feed.name}: {result.fetched} items, "
            f"{result.created} new, {result.skipped} already stored"
        )
        return result

    async def _tick(self) -> None:
        self._current = asyncio.current_task()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.scrape_feeds)
        except Exception as e:
            logger.error(f"❌ Fetch cycle failed: {e}")
        finally:
            self._current = None

    async def run_async(self) -> None:
        """Run until stop() is called"""
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        if self._cancel.is_set():
            self._stopped.set()

        self.scheduler.add_job(
            self._tick,
            "interval",
            seconds=self.interval.total_seconds(),
            id=SCRAPE_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None
        )
        self.scheduler.start()
        logger.info(f"⏰ Collecting feeds every {self.interval}")

        try:
            await self._stopped.wait()
        finally:
            self.scheduler.remove_job(SCRAPE_JOB_ID)
            in_flight = self._current
            if in_flight is not None:
                await asyncio.wait([in_flight])
            self.scheduler.shutdown(wait=False)
            self.fetcher.close()
            logger.info("🛑 Aggregator stopped")

    def stop(self) -> None:
        """Stop the loop and abort any fetch in progress, safe from any thread"""
        self._cancel.set()
        if self._loop is not None and self._stopped is not None:
            self._loop.call_soon_threadsafe(self._stopped.set)

    def run(self) -> None:
        """Blocking entry point, stops on SIGINT or SIGTERM"""
        async def main():
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self.stop)
                except NotImplementedError:
                    pass
            await self.run_async()

        asyncio.run(main())
