"""
Crawl loop that coordinates the frontier, the fetcher and the link extractor.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..storage.database import DatabaseManager, StorageBackend
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor, MetricsCollector
from .fetcher import FetchOutcome, FetchStatus, WebFetcher
from .parser import ExtractionError, LinkExtractor
from .url_filter import URLFilter
from .url_frontier import URLFrontier


class CrawlState(Enum):
    """Where the crawl loop currently is within a cycle."""
    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    RETIRING = "retiring"


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    urls_fetched: int = 0
    pages_saved: int = 0
    links_offered: int = 0
    errors: int = 0
    total_bytes_downloaded: int = 0
    urls_in_queue: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.pages_saved / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlerScheduler:
    """
    Runs the crawl loop with a single in-flight fetch.

    Each cycle asks the frontier for a ready URL, fetches it, extracts links
    from processable responses and finally retires the URL, whatever happened.
    """

    def __init__(self, config: Config, monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        # Components
        self.database: Optional[DatabaseManager] = None
        self.store: Optional[StorageBackend] = None
        self.url_frontier: Optional[URLFrontier] = None
        self.fetcher: Optional[WebFetcher] = None
        self.extractor: Optional[LinkExtractor] = None
        self.monitor = monitor or CrawlerMonitor(MetricsCollector())

        # Crawl state
        self.stats = CrawlStats(start_time=time.time())
        self.state = CrawlState.IDLE
        self.is_running = False
        self.poll_interval = config.crawler.poll_interval

    async def initialize(self):
        """Initialize all crawler components. Raises on any start-up failure."""
        try:
            self.database = DatabaseManager(self.config.database)
            self.store = await self.database.initialize()

            self.url_frontier = URLFrontier(self.store, self.config.crawler.politeness_interval)

            self.fetcher = WebFetcher(
                store=self.store,
                url_frontier=self.url_frontier,
                temp_directory=self.config.crawler.temp_directory,
                final_directory=self.config.crawler.final_directory,
                user_agent=self.config.crawler.user_agent,
                request_timeout=self.config.crawler.request_timeout,
                max_redirects=self.config.crawler.max_redirects
            )
            await self.fetcher.start()

            url_filter = URLFilter.from_files(self.config.crawler.exclude_file,
                                              self.config.crawler.include_file)
            self.extractor = LinkExtractor(self.url_frontier, url_filter)

            self.logger.info("Crawler scheduler initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize crawler scheduler: {e}")
            await self.close()
            raise

    async def add_seed_urls(self):
        """Add seed URLs to the frontier."""
        added_count = 0
        for url in self.config.crawler.seed_urls:
            status = await self.url_frontier.enqueue(url)
            self.logger.info(f"Seed URL {url}: {status.value}")
            if status.accepted:
                added_count += 1
        self.logger.info(f"Added {added_count} seed URLs to frontier")

    async def run_cycle(self) -> Optional[int]:
        """
        Run one crawl cycle.

        Returns:
            None if a URL was processed, otherwise the wait in milliseconds
            reported by the frontier (0 when nothing is scheduled)
        """
        self.state = CrawlState.IDLE
        result = await self.url_frontier.dequeue_ready()
        if result.url is None:
            return result.wait_ms

        url = result.url
        try:
            self.state = CrawlState.FETCHING
            outcome = await self.fetcher.fetch(url, 0)
            self._record_outcome(outcome)

            if outcome.succeeded and outcome.processable:
                self.state = CrawlState.EXTRACTING
                await self._extract(outcome)
        except Exception as e:
            self.logger.error(f"Error processing {url}: {e}", exc_info=True)
            self.stats.errors += 1
            self.monitor.record_error('cycle')
        finally:
            self.state = CrawlState.RETIRING
            await self.url_frontier.retire(url)
            self.state = CrawlState.IDLE

        return None

    async def _extract(self, outcome: FetchOutcome):
        try:
            offered = await self.extractor.extract(outcome.saved_path)
        except (ExtractionError, OSError) as e:
            self.logger.warning(f"Error processing file '{outcome.saved_path}': {e}")
            self.stats.errors += 1
            self.monitor.record_error('extraction')
            return

        self.stats.links_offered += offered
        self.monitor.record_links_offered(offered)

    def _record_outcome(self, outcome: FetchOutcome):
        self.stats.urls_fetched += 1
        self.monitor.record_fetch(outcome.status.value, outcome.fetch_time)

        if outcome.succeeded:
            self.stats.pages_saved += 1
            self.stats.total_bytes_downloaded += outcome.content_size
            self.monitor.record_page_saved(outcome.content_size)
        elif outcome.status is FetchStatus.NETWORK_ERROR:
            self.stats.errors += 1
            self.monitor.record_error('network')

    async def start_crawling(self, stop_event: asyncio.Event,
                             max_pages: Optional[int] = None,
                             max_duration: Optional[int] = None):
        """
        Run the crawl loop until `stop_event` is set or a limit is reached.

        The event is checked between cycles, so an in-flight fetch always
        completes before the loop returns.

        Args:
            stop_event: Cancellation signal
            max_pages: Maximum number of URLs to fetch (None for unlimited)
            max_duration: Maximum duration in seconds (None for unlimited)
        """
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return

        self.is_running = True
        self.stats = CrawlStats(start_time=time.time())
        stats_task = asyncio.create_task(self._stats_reporter())

        try:
            await self.add_seed_urls()
            self.logger.info("Started crawling")

            while not stop_event.is_set():
                if max_pages and self.stats.urls_fetched >= max_pages:
                    self.logger.info(f"Reached max pages limit: {max_pages}")
                    break

                if max_duration and self.stats.elapsed_time >= max_duration:
                    self.logger.info(f"Reached max duration: {max_duration} seconds")
                    break

                wait_ms = await self.run_cycle()
                if wait_ms is None:
                    continue

                delay_ms = min(wait_ms, self.poll_interval * 1000) if wait_ms > 0 \
                    else self.poll_interval * 1000
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
                except asyncio.TimeoutError:
                    pass
        finally:
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)
            self.is_running = False
            await self._log_final_stats()

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while True:
            await asyncio.sleep(self.config.crawler.stats_interval)
            await self._log_current_stats()

    async def _log_current_stats(self):
        """Log current crawl statistics."""
        frontier_stats = await self.url_frontier.get_stats()
        self.stats.urls_in_queue = frontier_stats['total_queued']
        self.monitor.update_queue_size(self.stats.urls_in_queue)

        self.logger.info(
            f"Crawl Progress: "
            f"Fetched={self.stats.urls_fetched}, "
            f"Saved={self.stats.pages_saved}, "
            f"Queued={self.stats.urls_in_queue}, "
            f"Links={self.stats.links_offered}, "
            f"Errors={self.stats.errors}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    async def _log_final_stats(self):
        """Log final crawl statistics."""
        frontier_stats = await self.url_frontier.get_stats()

        self.logger.info("=== CRAWL STOPPED ===")
        self.logger.info(f"Total URLs fetched: {self.stats.urls_fetched}")
        self.logger.info(f"Pages saved: {self.stats.pages_saved}")
        self.logger.info(f"Links offered: {self.stats.links_offered}")
        self.logger.info(f"Errors: {self.stats.errors}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Data downloaded: {self.stats.total_bytes_downloaded / 1024 / 1024:.1f} MB")
        self.logger.info(f"URLs remaining in queue: {frontier_stats['total_queued']}")
        if self.fetcher:
            self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")

    async def close(self):
        """Close all connections and cleanup resources."""
        if self.fetcher:
            await self.fetcher.close()

        if self.database:
            await self.database.close()

        self.logger.info("Crawler scheduler closed")
