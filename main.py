#!/usr/bin/env python3
"""
Main entry point for the polite crawler.
"""

import asyncio
import argparse
import logging
import signal
import sys
from typing import Optional

import yaml

from politecrawler import __version__
from politecrawler.crawler.scheduler import CrawlerScheduler
from politecrawler.utils.config import (
    Config,
    add_database_arguments,
    apply_database_overrides,
    check_database_arguments,
    load_config,
    log_level_name,
    validate_config,
)
from politecrawler.utils.logger import log_system_info, setup_logging
from politecrawler.utils.monitoring import initialize_monitoring


class CrawlerApp:
    """Main application class for the crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            loop.call_soon_threadsafe(self._shutdown_event.set)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run(self, config: Config, max_pages: Optional[int] = None,
                  max_duration: Optional[int] = None) -> int:
        """Run the crawler until it is stopped. Returns the process exit code."""
        self._shutdown_event = asyncio.Event()
        self.setup_signal_handlers()

        self.logger.info("=== POLITE CRAWLER STARTING ===")
        self.logger.info(f"Seed URLs: {config.crawler.seed_urls}")
        self.logger.info(f"Politeness interval: {config.crawler.politeness_interval}s")
        self.logger.info(f"Database type: {config.database.type}")
        self.logger.info(f"Temporary directory: {config.crawler.temp_directory}")
        self.logger.info(f"Final directory: {config.crawler.final_directory}")

        monitor = None
        if config.monitoring.metrics_enabled:
            monitor = initialize_monitoring(True, config.monitoring.prometheus_port)

        try:
            self.scheduler = CrawlerScheduler(config, monitor)
            await self.scheduler.initialize()
        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        try:
            crawl_task = asyncio.create_task(
                self.scheduler.start_crawling(self._shutdown_event, max_pages, max_duration)
            )
            # The loop watches the event between cycles; wait for it to notice.
            await crawl_task
        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1
        finally:
            await self.scheduler.close()
            self.logger.info("=== POLITE CRAWLER FINISHED ===")

        return 0


def build_config(args: argparse.Namespace) -> Config:
    """Load the configuration file and apply command-line overrides."""
    config = load_config(args.config)
    apply_database_overrides(config, args.host, args.port, args.database_name)

    crawler = config.crawler
    if args.temp_dir is not None:
        crawler.temp_directory = args.temp_dir
    if args.final_dir is not None:
        crawler.final_directory = args.final_dir
    if args.user_agent is not None:
        crawler.user_agent = args.user_agent
    if args.exclude_file is not None:
        crawler.exclude_file = args.exclude_file
    if args.include_file is not None:
        crawler.include_file = args.include_file
    if args.seed:
        crawler.seed_urls = list(crawler.seed_urls) + args.seed

    if args.log_filename is not None:
        config.logging.file = args.log_filename
    if args.log_level is not None:
        config.logging.level = args.log_level

    validate_config(config)
    return config


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Polite persistent web crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --seed http://example.com/          # Crawl with an embedded SQLite frontier
  python main.py --config config.yaml                # Run with a configuration file
  python main.py --host localhost --port 6379        # Keep the frontier in Redis
  python main.py --max-pages 1000                    # Stop after 1000 fetches
  python main.py --max-duration 3600                 # Run for 1 hour max
        """
    )

    parser.add_argument('--config', help='Path to configuration file (default: built-in defaults)')
    add_database_arguments(parser)
    parser.add_argument('--temp-dir', help='Directory for the file being downloaded')
    parser.add_argument('--final-dir', help='Directory for the saved data files')
    parser.add_argument('--user-agent', help='User-Agent header sent with every request')
    parser.add_argument('--log-filename', help='Log file path')
    parser.add_argument('--log-level', type=log_level_name,
                        help='Log level (DEBUG, INFO, WARNING, ERROR; SEVERE and FINE also accepted)')
    parser.add_argument('--exclude-file', help='File with URL patterns to exclude')
    parser.add_argument('--include-file', help='File with URL patterns to include')
    parser.add_argument('--seed', action='append', default=[], metavar='URL',
                        help='Seed URL to enqueue at start-up (repeatable)')
    parser.add_argument('--max-pages', type=int, help='Maximum number of URLs to fetch')
    parser.add_argument('--max-duration', type=int, help='Maximum crawl duration in seconds')
    parser.add_argument('--version', action='version', version=f'Polite Crawler {__version__}')
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    check_database_arguments(parser, args)

    try:
        config = build_config(args)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    log_system_info()

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config, max_pages=args.max_pages,
                                   max_duration=args.max_duration))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
