"""
Administration tool for the crawl frontier database.

Views, drops and edits the visited URL, visited host and URL-to-visit tables
of the store the crawler uses.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Callable, Optional, TextIO

import yaml

from .crawler.url_frontier import URLFrontier
from .storage.database import (
    TABLES,
    URLS_TO_VISIT,
    VISITED_HOSTS,
    VISITED_URLS,
    DatabaseError,
    DatabaseManager,
    StorageBackend,
)
from .utils.config import (
    Config,
    add_database_arguments,
    apply_database_overrides,
    check_database_arguments,
    load_config,
)


SEPARATOR = "==========================================="

# Command-line flag -> (method name, takes a URL argument)
ACTIONS = {
    'view_tables': ('view_tables', False),
    'view_table_visited_urls': ('view_visited_urls', False),
    'view_table_visited_hosts': ('view_visited_hosts', False),
    'view_table_urls_to_visit': ('view_urls_to_visit', False),
    'drop_tables': ('drop_tables', False),
    'drop_table_visited_urls': ('drop_visited_urls', False),
    'drop_table_visited_hosts': ('drop_visited_hosts', False),
    'drop_table_urls_to_visit': ('drop_urls_to_visit', False),
    'add_url_to_visit': ('add_url_to_visit', True),
    'remove_url_to_visit': ('remove_url_to_visit', True),
}


def format_timestamp(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).isoformat(sep=' ', timespec='milliseconds')


class DatabaseAdmin:
    """Runs administration actions against an initialized store."""

    def __init__(self, store: StorageBackend, url_frontier: URLFrontier,
                 out: Optional[TextIO] = None):
        self.store = store
        self.url_frontier = url_frontier
        self.out = out

    def _print(self, line: str = ""):
        print(line, file=self.out)

    async def _view(self, title: str, rows, describe: Callable) -> bool:
        try:
            records = await rows()
        except DatabaseError as e:
            self._print(f"Exception: '{e}'.")
            return False

        self._print(f"{title}:")
        self._print(SEPARATOR)
        for count, record in enumerate(records, start=1):
            self._print(f"[{count}] {describe(record)}")
        self._print(SEPARATOR)
        return True

    async def view_visited_urls(self) -> bool:
        return await self._view(
            "Visited URLs", self.store.scan_visited_urls,
            lambda r: (f"URL: '{r.url}', timestamp: '{format_timestamp(r.visited_at)}', "
                       f"filename: '{r.saved_filename}'.")
        )

    async def view_visited_hosts(self) -> bool:
        return await self._view(
            "Visited hosts", self.store.scan_visited_hosts,
            lambda r: (f"Host: '{r.host}', timestamp: '{format_timestamp(r.last_visited_at)}', "
                       f"server: '{r.server if r.server is not None else ''}'.")
        )

    async def view_urls_to_visit(self) -> bool:
        return await self._view(
            "URLs to visit", self.store.scan_pending_ordered,
            lambda r: (f"URL: '{r.url}', host: '{r.host}', "
                       f"timestamp: '{format_timestamp(r.eligible_at)}'.")
        )

    async def view_tables(self) -> bool:
        for view in (self.view_visited_urls, self.view_visited_hosts, self.view_urls_to_visit):
            if not await view():
                return False
            self._print()
        return True

    async def _drop(self, table: str) -> bool:
        try:
            await self.store.drop_table(table)
        except DatabaseError as e:
            self._print(f"Exception: '{e}'.")
            return False

        self._print(f"The table {table} has been dropped.")
        return True

    async def drop_visited_urls(self) -> bool:
        return await self._drop(VISITED_URLS)

    async def drop_visited_hosts(self) -> bool:
        return await self._drop(VISITED_HOSTS)

    async def drop_urls_to_visit(self) -> bool:
        return await self._drop(URLS_TO_VISIT)

    async def drop_tables(self) -> bool:
        for table in TABLES:
            if not await self._drop(table):
                return False
        return True

    async def add_url_to_visit(self, url: str) -> bool:
        status = await self.url_frontier.enqueue(url)
        self._print(f"Add URL to visit '{url}': {status.value}.")
        return status.accepted

    async def remove_url_to_visit(self, url: str) -> bool:
        removed = await self.url_frontier.retire(url)
        self._print(f"Remove URL to visit '{url}': {'done' if removed else 'failed'}.")
        return removed

    async def run(self, action: str, argument: Optional[str] = None) -> bool:
        """Run an action by its command-line name."""
        method_name, takes_url = ACTIONS[action]
        method = getattr(self, method_name)
        if takes_url:
            return await method(argument)
        return await method()


async def run_action(config: Config, action: str, argument: Optional[str] = None,
                     out: Optional[TextIO] = None) -> bool:
    """Open the configured store, run one action and close the store."""
    database = DatabaseManager(config.database)
    try:
        store = await database.initialize()
        url_frontier = URLFrontier(store, config.crawler.politeness_interval)
        return await DatabaseAdmin(store, url_frontier, out).run(action, argument)
    finally:
        await database.close()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='politecrawler-admin',
        description="Manage the polite crawler database"
    )
    parser.add_argument('--config', help='Path to configuration file (default: built-in defaults)')
    add_database_arguments(parser)

    actions = parser.add_mutually_exclusive_group(required=True)
    for action, (_, takes_url) in ACTIONS.items():
        flag = '--' + action.replace('_', '-')
        if takes_url:
            actions.add_argument(flag, dest=action, metavar='URL')
        else:
            actions.add_argument(flag, dest=action, action='store_true')
    return parser


def selected_action(args: argparse.Namespace):
    """The (action, argument) pair chosen on the command line."""
    for action, (_, takes_url) in ACTIONS.items():
        value = getattr(args, action)
        if takes_url and value is not None:
            return action, value
        if not takes_url and value:
            return action, None
    return None, None


def main(argv=None) -> int:
    """Command-line entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    check_database_arguments(parser, args)

    logging.basicConfig(level=logging.WARNING,
                        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    apply_database_overrides(config, args.host, args.port, args.database_name)

    action, argument = selected_action(args)
    try:
        succeeded = asyncio.run(run_action(config, action, argument))
    except DatabaseError as e:
        print(f"Exception: '{e}'.", file=sys.stderr)
        return 1

    return 0 if succeeded else 1


if __name__ == '__main__':
    sys.exit(main())
