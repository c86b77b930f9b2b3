"""
Web page fetcher: one HTTP(S) request per URL, manual redirect following,
and atomic materialization of successful responses as data files.
"""

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout

from ..storage.database import (
    NOT_SAVED,
    SERVER_MAX_LEN,
    DatabaseError,
    InsertResult,
    StorageBackend,
    VisitedHost,
    VisitedUrl,
)
from ..utils.logger import get_crawler_logger
from .url_frontier import InvalidURLError, URLFrontier, parse_host


READ_BUFFER_SIZE = 8 * 1024

HTTP_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
HTTP_ACCEPT_LANGUAGE = "en-US,en;q=0.5"

MAX_REDIRECTS = 3

TEMP_FILENAME = "data.bin"
FILENAME_FORMAT = "%06d.bin"

NO_SERVER = "-"


class FetchStatus(Enum):
    """Outcome of a fetch attempt."""
    SUCCESS = "success"
    NOT_PROCESSABLE = "not_processable"
    NETWORK_ERROR = "network_error"
    INVALID_URL = "invalid_url"


@dataclass
class FetchOutcome:
    """Result of a fetch operation."""
    url: str
    status: FetchStatus
    processable: bool = False
    saved_path: Optional[Path] = None
    status_code: Optional[int] = None
    content_size: int = 0
    fetch_time: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is FetchStatus.SUCCESS


def format_file_headers(url: str, raw_headers) -> Tuple[bytes, bool, str]:
    """
    Build the header block of a data file.

    Returns the block, whether the response should be processed (its last
    Content-Type value starts with text/html) and the last Server value.
    """
    lines = [b"URL: " + url.encode('ascii', errors='replace') + b"\r\n"]
    content_type = None
    server = None

    for name, value in raw_headers:
        lines.append(name + b": " + value + b"\r\n")
        lowered = name.lower()
        if lowered == b"content-type":
            content_type = value.decode('latin-1')
        elif lowered == b"server":
            server = value.decode('latin-1')

    lines.append(b"\r\n")
    processable = content_type is not None and content_type.lower().startswith("text/html")
    return b"".join(lines), processable, server if server is not None else NO_SERVER


class WebFetcher:
    """
    Fetches URLs and records visits in the store.

    Successful responses are streamed to a temporary file and moved into the
    final directory under the next free sequential name once complete.
    """

    def __init__(self, store: StorageBackend, url_frontier: URLFrontier,
                 temp_directory: str, final_directory: str, user_agent: str,
                 request_timeout: Optional[float] = 30.0,
                 max_redirects: int = MAX_REDIRECTS):
        self.store = store
        self.url_frontier = url_frontier
        self.temp_directory = Path(temp_directory)
        self.final_directory = Path(final_directory)
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_redirects = max_redirects

        self.logger = get_crawler_logger(__name__)
        self.session: Optional[ClientSession] = None
        self.data_file_count = 0

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'redirects': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Create the working directories and the HTTP session."""
        for directory in (self.temp_directory, self.final_directory):
            directory.mkdir(parents=True, exist_ok=True)
            self.logger.info(f"Created directory '{directory}'")

        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={
                    'User-Agent': self.user_agent,
                    'Accept': HTTP_ACCEPT,
                    'Accept-Language': HTTP_ACCEPT_LANGUAGE,
                    'Accept-Encoding': 'identity',
                },
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                auto_decompress=False
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    def next_data_filename(self) -> str:
        """Next sequential data file name not present in the final directory."""
        while True:
            filename = FILENAME_FORMAT % self.data_file_count
            self.data_file_count += 1
            if not (self.final_directory / filename).exists():
                return filename

    async def fetch(self, url: str, redirect_depth: int = 0) -> FetchOutcome:
        """
        Fetch a single URL, following redirects up to the configured bound.

        Args:
            url: Absolute http or https URL
            redirect_depth: Number of redirects already followed to reach `url`

        Returns:
            FetchOutcome of the final request in the redirect chain
        """
        start_time = time.time()
        self.logger.log_url_event(logging.INFO, url, f"Request: '{url}'")

        try:
            host = parse_host(url)
        except InvalidURLError as e:
            self.logger.warning(str(e))
            return FetchOutcome(url=url, status=FetchStatus.INVALID_URL)

        scheme = urlsplit(url).scheme.lower()
        if scheme not in ('http', 'https'):
            self.logger.info(f"Unknown protocol '{scheme}'")
            return FetchOutcome(url=url, status=FetchStatus.INVALID_URL)

        if self.session is None:
            await self.start()

        self.stats['total_requests'] += 1
        location = None
        try:
            async with self.session.get(url, allow_redirects=False) as response:
                status_code = response.status
                self.logger.debug(f"Status-Code: {status_code}")

                if 200 <= status_code < 300:
                    outcome = await self._save_response(url, host, response)
                    outcome.fetch_time = time.time() - start_time
                    return outcome

                location = response.headers.get('Location')
        except (ClientError, asyncio.TimeoutError, OSError) as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Error fetching {url}: {e!r}")
            return FetchOutcome(url=url, status=FetchStatus.NETWORK_ERROR,
                                fetch_time=time.time() - start_time)

        if 300 <= status_code < 400:
            return await self._follow_redirect(url, host, location, redirect_depth, status_code)

        self.stats['failed_requests'] += 1
        await self._record_host(host, None)
        return FetchOutcome(url=url, status=FetchStatus.NOT_PROCESSABLE, status_code=status_code,
                            fetch_time=time.time() - start_time)

    async def _save_response(self, url: str, host: str,
                             response: aiohttp.ClientResponse) -> FetchOutcome:
        temp_path = self.temp_directory / TEMP_FILENAME
        header_block, processable, server = format_file_headers(url, response.raw_headers)
        self.logger.debug(f"Content-Type processable: {processable}, Server: {server}")

        size = 0
        completed = False
        try:
            with open(temp_path, 'wb') as out:
                out.write(header_block)
                async for chunk in response.content.iter_chunked(READ_BUFFER_SIZE):
                    self._write_chunk(out, chunk)
                    size += len(chunk)
            completed = True
        finally:
            if not completed:
                temp_path.unlink(missing_ok=True)

        data_filename = self.next_data_filename()
        final_path = self.final_directory / data_filename
        shutil.move(os.fspath(temp_path), os.fspath(final_path))
        self.logger.debug(f"mv {temp_path} -> {final_path}")

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += size

        await self._record_visit(url, host, data_filename, server)
        return FetchOutcome(url=url, status=FetchStatus.SUCCESS, processable=processable,
                            saved_path=final_path, status_code=response.status,
                            content_size=size)

    def _write_chunk(self, out: BinaryIO, chunk: bytes):
        out.write(chunk)

    async def _follow_redirect(self, url: str, host: str, location: Optional[str],
                               redirect_depth: int, status_code: int) -> FetchOutcome:
        self.stats['redirects'] += 1
        await self._record_visit(url, host, NOT_SAVED, None)
        not_processable = FetchOutcome(url=url, status=FetchStatus.NOT_PROCESSABLE,
                                       status_code=status_code)

        redirect_depth += 1
        if redirect_depth > self.max_redirects:
            self.logger.warning(f"Too many redirects ({redirect_depth}) for {url}")
            return not_processable

        if location is None:
            self.logger.debug(f"Redirect from {url} without Location header")
            return not_processable

        try:
            target = urljoin(url, location)
        except ValueError as e:
            self.logger.warning(f"Invalid redirection '{location}' from {url}: {e}")
            return not_processable

        try:
            if await self.url_frontier.is_known(target):
                self.logger.debug(f"Redirection '{target}' is already known")
                return not_processable
        except DatabaseError as e:
            self.logger.warning(f"Cannot check redirection '{target}': {e}")
            return not_processable

        self.logger.debug(f"Redirecting to: '{target}'...")
        return await self.fetch(target, redirect_depth)

    async def _record_visit(self, url: str, host: str, filename: str, server: Optional[str]):
        result = await self.store.add_visited_url(VisitedUrl(url=url, visited_at=time.time(),
                                                             saved_filename=filename))
        if result is InsertResult.ALREADY_EXISTS:
            self.logger.debug(f"Visited URL '{url}' already added")
        elif result is InsertResult.STORE_UNAVAILABLE:
            self.logger.warning(f"Error adding visited URL '{url}'")
        await self._record_host(host, server)

    async def _record_host(self, host: str, server: Optional[str]):
        if server is not None:
            server = server[:SERVER_MAX_LEN]
        try:
            await self.store.upsert_visited_host(VisitedHost(host=host, last_visited_at=time.time(),
                                                             server=server))
        except DatabaseError as e:
            self.logger.warning(f"Error adding visited host '{host}': {e}")

    def get_stats(self) -> dict:
        """Get fetcher statistics."""
        return self.stats.copy()
