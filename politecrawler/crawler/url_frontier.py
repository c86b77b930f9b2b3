"""
URL Frontier implementation for managing URLs to crawl.
Implements the per-host politeness schedule on top of the persistent store.
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlsplit

from ..storage.database import (
    HOST_MAX_LEN,
    URL_MAX_LEN,
    DatabaseError,
    InsertResult,
    PendingUrl,
    StorageBackend,
)


class InvalidURLError(ValueError):
    """URL cannot be scheduled (unparsable, not absolute, or too long)."""


def parse_host(url: str) -> str:
    """Return the host of an absolute URL, raising InvalidURLError otherwise."""
    try:
        parsed = urlsplit(url)
        host = parsed.hostname
        # Accessing .port validates the authority part.
        parsed.port
    except ValueError as e:
        raise InvalidURLError(f"Unparsable URL '{url}': {e}")

    if not parsed.scheme or not host:
        raise InvalidURLError(f"URL is not absolute: '{url}'")
    return host


class EnqueueStatus(Enum):
    """Outcome of offering a URL to the frontier."""
    ADDED = "added"
    ALREADY_VISITED = "already_visited"
    ALREADY_PENDING = "already_pending"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def accepted(self) -> bool:
        """The URL is now (or already was) known to the crawler."""
        return self in (EnqueueStatus.ADDED, EnqueueStatus.ALREADY_VISITED,
                        EnqueueStatus.ALREADY_PENDING)


@dataclass(frozen=True)
class DequeueResult:
    """Next URL ready to be fetched, or how long until one becomes ready.

    `wait_ms` is 0 when there is nothing scheduled at all.
    """
    url: Optional[str] = None
    wait_ms: int = 0


class URLFrontier:
    """
    Manages URLs to be crawled with a per-host politeness interval.

    Each pending URL gets an eligible time when it is enqueued: one interval
    after the latest slot already booked for its host, else one interval after
    the last visit to the host, else now. Dequeuing never removes the URL;
    `retire()` does, once the fetch attempt is over.
    """

    def __init__(self, store: StorageBackend, politeness_delay: float = 5.0,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.politeness_delay = politeness_delay
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def enqueue(self, url: str) -> EnqueueStatus:
        """Add a URL to the frontier unless it is already known."""
        try:
            host = parse_host(url)
        except InvalidURLError as e:
            self.logger.debug(f"Rejected URL: {e}")
            return EnqueueStatus.REJECTED

        if len(host) > HOST_MAX_LEN or len(url) > URL_MAX_LEN:
            self.logger.debug(f"Rejected oversized URL: {url[:100]}...")
            return EnqueueStatus.REJECTED

        try:
            if await self.store.get_visited_url(url) is not None:
                self.logger.debug(f"URL already visited: {url}")
                return EnqueueStatus.ALREADY_VISITED

            if await self.store.get_pending_url(url) is not None:
                self.logger.debug(f"URL already pending: {url}")
                return EnqueueStatus.ALREADY_PENDING

            eligible_at = await self._next_slot(host)
        except DatabaseError as e:
            self.logger.warning(f"Error adding URL to visit {url}: {e}")
            return EnqueueStatus.FAILED

        result = await self.store.add_pending_url(PendingUrl(url=url, host=host,
                                                             eligible_at=eligible_at))
        if result is InsertResult.ALREADY_EXISTS:
            return EnqueueStatus.ALREADY_PENDING
        if result is InsertResult.STORE_UNAVAILABLE:
            self.logger.warning(f"Error adding URL to visit {url}: store unavailable")
            return EnqueueStatus.FAILED

        self.logger.debug(f"Added URL to visit {url}, host: {host}, eligible at: {eligible_at:.3f}")
        return EnqueueStatus.ADDED

    async def _next_slot(self, host: str) -> float:
        latest = await self.store.latest_eligible_at(host)
        if latest is not None:
            return latest + self.politeness_delay

        visited = await self.store.get_visited_host(host)
        if visited is not None:
            return visited.last_visited_at + self.politeness_delay

        return self.clock()

    async def dequeue_ready(self) -> DequeueResult:
        """
        Get the next URL to crawl, respecting the politeness schedule.

        The URL stays in the frontier until `retire()` is called for it.
        Stored URLs that no longer parse are deleted and skipped.
        """
        now = self.clock()

        while True:
            try:
                head = await self.store.scan_pending_ordered(limit=1)
            except DatabaseError as e:
                self.logger.warning(f"Error getting next URL to visit: {e}")
                return DequeueResult()

            if not head:
                return DequeueResult()

            record = head[0]
            if record.eligible_at > now:
                wait_ms = max(1, math.ceil((record.eligible_at - now) * 1000))
                return DequeueResult(wait_ms=wait_ms)

            try:
                parse_host(record.url)
            except InvalidURLError:
                self.logger.warning(f"Invalid URL found ({record.url}) in the frontier, removing it")
                if not await self.retire(record.url):
                    return DequeueResult()
                continue

            return DequeueResult(url=record.url)

    async def retire(self, url: str) -> bool:
        """Remove a URL from the frontier. Removing an absent URL succeeds."""
        try:
            await self.store.delete_pending_url(url)
        except DatabaseError as e:
            self.logger.warning(f"Error removing URL to visit {url}: {e}")
            return False

        self.logger.debug(f"Removed URL to visit {url}")
        return True

    async def is_known(self, url: str) -> bool:
        """True when the URL is either visited or pending."""
        if await self.store.get_visited_url(url) is not None:
            return True
        return await self.store.get_pending_url(url) is not None

    async def get_stats(self) -> dict:
        """Get frontier statistics."""
        try:
            return {'total_queued': await self.store.count_pending()}
        except DatabaseError as e:
            self.logger.warning(f"Error reading frontier size: {e}")
            return {'total_queued': -1}
