"""Tests for the politeness-scheduled URL frontier."""

import pytest

from politecrawler.crawler.url_frontier import (
    DequeueResult,
    EnqueueStatus,
    InvalidURLError,
    parse_host,
)
from politecrawler.storage.database import (
    HOST_MAX_LEN,
    URL_MAX_LEN,
    PendingUrl,
    VisitedHost,
    VisitedUrl,
)


class TestParseHost:

    def test_lowercases_host(self):
        assert parse_host("http://Example.COM/Path") == "example.com"

    def test_ignores_port(self):
        assert parse_host("https://example.com:8443/") == "example.com"

    @pytest.mark.parametrize("url", ["not a url", "/relative/path", "http://", "http://host:99999/"])
    def test_rejects_invalid(self, url):
        with pytest.raises(InvalidURLError):
            parse_host(url)


class TestEnqueue:

    async def test_first_url_of_unknown_host_is_eligible_now(self, frontier, store, clock):
        assert await frontier.enqueue("http://a.com/") is EnqueueStatus.ADDED

        pending = await store.get_pending_url("http://a.com/")
        assert pending == PendingUrl("http://a.com/", "a.com", clock.now)

    async def test_same_host_urls_are_spaced_by_interval(self, frontier, store, clock):
        for path in ("1", "2", "3"):
            await frontier.enqueue(f"http://a.com/{path}")

        slots = [record.eligible_at for record in await store.scan_pending_ordered()]
        assert slots == [clock.now, clock.now + 5.0, clock.now + 10.0]

    async def test_other_hosts_are_not_delayed(self, frontier, store, clock):
        await frontier.enqueue("http://a.com/1")
        await frontier.enqueue("http://a.com/2")
        await frontier.enqueue("http://b.com/1")

        pending = await store.get_pending_url("http://b.com/1")
        assert pending.eligible_at == clock.now

    async def test_slot_follows_last_visit_when_nothing_pending(self, frontier, store, clock):
        await store.upsert_visited_host(VisitedHost("a.com", clock.now - 2.0, "nginx"))

        await frontier.enqueue("http://a.com/page")

        pending = await store.get_pending_url("http://a.com/page")
        assert pending.eligible_at == clock.now + 3.0

    async def test_enqueue_is_idempotent(self, frontier, store):
        assert await frontier.enqueue("http://a.com/") is EnqueueStatus.ADDED
        assert await frontier.enqueue("http://a.com/") is EnqueueStatus.ALREADY_PENDING
        assert await store.count_pending() == 1

    async def test_visited_url_is_not_enqueued(self, frontier, store, clock):
        await store.add_visited_url(VisitedUrl("http://a.com/", clock.now, "000000.bin"))

        status = await frontier.enqueue("http://a.com/")

        assert status is EnqueueStatus.ALREADY_VISITED
        assert status.accepted
        assert await store.count_pending() == 0

    async def test_rejects_relative_url(self, frontier, store):
        status = await frontier.enqueue("/just/a/path")

        assert status is EnqueueStatus.REJECTED
        assert not status.accepted
        assert await store.count_pending() == 0

    async def test_rejects_oversized_url(self, frontier):
        url = "http://a.com/" + "x" * URL_MAX_LEN
        assert await frontier.enqueue(url) is EnqueueStatus.REJECTED

    async def test_rejects_oversized_host(self, frontier):
        host = "a" * (HOST_MAX_LEN + 1) + ".com"
        assert await frontier.enqueue(f"http://{host}/") is EnqueueStatus.REJECTED


class TestDequeue:

    async def test_empty_frontier(self, frontier):
        assert await frontier.dequeue_ready() == DequeueResult(url=None, wait_ms=0)

    async def test_ready_url_is_returned_but_kept(self, frontier, store):
        await frontier.enqueue("http://a.com/")

        result = await frontier.dequeue_ready()

        assert result.url == "http://a.com/"
        assert await store.get_pending_url("http://a.com/") is not None

    async def test_reports_wait_until_next_slot(self, frontier, store, clock):
        await store.add_pending_url(PendingUrl("http://a.com/", "a.com", clock.now + 2.5))

        result = await frontier.dequeue_ready()

        assert result.url is None
        assert result.wait_ms == 2500

    async def test_earliest_url_first(self, frontier, clock):
        await frontier.enqueue("http://a.com/1")
        await frontier.enqueue("http://a.com/2")
        await frontier.enqueue("http://b.com/1")

        first = await frontier.dequeue_ready()
        assert first.url in ("http://a.com/1", "http://b.com/1")
        await frontier.retire(first.url)

        second = await frontier.dequeue_ready()
        assert second.url in ("http://a.com/1", "http://b.com/1")
        assert second.url != first.url
        await frontier.retire(second.url)

        third = await frontier.dequeue_ready()
        assert third.url is None
        assert third.wait_ms == 5000

        clock.advance(5.0)
        assert (await frontier.dequeue_ready()).url == "http://a.com/2"

    async def test_malformed_stored_url_is_removed(self, frontier, store, clock):
        await store.add_pending_url(PendingUrl("::garbage::", "nowhere", clock.now - 1.0))
        await frontier.enqueue("http://a.com/")

        result = await frontier.dequeue_ready()

        assert result.url == "http://a.com/"
        assert await store.get_pending_url("::garbage::") is None


class TestRetire:

    async def test_retire_removes_url(self, frontier, store):
        await frontier.enqueue("http://a.com/")

        assert await frontier.retire("http://a.com/")
        assert await store.get_pending_url("http://a.com/") is None

    async def test_retire_is_idempotent(self, frontier):
        assert await frontier.retire("http://never-added.com/")
        assert await frontier.retire("http://never-added.com/")

    async def test_is_known(self, frontier, store, clock):
        await frontier.enqueue("http://a.com/pending")
        await store.add_visited_url(VisitedUrl("http://a.com/visited", clock.now))

        assert await frontier.is_known("http://a.com/pending")
        assert await frontier.is_known("http://a.com/visited")
        assert not await frontier.is_known("http://a.com/other")

    async def test_stats(self, frontier):
        await frontier.enqueue("http://a.com/1")
        await frontier.enqueue("http://b.com/1")

        assert await frontier.get_stats() == {'total_queued': 2}
