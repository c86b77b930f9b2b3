"""Tests for the HTML event stream and the link extractor."""

import io

import pytest

from politecrawler.crawler.parser import (
    EndTag,
    ExtractionError,
    LinkExtractor,
    StartTag,
    Text,
    iter_html_events,
    read_file_header,
)
from politecrawler.crawler.url_filter import URLFilter, URLMatcher
from politecrawler.crawler.url_frontier import EnqueueStatus


class RecordingFrontier:
    """Stands in for the frontier and remembers every enqueue call."""

    def __init__(self):
        self.enqueued = []

    async def enqueue(self, url):
        self.enqueued.append(url)
        return EnqueueStatus.ADDED


def write_data_file(path, url, body, headers=b"Content-Type: text/html\r\n"):
    path.write_bytes(b"URL: " + url.encode("ascii") + b"\r\n" + headers + b"\r\n" + body)
    return path


class TestHTMLEvents:

    def test_event_stream(self):
        events = list(iter_html_events([b"<html><body><p>Hi <a href='/x'>there</a></p></body></html>"]))

        assert StartTag("a", {"href": "/x"}) in events
        assert Text("there") in events
        assert events.index(StartTag("a", {"href": "/x"})) < events.index(EndTag("a"))
        assert [e.name for e in events if isinstance(e, StartTag)] == ["html", "body", "p", "a"]

    def test_void_tag_yields_start_and_end(self):
        events = list(iter_html_events([b"<html><body><img src='a.png'></body></html>"]))

        start = events.index(StartTag("img", {"src": "a.png"}))
        assert events[start + 1] == EndTag("img")

    def test_document_split_across_chunks(self):
        html = "<html><body><a href='http://a.com/café'>x</a></body></html>".encode("utf-8")
        # Split inside the multi-byte character and inside the tag.
        split = html.index(b"\xc3") + 1
        events = list(iter_html_events([html[:10], html[10:split], html[split:]]))

        assert StartTag("a", {"href": "http://a.com/café"}) in events

    def test_tag_names_are_lowercased(self):
        events = list(iter_html_events([b"<HTML><BODY><A HREF='http://a.com/'>x</A></BODY></HTML>"]))

        assert StartTag("a", {"href": "http://a.com/"}) in events

    def test_empty_document(self):
        assert list(iter_html_events([])) == []


class TestReadFileHeader:

    def test_returns_url_and_positions_at_body(self):
        stream = io.BytesIO(b"URL: http://a.com/\r\nServer: x\r\n\r\n<html></html>")

        assert read_file_header(stream) == "http://a.com/"
        assert stream.read() == b"<html></html>"

    def test_missing_url_line(self):
        with pytest.raises(ExtractionError):
            read_file_header(io.BytesIO(b"Server: x\r\n\r\n<html></html>"))

    def test_relative_url(self):
        with pytest.raises(ExtractionError):
            read_file_header(io.BytesIO(b"URL: /index.html\r\n\r\n"))

    def test_unterminated_header_block(self):
        with pytest.raises(ExtractionError):
            read_file_header(io.BytesIO(b"URL: http://a.com/\r\nServer: x\r\n"))


class TestLinkExtractor:

    async def test_two_anchors_and_an_image(self, tmp_path):
        body = (b"<html><body>"
                b"<a href='http://a.com/one'>1</a>"
                b"<a href='https://b.com/two'>2</a>"
                b"<img src='http://a.com/pic.png'>"
                b"</body></html>")
        data_file = write_data_file(tmp_path / "000000.bin", "http://a.com/", body)
        frontier = RecordingFrontier()

        offered = await LinkExtractor(frontier).extract(data_file)

        assert offered == 3
        assert frontier.enqueued == ["http://a.com/one", "https://b.com/two", "http://a.com/pic.png"]

    async def test_skips_relative_and_other_schemes(self, tmp_path):
        body = (b"<html><body>"
                b"<a href='/relative'>r</a>"
                b"<a href='mailto:someone@a.com'>m</a>"
                b"<a name='anchor'>n</a>"
                b"<a href='HTTP://A.com/upper'>u</a>"
                b"</body></html>")
        data_file = write_data_file(tmp_path / "000000.bin", "http://a.com/", body)
        frontier = RecordingFrontier()

        offered = await LinkExtractor(frontier).extract(data_file)

        assert offered == 1
        assert frontier.enqueued == ["http://A.com/upper"]

    async def test_filter_applies(self, tmp_path):
        body = (b"<html><body>"
                b"<a href='http://a.com/doc.pdf'>pdf</a>"
                b"<a href='http://a.com/page.html'>html</a>"
                b"</body></html>")
        data_file = write_data_file(tmp_path / "000000.bin", "http://a.com/", body)
        frontier = RecordingFrontier()
        extractor = LinkExtractor(frontier, URLFilter(exclude=URLMatcher([r".*\.pdf"])))

        await extractor.extract(data_file)

        assert frontier.enqueued == ["http://a.com/page.html"]

    async def test_links_reach_the_real_frontier(self, tmp_path, frontier, store):
        body = b"<html><body><a href='http://a.com/next'>n</a></body></html>"
        data_file = write_data_file(tmp_path / "000000.bin", "http://a.com/", body)

        await LinkExtractor(frontier).extract(data_file)

        assert await store.get_pending_url("http://a.com/next") is not None

    async def test_garbled_header(self, tmp_path):
        data_file = tmp_path / "000000.bin"
        data_file.write_bytes(b"<html><a href='http://a.com/'>x</a></html>")

        with pytest.raises(ExtractionError):
            await LinkExtractor(RecordingFrontier()).extract(data_file)

    async def test_unparsable_link_does_not_stop_extraction(self, tmp_path):
        body = (b"<html><body>"
                b"<a href='http://[broken/x'>bad</a>"
                b"<a href='http://a.com/good'>good</a>"
                b"</body></html>")
        data_file = write_data_file(tmp_path / "000000.bin", "http://a.com/", body)
        frontier = RecordingFrontier()

        offered = await LinkExtractor(frontier).extract(data_file)

        assert offered == 1
        assert frontier.enqueued == ["http://a.com/good"]
