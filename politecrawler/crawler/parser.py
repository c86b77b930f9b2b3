"""
HTML link extraction from saved data files.
"""

import codecs
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Iterator, Optional, Union
from urllib.parse import urljoin

from lxml import etree

from .url_filter import URLFilter
from .url_frontier import InvalidURLError, URLFrontier, parse_host


READ_BUFFER_SIZE = 8 * 1024
URL_HEADER_PREFIX = b"URL:"

# Tag name -> attribute holding a link.
LINK_ATTRIBUTES = {
    'a': 'href',
    'img': 'src',
}


class ExtractionError(Exception):
    """A data file has a missing or garbled header block."""
    pass


@dataclass(frozen=True)
class StartTag:
    name: str
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Text:
    content: str


@dataclass(frozen=True)
class EndTag:
    name: str


HTMLEvent = Union[StartTag, Text, EndTag]


def iter_html_events(chunks: Iterable[Union[bytes, str]],
                     encoding: str = 'utf-8') -> Iterator[HTMLEvent]:
    """
    Stream parse events out of an HTML document fed in chunks.

    Void and self-closing tags yield a StartTag immediately followed by
    an EndTag. Bytes are decoded with `encoding`, replacing invalid sequences.
    """
    parser = etree.HTMLPullParser(events=("start", "end"))
    decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
    fed = False

    for chunk in chunks:
        text = decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if text:
            parser.feed(text)
            fed = True
            yield from _drain(parser)

    tail = decoder.decode(b"", final=True)
    if tail:
        parser.feed(tail)
        fed = True

    if fed:
        try:
            parser.close()
        except etree.XMLSyntaxError:
            # Raised for documents with no usable content.
            pass
        yield from _drain(parser)


def _drain(parser: etree.HTMLPullParser) -> Iterator[HTMLEvent]:
    for action, element in parser.read_events():
        if not isinstance(element.tag, str):
            continue

        if action == "start":
            yield StartTag(element.tag.lower(), dict(element.attrib))
        else:
            if element.text:
                yield Text(element.text)
            yield EndTag(element.tag.lower())
            element.clear(keep_tail=True)


def read_file_header(stream: BinaryIO) -> str:
    """
    Consume the header block of a data file and return its source URL.

    The stream is left positioned at the first byte of the response body.
    """
    first_line = stream.readline()
    if not first_line.startswith(URL_HEADER_PREFIX):
        raise ExtractionError("First line is not a 'URL:' line")

    try:
        url = first_line[len(URL_HEADER_PREFIX):].decode('ascii').strip()
        parse_host(url)
    except (UnicodeDecodeError, InvalidURLError) as e:
        raise ExtractionError(f"Invalid source URL: {e}")

    while True:
        line = stream.readline()
        if not line:
            raise ExtractionError("Header block is not terminated by an empty line")
        if line in (b"\r\n", b"\n"):
            return url


def _iter_chunks(stream: BinaryIO) -> Iterator[bytes]:
    while True:
        chunk = stream.read(READ_BUFFER_SIZE)
        if not chunk:
            return
        yield chunk


class LinkExtractor:
    """
    Extracts links from saved HTML responses and offers them to the frontier.
    """

    def __init__(self, url_frontier: URLFrontier, url_filter: Optional[URLFilter] = None):
        self.url_frontier = url_frontier
        self.url_filter = url_filter or URLFilter()
        self.logger = logging.getLogger(__name__)

    def _accepts(self, candidate: Optional[str]) -> bool:
        if candidate is None:
            return False
        if not candidate.lower().startswith(('http://', 'https://')):
            return False
        return self.url_filter.matches(candidate)

    @staticmethod
    def iter_candidates(events: Iterable[HTMLEvent]) -> Iterator[Optional[str]]:
        """Link attribute values of anchor and image tags, in document order."""
        for event in events:
            if isinstance(event, StartTag) and event.name in LINK_ATTRIBUTES:
                value = event.attributes.get(LINK_ATTRIBUTES[event.name])
                yield value.strip() if value is not None else None

    async def extract(self, saved_file: Union[str, Path]) -> int:
        """
        Offer every acceptable link of a saved response to the frontier.

        Args:
            saved_file: Data file written by the fetcher

        Returns:
            Number of URLs offered to the frontier
        """
        self.logger.debug(f"Processing file '{saved_file}'...")
        offered = 0

        with open(saved_file, 'rb') as stream:
            context_url = read_file_header(stream)

            for candidate in self.iter_candidates(iter_html_events(_iter_chunks(stream))):
                if not self._accepts(candidate):
                    continue

                try:
                    url = urljoin(context_url, candidate)
                except ValueError as e:
                    self.logger.debug(f"Ignored unparsable link '{candidate}': {e}")
                    continue

                await self.url_frontier.enqueue(url)
                offered += 1

        self.logger.debug(f"Finished processing file '{saved_file}': {offered} links offered")
        return offered
