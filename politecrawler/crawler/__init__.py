"""
Web crawler core components.
"""

from .url_frontier import URLFrontier, EnqueueStatus, DequeueResult, InvalidURLError, parse_host
from .url_filter import URLFilter, URLMatcher, FilterError
from .fetcher import WebFetcher, FetchOutcome, FetchStatus
from .parser import LinkExtractor, ExtractionError, StartTag, Text, EndTag, iter_html_events
from .scheduler import CrawlerScheduler, CrawlState, CrawlStats

__all__ = [
    'URLFrontier', 'EnqueueStatus', 'DequeueResult', 'InvalidURLError', 'parse_host',
    'URLFilter', 'URLMatcher', 'FilterError',
    'WebFetcher', 'FetchOutcome', 'FetchStatus',
    'LinkExtractor', 'ExtractionError', 'StartTag', 'Text', 'EndTag', 'iter_html_events',
    'CrawlerScheduler', 'CrawlState', 'CrawlStats',
]
