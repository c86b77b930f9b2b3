"""
Include/exclude URL filter driven by regular expression pattern files.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Union


class FilterError(Exception):
    """A pattern file could not be loaded."""
    pass


class URLMatcher:
    """A list of regular expressions, each matched against the whole URL."""

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns: List[Pattern[str]] = []
        self.logger = logging.getLogger(__name__)
        for pattern in patterns or []:
            self.add_pattern(pattern)

    def add_pattern(self, pattern: str) -> bool:
        """Compile and add a pattern. Invalid patterns are logged and ignored."""
        try:
            self.patterns.append(re.compile(pattern))
        except re.error as e:
            self.logger.warning(f"Ignored invalid pattern '{pattern}': {e}")
            return False

        self.logger.debug(f"Added pattern '{pattern}'")
        return True

    def load(self, filename: Union[str, Path]):
        """
        Load patterns from a file, one per line.

        Blank lines and lines starting with '#' are skipped.
        """
        self.logger.info(f"Loading patterns file '{filename}'...")
        try:
            with open(filename, 'r', encoding='ascii') as file:
                for line in file:
                    pattern = line.strip()
                    if pattern and not pattern.startswith('#'):
                        self.add_pattern(pattern)
        except (OSError, UnicodeDecodeError) as e:
            raise FilterError(f"Error processing patterns file '{filename}': {e}")

    def matches(self, url: str) -> bool:
        for pattern in self.patterns:
            if pattern.fullmatch(url):
                self.logger.debug(f"URL '{url}' matches pattern '{pattern.pattern}'")
                return True
        return False

    def is_empty(self) -> bool:
        return not self.patterns

    def __len__(self) -> int:
        return len(self.patterns)


class URLFilter:
    """
    Decides whether a discovered URL may enter the frontier.

    A URL passes when no exclude pattern matches it and either some include
    pattern matches it or there are no include patterns at all.
    """

    def __init__(self, exclude: Optional[URLMatcher] = None, include: Optional[URLMatcher] = None):
        self.exclude = exclude if exclude is not None else URLMatcher()
        self.include = include if include is not None else URLMatcher()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_files(cls, exclude_file: Optional[str] = None,
                   include_file: Optional[str] = None) -> 'URLFilter':
        exclude = URLMatcher()
        include = URLMatcher()
        if exclude_file:
            exclude.load(exclude_file)
        if include_file:
            include.load(include_file)
        return cls(exclude, include)

    def matches(self, url: str) -> bool:
        if not self.exclude.matches(url) and (self.include.is_empty() or self.include.matches(url)):
            self.logger.debug(f"URL '{url}' matches the URL filter")
            return True

        self.logger.debug(f"URL '{url}' doesn't match the URL filter")
        return False
