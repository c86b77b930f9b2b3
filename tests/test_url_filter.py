"""Tests for the include/exclude URL filter."""

import pytest

from politecrawler.crawler.url_filter import FilterError, URLFilter, URLMatcher


class TestURLMatcher:

    def test_whole_string_match(self):
        matcher = URLMatcher([r"http://a\.com/"])

        assert matcher.matches("http://a.com/")
        assert not matcher.matches("http://a.com/page")
        assert not matcher.matches("xhttp://a.com/")

    def test_invalid_pattern_is_skipped(self):
        matcher = URLMatcher(["(unclosed", r".*\.pdf"])

        assert len(matcher) == 1
        assert matcher.matches("http://a.com/doc.pdf")

    def test_load_skips_blank_lines_and_comments(self, tmp_path):
        patterns = tmp_path / "exclude.txt"
        patterns.write_text("# documents\n\n.*\\.pdf\n   \n#.*\\.html\n.*\\.zip\n", encoding="ascii")

        matcher = URLMatcher()
        matcher.load(patterns)

        assert len(matcher) == 2
        assert matcher.matches("http://a.com/file.zip")
        assert not matcher.matches("http://a.com/index.html")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FilterError):
            URLMatcher().load(tmp_path / "missing.txt")

    def test_load_rejects_non_ascii(self, tmp_path):
        patterns = tmp_path / "include.txt"
        patterns.write_bytes("http://café\\.com/.*\n".encode("utf-8"))

        with pytest.raises(FilterError):
            URLMatcher().load(patterns)


class TestURLFilter:

    def test_exclude_only(self):
        url_filter = URLFilter(exclude=URLMatcher([r".*\.pdf"]))

        assert not url_filter.matches("http://a.com/paper.pdf")
        assert url_filter.matches("http://a.com/index.html")

    def test_include_only(self):
        url_filter = URLFilter(include=URLMatcher([r".*\.example\.com.*"]))

        assert url_filter.matches("http://www.example.com/page")
        assert not url_filter.matches("http://www.other.org/page")

    def test_exclude_wins_over_include(self):
        url_filter = URLFilter(exclude=URLMatcher([r".*\.pdf"]),
                               include=URLMatcher([r".*\.example\.com.*"]))

        assert not url_filter.matches("http://www.example.com/paper.pdf")
        assert url_filter.matches("http://www.example.com/paper.html")

    def test_empty_filter_accepts_everything(self):
        assert URLFilter().matches("http://anything.net/at/all")

    def test_from_files(self, tmp_path):
        exclude = tmp_path / "exclude.txt"
        exclude.write_text(".*/private/.*\n", encoding="ascii")
        include = tmp_path / "include.txt"
        include.write_text("https://docs\\..*\n", encoding="ascii")

        url_filter = URLFilter.from_files(str(exclude), str(include))

        assert url_filter.matches("https://docs.python.org/3/")
        assert not url_filter.matches("https://docs.python.org/private/x")
        assert not url_filter.matches("https://www.python.org/")

    def test_from_files_without_files(self):
        url_filter = URLFilter.from_files(None, None)

        assert url_filter.exclude.is_empty()
        assert url_filter.include.is_empty()

    def test_keeps_empty_matchers_filled_later(self):
        exclude = URLMatcher()
        url_filter = URLFilter(exclude=exclude)

        exclude.add_pattern(r".*\.pdf")

        assert url_filter.exclude is exclude
        assert not url_filter.matches("http://a.com/paper.pdf")
