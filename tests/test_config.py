"""Tests for configuration loading and command-line database options."""

import argparse
import logging

import pytest

from politecrawler.utils.config import (
    DEFAULT_USER_AGENT,
    ConfigManager,
    add_database_arguments,
    apply_database_overrides,
    check_database_arguments,
    load_config,
    log_level_name,
    resolve_log_level,
    parse_config,
    validate_config,
)


class TestParseConfig:

    def test_defaults(self):
        config = parse_config({})

        assert config.crawler.politeness_interval == 5.0
        assert config.crawler.poll_interval == 0.5
        assert config.crawler.max_redirects == 3
        assert config.crawler.user_agent == DEFAULT_USER_AGENT
        assert config.crawler.temp_directory == "tmpdata"
        assert config.crawler.final_directory == "data"
        assert config.database.type == "sqlite"
        assert config.database.sqlite['path'] == "urlsDB.sqlite3"

    def test_partial_backend_settings_keep_defaults(self):
        config = parse_config({'database': {'type': 'redis', 'redis': {'host': 'cache'}}})

        assert config.database.type == 'redis'
        assert config.database.redis['host'] == 'cache'
        assert config.database.redis['port'] == 6379
        assert config.database.redis['key_prefix'] == 'urlsDB'

    def test_unknown_database_key(self):
        with pytest.raises(ValueError):
            parse_config({'database': {'cassandra': {}}})

    def test_unknown_crawler_key(self):
        with pytest.raises(TypeError):
            parse_config({'crawler': {'max_depth': 3}})

    @pytest.mark.parametrize("section, key, value", [
        ('crawler', 'politeness_interval', -1),
        ('crawler', 'poll_interval', 0),
        ('crawler', 'max_redirects', -1),
        ('crawler', 'request_timeout', 0),
        ('database', 'type', 'cassandra'),
        ('logging', 'level', 'LOUD'),
    ])
    def test_validation(self, section, key, value):
        config = parse_config({})
        setattr(getattr(config, section), key, value)

        with pytest.raises(ValueError):
            validate_config(config)


class TestConfigManager:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "crawler:\n"
            "  seed_urls: ['http://a.com/']\n"
            "  politeness_interval: 2\n"
            "logging:\n"
            "  level: DEBUG\n"
        )

        config = load_config(str(path))

        assert config.crawler.seed_urls == ['http://a.com/']
        assert config.crawler.politeness_interval == 2
        assert config.logging.level == 'DEBUG'

    def test_no_path_means_defaults(self):
        assert ConfigManager().load_config().crawler.max_redirects == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager(str(tmp_path / "missing.yaml")).load_config()


class TestDatabaseOptions:

    def make_parser(self):
        parser = argparse.ArgumentParser()
        add_database_arguments(parser)
        return parser

    def test_host_and_port_select_redis(self):
        config = apply_database_overrides(parse_config({}), "redis.local", 6380, None)

        assert config.database.type == 'redis'
        assert config.database.redis['host'] == "redis.local"
        assert config.database.redis['port'] == 6380

    def test_database_name(self):
        config = apply_database_overrides(parse_config({}), database_name="crawl2")

        assert config.database.type == 'sqlite'
        assert config.database.sqlite['path'] == "crawl2.sqlite3"
        assert config.database.redis['key_prefix'] == "crawl2"

    @pytest.mark.parametrize("port", ["0", "65536", "http"])
    def test_invalid_port(self, port):
        with pytest.raises(SystemExit):
            self.make_parser().parse_args(["--host", "h", "--port", port])

    @pytest.mark.parametrize("argv", [["--host", "h"], ["--port", "6379"]])
    def test_host_and_port_go_together(self, argv):
        parser = self.make_parser()
        args = parser.parse_args(argv)

        with pytest.raises(SystemExit):
            check_database_arguments(parser, args)

    def test_valid_pair(self):
        parser = self.make_parser()
        args = parser.parse_args(["--host", "h", "--port", "6379"])

        check_database_arguments(parser, args)
        assert args.port == 6379


class TestLogLevels:

    @pytest.mark.parametrize("name, level", [
        ("info", logging.INFO),
        ("SEVERE", logging.ERROR),
        ("fine", logging.DEBUG),
        ("FINEST", logging.DEBUG),
        ("WARNING", logging.WARNING),
    ])
    def test_resolve(self, name, level):
        assert resolve_log_level(name) == level

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            resolve_log_level("CHATTY")

    def test_argparse_type(self):
        assert log_level_name("severe") == "SEVERE"
        with pytest.raises(argparse.ArgumentTypeError):
            log_level_name("CHATTY")
