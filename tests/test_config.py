"""Tests for spotiflac_api.config."""

from datetime import timedelta

import pytest

from spotiflac_api.config import (
    DEFAULT_CLEANUP_INTERVAL,
    DEFAULT_TTL,
    MAX_TTL,
    effective_ttl,
    load_settings,
    parse_duration,
)
from spotiflac_api.errors import ConfigError


class TestParseDuration:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2h", timedelta(hours=2)),
            ("90m", timedelta(minutes=90)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("45s", timedelta(seconds=45)),
            ("1.5h", timedelta(minutes=90)),
            ("500ms", timedelta(milliseconds=500)),
            ("300", timedelta(seconds=300)),
        ],
    )
    def test_valid(self, raw, expected):
        assert parse_duration(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "2 hours", "h", "10x", "1h-"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_duration(raw)


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings({})
        assert settings.port == 8080
        assert settings.base_url == ""
        assert settings.download_ttl == DEFAULT_TTL
        assert settings.cleanup_interval == DEFAULT_CLEANUP_INTERVAL
        assert settings.provider_urls == {}

    def test_from_env(self):
        settings = load_settings({
            "PORT": "9000",
            "BASE_URL": " https://dl.example.com/ ",
            "DOWNLOAD_TTL": "30m",
            "TIDAL_API_URL": "https://tidal.internal",
            "AMAZON_API_URL": "",
            "LOG_FILE": "",
        })
        assert settings.port == 9000
        assert settings.base_url == "https://dl.example.com/"
        assert settings.download_ttl == timedelta(minutes=30)
        assert settings.provider_urls == {"tidal": "https://tidal.internal"}
        assert settings.log_file == ""

    def test_invalid_ttl(self):
        with pytest.raises(ConfigError, match="invalid DOWNLOAD_TTL"):
            load_settings({"DOWNLOAD_TTL": "forever"})

    def test_non_positive_ttl(self):
        with pytest.raises(ConfigError, match="must be > 0"):
            load_settings({"DOWNLOAD_TTL": "0s"})

    def test_invalid_port(self):
        with pytest.raises(ConfigError, match="invalid PORT"):
            load_settings({"PORT": "eighty"})


class TestEffectiveTtl:
    def test_default_when_unset(self):
        assert effective_ttl(DEFAULT_TTL, None) == DEFAULT_TTL
        assert effective_ttl(DEFAULT_TTL, 0) == DEFAULT_TTL
        assert effective_ttl(DEFAULT_TTL, -5) == DEFAULT_TTL

    def test_override(self):
        assert effective_ttl(DEFAULT_TTL, 600) == timedelta(minutes=10)

    def test_capped(self):
        assert effective_ttl(DEFAULT_TTL, 7 * 24 * 3600) == MAX_TTL

    def test_huge_value_capped(self):
        assert effective_ttl(DEFAULT_TTL, 10 ** 20) == MAX_TTL
