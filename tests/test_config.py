"""Tests for settings parsing and clamps."""

import pytest

from sales_board.config import Settings, parse_color


class TestParseColor:
    """Test embed color parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("#171A21", 0x171A21),
            ("0xFF0000", 0xFF0000),
            ("65280", 65280),
            ("00ff00", 0x00FF00),
            (255, 255),
        ],
    )
    def test_formats(self, value, expected):
        assert parse_color(value) == expected

    def test_fallback(self):
        assert parse_color("not-a-color") == 0x171A21
        assert parse_color("") == 0x171A21


class TestSettings:
    """Test clamps applied to environment values."""

    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.sales_page_size == 10
        assert s.sales_region_cc == "US"
        assert s.steam_embed_color == 0x171A21
        assert s.sales_trust_unknown_epoch is True

    def test_clamps(self, monkeypatch):
        monkeypatch.setenv("SALES_PAGE_SIZE", "2")
        monkeypatch.setenv("SALES_PAGE_TTL_SECONDS", "5")
        monkeypatch.setenv("SALES_MAX_PAGES_CACHE", "10")
        monkeypatch.setenv("SALES_PREWARM_SPACING_SECONDS", "0.01")
        monkeypatch.setenv("SALES_FULL_WARMER_SPACING_SECONDS", "0.1")
        monkeypatch.setenv("SALES_POLL_SECONDS", "60")
        monkeypatch.setenv("SALES_PRECACHE_PAGES", "-3")
        monkeypatch.setenv("HTTP_MAX_ATTEMPTS", "0")

        s = Settings(_env_file=None)

        assert s.sales_page_size == 5
        assert s.sales_page_ttl_seconds == 60
        assert s.sales_max_pages_cache == 50
        assert s.sales_prewarm_spacing_seconds == 0.25
        assert s.sales_full_warmer_spacing_seconds == 0.4
        assert s.sales_poll_seconds == 3600
        assert s.sales_precache_pages == 0
        assert s.http_max_attempts == 1

    def test_region_and_color_from_env(self, monkeypatch):
        monkeypatch.setenv("SALES_REGION_CC", " gb ")
        monkeypatch.setenv("STEAM_EMBED_COLOR", "#00FF00")

        s = Settings(_env_file=None)

        assert s.sales_region_cc == "GB"
        assert s.steam_embed_color == 0x00FF00
