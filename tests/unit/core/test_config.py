"""
Unit tests for settings normalization.
"""

import pytest

from makergrade.core.config import Settings


class TestSettings:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgresql://u:p@db/makergrade", "postgresql+asyncpg://u:p@db/makergrade"),
            ("postgresql+asyncpg://u:p@db/x", "postgresql+asyncpg://u:p@db/x"),
            ("sqlite+aiosqlite:///./local.db", "sqlite+aiosqlite:///./local.db"),
        ],
    )
    def test_database_url_uses_async_driver(self, url, expected):
        assert Settings(_env_file=None, DATABASE_URL=url).DATABASE_URL == expected

    def test_ark_base_url_is_cleaned(self):
        config = Settings(_env_file=None, ARK_BASE_URL=" `https://ark.example.com/api/v3/` ")

        assert config.ARK_BASE_URL == "https://ark.example.com/api/v3"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CRAWL_DEFAULT_CONCURRENCY", "4")
        monkeypatch.setenv("LABEL_MAX_IMAGES", "6")

        config = Settings(_env_file=None)

        assert config.CRAWL_DEFAULT_CONCURRENCY == 4
        assert config.LABEL_MAX_IMAGES == 6
