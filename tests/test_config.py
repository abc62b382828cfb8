from __future__ import annotations

from pathlib import Path

import pytest

from spendro.config import ConfigError, Settings


def test_defaults_from_empty_environment():
    s = Settings.from_env({})

    assert s.database_url is None
    assert s.base_currency == "SGD"
    assert s.foreign_category == "Travel"
    assert s.fx_api_key is None
    assert (s.recent_months, s.historical_months) == (6, 12)
    assert s.fx_cache_ttl == 3600


def test_values_are_parsed_and_normalized():
    s = Settings.from_env(
        {
            "DATABASE_URL": "sqlite+pysqlite:///x.db",
            "SPENDRO_BASE_CURRENCY": " usd ",
            "SPENDRO_FOREIGN_CATEGORY": "",
            "EXCHANGE_RATE_API_KEY": "abc",
            "SPENDRO_FX_BASE_URL": "https://fx.example/v6/",
            "SPENDRO_FX_TIMEOUT": "2.5",
            "SPENDRO_FX_CACHE_TTL": "0",
            "SPENDRO_RECENT_MONTHS": "3",
            "SPENDRO_HISTORICAL_MONTHS": "24",
            "SPENDRO_BLOB_DIR": "/tmp/blobs",
        }
    )

    assert s.database_url == "sqlite+pysqlite:///x.db"
    assert s.base_currency == "USD"
    assert s.foreign_category is None
    assert s.fx_api_key == "abc"
    assert s.fx_base_url == "https://fx.example/v6"
    assert s.fx_timeout == 2.5
    assert s.fx_cache_ttl == 0
    assert (s.recent_months, s.historical_months) == (3, 24)
    assert s.blob_dir == Path("/tmp/blobs")


@pytest.mark.parametrize(
    "env",
    [
        {"SPENDRO_RECENT_MONTHS": "six"},
        {"SPENDRO_RECENT_MONTHS": "0"},
        {"SPENDRO_FX_TIMEOUT": "soon"},
        {"SPENDRO_FX_CACHE_TTL": "-1"},
    ],
)
def test_bad_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        Settings.from_env(env)


def test_reads_process_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXCHANGE_RATE_API_KEY", "from-env")

    assert Settings.from_env().fx_api_key == "from-env"
