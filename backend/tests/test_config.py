from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import DEFAULT_VALUE_MILESTONES, Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.market_cap_milestones == [float(value) for value in DEFAULT_VALUE_MILESTONES]
    assert settings.resolution_grace_seconds == 300
    assert settings.battle_candle_granularity == "5m"
    assert settings.treasury_public_key is None


def test_milestones_parse_from_comma_separated_string():
    settings = Settings(_env_file=None, holder_milestones="100, 250,1000")
    assert settings.holder_milestones == [100.0, 250.0, 1000.0]


def test_milestones_from_environment(monkeypatch):
    monkeypatch.setenv("VOLUME_MILESTONES", "1000,2000")
    assert Settings(_env_file=None).volume_milestones == [1000.0, 2000.0]


@pytest.mark.parametrize("ladder", ["500,100", "100,-5", "", "abc"])
def test_invalid_milestones_rejected(ladder):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, market_cap_milestones=ladder)


@pytest.mark.parametrize(
    "url",
    ["postgres://user:pw@db/markets", "postgresql://user:pw@db/markets"],
)
def test_postgres_urls_use_psycopg_driver(url):
    settings = Settings(_env_file=None, database_url=url)
    assert settings.resolved_database_url == "postgresql+psycopg://user:pw@db/markets"


def test_sqlite_url_untouched():
    settings = Settings(_env_file=None, database_url="sqlite:///./data/test.db")
    assert settings.resolved_database_url == "sqlite:///./data/test.db"
