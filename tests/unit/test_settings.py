"""
Tests for config/settings.py
"""

from config import Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.timezone == "UTC"
    assert settings.default_plan == "free"
    assert settings.plan_limits["free"]["planners"] == 3


def test_environment_variables_by_field_name(monkeypatch):
    monkeypatch.setenv("TIMEZONE", "Asia/Tokyo")
    monkeypatch.setenv("DB_POOL_SIZE", "3")
    monkeypatch.setenv("CACHE_TTL_PLANNER_STATS", "15")

    settings = Settings(_env_file=None)

    assert settings.timezone == "Asia/Tokyo"
    assert settings.db_pool_size == 3
    assert settings.cache_ttl_planner_stats == 15
