"""
Configuration settings for the PlanHub core.
All deployment specific values are loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Dict


DEFAULT_PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    # -1 means unlimited
    "free": {"planners": 3, "sections": 50, "activities": 1000},
    "premium": {"planners": 50, "sections": 200, "activities": 5000},
    "enterprise": {"planners": -1, "sections": -1, "activities": -1},
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables. Each field
    reads the variable of the same name, case-insensitively (TIMEZONE,
    DATABASE_URL, ...).
    """

    # Application
    app_name: str = "PlanHub"
    debug: bool = False
    environment: str = "production"
    log_level: str = "INFO"
    timezone: str = "UTC"

    # Database
    database_url: str = ""
    database_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Redis
    redis_url: str = "redis://localhost:6379"
    cache_prefix: str = "planhub:"

    # Cache TTLs (seconds)
    cache_ttl_activity: int = 300
    cache_ttl_activity_list: int = 300
    cache_ttl_section: int = 300
    cache_ttl_section_list: int = 300
    cache_ttl_section_stats: int = 120
    cache_ttl_planner: int = 300
    cache_ttl_planner_list: int = 300
    cache_ttl_planner_stats: int = 120

    # Cache resilience
    cache_max_retries: int = 2
    cache_retry_base_delay: float = 0.05

    # Statistics
    stats_scan_limit: int = 10000
    upcoming_window_days: int = 7

    # Plans and quotas
    default_plan: str = "free"
    plan_limits: Dict[str, Dict[str, int]] = Field(default_factory=lambda: {
        plan: dict(limits) for plan, limits in DEFAULT_PLAN_LIMITS.items()
    })

    # Activities
    enforce_dependency_dag: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings
