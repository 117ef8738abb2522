"""
PlanHub core - composition root.

Builds every component explicitly from a Settings object: database and
store, cache client and invalidator, repositories, the shared
coordination pieces and the four caller-facing services. Nothing in the
core reaches for a global; whatever embeds it calls build_services()
once and passes the container around.
"""

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from config import Settings, get_settings

from .cache.invalidation import CacheInvalidator
from .cache.keys import CacheTTLs
from .cache.redis_client import CacheClient, create_redis
from .cache.stats import CacheStats
from .database.connection import Database
from .database.repositories import (
    ActivityRepository,
    CollaboratorRepository,
    PlannerRepository,
    SectionRepository,
    TimeEntryRepository,
)
from .database.store import DocumentStore
from .services.access import AccessControlResolver
from .services.activities import ActivityService
from .services.audit import AuditSink, LoggingAuditSink
from .services.coordinator import BulkCoordinator, ScopeLocks
from .services.pipeline import MutationPipeline
from .services.planners import PlannerService
from .services.quota import PlanLookup, QuotaEnforcer
from .services.sections import SectionService
from .services.statistics import RollupUpdater, StatisticsAggregator
from .services.time_tracking import TimeTrackingService
from .web.errors import register_error_handlers

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    """Configure process logging."""
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


@dataclass
class ServiceContainer:
    """Every component of one running core."""
    settings: Settings
    database: Database
    store: DocumentStore
    cache: CacheClient
    invalidator: CacheInvalidator
    planners_repo: PlannerRepository
    collaborators_repo: CollaboratorRepository
    sections_repo: SectionRepository
    activities_repo: ActivityRepository
    time_entries_repo: TimeEntryRepository
    access: AccessControlResolver
    quota: QuotaEnforcer
    statistics: StatisticsAggregator
    rollups: RollupUpdater
    coordinator: BulkCoordinator
    pipeline: MutationPipeline
    planners: PlannerService
    sections: SectionService
    activities: ActivityService
    time_tracking: TimeTrackingService

    async def close(self):
        await self.cache.close()
        await self.database.close()


async def build_services(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    redis_client=None,
    use_redis: bool = True,
    plan_lookup: Optional[PlanLookup] = None,
    audit: Optional[AuditSink] = None,
) -> ServiceContainer:
    """
    Wire the core.

    Args:
        settings: Configuration (defaults to the environment settings)
        database: A Database to use instead of one built from settings
        redis_client: A redis.asyncio client to use instead of connecting
        use_redis: Connect to settings.redis_url when no client is given;
            with False the cache is disabled
        plan_lookup: Source of user plans (defaults to settings.default_plan)
        audit: Audit sink (defaults to the system log)
    """
    settings = settings or get_settings()
    tz = settings.timezone

    if database is None:
        database = Database(settings)
    if not await database.initialize():
        logger.warning("Database not initialized; store calls will fail with StoreError")

    if redis_client is None and use_redis:
        redis_client = await create_redis(settings.redis_url)

    store = DocumentStore(database, timezone=tz)
    cache = CacheClient(
        redis_client,
        prefix=settings.cache_prefix,
        max_retries=settings.cache_max_retries,
        base_delay=settings.cache_retry_base_delay,
        stats=CacheStats(redis_client),
    )
    invalidator = CacheInvalidator(cache)
    ttls = CacheTTLs.from_settings(settings)

    # Repositories
    collaborators_repo = CollaboratorRepository(store, cache, invalidator)
    planners_repo = PlannerRepository(
        store, cache, invalidator, collaborators_repo,
        item_ttl=ttls.planner, list_ttl=ttls.planner_list,
    )
    sections_repo = SectionRepository(
        store, cache, invalidator, item_ttl=ttls.section, list_ttl=ttls.section_list
    )
    activities_repo = ActivityRepository(
        store, cache, invalidator, item_ttl=ttls.activity, list_ttl=ttls.activity_list
    )
    time_entries_repo = TimeEntryRepository(store, cache, invalidator)

    # Shared components
    access = AccessControlResolver(planners_repo, collaborators_repo)
    quota = QuotaEnforcer(
        settings.plan_limits,
        plan_lookup or PlanLookup(settings.default_plan),
        planners_repo,
        sections_repo,
        activities_repo,
        default_plan=settings.default_plan,
    )
    statistics = StatisticsAggregator(
        activities_repo,
        sections_repo,
        cache,
        ttls,
        scan_limit=settings.stats_scan_limit,
        upcoming_days=settings.upcoming_window_days,
        timezone=tz,
    )
    rollups = RollupUpdater(activities_repo, sections_repo, planners_repo, timezone=tz)
    coordinator = BulkCoordinator(
        store,
        {"section": sections_repo, "activity": activities_repo},
        invalidator,
        ScopeLocks(),
    )
    pipeline = MutationPipeline(audit or LoggingAuditSink())

    # Services
    planners = PlannerService(
        planners_repo, collaborators_repo, sections_repo, activities_repo,
        access, quota, statistics, rollups, coordinator, pipeline, timezone=tz,
    )
    sections = SectionService(
        sections_repo, access, quota, statistics, rollups, coordinator, pipeline, timezone=tz
    )
    activities = ActivityService(
        activities_repo, sections_repo, access, quota, statistics, rollups, coordinator, pipeline,
        enforce_dependency_dag=settings.enforce_dependency_dag,
        scan_limit=settings.stats_scan_limit,
        upcoming_days=settings.upcoming_window_days,
        timezone=tz,
    )
    time_tracking = TimeTrackingService(
        time_entries_repo, activities, access, coordinator, pipeline, timezone=tz
    )

    logger.info(f"{settings.app_name} core ready (cache {'enabled' if cache.enabled else 'disabled'})")

    return ServiceContainer(
        settings=settings,
        database=database,
        store=store,
        cache=cache,
        invalidator=invalidator,
        planners_repo=planners_repo,
        collaborators_repo=collaborators_repo,
        sections_repo=sections_repo,
        activities_repo=activities_repo,
        time_entries_repo=time_entries_repo,
        access=access,
        quota=quota,
        statistics=statistics,
        rollups=rollups,
        coordinator=coordinator,
        pipeline=pipeline,
        planners=planners,
        sections=sections,
        activities=activities,
        time_tracking=time_tracking,
    )


def create_app(settings: Optional[Settings] = None, **overrides) -> FastAPI:
    """
    FastAPI application hosting the core: builds the container on startup,
    maps domain errors and exposes health endpoints.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name}...")
        app.state.services = await build_services(settings, **overrides)
        yield
        logger.info("Shutting down...")
        await app.state.services.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Multi-tenant planner core",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)

    @app.get("/")
    async def root():
        """Root endpoint - health check."""
        return {"status": "healthy", "service": settings.app_name, "version": "1.0.0"}

    @app.get("/health")
    async def health_check():
        """Detailed health check endpoint."""
        services: ServiceContainer = app.state.services
        return {
            "status": "healthy",
            "database": await services.database.health_check(),
            "cache": await services.cache.stats.get_full_stats(),
        }

    return app
