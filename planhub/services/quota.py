"""
Quota enforcer.

Plan ceilings for planners per user, sections per planner and activities
per section. A limit of -1 means unlimited. Checks count the existing
children in the store and run before any write.
"""

import logging
from typing import Dict, Optional, Tuple

from ..database.repositories.activities import ActivityRepository
from ..database.repositories.planners import PlannerRepository
from ..database.repositories.sections import SectionRepository
from ..exceptions import QuotaExceededError
from ..models.entities import Planner, Section
from ..monitoring.metrics import quota_rejections_total

logger = logging.getLogger(__name__)

UNLIMITED = -1


class PlanLookup:
    """
    Resolves a user's plan. The user service is external; this default
    returns a fixed plan with optional per-user overrides.
    """

    def __init__(self, default_plan: str = "free", overrides: Optional[Dict[str, str]] = None):
        self.default_plan = default_plan
        self.overrides = dict(overrides or {})

    async def plan_for(self, user_id: str) -> str:
        return self.overrides.get(user_id, self.default_plan)


class QuotaEnforcer:
    """Stateless plan-limit checks."""

    def __init__(
        self,
        plan_limits: Dict[str, Dict[str, int]],
        plan_lookup: PlanLookup,
        planners: PlannerRepository,
        sections: SectionRepository,
        activities: ActivityRepository,
        default_plan: str = "free",
    ):
        self.plan_limits = plan_limits
        self.plan_lookup = plan_lookup
        self.planners = planners
        self.sections = sections
        self.activities = activities
        self.default_plan = default_plan

    async def limit_for(self, user_id: str, resource: str) -> Tuple[str, int]:
        """Plan name and ceiling of a resource for a user."""
        plan = await self.plan_lookup.plan_for(user_id)
        limits = self.plan_limits.get(plan)
        if limits is None:
            logger.warning(f"Unknown plan {plan} for user {user_id}, using {self.default_plan}")
            plan = self.default_plan
            limits = self.plan_limits[plan]
        return plan, limits.get(resource, UNLIMITED)

    def _reject(self, resource: str, limit: int, plan: str, scope: str):
        quota_rejections_total.labels(resource=resource, plan=plan).inc()
        logger.info(f"Quota reached for {resource} on {scope}: {plan} allows {limit}")
        raise QuotaExceededError(resource, limit, plan)

    async def check_planner_create(self, user_id: str):
        plan, limit = await self.limit_for(user_id, "planners")
        if limit == UNLIMITED:
            return
        if await self.planners.count_by_owner(user_id) >= limit:
            self._reject("planners", limit, plan, f"user {user_id}")

    async def check_section_create(self, planner: Planner):
        """Sections count against the planner owner's plan."""
        plan, limit = await self.limit_for(planner.owner_id, "sections")
        if limit == UNLIMITED:
            return
        if await self.sections.count_in_planner(planner.id) >= limit:
            self._reject("sections", limit, plan, f"planner {planner.id}")

    async def check_activity_create(self, planner: Planner, section: Section, adding: int = 1):
        """
        Activities count against the planner owner's plan; a section's
        own max_activities setting is an additional ceiling.
        """
        plan, limit = await self.limit_for(planner.owner_id, "activities")
        section_cap = section.settings.max_activities
        if limit == UNLIMITED and section_cap is None:
            return

        existing = await self.activities.count_in_section(section.id)
        if limit != UNLIMITED and existing + adding > limit:
            self._reject("activities", limit, plan, f"section {section.id}")
        if section_cap is not None and existing + adding > section_cap:
            self._reject("activities", section_cap, "section", f"section {section.id}")
