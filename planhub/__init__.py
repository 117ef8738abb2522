"""
PlanHub core.

Multi-tenant Planner -> Section -> Activity hierarchy with role based
sharing, a read-through Redis cache and plan quotas.
"""

__version__ = "1.0.0"
