"""
Access control resolver.

Resolves a user's effective role on a planner and the capabilities that
role grants. Resolution always reads the planner and the collaborator
record from the store, never from the cache: collaborator changes do not
invalidate unrelated cached views.

Precedence: owner, then collaborator record, then public visibility.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from ..database.repositories.collaborators import CollaboratorRepository
from ..database.repositories.planners import PlannerRepository
from ..exceptions import ForbiddenError, NotFoundError
from ..models.entities import Planner, Role

logger = logging.getLogger(__name__)

OWNER = "owner"


@dataclass(frozen=True)
class Capabilities:
    """Resolved permissions of one user on one planner."""
    role: Optional[str] = None
    can_view: bool = False
    can_edit: bool = False
    can_share: bool = False
    can_manage_collaborators: bool = False
    can_archive: bool = False
    can_delete: bool = False

    def allows(self, capability: str) -> bool:
        return bool(getattr(self, capability))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DENIED = Capabilities()


def capabilities_for(planner: Planner, user_id: str, role: Optional[str]) -> Capabilities:
    """
    Pure capability rules.

    Args:
        planner: The planner being accessed
        user_id: Requesting user
        role: The user's collaborator role on the planner, if any
    """
    if user_id == planner.owner_id:
        return Capabilities(
            role=OWNER,
            can_view=True,
            can_edit=True,
            can_share=True,
            can_manage_collaborators=True,
            can_archive=True,
            can_delete=True,
        )

    if role is not None:
        role = Role(role).value
        is_admin = role == Role.ADMIN.value
        return Capabilities(
            role=role,
            can_view=True,
            can_edit=role in (Role.EDITOR.value, Role.ADMIN.value),
            can_share=is_admin,
            can_manage_collaborators=is_admin,
        )

    if planner.is_public:
        return Capabilities(role=Role.VIEWER.value, can_view=True)

    return DENIED


class AccessControlResolver:
    """Computes capability sets fresh from the store on every call."""

    def __init__(self, planners: PlannerRepository, collaborators: CollaboratorRepository):
        self.planners = planners
        self.collaborators = collaborators

    async def _load(self, planner_id: str) -> Planner:
        with self.planners.store_errors("get", planner_id):
            doc = await self.planners.store.get(self.planners.collection, planner_id)
        if doc is None:
            raise NotFoundError("planner", planner_id)
        return Planner.from_document(doc)

    async def resolve(self, planner_id: str, user_id: str) -> Tuple[Planner, Capabilities]:
        """
        Resolve the user's capabilities on a planner.

        Returns:
            The planner as stored (without collaborators) and the capabilities

        Raises:
            NotFoundError: planner does not exist
        """
        planner = await self._load(planner_id)

        role = None
        if user_id != planner.owner_id:
            grant = await self.collaborators.get(planner_id, user_id)
            role = grant.role if grant else None

        capabilities = capabilities_for(planner, user_id, role)
        logger.debug(f"Resolved {user_id} on planner {planner_id}: role={capabilities.role}")
        return planner, capabilities

    async def require(self, planner_id: str, user_id: str, capability: str = "can_view") -> Tuple[Planner, Capabilities]:
        """
        Resolve and insist on a capability.

        Raises:
            NotFoundError: planner does not exist
            ForbiddenError: capability not granted (including no view access)
        """
        planner, capabilities = await self.resolve(planner_id, user_id)

        if not capabilities.can_view:
            logger.info(f"Denied {user_id} on planner {planner_id}: no access")
            raise ForbiddenError("You do not have access to this planner")

        if not capabilities.allows(capability):
            logger.info(f"Denied {user_id} on planner {planner_id}: missing {capability}")
            raise ForbiddenError(
                "Insufficient permissions for this operation",
                {"required": capability, "role": capabilities.role},
            )

        return planner, capabilities
