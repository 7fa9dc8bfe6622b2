"""
Request actor resolution for payroll endpoints.

Token issuance and verification happen upstream of this service. The
authenticating component stores an ``Actor`` on ``request.state.actor``;
routes only read it and enforce the employer role.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

logger = logging.getLogger(__name__)

EMPLOYER_ROLE = "employer"
EMPLOYEE_ROLE = "employee"
SYSTEM_ROLE = "system"


class Actor(BaseModel):
    """The authenticated principal acting on a request."""

    user_id: str
    company_id: Optional[int] = None
    role: str = EMPLOYER_ROLE

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE

    def can_access_company(self, company_id: int) -> bool:
        return self.is_system or self.company_id == company_id


# Used by retries, auto-approval and other unattended jobs
SYSTEM_ACTOR = Actor(user_id="system", company_id=None, role=SYSTEM_ROLE)


async def get_current_actor(request: Request) -> Actor:
    """Resolve the actor placed on the request by the auth layer."""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    if isinstance(actor, dict):
        actor = Actor(**actor)
    return actor


async def require_employer(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role not in (EMPLOYER_ROLE, SYSTEM_ROLE):
        logger.warning(f"Actor {actor.user_id} with role {actor.role} denied employer access")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operation requires the employer role",
        )
    return actor
