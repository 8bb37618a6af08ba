"""Manager hierarchy checks."""

from __future__ import annotations

from collections.abc import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_engine.errors import CircularRelationshipError
from expense_engine.models import User


def check_manager_chain(
    candidate_manager_id: UUID,
    employee_id: UUID,
    manager_of: Mapping[UUID, UUID | None],
    max_steps: int | None = None,
) -> None:
    """Walk up from the candidate manager and fail on any cycle.

    Raises CircularRelationshipError if the walk reaches ``employee_id``,
    revisits a node, or exceeds ``max_steps`` (defaults to the number of
    known users, which bounds any acyclic chain).
    """
    if candidate_manager_id == employee_id:
        raise CircularRelationshipError("User cannot be their own manager")

    limit = max_steps if max_steps is not None else len(manager_of) + 1
    visited: set[UUID] = set()
    current: UUID | None = candidate_manager_id
    steps = 0

    while current is not None:
        if current in visited or steps > limit:
            raise CircularRelationshipError("Circular manager relationship detected")
        visited.add(current)
        steps += 1

        parent = manager_of.get(current)
        if parent == employee_id:
            raise CircularRelationshipError("Circular manager relationship detected")
        current = parent


class ManagerTree:
    """Loads a company's reporting lines and checks reassignments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def manager_map(self, company_id: UUID) -> dict[UUID, UUID | None]:
        """user_id -> manager_id for every user of the company."""
        result = await self.session.execute(
            select(User.id, User.manager_id).where(User.company_id == company_id)
        )
        return {user_id: manager_id for user_id, manager_id in result.all()}

    async def would_create_cycle(
        self,
        candidate_manager_id: UUID,
        employee_id: UUID,
        company_id: UUID,
    ) -> None:
        """Raise CircularRelationshipError if the assignment closes a loop."""
        managers = await self.manager_map(company_id)
        check_manager_chain(
            candidate_manager_id,
            employee_id,
            managers,
            max_steps=len(managers),
        )
