"""
Membership request repository.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from instivault.domain.enums import MembershipState
from instivault.infrastructure.database.models import MembershipRequest
from instivault.repositories.base import BaseRepository


class MembershipRepository(BaseRepository[MembershipRequest]):
    """Repository for membership request data access."""

    def __init__(self, db: AsyncSession):
        super().__init__(MembershipRequest, db)

    async def get_for_pair(
        self,
        user_id: UUID,
        institute_id: UUID,
    ) -> Optional[MembershipRequest]:
        """
        Get the request on record for a (user, institute) pair.

        Args:
            user_id: Requesting user
            institute_id: Target institute

        Returns:
            The request if one exists
        """
        stmt = (
            select(MembershipRequest)
            .where(
                and_(
                    MembershipRequest.user_id == user_id,
                    MembershipRequest.institute_id == institute_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def list_for_institute(
        self,
        institute_id: UUID,
        state: MembershipState,
    ) -> List[MembershipRequest]:
        """
        List an institute's requests in a given state, oldest first.

        Args:
            institute_id: Institute ID
            state: Request state filter

        Returns:
            Requests in request order
        """
        stmt = (
            select(MembershipRequest)
            .where(
                and_(
                    MembershipRequest.institute_id == institute_id,
                    MembershipRequest.state == state,
                )
            )
            .order_by(MembershipRequest.requested_at, MembershipRequest.id)
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars())

    async def list_for_user(
        self,
        user_id: UUID,
        state: Optional[MembershipState] = None,
    ) -> List[MembershipRequest]:
        conditions = [MembershipRequest.user_id == user_id]
        if state:
            conditions.append(MembershipRequest.state == state)

        stmt = (
            select(MembershipRequest)
            .where(and_(*conditions))
            .order_by(MembershipRequest.requested_at, MembershipRequest.id)
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars())

    async def transition(
        self,
        request_id: UUID,
        *,
        expected_state: MembershipState,
        expected_version: int,
        new_state: MembershipState,
        decided_at: datetime,
        group_id: Optional[UUID] = None,
    ) -> bool:
        """
        Compare-and-swap the request state.

        The update only matches while the row is still in ``expected_state``
        at ``expected_version``; a concurrent decision makes it match nothing.

        Returns:
            True if this caller performed the transition
        """
        values = {
            "state": new_state,
            "version": MembershipRequest.version + 1,
            "decided_at": decided_at,
        }
        if group_id is not None:
            values["group_id"] = group_id

        stmt = (
            update(MembershipRequest)
            .where(
                and_(
                    MembershipRequest.id == request_id,
                    MembershipRequest.state == expected_state,
                    MembershipRequest.version == expected_version,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def delete_in_state(
        self,
        request_id: UUID,
        state: MembershipState,
    ) -> bool:
        """
        Delete a request only while it is still in ``state``.

        Returns:
            True if a row was deleted
        """
        stmt = (
            delete(MembershipRequest)
            .where(
                and_(
                    MembershipRequest.id == request_id,
                    MembershipRequest.state == state,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def is_approved_member(
        self,
        user_id: UUID,
        institute_id: UUID,
    ) -> bool:
        request = await self.get_for_pair(user_id, institute_id)
        return request is not None and request.state == MembershipState.APPROVED
