"""
Group repository.
"""
from typing import Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from instivault.infrastructure.database.models import Group, GroupMember
from instivault.repositories.base import BaseRepository


def normalize_group_name(name: str) -> str:
    """Case-insensitive lookup key for a group name."""
    return " ".join(name.split()).casefold()


class GroupRepository(BaseRepository[Group]):
    """Repository for groups and their member rows."""

    def __init__(self, db: AsyncSession):
        super().__init__(Group, db)

    async def get_fresh(self, group_id: UUID) -> Optional[Group]:
        """Get a group with its member list reloaded."""
        stmt = (
            select(Group)
            .where(Group.id == group_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, group_ids: Iterable[UUID]) -> List[Group]:
        ids = list(group_ids)
        if not ids:
            return []
        stmt = select(Group).where(Group.id.in_(ids))
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def get_by_name(
        self,
        institute_id: UUID,
        name: str,
    ) -> Optional[Group]:
        """
        Case-insensitive lookup of a group by name within an institute.

        Args:
            institute_id: Owning institute
            name: Group name in any casing

        Returns:
            Group if found
        """
        stmt = select(Group).where(
            and_(
                Group.institute_id == institute_id,
                Group.name_key == normalize_group_name(name),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def insert(
        self,
        institute_id: UUID,
        name: str,
    ) -> Optional[Group]:
        """
        Insert a group, returning None if the name is already taken.

        A unique-index violation leaves the transaction unusable on most
        backends, so callers treat None as "retry the whole unit of work".
        """
        group = Group(
            institute_id=institute_id,
            name=" ".join(name.split()),
            name_key=normalize_group_name(name),
        )
        self.db.add(group)
        try:
            await self.db.flush()
        except IntegrityError:
            return None
        return group

    async def list_for_institute(self, institute_id: UUID) -> List[Group]:
        stmt = (
            select(Group)
            .where(Group.institute_id == institute_id)
            .order_by(Group.name_key)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def has_member(self, group_id: UUID, user_id: UUID) -> bool:
        stmt = select(GroupMember).where(
            and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add_member(self, group_id: UUID, user_id: UUID) -> bool:
        """
        Add a member row.

        Returns:
            True if the member was added, False if already present
        """
        if await self.has_member(group_id, user_id):
            return False
        self.db.add(GroupMember(group_id=group_id, user_id=user_id))
        await self.db.flush()
        return True

    async def remove_member(self, group_id: UUID, user_id: UUID) -> bool:
        stmt = (
            delete(GroupMember)
            .where(and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def remove_member_from_institute(self, institute_id: UUID, user_id: UUID) -> int:
        """
        Remove a user from every group of an institute.

        Returns:
            Number of memberships removed
        """
        institute_groups = select(Group.id).where(Group.institute_id == institute_id)
        stmt = (
            delete(GroupMember)
            .where(
                and_(
                    GroupMember.user_id == user_id,
                    GroupMember.group_id.in_(institute_groups),
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def member_ids(self, group_ids: Iterable[UUID]) -> Set[UUID]:
        """Distinct member ids across the given groups."""
        ids = list(group_ids)
        if not ids:
            return set()
        stmt = select(GroupMember.user_id).where(GroupMember.group_id.in_(ids)).distinct()
        result = await self.db.execute(stmt)
        return set(result.scalars())
