"""
Group registry.

Per-institute named collections of member user ids. Every operation can
either open its own unit of work or take part in the caller's, so that an
approval can resolve-or-create a group and add the member in a single
transaction.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.errors import ErrorCode
from instivault.core.exceptions import (
    ConflictError,
    ForbiddenError,
    GroupNameTakenError,
    InvalidArgumentError,
    NotFoundError,
)
from instivault.domain.schemas.membership import GroupView
from instivault.infrastructure.database.models import Group
from instivault.repositories.group import normalize_group_name
from instivault.repositories.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork

logger = structlog.get_logger(__name__)


class GroupRegistry:
    """Creates, looks up and edits institute groups."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _unit(self, uow: Optional[UnitOfWork], read_only: bool = False) -> AsyncIterator[UnitOfWork]:
        if uow is not None:
            yield uow
            return
        unit_class = ReadOnlyUnitOfWork if read_only else UnitOfWork
        async with unit_class(self.session_factory) as own:
            yield own

    # Participation API: used inside an enclosing unit of work

    async def ensure(self, uow: UnitOfWork, institute_id: UUID, name: str) -> Group:
        """
        Resolve a group by case-insensitive name, creating it if absent.

        Raises:
            InvalidArgumentError: Blank name
            GroupNameTakenError: A concurrent transaction inserted the same
                name first; the caller must retry its whole unit of work
        """
        if not name or not normalize_group_name(name):
            raise InvalidArgumentError("Group name must not be empty", code=ErrorCode.VAL_MISSING_GROUP_INFO)

        existing = await uow.groups.get_by_name(institute_id, name)
        if existing:
            return existing

        group = await uow.groups.insert(institute_id, name)
        if group is None:
            logger.info("group_name_race_lost", institute_id=str(institute_id))
            raise GroupNameTakenError(institute_id, name)

        logger.info("group_created", group_id=str(group.id), institute_id=str(institute_id))
        return group

    async def owned(self, uow: UnitOfWork, group_id: UUID, institute_id: UUID) -> Group:
        """
        Load a group and check it belongs to ``institute_id``.

        Raises:
            NotFoundError: Unknown group
            ForbiddenError: Group of another institute
        """
        group = await uow.groups.get(group_id)
        if not group:
            raise NotFoundError(code=ErrorCode.GRP_NOT_FOUND, details={"group_id": str(group_id)})
        if group.institute_id != institute_id:
            raise ForbiddenError(code=ErrorCode.GRP_FOREIGN_INSTITUTE, details={"group_id": str(group_id)})
        return group

    # Standalone API

    async def create_or_get(
        self,
        institute_id: UUID,
        name: str,
        uow: Optional[UnitOfWork] = None,
    ) -> GroupView:
        async with self._unit(uow) as unit:
            group = await self.ensure(unit, institute_id, name)
            return await self._view(unit, group.id)

    async def add_member(
        self,
        group_id: UUID,
        user_id: UUID,
        uow: Optional[UnitOfWork] = None,
    ) -> GroupView:
        """Add a member; a no-op if already present."""
        async with self._unit(uow) as unit:
            if not await unit.groups.get(group_id):
                raise NotFoundError(code=ErrorCode.GRP_NOT_FOUND)
            try:
                added = await unit.groups.add_member(group_id, user_id)
            except IntegrityError:
                raise ConflictError(code=ErrorCode.GRP_MEMBERSHIP_CHANGED)
            if added:
                logger.info("group_member_added", group_id=str(group_id), user_id=str(user_id))
            return await self._view(unit, group_id)

    async def remove_member(
        self,
        group_id: UUID,
        user_id: UUID,
        uow: Optional[UnitOfWork] = None,
    ) -> GroupView:
        """Remove a member; a no-op if absent."""
        async with self._unit(uow) as unit:
            if not await unit.groups.get(group_id):
                raise NotFoundError(code=ErrorCode.GRP_NOT_FOUND)
            if await unit.groups.remove_member(group_id, user_id):
                logger.info("group_member_removed", group_id=str(group_id), user_id=str(user_id))
            return await self._view(unit, group_id)

    async def remove_member_everywhere(
        self,
        institute_id: UUID,
        user_id: UUID,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        async with self._unit(uow) as unit:
            removed = await unit.groups.remove_member_from_institute(institute_id, user_id)
        if removed:
            logger.info(
                "group_memberships_cleared",
                institute_id=str(institute_id),
                user_id=str(user_id),
                removed=removed,
            )
        return removed

    async def list_groups(self, institute_id: UUID) -> List[GroupView]:
        async with self._unit(None, read_only=True) as unit:
            groups = await unit.groups.list_for_institute(institute_id)
            return [GroupView.model_validate(group) for group in groups]

    async def get_group(self, group_id: UUID, institute_id: Optional[UUID] = None) -> GroupView:
        """
        Get a group with its members.

        Args:
            group_id: Group ID
            institute_id: When given, the group must belong to it

        Raises:
            NotFoundError: Unknown group
            ForbiddenError: Group of another institute
        """
        async with self._unit(None, read_only=True) as unit:
            if institute_id is not None:
                await self.owned(unit, group_id, institute_id)
            return await self._view(unit, group_id)

    @staticmethod
    async def _view(uow: UnitOfWork, group_id: UUID) -> GroupView:
        group = await uow.groups.get_fresh(group_id)
        if not group:
            raise NotFoundError(code=ErrorCode.GRP_NOT_FOUND, details={"group_id": str(group_id)})
        return GroupView.model_validate(group)
