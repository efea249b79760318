"""
Membership lifecycle engine.

State machine per (user, institute) pair::

    (none) --join--> pending --approve--> approved --leave--> (none)
                     pending --reject---> rejected --unblock--> (none)

Every transition runs in one unit of work under the institute's lock;
decisions are compare-and-swap updates on (state, version) so a second
decision on the same record can never succeed.
"""
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.concurrency import KeyedLock, institute_locks
from instivault.core.config import get_settings
from instivault.core.errors import ErrorCode
from instivault.core.exceptions import (
    ConflictError,
    ForbiddenError,
    GroupNameTakenError,
    InvalidArgumentError,
    MembershipExistsError,
    NotFoundError,
)
from instivault.domain.enums import AccountRole, Decision, MembershipState
from instivault.domain.principals import Principal, require_institute, require_user
from instivault.domain.schemas.membership import (
    GroupRef,
    GroupSummary,
    GroupView,
    LinkedInstitute,
    LinkedUser,
    MembershipRequestView,
)
from instivault.infrastructure.database.base import utcnow
from instivault.infrastructure.database.models import Group, MembershipRequest
from instivault.repositories.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork
from instivault.services.groups import GroupRegistry

logger = structlog.get_logger(__name__)


class MembershipEngine:
    """Join, decide, unblock and leave, plus the dashboard listings."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        groups: Optional[GroupRegistry] = None,
        locks: KeyedLock = institute_locks,
        max_retries: Optional[int] = None,
        revoke_grants_on_leave: Optional[bool] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.groups = groups or GroupRegistry(session_factory)
        self.locks = locks
        self.max_retries = max_retries or settings.APPROVAL_MAX_RETRIES
        if revoke_grants_on_leave is None:
            revoke_grants_on_leave = settings.REVOKE_GRANTS_ON_LEAVE
        self.revoke_grants_on_leave = revoke_grants_on_leave

    async def join(self, principal: Principal, institute_id: UUID) -> MembershipRequestView:
        """
        Create a pending request for the calling user.

        Raises:
            ForbiddenError: Caller is not a user
            NotFoundError: ``institute_id`` is not an institute account
            MembershipExistsError: A request for the pair is on record,
                whatever its state; rejected requests block until unblocked
        """
        user = require_user(principal)

        async with self.locks.hold(institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                institute = await uow.accounts.get_with_role(institute_id, AccountRole.INSTITUTE)
                if not institute:
                    raise NotFoundError(
                        code=ErrorCode.MEM_INSTITUTE_NOT_FOUND,
                        details={"institute_id": str(institute_id)},
                    )

                existing = await uow.memberships.get_for_pair(user.account_id, institute_id)
                if existing:
                    raise MembershipExistsError(details={"state": existing.state.value})

                try:
                    request = await uow.memberships.create(
                        {
                            "user_id": user.account_id,
                            "institute_id": institute_id,
                            "state": MembershipState.PENDING,
                            "requested_at": utcnow(),
                        }
                    )
                except IntegrityError:
                    raise MembershipExistsError()

                view = await self._request_view(uow, user.account_id, institute_id)

        logger.info(
            "membership_requested",
            request_id=str(request.id),
            user_id=str(user.account_id),
            institute_id=str(institute_id),
        )
        return view

    async def decide(
        self,
        principal: Principal,
        user_id: UUID,
        decision: Decision,
        group_ref: Optional[GroupRef] = None,
    ) -> MembershipRequestView:
        """
        Approve or reject a pending request.

        Approval resolves or creates the group, adds the member and flips
        the state in one transaction. A concurrent creation of the same
        group name aborts the transaction; it is retried and then finds the
        group.

        Args:
            principal: Deciding institute
            user_id: Requesting user
            decision: approve or reject
            group_ref: Exactly one of group id or new group name, for approve

        Raises:
            ForbiddenError: Caller is not an institute, or the group
                belongs to another institute
            InvalidArgumentError: Missing/ambiguous group info or unknown group id
            NotFoundError: No request for the pair
            ConflictError: The request is no longer pending
        """
        admin = require_institute(principal)

        if decision == Decision.APPROVE:
            has_id = group_ref is not None and group_ref.group_id is not None
            has_name = group_ref is not None and bool((group_ref.new_group_name or "").strip())
            if has_id == has_name:
                raise InvalidArgumentError(code=ErrorCode.VAL_MISSING_GROUP_INFO)

        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._decide_once(admin.institute_id, user_id, decision, group_ref)
            except GroupNameTakenError:
                logger.info(
                    "approval_retry",
                    institute_id=str(admin.institute_id),
                    user_id=str(user_id),
                    attempt=attempt,
                )

        raise ConflictError(code=ErrorCode.GRP_NAME_TAKEN)

    async def _decide_once(
        self,
        institute_id: UUID,
        user_id: UUID,
        decision: Decision,
        group_ref: Optional[GroupRef],
    ) -> MembershipRequestView:
        async with self.locks.hold(institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                request = await uow.memberships.get_for_pair(user_id, institute_id)
                if not request:
                    raise NotFoundError(code=ErrorCode.MEM_REQUEST_NOT_FOUND)
                if request.state != MembershipState.PENDING:
                    raise ConflictError(
                        code=ErrorCode.MEM_ALREADY_DECIDED,
                        details={"state": request.state.value},
                    )

                group: Optional[Group] = None
                new_state = MembershipState.REJECTED
                if decision == Decision.APPROVE:
                    group = await self._resolve_group(uow, institute_id, group_ref)
                    try:
                        await uow.groups.add_member(group.id, user_id)
                    except IntegrityError:
                        # another worker approved the same request into this group first
                        raise ConflictError(code=ErrorCode.MEM_ALREADY_DECIDED)
                    new_state = MembershipState.APPROVED

                swapped = await uow.memberships.transition(
                    request.id,
                    expected_state=MembershipState.PENDING,
                    expected_version=request.version,
                    new_state=new_state,
                    decided_at=utcnow(),
                    group_id=group.id if group else None,
                )
                if not swapped:
                    raise ConflictError(code=ErrorCode.MEM_ALREADY_DECIDED)

                view = await self._request_view(uow, user_id, institute_id)

        logger.info(
            "membership_approved" if new_state == MembershipState.APPROVED else "membership_rejected",
            request_id=str(view.id),
            user_id=str(user_id),
            institute_id=str(institute_id),
            group_id=str(group.id) if group else None,
        )
        return view

    async def _resolve_group(
        self,
        uow: UnitOfWork,
        institute_id: UUID,
        group_ref: GroupRef,
    ) -> Group:
        if group_ref.group_id is not None:
            group = await uow.groups.get(group_ref.group_id)
            if not group:
                raise InvalidArgumentError(
                    code=ErrorCode.GRP_NOT_FOUND,
                    details={"group_id": str(group_ref.group_id)},
                )
            if group.institute_id != institute_id:
                raise ForbiddenError(code=ErrorCode.GRP_FOREIGN_INSTITUTE)
            return group
        return await self.groups.ensure(uow, institute_id, group_ref.new_group_name)

    async def unblock(self, principal: Principal, user_id: UUID) -> None:
        """
        Delete a rejected request so the user may apply again.

        Raises:
            NotFoundError: No rejected request for the pair
        """
        admin = require_institute(principal)

        async with self.locks.hold(admin.institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                request = await uow.memberships.get_for_pair(user_id, admin.institute_id)
                if (
                    not request
                    or request.state != MembershipState.REJECTED
                    or not await uow.memberships.delete_in_state(request.id, MembershipState.REJECTED)
                ):
                    raise NotFoundError(code=ErrorCode.MEM_REQUEST_NOT_FOUND)

        logger.info(
            "membership_unblocked",
            user_id=str(user_id),
            institute_id=str(admin.institute_id),
        )

    async def leave(self, principal: Principal, institute_id: UUID) -> None:
        """
        Drop the calling user's approved membership.

        The record is deleted and the user removed from every group of the
        institute in the same transaction. Grants already materialized are
        kept unless grant revocation on leave is configured.

        Raises:
            NotFoundError: No approved request for the pair
        """
        user = require_user(principal)

        async with self.locks.hold(institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                request = await uow.memberships.get_for_pair(user.account_id, institute_id)
                if (
                    not request
                    or request.state != MembershipState.APPROVED
                    or not await uow.memberships.delete_in_state(request.id, MembershipState.APPROVED)
                ):
                    raise NotFoundError(code=ErrorCode.MEM_REQUEST_NOT_FOUND)

                await self.groups.remove_member_everywhere(institute_id, user.account_id, uow=uow)

                revoked = 0
                if self.revoke_grants_on_leave:
                    revoked = await uow.grants.delete_for_institute_documents(institute_id, user.account_id)

        logger.info(
            "membership_left",
            user_id=str(user.account_id),
            institute_id=str(institute_id),
            grants_revoked=revoked,
        )

    async def assign_member(self, principal: Principal, group_id: UUID, user_id: UUID) -> GroupView:
        """
        Add an approved member to a further group of the institute.

        Raises:
            NotFoundError: Unknown group
            ForbiddenError: Group of another institute
            InvalidArgumentError: User is not an approved member
        """
        admin = require_institute(principal)

        async with self.locks.hold(admin.institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                await self.groups.owned(uow, group_id, admin.institute_id)
                if not await uow.memberships.is_approved_member(user_id, admin.institute_id):
                    raise InvalidArgumentError(
                        code=ErrorCode.MEM_NOT_A_MEMBER,
                        details={"user_id": str(user_id)},
                    )
                return await self.groups.add_member(group_id, user_id, uow=uow)

    async def unassign_member(self, principal: Principal, group_id: UUID, user_id: UUID) -> GroupView:
        admin = require_institute(principal)

        async with self.locks.hold(admin.institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                await self.groups.owned(uow, group_id, admin.institute_id)
                return await self.groups.remove_member(group_id, user_id, uow=uow)

    async def list_requests(
        self,
        principal: Principal,
        state: MembershipState,
    ) -> List[MembershipRequestView]:
        """Pending or rejected requests of the calling institute, oldest first."""
        admin = require_institute(principal)
        if state == MembershipState.APPROVED:
            raise InvalidArgumentError("Use the linked users listing for approved members")

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            requests = await uow.memberships.list_for_institute(admin.institute_id, state)
            return [MembershipRequestView.model_validate(request) for request in requests]

    async def list_linked_users(self, principal: Principal) -> List[LinkedUser]:
        admin = require_institute(principal)

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            requests = await uow.memberships.list_for_institute(
                admin.institute_id, MembershipState.APPROVED
            )
            return [
                LinkedUser(
                    id=request.user.id,
                    name=request.user.display_name,
                    email=request.user.email,
                    approved_at=request.decided_at,
                    group=GroupSummary.model_validate(request.group) if request.group else None,
                )
                for request in requests
            ]

    async def list_user_institutes(self, principal: Principal) -> List[LinkedInstitute]:
        user = require_user(principal)

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            requests = await uow.memberships.list_for_user(user.account_id, MembershipState.APPROVED)
            return [
                LinkedInstitute(
                    id=request.institute.id,
                    name=request.institute.display_name,
                    admin_name=request.institute.admin_name,
                    email=request.institute.email,
                    joined_at=request.decided_at,
                )
                for request in requests
            ]

    async def list_user_requests(self, principal: Principal) -> List[MembershipRequestView]:
        user = require_user(principal)

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            requests = await uow.memberships.list_for_user(user.account_id)
            return [MembershipRequestView.model_validate(request) for request in requests]

    @staticmethod
    async def _request_view(uow: UnitOfWork, user_id: UUID, institute_id: UUID) -> MembershipRequestView:
        request: Optional[MembershipRequest] = await uow.memberships.get_for_pair(user_id, institute_id)
        return MembershipRequestView.model_validate(request)
