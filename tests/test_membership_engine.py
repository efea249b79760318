"""
Tests for the membership lifecycle engine.

Covers the join/decide/unblock/leave state machine, its failure kinds and
its behavior under concurrent requests.
"""
import asyncio
from uuid import uuid4

import pytest

from instivault.core.errors import ErrorCode
from instivault.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    MembershipExistsError,
    NotFoundError,
)
from instivault.domain.enums import Decision, MembershipState
from instivault.domain.schemas.membership import GroupRef
from instivault.infrastructure.database.base import utcnow
from instivault.repositories.group import GroupRepository
from instivault.repositories.membership import MembershipRepository
from instivault.repositories.unit_of_work import UnitOfWork
from instivault.services.groups import GroupRegistry
from instivault.services.membership import MembershipEngine
from tests.fixtures.accounts import approve_into_group


class TestJoin:

    @pytest.mark.asyncio
    async def test_join_creates_pending_request(self, membership: MembershipEngine, institute, user):
        request = await membership.join(user, institute.institute_id)

        assert request.state == MembershipState.PENDING
        assert request.user.id == user.account_id
        assert request.institute.id == institute.institute_id
        assert request.decided_at is None
        assert request.group is None

    @pytest.mark.asyncio
    async def test_join_unknown_institute(self, membership: MembershipEngine, user):
        with pytest.raises(NotFoundError):
            await membership.join(user, uuid4())

    @pytest.mark.asyncio
    async def test_join_user_account_id_is_not_an_institute(self, membership: MembershipEngine, user, other_user):
        with pytest.raises(NotFoundError):
            await membership.join(user, other_user.account_id)

    @pytest.mark.asyncio
    async def test_institute_cannot_join(self, membership: MembershipEngine, institute, other_institute):
        with pytest.raises(ForbiddenError):
            await membership.join(institute, other_institute.institute_id)

    @pytest.mark.asyncio
    async def test_join_twice_while_pending(self, membership: MembershipEngine, institute, user):
        await membership.join(user, institute.institute_id)

        with pytest.raises(MembershipExistsError):
            await membership.join(user, institute.institute_id)

    @pytest.mark.asyncio
    async def test_join_while_approved(self, membership: MembershipEngine, institute, user):
        await approve_into_group(membership, institute, user, group_name="Cohort-A")

        with pytest.raises(MembershipExistsError):
            await membership.join(user, institute.institute_id)

    @pytest.mark.asyncio
    async def test_concurrent_joins_create_one_request(self, membership: MembershipEngine, institute, user):
        results = await asyncio.gather(
            *(membership.join(user, institute.institute_id) for _ in range(3)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert all(isinstance(error, MembershipExistsError) for error in failed)
        assert len(await membership.list_user_requests(user)) == 1


class TestDecide:

    @pytest.mark.asyncio
    async def test_approve_with_new_group(self, membership: MembershipEngine, groups: GroupRegistry, institute, user):
        request = await approve_into_group(membership, institute, user, group_name="Cohort-A")

        assert request.state == MembershipState.APPROVED
        assert request.decided_at is not None
        assert request.group.name == "Cohort-A"

        group = await groups.get_group(request.group.id)
        assert [member.id for member in group.members] == [user.account_id]

    @pytest.mark.asyncio
    async def test_approve_with_existing_group(self, membership: MembershipEngine, groups: GroupRegistry, institute, user):
        group = await groups.create_or_get(institute.institute_id, "Faculty")

        request = await approve_into_group(membership, institute, user, group_id=group.id)

        assert request.group.id == group.id
        assert len((await groups.get_group(group.id)).members) == 1

    @pytest.mark.asyncio
    async def test_new_group_name_matches_existing_case_insensitively(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
    ):
        group = await groups.create_or_get(institute.institute_id, "Cohort-A")

        request = await approve_into_group(membership, institute, user, group_name="COHORT-a")

        assert request.group.id == group.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "group_ref",
        [
            None,
            GroupRef(),
            GroupRef(new_group_name="   "),
            GroupRef(group_id=uuid4(), new_group_name="Both"),
        ],
    )
    async def test_approve_needs_exactly_one_group_reference(
        self,
        membership: MembershipEngine,
        institute,
        user,
        group_ref,
    ):
        await membership.join(user, institute.institute_id)

        with pytest.raises(InvalidArgumentError) as exc_info:
            await membership.decide(institute, user.account_id, Decision.APPROVE, group_ref)
        assert exc_info.value.code == ErrorCode.VAL_MISSING_GROUP_INFO

    @pytest.mark.asyncio
    async def test_approve_with_unknown_group_id(self, membership: MembershipEngine, institute, user):
        await membership.join(user, institute.institute_id)

        with pytest.raises(InvalidArgumentError):
            await membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(group_id=uuid4()))

    @pytest.mark.asyncio
    async def test_approve_into_foreign_group_is_forbidden_and_leaves_request_pending(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        other_institute,
        user,
    ):
        foreign = await groups.create_or_get(other_institute.institute_id, "Theirs")
        await membership.join(user, institute.institute_id)

        with pytest.raises(ForbiddenError):
            await membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(group_id=foreign.id))

        pending = await membership.list_requests(institute, MembershipState.PENDING)
        assert [request.user.id for request in pending] == [user.account_id]
        assert (await groups.get_group(foreign.id)).members == []

    @pytest.mark.asyncio
    async def test_decide_without_request(self, membership: MembershipEngine, institute, user):
        with pytest.raises(NotFoundError):
            await membership.decide(institute, user.account_id, Decision.REJECT)

    @pytest.mark.asyncio
    async def test_user_cannot_decide(self, membership: MembershipEngine, institute, user, other_user):
        await membership.join(other_user, institute.institute_id)

        with pytest.raises(ForbiddenError):
            await membership.decide(user, other_user.account_id, Decision.REJECT)

    @pytest.mark.asyncio
    async def test_other_institute_cannot_decide(self, membership: MembershipEngine, institute, other_institute, user):
        await membership.join(user, institute.institute_id)

        with pytest.raises(NotFoundError):
            await membership.decide(other_institute, user.account_id, Decision.REJECT)

    @pytest.mark.asyncio
    async def test_double_decision_conflicts(self, membership: MembershipEngine, institute, user):
        await membership.join(user, institute.institute_id)
        await membership.decide(institute, user.account_id, Decision.REJECT)

        with pytest.raises(ConflictError) as exc_info:
            await membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(new_group_name="Late"))
        assert exc_info.value.code == ErrorCode.MEM_ALREADY_DECIDED

    @pytest.mark.asyncio
    async def test_concurrent_approvals_add_member_once(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
    ):
        await membership.join(user, institute.institute_id)
        ref = GroupRef(new_group_name="Cohort-A")

        results = await asyncio.gather(
            membership.decide(institute, user.account_id, Decision.APPROVE, ref),
            membership.decide(institute, user.account_id, Decision.APPROVE, ref),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1 and isinstance(failed[0], ConflictError)

        [group] = await groups.list_groups(institute.institute_id)
        assert len(group.members) == 1

    @pytest.mark.asyncio
    async def test_concurrent_approve_and_reject(self, membership: MembershipEngine, groups: GroupRegistry, institute, user):
        await membership.join(user, institute.institute_id)

        results = await asyncio.gather(
            membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(new_group_name="Cohort-A")),
            membership.decide(institute, user.account_id, Decision.REJECT),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
        [request] = await membership.list_user_requests(user)
        winner = next(r for r in results if not isinstance(r, Exception))
        assert request.state == winner.state
        if request.state == MembershipState.REJECTED:
            assert await groups.list_groups(institute.institute_id) == []

    @pytest.mark.asyncio
    async def test_concurrent_new_group_name_creates_one_group(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
        other_user,
    ):
        await membership.join(user, institute.institute_id)
        await membership.join(other_user, institute.institute_id)

        await asyncio.gather(
            membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(new_group_name="Cohort-A")),
            membership.decide(institute, other_user.account_id, Decision.APPROVE, GroupRef(new_group_name="cohort-a")),
        )

        [group] = await groups.list_groups(institute.institute_id)
        assert {member.id for member in group.members} == {user.account_id, other_user.account_id}

    @pytest.mark.asyncio
    async def test_lost_group_name_race_is_retried(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
        monkeypatch,
    ):
        existing = await groups.create_or_get(institute.institute_id, "Cohort-A")
        await membership.join(user, institute.institute_id)

        original = GroupRepository.get_by_name
        calls = []

        async def stale_get_by_name(self, institute_id, name):
            # first lookup misses a group another transaction just created
            calls.append(name)
            if len(calls) == 1:
                return None
            return await original(self, institute_id, name)

        monkeypatch.setattr(GroupRepository, "get_by_name", stale_get_by_name)

        request = await membership.decide(
            institute, user.account_id, Decision.APPROVE, GroupRef(new_group_name="Cohort-A")
        )

        assert len(calls) == 2
        assert request.state == MembershipState.APPROVED
        assert request.group.id == existing.id
        [group] = await groups.list_groups(institute.institute_id)
        assert [member.id for member in group.members] == [user.account_id]

    @pytest.mark.asyncio
    async def test_group_name_race_gives_up_after_retries(
        self,
        session_factory,
        groups: GroupRegistry,
        institute,
        user,
        monkeypatch,
    ):
        engine = MembershipEngine(session_factory, groups=groups, max_retries=2)
        await groups.create_or_get(institute.institute_id, "Cohort-A")
        await engine.join(user, institute.institute_id)

        async def always_missing(self, institute_id, name):
            return None

        monkeypatch.setattr(GroupRepository, "get_by_name", always_missing)

        with pytest.raises(ConflictError) as exc_info:
            await engine.decide(institute, user.account_id, Decision.APPROVE, GroupRef(new_group_name="Cohort-A"))
        assert exc_info.value.code == ErrorCode.GRP_NAME_TAKEN

        [request] = await engine.list_user_requests(user)
        assert request.state == MembershipState.PENDING

    @pytest.mark.asyncio
    async def test_failed_state_flip_rolls_back_group_creation(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
        monkeypatch,
    ):
        await membership.join(user, institute.institute_id)

        async def lost_race(self, request_id, **kwargs):
            return False

        monkeypatch.setattr(MembershipRepository, "transition", lost_race)

        with pytest.raises(ConflictError):
            await membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(new_group_name="Cohort-A"))

        assert await groups.list_groups(institute.institute_id) == []

    @pytest.mark.asyncio
    async def test_member_row_inserted_by_another_worker_conflicts(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
        monkeypatch,
    ):
        group = await groups.create_or_get(institute.institute_id, "Cohort-A")
        await groups.add_member(group.id, user.account_id)
        await membership.join(user, institute.institute_id)

        async def stale_has_member(self, group_id, user_id):
            # the existence check ran before the other worker's insert committed
            return False

        monkeypatch.setattr(GroupRepository, "has_member", stale_has_member)

        with pytest.raises(ConflictError) as exc_info:
            await membership.decide(institute, user.account_id, Decision.APPROVE, GroupRef(group_id=group.id))
        assert exc_info.value.code == ErrorCode.MEM_ALREADY_DECIDED

        [request] = await membership.list_user_requests(user)
        assert request.state == MembershipState.PENDING


class TestCompareAndSwap:

    @pytest.mark.asyncio
    async def test_stale_version_does_not_transition(self, session_factory, membership: MembershipEngine, institute, user):
        await membership.join(user, institute.institute_id)

        async with UnitOfWork(session_factory) as first:
            stale = await first.memberships.get_for_pair(user.account_id, institute.institute_id)

            async with UnitOfWork(session_factory) as second:
                assert await second.memberships.transition(
                    stale.id,
                    expected_state=MembershipState.PENDING,
                    expected_version=stale.version,
                    new_state=MembershipState.REJECTED,
                    decided_at=utcnow(),
                )

            assert not await first.memberships.transition(
                stale.id,
                expected_state=MembershipState.PENDING,
                expected_version=stale.version,
                new_state=MembershipState.APPROVED,
                decided_at=utcnow(),
            )

        [request] = await membership.list_user_requests(user)
        assert request.state == MembershipState.REJECTED


class TestUnblock:

    @pytest.mark.asyncio
    async def test_rejected_request_blocks_join_until_unblocked(self, membership: MembershipEngine, institute, user):
        await membership.join(user, institute.institute_id)
        await membership.decide(institute, user.account_id, Decision.REJECT)

        with pytest.raises(MembershipExistsError):
            await membership.join(user, institute.institute_id)

        await membership.unblock(institute, user.account_id)
        request = await membership.join(user, institute.institute_id)

        assert request.state == MembershipState.PENDING
        assert request.decided_at is None

    @pytest.mark.asyncio
    async def test_unblock_requires_rejected_request(self, membership: MembershipEngine, institute, user):
        with pytest.raises(NotFoundError):
            await membership.unblock(institute, user.account_id)

        await membership.join(user, institute.institute_id)
        with pytest.raises(NotFoundError):
            await membership.unblock(institute, user.account_id)


class TestLeave:

    @pytest.mark.asyncio
    async def test_leave_removes_request_and_group_memberships(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
    ):
        request = await approve_into_group(membership, institute, user, group_name="Cohort-A")
        extra = await groups.create_or_get(institute.institute_id, "Lab")
        await membership.assign_member(institute, extra.id, user.account_id)

        await membership.leave(user, institute.institute_id)

        assert await membership.list_user_institutes(user) == []
        assert (await groups.get_group(request.group.id)).members == []
        assert (await groups.get_group(extra.id)).members == []

        rejoined = await membership.join(user, institute.institute_id)
        assert rejoined.state == MembershipState.PENDING

    @pytest.mark.asyncio
    async def test_leave_requires_approved_membership(self, membership: MembershipEngine, institute, user):
        with pytest.raises(NotFoundError):
            await membership.leave(user, institute.institute_id)

        await membership.join(user, institute.institute_id)
        with pytest.raises(NotFoundError):
            await membership.leave(user, institute.institute_id)


class TestAssignment:

    @pytest.mark.asyncio
    async def test_assign_requires_approved_member(self, membership: MembershipEngine, groups: GroupRegistry, institute, user):
        group = await groups.create_or_get(institute.institute_id, "Lab")
        await membership.join(user, institute.institute_id)

        with pytest.raises(InvalidArgumentError) as exc_info:
            await membership.assign_member(institute, group.id, user.account_id)
        assert exc_info.value.code == ErrorCode.MEM_NOT_A_MEMBER

    @pytest.mark.asyncio
    async def test_assign_to_foreign_group_is_forbidden(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        other_institute,
        user,
    ):
        await approve_into_group(membership, institute, user, group_name="Cohort-A")
        foreign = await groups.create_or_get(other_institute.institute_id, "Theirs")

        with pytest.raises(ForbiddenError):
            await membership.assign_member(institute, foreign.id, user.account_id)

    @pytest.mark.asyncio
    async def test_unassign(self, membership: MembershipEngine, institute, user):
        request = await approve_into_group(membership, institute, user, group_name="Cohort-A")

        group = await membership.unassign_member(institute, request.group.id, user.account_id)

        assert group.members == []

    @pytest.mark.asyncio
    async def test_assign_racing_insert_conflicts(
        self,
        membership: MembershipEngine,
        groups: GroupRegistry,
        institute,
        user,
        monkeypatch,
    ):
        await approve_into_group(membership, institute, user, group_name="Cohort-A")
        lab = await groups.create_or_get(institute.institute_id, "Lab")
        await groups.add_member(lab.id, user.account_id)

        async def stale_has_member(self, group_id, user_id):
            return False

        monkeypatch.setattr(GroupRepository, "has_member", stale_has_member)

        with pytest.raises(ConflictError) as exc_info:
            await membership.assign_member(institute, lab.id, user.account_id)
        assert exc_info.value.code == ErrorCode.GRP_MEMBERSHIP_CHANGED
        assert exc_info.value.status_code == 409


class TestListings:

    @pytest.mark.asyncio
    async def test_pending_ordered_by_request_time(self, membership: MembershipEngine, institute, user, other_user):
        await membership.join(other_user, institute.institute_id)
        await membership.join(user, institute.institute_id)

        pending = await membership.list_requests(institute, MembershipState.PENDING)

        assert [request.user.id for request in pending] == [other_user.account_id, user.account_id]

    @pytest.mark.asyncio
    async def test_rejected_and_linked_users(self, membership: MembershipEngine, institute, user, other_user):
        await approve_into_group(membership, institute, user, group_name="Cohort-A")
        await membership.join(other_user, institute.institute_id)
        await membership.decide(institute, other_user.account_id, Decision.REJECT)

        linked = await membership.list_linked_users(institute)
        rejected = await membership.list_requests(institute, MembershipState.REJECTED)

        assert [(u.id, u.group.name) for u in linked] == [(user.account_id, "Cohort-A")]
        assert [request.user.id for request in rejected] == [other_user.account_id]
        assert await membership.list_requests(institute, MembershipState.PENDING) == []

    @pytest.mark.asyncio
    async def test_user_institutes(self, membership: MembershipEngine, institute, other_institute, user):
        await approve_into_group(membership, institute, user, group_name="Cohort-A")
        await membership.join(user, other_institute.institute_id)

        institutes = await membership.list_user_institutes(user)
        requests = await membership.list_user_requests(user)

        assert [i.id for i in institutes] == [institute.institute_id]
        assert institutes[0].admin_name == "Dana Park"
        assert {r.state for r in requests} == {MembershipState.APPROVED, MembershipState.PENDING}
