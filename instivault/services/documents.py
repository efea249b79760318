"""
Document distribution engine.

Binds an uploaded document to institute groups under a policy, expands the
groups into one access grant per distinct recipient at distribution time,
and checks those grants when a recipient opens the document.

Grants are a snapshot: members who join a group later do not receive
earlier documents, and leaving a group does not revoke what was already
granted unless revocation on leave is configured.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.concurrency import KeyedLock, grant_locks, institute_locks
from instivault.core.config import get_settings
from instivault.core.errors import ErrorCode
from instivault.core.exceptions import (
    AlreadyConsumedError,
    ExpiredError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from instivault.domain.principals import Principal, UserPrincipal, require_institute, require_user
from instivault.domain.schemas.document import DocumentPolicy, DocumentView, GrantView, InboxItem
from instivault.domain.schemas.membership import GroupSummary
from instivault.infrastructure.database.base import utcnow
from instivault.infrastructure.database.models import AccessGrant, Document, Group
from instivault.infrastructure.storage.local import LocalDocumentStorage
from instivault.repositories.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork
from instivault.services.watermark import apply_watermark, watermark_text

logger = structlog.get_logger(__name__)

# a target group is named by id or by name
GroupTarget = Union[UUID, str]


def grant_is_valid(grant: AccessGrant, now: datetime) -> bool:
    """A grant resolves iff it has not expired and, if view-once, is unused."""
    if now >= grant.expires_at:
        return False
    return not (grant.view_once and grant.consumed_at is not None)


def grant_view(grant: AccessGrant, now: datetime) -> GrantView:
    return GrantView(
        id=grant.id,
        document_id=grant.document_id,
        user_id=grant.user_id,
        expires_at=grant.expires_at,
        view_once=grant.view_once,
        consumed_at=grant.consumed_at,
        is_valid=grant_is_valid(grant, now),
    )


def document_view(document: Document, groups: Sequence[Group], recipient_count: int) -> DocumentView:
    return DocumentView(
        id=document.id,
        institute_id=document.institute_id,
        filename=document.filename,
        content_type=document.content_type,
        size_bytes=document.size_bytes,
        created_at=document.created_at,
        policy=DocumentPolicy(
            expiry_days=document.expiry_days,
            view_once=document.view_once,
            watermark=document.watermark,
        ),
        target_groups=[GroupSummary.model_validate(group) for group in groups],
        recipient_count=recipient_count,
    )


@dataclass(frozen=True)
class ResolvedAccess:
    """Outcome of a successful access check."""
    grant: GrantView
    document_id: UUID
    institute_id: UUID
    storage_ref: str
    filename: str
    content_type: str
    watermark: Optional[str] = None


@dataclass(frozen=True)
class OpenedDocument:
    """Document content as delivered to one recipient."""
    content: bytes
    filename: str
    content_type: str
    watermark: Optional[str] = None


class DocumentDistributionEngine:
    """Distribution, access resolution and inbox listings."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        storage: Optional[LocalDocumentStorage] = None,
        locks: KeyedLock = institute_locks,
        access_locks: KeyedLock = grant_locks,
    ):
        self.settings = get_settings()
        self.session_factory = session_factory
        self.storage = storage or LocalDocumentStorage()
        self.locks = locks
        self.access_locks = access_locks

    def _validate(self, target_group_ids: Sequence[GroupTarget], policy: DocumentPolicy) -> List[GroupTarget]:
        if not target_group_ids:
            raise InvalidArgumentError(code=ErrorCode.VAL_NO_RECIPIENTS)
        if policy.expiry_days < 1 or policy.expiry_days > self.settings.MAX_EXPIRY_DAYS:
            raise InvalidArgumentError(
                f"expiryDays must be between 1 and {self.settings.MAX_EXPIRY_DAYS}",
                code=ErrorCode.VAL_INVALID_POLICY,
                details={"expiry_days": policy.expiry_days},
            )
        # keep first occurrence order
        return list(dict.fromkeys(target_group_ids))

    def _check_file(self, filename: str, size_bytes: int) -> str:
        suffix = Path(filename).suffix.lower()
        if suffix not in self.settings.ALLOWED_UPLOAD_EXTENSIONS:
            raise InvalidArgumentError(
                f"File type {suffix or '(none)'} is not allowed",
                code=ErrorCode.VAL_FILE_REJECTED,
            )
        if size_bytes > self.settings.max_upload_size_bytes:
            raise InvalidArgumentError(
                f"File exceeds {self.settings.MAX_UPLOAD_SIZE_MB} MB",
                code=ErrorCode.VAL_FILE_REJECTED,
            )
        if size_bytes == 0:
            raise InvalidArgumentError("File is empty", code=ErrorCode.VAL_NO_FILE)
        return suffix

    async def publish(
        self,
        principal: Principal,
        content: bytes,
        filename: str,
        content_type: str,
        target_group_ids: Sequence[GroupTarget],
        policy: DocumentPolicy,
    ) -> DocumentView:
        """
        Store an uploaded file and distribute it.

        The stored file is removed again if distribution fails.
        """
        admin = require_institute(principal)
        self._validate(target_group_ids, policy)
        suffix = self._check_file(filename, len(content))

        storage_ref = await self.storage.save(admin.institute_id, content, suffix)
        try:
            return await self.distribute(
                admin,
                storage_ref=storage_ref,
                target_group_ids=target_group_ids,
                policy=policy,
                filename=filename,
                content_type=content_type,
                size_bytes=len(content),
            )
        except Exception:
            await self.storage.delete(storage_ref)
            raise

    async def distribute(
        self,
        principal: Principal,
        storage_ref: str,
        target_group_ids: Sequence[GroupTarget],
        policy: DocumentPolicy,
        filename: str,
        content_type: str,
        size_bytes: int,
    ) -> DocumentView:
        """
        Create a document and one grant per distinct recipient.

        Targets are group ids or group names of the calling institute;
        recipients are the union of their current members.

        Raises:
            ForbiddenError: Caller is not an institute, or a target group
                belongs to another institute
            InvalidArgumentError: No targets or expiry out of range
            NotFoundError: Unknown group id or name
        """
        admin = require_institute(principal)
        targets = self._validate(target_group_ids, policy)

        async with self.locks.hold(admin.institute_id):
            async with UnitOfWork(self.session_factory) as uow:
                groups = await self._load_targets(uow, admin.institute_id, targets)
                group_ids = [group.id for group in groups]
                recipients = await uow.groups.member_ids(group_ids)

                created_at = utcnow()
                document = await uow.documents.create(
                    {
                        "institute_id": admin.institute_id,
                        "owner_admin_id": admin.account_id,
                        "storage_ref": storage_ref,
                        "filename": filename,
                        "content_type": content_type or "application/octet-stream",
                        "size_bytes": size_bytes,
                        "created_at": created_at,
                        "expiry_days": policy.expiry_days,
                        "view_once": policy.view_once,
                        "watermark": policy.watermark,
                    }
                )
                await uow.documents.add_targets(document.id, group_ids)
                await uow.grants.create_many(
                    document.id,
                    sorted(recipients),
                    expires_at=created_at + timedelta(days=policy.expiry_days),
                    view_once=policy.view_once,
                )

                view = document_view(document, groups, len(recipients))

        logger.info(
            "document_distributed",
            document_id=str(view.id),
            institute_id=str(admin.institute_id),
            groups=len(group_ids),
            recipients=view.recipient_count,
        )
        return view

    @staticmethod
    async def _load_targets(
        uow: UnitOfWork,
        institute_id: UUID,
        targets: Sequence[GroupTarget],
    ) -> List[Group]:
        """
        Resolve target groups given by id or by name, in order, once each.

        Raises:
            NotFoundError: Unknown group id or name
            ForbiddenError: Group of another institute
        """
        found = {
            group.id: group
            for group in await uow.groups.get_many(t for t in targets if isinstance(t, UUID))
        }
        groups: Dict[UUID, Group] = {}
        missing = []
        for target in targets:
            if isinstance(target, UUID):
                group = found.get(target)
            else:
                group = await uow.groups.get_by_name(institute_id, target)
            if group is None:
                missing.append(str(target))
                continue
            if group.institute_id != institute_id:
                raise ForbiddenError(code=ErrorCode.GRP_FOREIGN_INSTITUTE)
            groups.setdefault(group.id, group)

        if missing:
            raise NotFoundError(code=ErrorCode.GRP_NOT_FOUND, details={"groups": missing})
        return list(groups.values())

    async def _resolve(self, uow: UnitOfWork, document_id: UUID, user: UserPrincipal, now: datetime) -> ResolvedAccess:
        grant = await uow.grants.get_for_recipient(document_id, user.account_id)
        if not grant:
            raise ForbiddenError(code=ErrorCode.DOC_NO_GRANT)
        if now >= grant.expires_at:
            raise ExpiredError()
        if grant.view_once:
            if grant.consumed_at is not None or not await uow.grants.consume(grant.id, now):
                raise AlreadyConsumedError()

        document = grant.document
        stamp = None
        if document.watermark:
            stamp = watermark_text(user.display_name, user.email, grant.id, now)

        view = grant_view(grant, now)
        if grant.view_once:
            view = view.model_copy(update={"consumed_at": now, "is_valid": False})

        return ResolvedAccess(
            grant=view,
            document_id=document.id,
            institute_id=document.institute_id,
            storage_ref=document.storage_ref,
            filename=document.filename,
            content_type=document.content_type,
            watermark=stamp,
        )

    async def resolve_access(
        self,
        document_id: UUID,
        principal: Principal,
        now: Optional[datetime] = None,
    ) -> ResolvedAccess:
        """
        Check the caller's grant and, for view-once grants, consume it.

        Args:
            document_id: Document ID
            principal: Requesting user
            now: Reference time, defaults to the current time

        Raises:
            ForbiddenError: No grant for this user
            ExpiredError: ``now`` is at or past the grant's expiry
            AlreadyConsumedError: View-once grant already used, including
                by a concurrent request that won the consumption
        """
        user = require_user(principal)
        now = now or utcnow()

        async with self.access_locks.hold((document_id, user.account_id)):
            async with UnitOfWork(self.session_factory) as uow:
                resolved = await self._resolve(uow, document_id, user, now)

        logger.info(
            "access_resolved",
            document_id=str(document_id),
            user_id=str(user.account_id),
            grant_id=str(resolved.grant.id),
            view_once=resolved.grant.view_once,
        )
        return resolved

    async def open_document(
        self,
        document_id: UUID,
        principal: Principal,
        now: Optional[datetime] = None,
    ) -> OpenedDocument:
        """
        Resolve access and deliver the content, watermarked if the policy
        asks for it.

        Content is read and stamped before the transaction commits, so a
        storage or rendering failure leaves a view-once grant unconsumed.
        """
        user = require_user(principal)
        now = now or utcnow()

        async with self.access_locks.hold((document_id, user.account_id)):
            async with UnitOfWork(self.session_factory) as uow:
                resolved = await self._resolve(uow, document_id, user, now)
                content = await self.storage.read(resolved.storage_ref)
                if resolved.watermark:
                    content = apply_watermark(content, resolved.content_type, resolved.watermark)

        logger.info(
            "document_opened",
            document_id=str(document_id),
            user_id=str(user.account_id),
            grant_id=str(resolved.grant.id),
            watermarked=resolved.watermark is not None,
        )
        return OpenedDocument(
            content=content,
            filename=resolved.filename,
            content_type=resolved.content_type,
            watermark=resolved.watermark,
        )

    async def list_sent_documents(self, principal: Principal) -> List[DocumentView]:
        admin = require_institute(principal)

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            documents = await uow.documents.list_for_institute(admin.institute_id)
            counts: Dict[UUID, int] = await uow.documents.recipient_counts(doc.id for doc in documents)
            return [
                document_view(document, document.target_groups, counts.get(document.id, 0))
                for document in documents
            ]

    async def list_inbox(self, principal: Principal, now: Optional[datetime] = None) -> List[InboxItem]:
        """The caller's grants, newest document first, with validity at ``now``."""
        user = require_user(principal)
        now = now or utcnow()

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            grants = await uow.grants.list_for_user(user.account_id)
            return [
                InboxItem(
                    grant=grant_view(grant, now),
                    document_id=grant.document.id,
                    institute_id=grant.document.institute_id,
                    filename=grant.document.filename,
                    content_type=grant.document.content_type,
                    watermark=grant.document.watermark,
                    shared_at=grant.document.created_at,
                )
                for grant in grants
            ]

    async def prune_expired_grants(self, now: Optional[datetime] = None) -> int:
        """
        Delete grants that can no longer resolve.

        Expiry is always checked at access time; pruning only keeps the
        grant table small.
        """
        now = now or utcnow()
        async with UnitOfWork(self.session_factory) as uow:
            removed = await uow.grants.delete_unusable(now)

        if removed:
            logger.info("grants_pruned", removed=removed)
        return removed

    async def sweep_forever(self, interval_seconds: float) -> None:
        """Prune unusable grants every ``interval_seconds`` until cancelled."""
        logger.info("grant_sweeper_started", interval_seconds=interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.prune_expired_grants()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("grant_sweep_failed", error=str(e), exc_info=True)
