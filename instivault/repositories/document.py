"""
Document and access grant repositories.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from instivault.infrastructure.database.models import AccessGrant, Document, DocumentTarget
from instivault.repositories.base import BaseRepository


class DocumentRepository(BaseRepository[Document]):
    """Repository for distributed documents."""

    def __init__(self, db: AsyncSession):
        super().__init__(Document, db)

    async def add_targets(self, document_id: UUID, group_ids: Iterable[UUID]) -> None:
        self.db.add_all(
            DocumentTarget(document_id=document_id, group_id=group_id)
            for group_id in group_ids
        )
        await self.db.flush()

    async def list_for_institute(self, institute_id: UUID) -> List[Document]:
        """
        List an institute's documents, newest first, with target groups.

        Args:
            institute_id: Owning institute

        Returns:
            Documents with ``target_groups`` loaded
        """
        stmt = (
            select(Document)
            .where(Document.institute_id == institute_id)
            .options(selectinload(Document.target_groups))
            .order_by(Document.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def recipient_counts(self, document_ids: Iterable[UUID]) -> Dict[UUID, int]:
        ids = list(document_ids)
        if not ids:
            return {}
        stmt = (
            select(AccessGrant.document_id, func.count())
            .where(AccessGrant.document_id.in_(ids))
            .group_by(AccessGrant.document_id)
        )
        result = await self.db.execute(stmt)
        return {document_id: count for document_id, count in result.all()}


class AccessGrantRepository(BaseRepository[AccessGrant]):
    """Repository for per-recipient access grants."""

    def __init__(self, db: AsyncSession):
        super().__init__(AccessGrant, db)

    async def create_many(
        self,
        document_id: UUID,
        user_ids: Iterable[UUID],
        expires_at: datetime,
        view_once: bool,
    ) -> int:
        grants = [
            AccessGrant(
                document_id=document_id,
                user_id=user_id,
                expires_at=expires_at,
                view_once=view_once,
            )
            for user_id in user_ids
        ]
        self.db.add_all(grants)
        await self.db.flush()
        return len(grants)

    async def get_for_recipient(
        self,
        document_id: UUID,
        user_id: UUID,
    ) -> Optional[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .where(
                and_(
                    AccessGrant.document_id == document_id,
                    AccessGrant.user_id == user_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def list_for_user(self, user_id: UUID) -> List[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .join(Document, Document.id == AccessGrant.document_id)
            .where(AccessGrant.user_id == user_id)
            .order_by(Document.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars())

    async def consume(self, grant_id: UUID, consumed_at: datetime) -> bool:
        """
        Atomically stamp ``consumed_at`` if it is still unset.

        Returns:
            True if this caller consumed the grant
        """
        stmt = (
            update(AccessGrant)
            .where(
                and_(
                    AccessGrant.id == grant_id,
                    AccessGrant.consumed_at.is_(None),
                )
            )
            .values(consumed_at=consumed_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def delete_for_institute_documents(self, institute_id: UUID, user_id: UUID) -> int:
        institute_documents = select(Document.id).where(Document.institute_id == institute_id)
        stmt = (
            delete(AccessGrant)
            .where(
                and_(
                    AccessGrant.user_id == user_id,
                    AccessGrant.document_id.in_(institute_documents),
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def delete_unusable(self, now: datetime) -> int:
        """
        Delete grants that can never resolve again.

        Args:
            now: Reference time

        Returns:
            Number of grants removed
        """
        stmt = (
            delete(AccessGrant)
            .where(
                or_(
                    AccessGrant.expires_at <= now,
                    and_(AccessGrant.view_once.is_(True), AccessGrant.consumed_at.is_not(None)),
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount
