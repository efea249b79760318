"""
Unit of Work pattern implementation for transactional operations.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.infrastructure.database.base import AsyncSessionLocal
from instivault.repositories.account import AccountRepository
from instivault.repositories.document import AccessGrantRepository, DocumentRepository
from instivault.repositories.group import GroupRepository
from instivault.repositories.membership import MembershipRepository


class UnitOfWork:
    """
    Unit of Work pattern for managing database transactions.

    Ensures all repository operations within a unit are committed together
    or rolled back on failure.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self._session: AsyncSession | None = None

        # Repository instances
        self._accounts: AccountRepository | None = None
        self._memberships: MembershipRepository | None = None
        self._groups: GroupRepository | None = None
        self._documents: DocumentRepository | None = None
        self._grants: AccessGrantRepository | None = None

    async def __aenter__(self):
        """Enter the context manager."""
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit the context manager."""
        try:
            if exc_type is not None:
                await self.rollback()
            else:
                await self.commit()
        finally:
            await self._session.close()

    async def commit(self):
        """Commit the transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the transaction."""
        if self._session:
            await self._session.rollback()

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        if not self._session:
            raise RuntimeError("UnitOfWork must be used within a context manager")
        return self._session

    @property
    def accounts(self) -> AccountRepository:
        """Get account repository."""
        if not self._accounts:
            self._accounts = AccountRepository(self.session)
        return self._accounts

    @property
    def memberships(self) -> MembershipRepository:
        """Get membership request repository."""
        if not self._memberships:
            self._memberships = MembershipRepository(self.session)
        return self._memberships

    @property
    def groups(self) -> GroupRepository:
        """Get group repository."""
        if not self._groups:
            self._groups = GroupRepository(self.session)
        return self._groups

    @property
    def documents(self) -> DocumentRepository:
        """Get document repository."""
        if not self._documents:
            self._documents = DocumentRepository(self.session)
        return self._documents

    @property
    def grants(self) -> AccessGrantRepository:
        """Get access grant repository."""
        if not self._grants:
            self._grants = AccessGrantRepository(self.session)
        return self._grants


class ReadOnlyUnitOfWork(UnitOfWork):
    """
    Read-only Unit of Work for query operations.

    Automatically rolls back any changes to prevent accidental writes.
    """

    async def commit(self):
        """Override commit to always rollback."""
        await self.rollback()
