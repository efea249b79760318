"""
Account repository.
"""
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from instivault.domain.enums import AccountRole
from instivault.infrastructure.database.models import Account
from instivault.repositories.base import BaseRepository


class AccountRepository(BaseRepository[Account]):
    """Account repository."""

    def __init__(self, db: AsyncSession):
        super().__init__(Account, db)

    async def get_by_email(
        self,
        role: AccountRole,
        email: str,
    ) -> Optional[Account]:
        """
        Get account by role and email.

        Args:
            role: Account role
            email: Normalized email

        Returns:
            Account if found
        """
        stmt = select(Account).where(Account.role == role, Account.email == email)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_with_role(
        self,
        account_id: UUID,
        role: AccountRole,
    ) -> Optional[Account]:
        stmt = select(Account).where(Account.id == account_id, Account.role == role)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
