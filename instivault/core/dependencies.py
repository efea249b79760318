"""
Dependency injection for FastAPI.
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.config import settings
from instivault.core.errors import ErrorCode
from instivault.core.exceptions import UnauthorizedError
from instivault.core.logging import bind_principal
from instivault.domain.principals import (
    InstitutePrincipal,
    Principal,
    UserPrincipal,
    require_institute,
    require_user,
)
from instivault.infrastructure.database.base import get_session_factory
from instivault.infrastructure.storage.local import LocalDocumentStorage
from instivault.services.documents import DocumentDistributionEngine
from instivault.services.groups import GroupRegistry
from instivault.services.identity import IdentityService
from instivault.services.membership import MembershipEngine

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_PREFIX}/auth/user/login",
    auto_error=False,
)
# header used by the original dashboard client
legacy_token_header = APIKeyHeader(name="x-auth-token", auto_error=False)


def get_document_storage() -> LocalDocumentStorage:
    return LocalDocumentStorage()


async def get_identity_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> IdentityService:
    return IdentityService(session_factory)


async def get_group_registry(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> GroupRegistry:
    return GroupRegistry(session_factory)


async def get_membership_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    groups: GroupRegistry = Depends(get_group_registry),
) -> MembershipEngine:
    return MembershipEngine(session_factory, groups=groups)


async def get_document_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    storage: LocalDocumentStorage = Depends(get_document_storage),
) -> DocumentDistributionEngine:
    return DocumentDistributionEngine(session_factory, storage=storage)


async def get_principal(
    bearer_token: Optional[str] = Depends(oauth2_scheme),
    legacy_token: Optional[str] = Depends(legacy_token_header),
    identity: IdentityService = Depends(get_identity_service),
) -> Principal:
    """
    Resolve the request credential into a principal.

    Accepts ``Authorization: Bearer <token>`` and the ``x-auth-token`` header.

    Raises:
        UnauthorizedError: No credential, or one that does not resolve
    """
    token = bearer_token or legacy_token
    if not token:
        raise UnauthorizedError(code=ErrorCode.AUTH_MISSING_TOKEN)

    principal = await identity.resolve_token(token)
    bind_principal(principal.account_id, principal.role.value)
    return principal


async def get_current_user(
    principal: Principal = Depends(get_principal),
) -> UserPrincipal:
    """
    Get the calling user.

    Raises:
        ForbiddenError: Caller is an institute
    """
    return require_user(principal)


async def get_current_institute(
    principal: Principal = Depends(get_principal),
) -> InstitutePrincipal:
    """
    Get the calling institute.

    Raises:
        ForbiddenError: Caller is a user
    """
    return require_institute(principal)
