"""
Identity & role registry.

Stores user and institute accounts, issues bearer credentials and resolves
them back into request-scoped principals.
"""
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.errors import ErrorCode
from instivault.core.exceptions import (
    AccountAlreadyExistsError,
    InvalidCredentialsError,
    UnauthorizedError,
)
from instivault.core.security import (
    create_access_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from instivault.domain.enums import AccountRole
from instivault.domain.principals import InstitutePrincipal, Principal, UserPrincipal
from instivault.domain.schemas.auth import (
    AccountProfile,
    AuthResponse,
    InstituteSignup,
    LoginRequest,
    UserSignup,
)
from instivault.infrastructure.database.models import Account
from instivault.repositories.unit_of_work import ReadOnlyUnitOfWork, UnitOfWork

logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def to_principal(account: Account) -> Principal:
    """Map a stored account onto its principal variant."""
    if account.role == AccountRole.INSTITUTE:
        return InstitutePrincipal(
            account_id=account.id,
            display_name=account.display_name,
            email=account.email,
            admin_name=account.admin_name or "",
        )
    return UserPrincipal(
        account_id=account.id,
        display_name=account.display_name,
        email=account.email,
    )


class IdentityService:
    """Signup, login and credential resolution."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory

    async def signup_user(self, data: UserSignup) -> AuthResponse:
        return await self._signup(
            role=AccountRole.USER,
            display_name=data.name,
            email=data.email,
            password=data.password,
        )

    async def signup_institute(self, data: InstituteSignup) -> AuthResponse:
        return await self._signup(
            role=AccountRole.INSTITUTE,
            display_name=data.name,
            email=data.admin_email,
            password=data.password,
            admin_name=data.admin_name,
        )

    async def _signup(
        self,
        role: AccountRole,
        display_name: str,
        email: str,
        password: str,
        admin_name: Optional[str] = None,
    ) -> AuthResponse:
        email = normalize_email(email)

        async with UnitOfWork(self.session_factory) as uow:
            if await uow.accounts.get_by_email(role, email):
                logger.warning("signup_duplicate_email", role=role.value)
                raise AccountAlreadyExistsError()

            try:
                account = await uow.accounts.create(
                    {
                        "role": role,
                        "display_name": display_name.strip(),
                        "email": email,
                        "password_hash": get_password_hash(password),
                        "admin_name": admin_name.strip() if admin_name else None,
                    }
                )
            except IntegrityError:
                raise AccountAlreadyExistsError()
            response = self._auth_response(account)

        logger.info("account_registered", account_id=str(account.id), role=role.value)
        return response

    async def login(self, role: AccountRole, credentials: LoginRequest) -> AuthResponse:
        """
        Authenticate an account of the given role.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
        """
        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            account = await uow.accounts.get_by_email(role, normalize_email(credentials.email))
            if not account or not verify_password(credentials.password, account.password_hash):
                logger.warning("login_failed", role=role.value)
                raise InvalidCredentialsError()
            response = self._auth_response(account)

        logger.info("login_succeeded", account_id=str(response.account.id), role=role.value)
        return response

    async def resolve_token(self, token: str) -> Principal:
        """
        Resolve a bearer token into the principal it names.

        Raises:
            UnauthorizedError: Token invalid, of the wrong type, or naming an
                account that no longer exists under the claimed role
        """
        payload = decode_token(token)
        if not payload or payload.get("type") != "access":
            raise UnauthorizedError()

        try:
            account_id = UUID(str(payload.get("sub")))
            role = AccountRole(payload.get("role"))
        except ValueError:
            raise UnauthorizedError()

        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            account = await uow.accounts.get_with_role(account_id, role)
            if not account:
                raise UnauthorizedError(code=ErrorCode.AUTH_INVALID_TOKEN)
            # principals must be built before the read-only unit rolls back
            return to_principal(account)

    async def get_profile(self, principal: Principal) -> AccountProfile:
        async with ReadOnlyUnitOfWork(self.session_factory) as uow:
            account = await uow.accounts.get(principal.account_id)
            if not account:
                raise UnauthorizedError()
            return AccountProfile.model_validate(account)

    @staticmethod
    def _auth_response(account: Account) -> AuthResponse:
        return AuthResponse(
            token=create_access_token(str(account.id), account.role.value),
            role=account.role,
            account=AccountProfile.model_validate(account),
        )
