"""
Custom exceptions for the application.
"""
from typing import Any, Dict, Optional

from instivault.core.errors import ErrorCode, ErrorKind, ErrorMessages


class InstiVaultException(Exception):
    """Base exception for all InstiVault exceptions."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code: ErrorCode = ErrorCode.SYS_INTERNAL_ERROR
    default_status_code: int = 500

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = message or ErrorMessages.get(self.code)
        self.status_code = status_code or self.default_status_code
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedError(InstiVaultException):
    """Missing or invalid credential."""

    kind = ErrorKind.UNAUTHORIZED
    default_code = ErrorCode.AUTH_INVALID_TOKEN
    default_status_code = 401


class ForbiddenError(InstiVaultException):
    """Valid credential, wrong role or wrong owner."""

    kind = ErrorKind.FORBIDDEN
    default_code = ErrorCode.AUTH_WRONG_ROLE
    default_status_code = 403


class NotFoundError(InstiVaultException):
    """Unknown id or no matching active record."""

    kind = ErrorKind.NOT_FOUND
    default_code = ErrorCode.MEM_REQUEST_NOT_FOUND
    default_status_code = 404


class ConflictError(InstiVaultException):
    """Duplicate request, double decision or lost race."""

    kind = ErrorKind.CONFLICT
    default_code = ErrorCode.MEM_ALREADY_DECIDED
    default_status_code = 409


class InvalidArgumentError(InstiVaultException):
    """Malformed policy or missing required field."""

    kind = ErrorKind.INVALID_ARGUMENT
    default_code = ErrorCode.VAL_INVALID_INPUT
    default_status_code = 400


class ExpiredError(InstiVaultException):
    """Access grant is past its expiry."""

    kind = ErrorKind.EXPIRED
    default_code = ErrorCode.DOC_EXPIRED
    default_status_code = 410


class AlreadyConsumedError(InstiVaultException):
    """View-once grant has already been used."""

    kind = ErrorKind.ALREADY_CONSUMED
    default_code = ErrorCode.DOC_ALREADY_CONSUMED
    default_status_code = 410


class InvalidCredentialsError(UnauthorizedError):
    """Invalid credentials exception."""

    default_code = ErrorCode.AUTH_INVALID_CREDENTIALS


class AccountAlreadyExistsError(ConflictError):
    """Signup with an email already registered for the role."""

    default_code = ErrorCode.AUTH_ACCOUNT_ALREADY_EXISTS
    default_status_code = 400


class MembershipExistsError(ConflictError):
    """Join attempted while a request for the pair is still on record."""

    default_code = ErrorCode.MEM_REQUEST_EXISTS
    default_status_code = 400


class GroupNameTakenError(ConflictError):
    """
    A concurrent transaction created the same group name first.

    Raised from inside a unit of work; callers retry the whole transaction,
    which then finds the existing group.
    """

    default_code = ErrorCode.GRP_NAME_TAKEN

    def __init__(self, institute_id: Any, name: str):
        super().__init__(details={"institute_id": str(institute_id), "name": name})


class StorageError(InstiVaultException):
    """Storage operation error exception."""

    default_code = ErrorCode.SYS_STORAGE_ERROR

    def __init__(self, message: str, operation: Optional[str] = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message, details=details)
