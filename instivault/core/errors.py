"""
Standardized error catalog for InstiVault.

Every failure the API reports carries a machine-checkable kind, a stable
code and a human-readable message.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds visible to callers."""

    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    INVALID_ARGUMENT = "InvalidArgument"
    EXPIRED = "Expired"
    ALREADY_CONSUMED = "AlreadyConsumed"
    INTERNAL = "Internal"


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication Errors (AUTH_*)
    AUTH_INVALID_CREDENTIALS = "AUTH_001"
    AUTH_ACCOUNT_ALREADY_EXISTS = "AUTH_002"
    AUTH_INVALID_TOKEN = "AUTH_003"
    AUTH_MISSING_TOKEN = "AUTH_004"
    AUTH_WRONG_ROLE = "AUTH_005"

    # Validation Errors (VAL_*)
    VAL_INVALID_INPUT = "VAL_001"
    VAL_MISSING_GROUP_INFO = "VAL_002"
    VAL_INVALID_POLICY = "VAL_003"
    VAL_NO_RECIPIENTS = "VAL_004"
    VAL_NO_FILE = "VAL_005"
    VAL_FILE_REJECTED = "VAL_006"

    # Membership Errors (MEM_*)
    MEM_INSTITUTE_NOT_FOUND = "MEM_001"
    MEM_REQUEST_EXISTS = "MEM_002"
    MEM_REQUEST_NOT_FOUND = "MEM_003"
    MEM_ALREADY_DECIDED = "MEM_004"
    MEM_NOT_A_MEMBER = "MEM_005"

    # Group Errors (GRP_*)
    GRP_NOT_FOUND = "GRP_001"
    GRP_FOREIGN_INSTITUTE = "GRP_002"
    GRP_NAME_TAKEN = "GRP_003"
    GRP_MEMBERSHIP_CHANGED = "GRP_004"

    # Document Errors (DOC_*)
    DOC_NOT_FOUND = "DOC_001"
    DOC_NO_GRANT = "DOC_002"
    DOC_EXPIRED = "DOC_003"
    DOC_ALREADY_CONSUMED = "DOC_004"

    # Request Errors (REQ_*)
    REQ_UNKNOWN_RESOURCE = "REQ_001"

    # System Errors (SYS_*)
    SYS_INTERNAL_ERROR = "SYS_001"
    SYS_STORAGE_ERROR = "SYS_002"


class ErrorMessages:
    """Centralized error message definitions."""

    _messages: Dict[ErrorCode, str] = {
        ErrorCode.AUTH_INVALID_CREDENTIALS: "Invalid email or password",
        ErrorCode.AUTH_ACCOUNT_ALREADY_EXISTS: "An account with this email already exists",
        ErrorCode.AUTH_INVALID_TOKEN: "Invalid or expired authentication token",
        ErrorCode.AUTH_MISSING_TOKEN: "Authentication required",
        ErrorCode.AUTH_WRONG_ROLE: "This action is not available for your account type",

        ErrorCode.VAL_INVALID_INPUT: "Invalid input provided",
        ErrorCode.VAL_MISSING_GROUP_INFO: "Provide exactly one of groupId or newGroupName",
        ErrorCode.VAL_INVALID_POLICY: "Invalid document policy",
        ErrorCode.VAL_NO_RECIPIENTS: "Select at least one recipient group",
        ErrorCode.VAL_NO_FILE: "No file uploaded",
        ErrorCode.VAL_FILE_REJECTED: "File rejected",

        ErrorCode.MEM_INSTITUTE_NOT_FOUND: "Institute not found",
        ErrorCode.MEM_REQUEST_EXISTS: "A membership request already exists for this institute",
        ErrorCode.MEM_REQUEST_NOT_FOUND: "No matching membership request",
        ErrorCode.MEM_ALREADY_DECIDED: "This request has already been decided",
        ErrorCode.MEM_NOT_A_MEMBER: "User is not an approved member of this institute",

        ErrorCode.GRP_NOT_FOUND: "Group not found",
        ErrorCode.GRP_FOREIGN_INSTITUTE: "Group belongs to another institute",
        ErrorCode.GRP_NAME_TAKEN: "A group with this name is being created concurrently",
        ErrorCode.GRP_MEMBERSHIP_CHANGED: "Group membership was changed concurrently",

        ErrorCode.DOC_NOT_FOUND: "Document not found",
        ErrorCode.DOC_NO_GRANT: "You do not have access to this document",
        ErrorCode.DOC_EXPIRED: "Access to this document has expired",
        ErrorCode.DOC_ALREADY_CONSUMED: "This document could only be viewed once",

        ErrorCode.REQ_UNKNOWN_RESOURCE: "The requested resource does not exist",

        ErrorCode.SYS_INTERNAL_ERROR: "An internal error occurred. Please try again later",
        ErrorCode.SYS_STORAGE_ERROR: "Document storage is unavailable",
    }

    @classmethod
    def get(cls, code: ErrorCode, **kwargs) -> str:
        """
        Get error message for a given error code.

        Args:
            code: Error code
            **kwargs: Additional context for formatting

        Returns:
            Formatted error message
        """
        base_message = cls._messages.get(code, "An error occurred")

        if kwargs:
            try:
                return base_message.format(**kwargs)
            except KeyError:
                return base_message

        return base_message


class ErrorResponse:
    """Standardized error response structure."""

    def __init__(
        self,
        kind: ErrorKind,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.code = code
        self.message = message or ErrorMessages.get(code)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        # "msg" mirrors the message for the dashboard client
        response: Dict[str, Any] = {
            "msg": self.message,
            "error": {
                "code": self.code.value,
                "kind": self.kind.value,
                "message": self.message,
            },
        }

        if self.details:
            response["error"]["details"] = self.details

        return response
