"""
Document distribution endpoints.
"""
import json
from typing import Any, List, Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile

from instivault.core.config import settings
from instivault.core.dependencies import (
    get_current_institute,
    get_current_user,
    get_document_engine,
)
from instivault.core.errors import ErrorCode
from instivault.core.exceptions import InvalidArgumentError
from instivault.domain.principals import InstitutePrincipal, UserPrincipal
from instivault.domain.schemas.document import (
    DistributionResponse,
    DocumentPolicy,
    DocumentView,
    InboxItem,
)
from instivault.services.documents import DocumentDistributionEngine, GroupTarget

router = APIRouter()


def parse_recipients(raw: Optional[str]) -> List[GroupTarget]:
    """
    Parse the ``recipients`` form field, a JSON array of group ids.

    Entries that are not ids are taken as group names.

    Raises:
        InvalidArgumentError: Missing, malformed or empty
    """
    if not raw:
        raise InvalidArgumentError(code=ErrorCode.VAL_NO_RECIPIENTS)
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidArgumentError("recipients must be a JSON array of group ids")
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        raise InvalidArgumentError("recipients must be a JSON array of group ids")
    targets: List[GroupTarget] = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgumentError("recipients contains an invalid group reference")
        try:
            targets.append(UUID(value))
        except ValueError:
            targets.append(value.strip())
    if not targets:
        raise InvalidArgumentError(code=ErrorCode.VAL_NO_RECIPIENTS)
    return targets


def parse_expiry_days(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return settings.DEFAULT_EXPIRY_DAYS
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgumentError(
            "expiryDays must be a whole number of days",
            code=ErrorCode.VAL_INVALID_POLICY,
        )


@router.post("/upload", response_model=DistributionResponse)
async def upload_document(
    document: Optional[UploadFile] = File(None),
    file: Optional[UploadFile] = File(None),
    recipients: Optional[str] = Form(None),
    expiry_days: Optional[str] = Form(None, alias="expiryDays"),
    view_once: bool = Form(False, alias="viewOnce"),
    watermark: bool = Form(True),
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: DocumentDistributionEngine = Depends(get_document_engine),
) -> Any:
    """
    Upload a document and distribute it to groups.

    Multipart fields:
    - ``document`` (or ``file``): the file
    - ``recipients``: JSON array of group ids or names
    - ``expiryDays``: days until grants expire
    - ``viewOnce``: each recipient may open it once
    - ``watermark``: stamp the recipient on every copy
    """
    upload = document or file
    if upload is None or not upload.filename:
        raise InvalidArgumentError(code=ErrorCode.VAL_NO_FILE)

    targets = parse_recipients(recipients)
    policy = DocumentPolicy(
        expiry_days=parse_expiry_days(expiry_days),
        view_once=view_once,
        watermark=watermark,
    )
    content = await upload.read()

    view = await engine.publish(
        institute,
        content=content,
        filename=upload.filename,
        content_type=upload.content_type or "application/octet-stream",
        target_group_ids=targets,
        policy=policy,
    )
    return DistributionResponse(msg="Document distributed", document=view)


@router.get("", response_model=List[DocumentView])
async def list_sent_documents(
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: DocumentDistributionEngine = Depends(get_document_engine),
) -> Any:
    return await engine.list_sent_documents(institute)


@router.get("/inbox", response_model=List[InboxItem])
async def list_inbox(
    user: UserPrincipal = Depends(get_current_user),
    engine: DocumentDistributionEngine = Depends(get_document_engine),
) -> Any:
    """Documents shared with the caller, with each grant's current validity."""
    return await engine.list_inbox(user)


@router.get("/{document_id}/view")
async def view_document(
    document_id: UUID,
    user: UserPrincipal = Depends(get_current_user),
    engine: DocumentDistributionEngine = Depends(get_document_engine),
) -> Response:
    """
    Open a shared document.

    View-once documents can be opened a single time; later attempts get 410.
    """
    opened = await engine.open_document(document_id, user)

    headers = {"Content-Disposition": f"inline; filename*=UTF-8''{quote(opened.filename)}"}
    if opened.watermark:
        headers["X-Watermark"] = quote(opened.watermark, safe=" <>@|:.-_")
    return Response(content=opened.content, media_type=opened.content_type, headers=headers)
