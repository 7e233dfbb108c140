"""
File API router.

Upload, metadata, edit, delete and download endpoints. Responses carry
only public metadata: storage keys and password hashes never leave the
core.
"""

from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from sharehub.core.errors import AccessDeniedError, DenyReason, ValidationError
from sharehub.core.files.lifecycle import UNSET
from sharehub.core.files.models import UploadMetadata
from sharehub.logging.setup import get_logger
from .dependencies import (
    access_context,
    caller_id,
    get_lifecycle,
    is_truthy,
    parse_body,
    parse_expiry,
    parse_max_views,
)
from .models import FileUpdateRequest
from .pipeline import (
    ALL_METHODS,
    combine,
    method,
    optional_identity,
    require_identity,
)

logger = get_logger(__name__)

router = APIRouter(tags=["files"])

GENERIC_MIME_TYPES = {"application/octet-stream", ""}


def _form_text(form, key: str) -> str | None:
    value = form.get(key)
    if value is None or not isinstance(value, str):
        return None
    return value.strip() or None


def _content_disposition(name: str, download: bool) -> str:
    kind = "attachment" if download else "inline"
    return f"{kind}; filename*=UTF-8''{quote(name)}"


async def upload_file(request: Request) -> Response:
    """
    Upload a file (multipart/form-data).

    Form fields: file (required), name, visibility, password, max_views,
    expires_at (ISO 8601 or a duration such as 7d), folder_id.
    """
    lifecycle = get_lifecycle(request)

    form = await request.form()
    try:
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise ValidationError("No file provided")

        content_type = (upload.content_type or "").split(";")[0].strip()
        metadata = UploadMetadata(
            name=_form_text(form, "name") or upload.filename or "",
            owner_id=caller_id(request),
            mime_type=None if content_type in GENERIC_MIME_TYPES else content_type,
            visibility=_form_text(form, "visibility"),
            password=_form_text(form, "password"),
            max_views=parse_max_views(_form_text(form, "max_views")),
            expires_at=parse_expiry(_form_text(form, "expires_at")),
            folder_id=_form_text(form, "folder_id"),
        )
        record = await lifecycle.ingest(upload, metadata)
    finally:
        await form.close()

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=record.to_public_dict()
    )


async def list_files(request: Request) -> Response:
    files = get_lifecycle(request).list_for_owner(caller_id(request))
    return JSONResponse({"files": [f.to_public_dict() for f in files]})


async def file_detail(request: Request) -> Response:
    """Owner-only metadata, edit and delete for one file."""
    lifecycle = get_lifecycle(request)
    file_id = request.path_params["file_id"]
    owner_id = caller_id(request)

    if request.method == "GET":
        record = lifecycle.get(file_id)
        if record.owner_id != owner_id:
            raise AccessDeniedError(DenyReason.FORBIDDEN)
        return JSONResponse(record.to_public_dict())

    if request.method == "PATCH":
        body = await parse_body(request, FileUpdateRequest)
        sent = body.model_fields_set
        changes = {}
        for field in ("name", "visibility", "password", "max_views"):
            if field in sent:
                changes[field] = getattr(body, field)
        if "expires_at" in sent:
            changes["expires_at"] = parse_expiry(body.expires_at)
        if "name" in changes and changes["name"] is None:
            changes["name"] = UNSET
        if "visibility" in changes and changes["visibility"] is None:
            changes["visibility"] = UNSET

        record = lifecycle.update(file_id, owner_id, **changes)
        return JSONResponse(record.to_public_dict())

    record = lifecycle.get(file_id)
    if record.owner_id != owner_id:
        raise AccessDeniedError(DenyReason.FORBIDDEN)
    await lifecycle.delete(file_id)
    return JSONResponse({"id": file_id, "deleted": True})


async def file_thumbnail(request: Request) -> Response:
    lifecycle = get_lifecycle(request)
    _, stream = await lifecycle.open_thumbnail(
        request.path_params["file_id"], access_context(request))
    return StreamingResponse(stream, media_type="image/jpeg")


async def raw_file(request: Request) -> Response:
    """
    Serve a file's bytes. Each successful request counts one view.

    Query parameters: pw (password), download (attachment disposition).
    """
    lifecycle = get_lifecycle(request)
    record, stream = await lifecycle.open(
        request.path_params["file_id"], access_context(request))

    headers = {
        "Content-Disposition": _content_disposition(
            record.name, is_truthy(request.query_params.get("download"))),
        "Cache-Control": "no-store",
    }
    return StreamingResponse(stream, media_type=record.mime_type, headers=headers)


router.add_api_route(
    "/api/upload",
    combine([method(["POST"]), require_identity()], upload_file),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/api/files",
    combine([method(["GET"]), require_identity()], list_files),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/api/files/{file_id}",
    combine([method(["GET", "PATCH", "DELETE"]), require_identity()], file_detail),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/api/files/{file_id}/thumbnail",
    combine([method(["GET"]), optional_identity()], file_thumbnail),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/raw/{file_id}",
    combine([method(["GET"]), optional_identity()], raw_file),
    methods=ALL_METHODS,
)
