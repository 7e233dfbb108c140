"""
Folder API router.

/api/user/folders is the owner's view; /folder/{id} is the shared view
of a public folder.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from sharehub.core.files.lifecycle import UNSET
from sharehub.core.files.models import Visibility
from sharehub.logging.setup import get_logger
from .dependencies import caller_id, get_folders, is_truthy, parse_body
from .models import FolderCreateRequest, FolderFilesRequest, FolderUpdateRequest
from .pipeline import (
    ALL_METHODS,
    combine,
    method,
    optional_identity,
    require_identity,
)

logger = get_logger(__name__)

router = APIRouter(tags=["folders"])


def _visibility(is_public: bool) -> Visibility:
    return Visibility.PUBLIC if is_public else Visibility.PRIVATE


def _folder_body(request: Request, folder, include_files: bool = True) -> dict:
    files = get_folders(request).files_in(folder.folder_id) if include_files else None
    return folder.to_public_dict(files)


async def user_folders(request: Request) -> Response:
    """
    GET lists the caller's folders (``noincl`` skips member files);
    POST creates one.
    """
    folders = get_folders(request)
    owner_id = caller_id(request)

    if request.method == "GET":
        include_files = not is_truthy(request.query_params.get("noincl"))
        return JSONResponse({"folders": [
            _folder_body(request, folder, include_files)
            for folder in folders.list_for_owner(owner_id)
        ]})

    body = await parse_body(request, FolderCreateRequest)
    folder = folders.create(
        body.name,
        owner_id,
        initial_file_ids=body.files,
        visibility=_visibility(body.is_public),
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=_folder_body(request, folder)
    )


async def user_folder_detail(request: Request) -> Response:
    folders = get_folders(request)
    folder_id = request.path_params["folder_id"]
    owner_id = caller_id(request)

    if request.method == "GET":
        folder = folders.get(folder_id, owner_id)
        return JSONResponse(_folder_body(request, folder))

    if request.method == "PATCH":
        body = await parse_body(request, FolderUpdateRequest)
        folder = folders.update(
            folder_id,
            owner_id,
            name=body.name if body.name is not None else UNSET,
            visibility=(
                _visibility(body.is_public)
                if body.is_public is not None else UNSET),
        )
        return JSONResponse(_folder_body(request, folder))

    folders.delete(folder_id, owner_id)
    return JSONResponse({"id": folder_id, "deleted": True})


async def user_folder_files(request: Request) -> Response:
    body = await parse_body(request, FolderFilesRequest)
    folder = get_folders(request).attach(
        request.path_params["folder_id"], body.files, owner_id=caller_id(request))
    return JSONResponse(_folder_body(request, folder))


async def shared_folder(request: Request) -> Response:
    folder, members = get_folders(request).view(
        request.path_params["folder_id"], caller_id(request))
    return JSONResponse(folder.to_public_dict(members))


router.add_api_route(
    "/api/user/folders",
    combine([method(["GET", "POST"]), require_identity()], user_folders),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/api/user/folders/{folder_id}",
    combine([method(["GET", "PATCH", "DELETE"]), require_identity()],
            user_folder_detail),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/api/user/folders/{folder_id}/files",
    combine([method(["POST"]), require_identity()], user_folder_files),
    methods=ALL_METHODS,
)
router.add_api_route(
    "/folder/{folder_id}",
    combine([method(["GET"]), optional_identity()], shared_folder),
    methods=ALL_METHODS,
)
