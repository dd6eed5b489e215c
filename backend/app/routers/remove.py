from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from app.core.errors import InvalidInput
from app.routers.deps import json_body
from app.schemas.remove import RemovedFileDetail, RemoveRequest, RemoveResponse
from app.services.bulk_remover import remove_files

router = APIRouter(prefix="/api", tags=["remove"])


@router.post("/remove")
def remove(body: dict[str, Any] = Depends(json_body)):
    try:
        req = RemoveRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidInput("Invalid request body", details=e.errors(include_url=False, include_input=False, include_context=False)) from e

    result = remove_files(search_pattern=req.search_pattern, admin_password=req.admin_password)

    if result.total_matched == 0:
        message = f"No files found matching pattern: {result.pattern}"
    else:
        message = f"Successfully removed {result.files_removed} files matching pattern: {result.pattern}"

    payload = RemoveResponse(
        message=message,
        files_removed=result.files_removed,
        total_matched=result.total_matched,
        details=[RemovedFileDetail(**d) for d in result.details()],
        errors=result.errors or None,
    )
    return payload.model_dump(by_alias=True, exclude_none=True)
