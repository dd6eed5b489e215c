from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.errors import InvalidInput
from app.core.rate_limit import RateDecision, rate_limit
from app.routers.deps import json_body
from app.schemas.upload import UploadPendingResponse, UploadRequest, UploadResponse
from app.services.upload_pipeline import check_status, upload_image

router = APIRouter(prefix="/api", tags=["upload"])


@router.post("/upload")
def upload(
    body: dict[str, Any] = Depends(json_body),
    quota: RateDecision = rate_limit(key_prefix="upload"),
):
    try:
        req = UploadRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidInput("Invalid request body", details=e.errors(include_url=False, include_input=False, include_context=False)) from e

    if req.file_id and not req.image:
        status = check_status(file_id=req.file_id)
        if not status.ready:
            payload = UploadPendingResponse(status=status.status, file_id=status.file_id)
            return JSONResponse(status_code=202, content=payload.model_dump(by_alias=True), headers=quota.headers())
        payload = UploadResponse(url=status.url or "", file_id=status.file_id, message="File is ready")
        return JSONResponse(status_code=200, content=payload.model_dump(by_alias=True), headers=quota.headers())

    outcome = upload_image(filename=req.filename, image=req.image)
    payload = UploadResponse(url=outcome.url, file_id=outcome.file_id)
    return JSONResponse(status_code=200, content=payload.model_dump(by_alias=True), headers=quota.headers())
