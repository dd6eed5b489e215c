from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filename: str | None = None
    image: str | None = None  # data:image/<type>;base64,<payload>
    file_id: str | None = Field(default=None, alias="fileId")


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    url: str
    file_id: str = Field(alias="fileId")
    message: str = "Image uploaded and processed successfully"


class UploadPendingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    ready: bool = False
    status: str
    file_id: str = Field(alias="fileId")
    message: str = "File is still processing; check again later"
