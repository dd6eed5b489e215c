from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RemoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    search_pattern: str | None = Field(default=None, alias="searchPattern")
    admin_password: str | None = Field(default=None, alias="adminPassword")


class RemovedFileDetail(BaseModel):
    id: str
    alt: str
    deleted: bool


class RemoveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    files_removed: int = Field(alias="filesRemoved")
    total_matched: int = Field(alias="totalMatched")
    details: list[RemovedFileDetail] = []
    errors: list[dict[str, Any]] | None = None
