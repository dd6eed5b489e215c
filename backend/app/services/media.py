from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class AssetKind(str, enum.Enum):
    generic_file = "GenericFile"
    media_image = "MediaImage"
    video = "Video"
    model_3d = "Model3d"


class AssetStatus(str, enum.Enum):
    uploaded = "UPLOADED"
    processing = "PROCESSING"
    ready = "READY"
    failed = "FAILED"
    unknown = "UNKNOWN"

    @classmethod
    def parse(cls, raw: object) -> "AssetStatus":
        try:
            return cls(str(raw or "").strip().upper())
        except ValueError:
            return cls.unknown


@dataclass(frozen=True)
class StagedTarget:
    url: str
    resource_url: str
    parameters: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class CreatedAsset:
    id: str
    kind: AssetKind
    status: AssetStatus
    url: str | None = None

    @property
    def needs_processing(self) -> bool:
        # Generic files resolve synchronously; media kinds are processed by Shopify after fileCreate.
        return self.kind is not AssetKind.generic_file

    @property
    def is_ready(self) -> bool:
        return self.status is AssetStatus.ready

    @property
    def is_failed(self) -> bool:
        return self.status is AssetStatus.failed

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> "CreatedAsset":
        typename = str(node.get("__typename") or "")
        try:
            kind = AssetKind(typename)
        except ValueError as e:
            raise ValueError(f"unsupported file type: {typename or '<missing>'}") from e

        asset_id = str(node.get("id") or "").strip()
        if not asset_id:
            raise ValueError(f"{typename} without id")

        return cls(
            id=asset_id,
            kind=kind,
            status=AssetStatus.parse(node.get("status") or node.get("fileStatus")),
            url=resolve_url(kind, node),
        )


def _first_source_url(node: dict[str, Any]) -> str | None:
    for src in node.get("sources") or []:
        url = (src or {}).get("url")
        if url:
            return str(url)
    return None


def resolve_url(kind: AssetKind, node: dict[str, Any]) -> str | None:
    if kind is AssetKind.generic_file:
        url = node.get("url")
    elif kind is AssetKind.media_image:
        url = (node.get("image") or {}).get("url")
    elif kind is AssetKind.video or kind is AssetKind.model_3d:
        url = _first_source_url(node)
    else:
        raise ValueError(f"unhandled asset kind: {kind}")
    return str(url) if url else None


@dataclass(frozen=True)
class FileRecord:
    id: str
    alt: str
