"""Relay a data-URI image into Shopify Files.

Stage -> transfer -> finalize -> poll until Shopify has processed the media.
Nothing here retries; every failure is raised as a kinded `RelayError` and the
caller decides whether to resubmit.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass

from app.core.config import settings
from app.core.errors import (
    FinalizationFailed,
    InvalidInput,
    ProcessingFailed,
    ProcessingTimeout,
    StagingFailed,
    TransferFailed,
    UpstreamUnreachable,
)
from app.services.media import AssetStatus, CreatedAsset, StagedTarget
from app.services.shopify import (
    ShopifyBadResponse,
    ShopifyClient,
    ShopifyError,
    ShopifyGraphQLError,
    ShopifyNetworkError,
    StagedTransferError,
    get_shopify_client,
)


log = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class DecodedImage:
    content_type: str
    content: bytes


@dataclass(frozen=True)
class UploadOutcome:
    url: str
    file_id: str


@dataclass(frozen=True)
class StatusOutcome:
    file_id: str
    ready: bool
    status: str
    url: str | None = None


def decode_image_data_uri(image: str, *, max_bytes: int | None = None) -> DecodedImage:
    ceiling = int(max_bytes if max_bytes is not None else settings.upload_max_bytes)

    if not image.startswith("data:image/"):
        raise InvalidInput("Invalid image format", message="image must be a data:image/* URI")

    m = _DATA_URI_RE.match(image)
    if not m:
        raise InvalidInput("Invalid base64 format", message="expected data:<mime>;base64,<payload>")

    content_type = m.group(1)
    payload = "".join(m.group(2).split())
    if len(payload) * 3 // 4 > ceiling + 2:
        raise InvalidInput(
            "Image too large",
            message=f"decoded image exceeds the maximum of {ceiling} bytes",
        )

    # Unpadded payloads are accepted; the alphabet is still checked strictly.
    payload += "=" * (-len(payload) % 4)
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInput("Invalid base64 format", message="image payload is not valid base64") from e

    if not content:
        raise InvalidInput("Empty image", message="decoded image is empty")
    if len(content) > ceiling:
        raise InvalidInput(
            "Image too large",
            message=f"decoded image is {len(content)} bytes; maximum is {ceiling} bytes",
        )
    return DecodedImage(content_type=content_type, content=content)


def _diagnostics(e: Exception) -> object:
    if isinstance(e, ShopifyGraphQLError):
        return e.errors
    if isinstance(e, ShopifyBadResponse):
        return f"{e.operation} response not JSON"
    if isinstance(e, ShopifyNetworkError):
        return f"network error during {e.operation}"
    return str(e)


def _stage(client: ShopifyClient, *, filename: str, image: DecodedImage, http_method: str) -> StagedTarget:
    try:
        target = client.staged_uploads_create(
            filename=filename,
            mime_type=image.content_type,
            file_size=len(image.content),
            http_method=http_method,
        )
    except ShopifyError as e:
        raise StagingFailed(details=_diagnostics(e)) from e
    if target is None:
        log.error("upload: no staged target returned filename=%s", filename)
        raise StagingFailed(details="no staged target returned")
    return target


def _finalize(client: ShopifyClient, *, resource_url: str, filename: str) -> CreatedAsset:
    try:
        created = client.file_create(resource_url=resource_url, alt=filename)
    except ShopifyError as e:
        raise FinalizationFailed(details=_diagnostics(e)) from e
    except ValueError as e:
        raise FinalizationFailed(details=str(e)) from e
    if created is None:
        log.error("upload: fileCreate returned no file filename=%s", filename)
        raise FinalizationFailed(details="no file returned")
    return created


def poll_until_ready(
    client: ShopifyClient,
    file_id: str,
    *,
    interval_seconds: float | None = None,
    timeout_seconds: float | None = None,
) -> UploadOutcome:
    interval = float(interval_seconds if interval_seconds is not None else settings.upload_poll_interval_seconds)
    timeout = float(timeout_seconds if timeout_seconds is not None else settings.upload_poll_timeout_seconds)

    started = time.monotonic()
    deadline = started + timeout
    last_status = AssetStatus.unknown

    while time.monotonic() < deadline:
        log.info("upload: polling file_id=%s elapsed_ms=%s", file_id, int((time.monotonic() - started) * 1000))
        asset = _fetch_status(client, file_id)
        if asset is None:
            log.error("upload: media not found during polling file_id=%s", file_id)
            raise ProcessingFailed("Media not found", details=f"no file with id {file_id}", extra={"fileId": file_id})
        last_status = asset.status

        if asset.is_ready:
            if not asset.url:
                log.error("upload: file_id=%s marked READY without url", file_id)
                raise ProcessingFailed(
                    details="Media ready but no URL available",
                    extra={"fileId": file_id, "status": asset.status.value},
                )
            return UploadOutcome(url=asset.url, file_id=asset.id)

        if asset.is_failed:
            log.error("upload: processing failed file_id=%s", file_id)
            raise ProcessingFailed(
                details="Media processing failed",
                extra={"fileId": file_id, "status": asset.status.value},
            )

        time.sleep(max(0.0, min(interval, deadline - time.monotonic())))

    log.error("upload: polling timeout after %ss file_id=%s status=%s", timeout, file_id, last_status.value)
    raise ProcessingTimeout(
        details=(
            f"Media processing timeout: Shopify did not complete processing within {timeout:g} seconds. "
            "The image may still be processing in the background."
        ),
        extra={"fileId": file_id, "status": last_status.value},
    )


def _fetch_status(client: ShopifyClient, file_id: str) -> CreatedAsset | None:
    try:
        return client.file_status(file_id)
    except ShopifyNetworkError as e:
        raise UpstreamUnreachable(details=_diagnostics(e), extra={"fileId": file_id}) from e
    except ShopifyError as e:
        raise ProcessingFailed("Failed to check media status", details=_diagnostics(e), extra={"fileId": file_id}) from e
    except ValueError as e:
        raise ProcessingFailed("Failed to check media status", details=str(e), extra={"fileId": file_id}) from e


def upload_image(*, filename: str | None, image: str | None) -> UploadOutcome:
    client = get_shopify_client()

    if not filename or not image:
        raise InvalidInput("Missing filename or image data")

    decoded = decode_image_data_uri(image)
    http_method = (settings.staged_upload_http_method or "PUT").strip().upper()

    log.info(
        "upload: start filename=%s content_type=%s size=%s shop=%s",
        filename,
        decoded.content_type,
        len(decoded.content),
        client.shop,
    )

    target = _stage(client, filename=filename, image=decoded, http_method=http_method)

    try:
        client.upload_to_staged_target(
            target,
            decoded.content,
            filename=filename,
            content_type=decoded.content_type,
            http_method=http_method,
        )
    except StagedTransferError as e:
        raise TransferFailed(details=e.body, extra={"status": e.status_code}) from e
    except ShopifyError as e:
        raise TransferFailed(details=_diagnostics(e)) from e

    log.info("upload: transferred filename=%s resource_url=%s", filename, target.resource_url)

    created = _finalize(client, resource_url=target.resource_url, filename=filename)
    log.info("upload: created file_id=%s kind=%s status=%s", created.id, created.kind.value, created.status.value)

    if not created.needs_processing:
        if not created.url:
            log.error("upload: GenericFile created without url file_id=%s", created.id)
            raise ProcessingFailed(
                "File created but no URL available",
                details="GenericFile was created but URL is not available",
                extra={"fileId": created.id},
            )
        return UploadOutcome(url=created.url, file_id=created.id)

    if created.is_ready and created.url:
        return UploadOutcome(url=created.url, file_id=created.id)

    outcome = poll_until_ready(client, created.id)
    log.info("upload: ready file_id=%s url=%s", outcome.file_id, outcome.url)
    return outcome


def check_status(*, file_id: str) -> StatusOutcome:
    file_id = (file_id or "").strip()
    if not file_id:
        raise InvalidInput("Missing fileId")

    client = get_shopify_client()
    asset = _fetch_status(client, file_id)
    if asset is None:
        raise InvalidInput("File not found", details=f"no file with id {file_id}", extra={"fileId": file_id})

    if asset.is_failed:
        raise ProcessingFailed(details="Media processing failed", extra={"fileId": asset.id, "status": asset.status.value})

    if not asset.needs_processing:
        ready = bool(asset.url)
    else:
        ready = asset.is_ready
        if ready and not asset.url:
            raise ProcessingFailed(
                details="Media ready but no URL available",
                extra={"fileId": asset.id, "status": asset.status.value},
            )

    log.info("upload: status check file_id=%s status=%s ready=%s", asset.id, asset.status.value, ready)
    return StatusOutcome(file_id=asset.id, ready=ready, status=asset.status.value, url=asset.url if ready else None)
