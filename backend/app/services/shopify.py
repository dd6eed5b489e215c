from __future__ import annotations

import json
import logging
from typing import Any, Iterator

import httpx

from app.core.config import settings
from app.core.errors import ServerMisconfigured
from app.services.media import CreatedAsset, FileRecord, StagedTarget


log = logging.getLogger(__name__)


STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters {
        name
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

_FILE_FIELDS = """
    __typename
    ... on GenericFile {
      id
      url
      alt
      fileStatus
    }
    ... on MediaImage {
      id
      status
      image {
        url
      }
      alt
    }
    ... on Video {
      id
      status
      sources {
        url
      }
    }
    ... on Model3d {
      id
      status
      sources {
        url
      }
    }
"""

FILE_CREATE = (
    """
mutation fileCreate($files: [FileCreateInput!]!) {
  fileCreate(files: $files) {
    files {"""
    + _FILE_FIELDS
    + """    }
    userErrors {
      field
      message
    }
  }
}
"""
)

FILE_STATUS = (
    """
query getFileStatus($id: ID!) {
  node(id: $id) {"""
    + _FILE_FIELDS
    + """  }
}
"""
)

FILES_QUERY = """
query getFiles($query: String, $first: Int!, $after: String) {
  files(query: $query, first: $first, after: $after) {
    edges {
      node {
        id
        alt
      }
      cursor
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

FILE_DELETE = """
mutation fileDelete($fileIds: [ID!]!) {
  fileDelete(fileIds: $fileIds) {
    deletedFileIds
    userErrors {
      field
      message
    }
  }
}
"""


class ShopifyError(Exception):
    """Base for failures talking to Shopify. Never carries the access token."""


class ShopifyNetworkError(ShopifyError):
    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(f"network error during {operation}: {type(cause).__name__}")
        self.operation = operation


class ShopifyBadResponse(ShopifyError):
    def __init__(self, operation: str, status_code: int, body: str) -> None:
        super().__init__(f"{operation} response not JSON")
        self.operation = operation
        self.status_code = status_code
        self.body = body[:1000]


class ShopifyGraphQLError(ShopifyError):
    """Top-level `errors` or mutation `userErrors` reported by Shopify."""

    def __init__(self, operation: str, errors: list[Any]) -> None:
        super().__init__(f"{operation} returned errors")
        self.operation = operation
        self.errors = errors


class StagedTransferError(ShopifyError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"staged upload returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body[:2000]


def _http_client(timeout: httpx.Timeout) -> httpx.Client:
    return httpx.Client(timeout=timeout)


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=float(settings.shopify_timeout_connect),
        read=float(settings.shopify_timeout_read),
        write=float(settings.shopify_timeout_write),
        pool=3.0,
    )


class ShopifyClient:
    def __init__(self, *, shop: str, token: str, api_version: str = "2024-10") -> None:
        self.shop = shop
        self._token = token
        self.api_version = api_version

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    def graphql(self, query: str, variables: dict[str, Any], *, operation: str) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._token,
        }
        try:
            with _http_client(_timeout()) as client:
                r = client.post(self.endpoint, json={"query": query, "variables": variables}, headers=headers)
        except httpx.HTTPError as e:
            log.error("shopify: %s network error err=%s: %s", operation, type(e).__name__, e)
            raise ShopifyNetworkError(operation, e) from e

        try:
            payload = r.json()
        except (json.JSONDecodeError, ValueError) as e:
            log.error("shopify: %s response not JSON status=%s body=%s", operation, r.status_code, r.text[:500])
            raise ShopifyBadResponse(operation, int(r.status_code), r.text) from e

        if not isinstance(payload, dict):
            raise ShopifyBadResponse(operation, int(r.status_code), r.text)

        errors = payload.get("errors")
        if errors:
            log.error("shopify: %s graphql errors=%s", operation, errors)
            raise ShopifyGraphQLError(operation, errors if isinstance(errors, list) else [errors])

        return payload.get("data") or {}

    def staged_uploads_create(
        self,
        *,
        filename: str,
        mime_type: str,
        file_size: int,
        http_method: str = "PUT",
    ) -> StagedTarget | None:
        variables = {
            "input": [
                {
                    "filename": filename,
                    "mimeType": mime_type,
                    "resource": "IMAGE",
                    "fileSize": str(int(file_size)),
                    "httpMethod": http_method,
                }
            ]
        }
        data = self.graphql(STAGED_UPLOADS_CREATE, variables, operation="stagedUploadsCreate")
        result = data.get("stagedUploadsCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            log.error("shopify: stagedUploadsCreate userErrors=%s", user_errors)
            raise ShopifyGraphQLError("stagedUploadsCreate", user_errors)

        targets = result.get("stagedTargets") or []
        target = targets[0] if targets else None
        if not target or not target.get("url"):
            return None

        params = tuple(
            (str(p.get("name") or ""), str(p.get("value") or ""))
            for p in (target.get("parameters") or [])
            if p and p.get("name")
        )
        return StagedTarget(url=str(target["url"]), resource_url=str(target.get("resourceUrl") or ""), parameters=params)

    def upload_to_staged_target(
        self,
        target: StagedTarget,
        content: bytes,
        *,
        filename: str,
        content_type: str,
        http_method: str = "PUT",
    ) -> None:
        method = (http_method or "PUT").strip().upper()
        log.info(
            "shopify: staged %s fields=%s bytes=%s",
            method,
            [name for name, _ in target.parameters],
            len(content),
        )
        try:
            with _http_client(_timeout()) as client:
                if method == "PUT":
                    # Parameters travel as headers; they are part of the signed request.
                    r = client.put(target.url, content=content, headers=dict(target.parameters))
                else:
                    # Form fields must precede the file part, in the order Shopify returned them.
                    r = client.post(
                        target.url,
                        data=dict(target.parameters),
                        files={"file": (filename, content, content_type)},
                    )
        except httpx.HTTPError as e:
            log.error("shopify: staged upload network error err=%s: %s", type(e).__name__, e)
            raise ShopifyNetworkError("staged upload", e) from e

        if r.status_code >= 400:
            log.error("shopify: staged upload failed status=%s body=%s", r.status_code, r.text[:500])
            raise StagedTransferError(int(r.status_code), r.text)

    def file_create(self, *, resource_url: str, alt: str) -> CreatedAsset | None:
        variables = {"files": [{"alt": alt, "contentType": "IMAGE", "originalSource": resource_url}]}
        data = self.graphql(FILE_CREATE, variables, operation="fileCreate")
        result = data.get("fileCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            log.error("shopify: fileCreate userErrors=%s", user_errors)
            raise ShopifyGraphQLError("fileCreate", user_errors)

        files = result.get("files") or []
        if not files or not files[0]:
            return None
        return CreatedAsset.from_node(files[0])

    def file_status(self, file_id: str) -> CreatedAsset | None:
        data = self.graphql(FILE_STATUS, {"id": file_id}, operation="getFileStatus")
        node = data.get("node")
        if not node:
            return None
        return CreatedAsset.from_node(node)

    def iter_file_pages(self, *, page_size: int = 50) -> Iterator[list[FileRecord]]:
        cursor: str | None = None
        while True:
            variables = {"query": None, "first": int(page_size), "after": cursor}
            data = self.graphql(FILES_QUERY, variables, operation="getFiles")
            files = data.get("files") or {}

            page: list[FileRecord] = []
            for edge in files.get("edges") or []:
                node = (edge or {}).get("node") or {}
                fid = str(node.get("id") or "").strip()
                if fid:
                    page.append(FileRecord(id=fid, alt=str(node.get("alt") or "")))
            yield page

            info = files.get("pageInfo") or {}
            cursor = info.get("endCursor") or None
            if not info.get("hasNextPage") or not cursor:
                break

    def file_delete(self, file_ids: list[str]) -> list[str]:
        data = self.graphql(FILE_DELETE, {"fileIds": list(file_ids)}, operation="fileDelete")
        result = data.get("fileDelete") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyGraphQLError("fileDelete", user_errors)
        return [str(x) for x in (result.get("deletedFileIds") or [])]


def get_shopify_client() -> ShopifyClient:
    shop = (settings.shopify_shop or "").strip()
    token = (settings.shopify_admin_token or "").strip()
    if not shop or not token:
        log.error("missing Shopify credentials has_shop=%s has_token=%s", bool(shop), bool(token))
        raise ServerMisconfigured(
            "Server configuration error - missing credentials",
            details="Environment variables not configured. Please set SHOPIFY_SHOP and SHOPIFY_ADMIN_TOKEN.",
        )
    return ShopifyClient(shop=shop, token=token, api_version=str(settings.shopify_api_version or "2024-10"))
