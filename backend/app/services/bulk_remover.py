from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.core.errors import EnumerationFailed, InvalidInput, PatternTooShort, TooManyMatches, UpstreamUnreachable
from app.core.security import require_admin_password
from app.services.media import FileRecord
from app.services.shopify import (
    ShopifyClient,
    ShopifyError,
    ShopifyGraphQLError,
    ShopifyNetworkError,
    get_shopify_client,
)


log = logging.getLogger(__name__)


@dataclass
class RemovalResult:
    pattern: str
    matched: list[FileRecord] = field(default_factory=list)
    deleted_ids: set[str] = field(default_factory=set)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def files_removed(self) -> int:
        return len(self.deleted_ids)

    @property
    def total_matched(self) -> int:
        return len(self.matched)

    def details(self) -> list[dict[str, Any]]:
        return [{"id": f.id, "alt": f.alt, "deleted": f.id in self.deleted_ids} for f in self.matched]


def list_all_files(client: ShopifyClient, *, page_size: int | None = None) -> list[FileRecord]:
    size = int(page_size or settings.remove_page_size)
    out: list[FileRecord] = []
    try:
        for page in client.iter_file_pages(page_size=size):
            out.extend(page)
            log.info("remove: fetched %s files, total=%s", len(page), len(out))
    except ShopifyNetworkError as e:
        raise UpstreamUnreachable(details=f"network error during {e.operation}") from e
    except ShopifyGraphQLError as e:
        raise EnumerationFailed(details=e.errors) from e
    except ShopifyError as e:
        raise EnumerationFailed(details=str(e)) from e
    return out


def match_files(files: list[FileRecord], pattern: str) -> list[FileRecord]:
    needle = pattern.lower()
    return [f for f in files if needle in (f.alt or "").lower()]


def _chunks(items: list[str], size: int):
    for i in range(0, len(items), size):
        yield items[i : i + size]


def delete_in_batches(client: ShopifyClient, file_ids: list[str], result: RemovalResult) -> None:
    batch_size = max(1, int(settings.remove_batch_size))
    delay = float(settings.remove_batch_delay_seconds)
    batches = list(_chunks(file_ids, batch_size))

    for n, batch in enumerate(batches, start=1):
        try:
            deleted = client.file_delete(batch)
            result.deleted_ids.update(deleted)
            log.info("remove: batch %s deleted %s/%s files", n, len(deleted), len(batch))
        except ShopifyGraphQLError as e:
            log.error("remove: batch %s errors=%s", n, e.errors)
            result.errors.append({"batch": n, "error": e.errors})
        except ShopifyError as e:
            log.error("remove: batch %s failed: %s", n, e)
            result.errors.append({"batch": n, "error": str(e)})

        if n < len(batches) and delay > 0:
            time.sleep(delay)


def remove_files(*, search_pattern: str | None, admin_password: str | None) -> RemovalResult:
    client = get_shopify_client()
    require_admin_password(admin_password)

    pattern = search_pattern or ""
    if not pattern:
        raise InvalidInput(
            "Missing searchPattern",
            message="Please provide a searchPattern to search for files to remove",
        )
    min_len = int(settings.remove_min_pattern_length)
    if len(pattern) < min_len:
        raise PatternTooShort(
            message=f"Search pattern must be at least {min_len} characters to prevent accidental mass deletion",
        )

    log.info("remove: start pattern=%s", pattern)
    files = list_all_files(client)
    matched = match_files(files, pattern)
    log.info("remove: %s of %s files match pattern=%s", len(matched), len(files), pattern)

    result = RemovalResult(pattern=pattern, matched=matched)
    if not matched:
        return result

    ceiling = int(settings.remove_max_files)
    if len(matched) > ceiling:
        raise TooManyMatches(
            message=(
                f"Found {len(matched)} files, but maximum {ceiling} files can be deleted per request. "
                "Please use a more specific search pattern."
            ),
            extra={"totalMatched": len(matched)},
        )

    delete_in_batches(client, [f.id for f in matched], result)
    log.info("remove: done deleted=%s errors=%s", result.files_removed, len(result.errors))
    return result
