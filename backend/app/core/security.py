from __future__ import annotations

import hmac
import logging

from app.core.config import settings
from app.core.errors import ServerMisconfigured, Unauthorized


log = logging.getLogger(__name__)


def require_admin_password(provided: str | None) -> None:
    secret = str(getattr(settings, "admin_password", "") or "")
    if not secret:
        log.error("ADMIN_PASSWORD not set; removal is disabled")
        raise ServerMisconfigured(
            message="Admin password not configured. Please set ADMIN_PASSWORD in environment variables.",
        )

    provided = str(provided or "")
    if not provided:
        log.warning("removal attempt without password")
        raise Unauthorized(message="Admin password is required")

    if not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
        log.warning("unauthorized removal attempt with wrong password")
        raise Unauthorized(message="Invalid admin password")
