from fastapi import APIRouter, HTTPException

from app.core.config import settings
from app.core.redis_client import get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready():
    if not (settings.shopify_shop or "").strip() or not (settings.shopify_admin_token or "").strip():
        raise HTTPException(status_code=503, detail="shopify credentials not configured")

    if (settings.rate_limit_backend or "").strip().lower() == "redis":
        try:
            r = get_redis()
            r.ping()
        except Exception as e:
            raise HTTPException(status_code=503, detail="redis not ready") from e

    return {"status": "ready", "removal_enabled": bool((settings.admin_password or "").strip())}
