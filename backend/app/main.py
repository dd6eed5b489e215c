import uuid
import time
import json
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.errors import RelayError
from app.routers import health, remove, upload

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
        "Content-MD5, Content-Type, Date, X-Api-Version, Authorization"
    ),
    "Access-Control-Expose-Headers": "X-RateLimit-Limit, X-RateLimit-Remaining, Retry-After, X-Request-ID",
}


def create_app() -> FastAPI:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app = FastAPI(title="Shop Media Relay", version="1.0.0")

    logger = logging.getLogger("shop_media_relay")

    logging.getLogger("httpx").setLevel(logging.WARNING)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        status_code: int | None = None
        try:
            if request.method == "OPTIONS":
                # Preflight and bare OPTIONS alike: 200, CORS headers, no body.
                response = Response(status_code=200)
            else:
                response = await call_next(request)
            status_code = int(getattr(response, "status_code", 0) or 0)
        except Exception:
            status_code = 500
            raise
        finally:
            path = getattr(getattr(request, "url", None), "path", "")
            if not path.startswith("/health"):
                logger.info(
                    json.dumps(
                        {
                            "ts": datetime.now(timezone.utc).isoformat(),
                            "rid": rid,
                            "method": request.method,
                            "path": path,
                            "status": status_code,
                            "duration_ms": int((time.perf_counter() - t0) * 1000),
                        },
                        ensure_ascii=False,
                    )
                )
        response.headers["X-Request-ID"] = rid

        for key, value in CORS_HEADERS.items():
            response.headers[key] = value
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if (settings.app_env or "").strip().lower() in {"prod", "production"}:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    def _request_id(request: Request) -> str | None:
        rid = getattr(getattr(request, "state", None), "request_id", None)
        rid = str(rid or "").strip()
        return rid or None

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        rid = _request_id(request)
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "request failed rid=%s code=%s error=%s", rid, exc.code, exc.error)

        headers: dict[str, str] = {}
        quota = getattr(request.state, "rate_limit", None)
        if quota is not None:
            headers.update(quota.headers())
        if exc.headers:
            headers.update(exc.headers)
        return JSONResponse(status_code=int(exc.status_code), content=exc.to_payload(), headers=headers or None)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if int(exc.status_code) == 405:
            error = "Method not allowed"
        elif int(exc.status_code) == 404:
            error = "Not found"
        else:
            error = str(exc.detail or "Request failed")
        payload = {"success": False, "error": error, "request_id": _request_id(request)}
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("unhandled exception", extra={"rid": rid})

        # Runs outside the request middleware, so CORS and quota headers are added here.
        headers = dict(CORS_HEADERS)
        quota = getattr(request.state, "rate_limit", None)
        if quota is not None:
            headers.update(quota.headers())
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "request_id": rid,
            },
            headers=headers,
        )

    app.include_router(health.router)
    app.include_router(upload.router)
    app.include_router(remove.router)

    return app

app = create_app()
