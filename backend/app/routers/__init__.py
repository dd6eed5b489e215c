from app.routers import health, remove, upload

__all__ = [
    "health",
    "remove",
    "upload",
]
