from __future__ import annotations

from typing import Any

from fastapi import Request


async def json_body(request: Request) -> dict[str, Any]:
    # Missing or malformed bodies behave like `{}` so handlers report the missing fields.
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
