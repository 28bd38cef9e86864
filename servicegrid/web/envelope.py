"""Response envelopes shared by every function: ``{data}`` or ``{error}``."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from fastapi.responses import JSONResponse

_VALUE_ERROR_PREFIX = "Value error, "


def ok(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    status_code: int, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


def validation_message(errors: Sequence[Any]) -> str:
    """First validation error as a single human-readable line."""
    if not errors:
        return "Invalid request"
    first = errors[0]
    msg = str(first.get("msg", "Invalid request"))
    if msg.startswith(_VALUE_ERROR_PREFIX):
        return msg[len(_VALUE_ERROR_PREFIX) :]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    return f"{'.'.join(loc)}: {msg}" if loc else msg
