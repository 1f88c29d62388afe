from __future__ import annotations

from typing import Any


def success(
    data: Any = None,
    *,
    message: str | None = None,
    pagination: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Standard ``{success: true, data}`` body used by every JSON route."""
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    return body
