"""
Response envelopes shared by all API routes.

Success: ``{"ok": true, "provider": ..., "data": ...}``
Failure: ``{"ok": false, "error": <human-readable>, "code": ..., "requestId": ...}``
"""

from typing import Any, Dict, Optional

from fastapi import Request


def success_envelope(data: Any, provider: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"ok": True, "data": data}
    if provider is not None:
        body["provider"] = provider
    return body


def error_envelope(
    request: Request, message: str, code: str, **extra: Any
) -> Dict[str, Any]:
    return {
        "ok": False,
        "error": message,
        "code": code,
        "origin": "app",
        "requestId": getattr(request.state, "request_id", "unknown"),
        **extra,
    }
