"""
Bulwark API — Response Envelopes
==================================

What:  Builders for the JSON bodies every endpoint and middleware returns.

Shapes:
    api_response     {"success": true,  "data": ..., "meta": {"timestamp": ...}}
    error_response   {"success": false, "error": {"code", "message", "details"?},
                      "meta": {"timestamp": ...}}
    status_error     {"status": "error", "code": ..., "message": ...}
                     (compact body used by the 429 rejections)
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def api_response(data: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "meta": {"timestamp": _timestamp(), **(meta or {})},
    }


def error_response(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {"timestamp": _timestamp()},
    }


def status_error(code: str, message: str) -> Dict[str, str]:
    return {"status": "error", "code": code, "message": message}
