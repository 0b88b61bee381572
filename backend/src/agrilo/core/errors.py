"""
Erreurs applicatives Agrilo.

Une seule forme d'erreur traverse les couches : ApiError(message, status_code).
Les services la lèvent, les handlers FastAPI (voir main.py) la formatent en
{status:'error', message, timestamp, path, method}.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ApiError(Exception):
    """Erreur typée portant un code HTTP."""

    def __init__(self, message: str, status_code: int = 500, is_operational: bool = True):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational
        self.timestamp = utc_now_iso()

    def __repr__(self) -> str:
        return f"ApiError({self.status_code}, {self.message!r})"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(message: str, path: Optional[str] = None, method: Optional[str] = None,
               request_id: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Corps JSON standard des réponses d'erreur."""
    body: Dict[str, Any] = {
        "status": "error",
        "message": message or "Something went wrong",
        "timestamp": utc_now_iso(),
    }
    if path is not None:
        body["path"] = path
    if method is not None:
        body["method"] = method
    if request_id:
        body["requestId"] = request_id
    body.update(extra)
    return body


def success_body(data: Any = None, message: str = "Success") -> Dict[str, Any]:
    """Enveloppe standard des réponses de succès."""
    return {
        "status": "success",
        "message": message,
        "data": data,
        "timestamp": utc_now_iso(),
    }


__all__ = ["ApiError", "error_body", "success_body", "utc_now_iso"]
