from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class TimeParseError(ValueError):
    """A shift time string yielded no usable time of day."""

    def __init__(self, text: str):
        super().__init__(f"Unparseable time: {text!r}")
        self.text = text


class ClockUntrustedError(Exception):
    """Trusted time has not been established (or the last sync is stale)."""


class OverrideUnavailableError(Exception):
    """The override grant expired or was already consumed by another punch."""

    def __init__(self, grant_id: int):
        super().__init__(f"Override grant {grant_id} is no longer available")
        self.grant_id = grant_id


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
