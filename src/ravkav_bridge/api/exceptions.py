from typing import Any, List, Optional, Union
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

logger = structlog.get_logger()

INTERNAL_ERROR_MESSAGE = "Internal server error"


class BridgeException(Exception):
    def __init__(self, message: Union[str, List[str]], status_code: int = 500):
        self.messages = [message] if isinstance(message, str) else list(message)
        self.message = "; ".join(self.messages)
        self.status_code = status_code
        super().__init__(self.message)


class RequestValidationFailed(BridgeException):
    def __init__(self, message: Union[str, List[str]]):
        super().__init__(message, status_code=400)


class SessionNotFound(BridgeException):
    def __init__(self, message: str = "Session not found"):
        super().__init__(message, status_code=400)


class SessionNotAuthenticated(BridgeException):
    def __init__(self, message: str = "Session is not authenticated"):
        super().__init__(message, status_code=401)


class UpstreamError(BridgeException):
    """Failure talking to the upstream portal."""

    def __init__(self, message: Union[str, List[str]], status_code: int = 502,
                 upstream_status: Optional[int] = None, detail: Any = None):
        super().__init__(message, status_code=status_code)
        self.upstream_status = upstream_status
        self.detail = detail


class UpstreamAuthError(UpstreamError):
    """The portal answered with a structured rejection (``detail`` body)."""


class UpstreamTransportError(UpstreamError):
    """Network failure, timeout, or an error response without a ``detail``."""


class RenderError(BridgeException):
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class ExportNotSupported(BridgeException):
    def __init__(self, message: str):
        super().__init__(message, status_code=501)


class InternalError(BridgeException):
    def __init__(self, message: str = INTERNAL_ERROR_MESSAGE):
        super().__init__(message, status_code=500)


def validation_messages(exc: RequestValidationError) -> List[str]:
    """Human readable messages for a pydantic validation failure.

    Validators in the request schemas raise ``ValueError`` with the final
    message; anything else falls back to ``<field>: <pydantic message>``.
    """
    messages: List[str] = []
    for error in exc.errors():
        ctx = error.get("ctx") or {}
        if isinstance(ctx.get("error"), Exception):
            message = str(ctx["error"])
        elif error.get("type") in ("json_invalid", "model_type", "model_attributes_type", "dict_type") \
                or tuple(error.get("loc", ())) == ("body",):
            message = "Request body must be a JSON object"
        else:
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            message = f"{location}: {error.get('msg')}" if location else str(error.get("msg"))
        if message not in messages:
            messages.append(message)
    return messages


async def bridge_exception_handler(request: Request, exc: BridgeException):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Bridge exception",
        error=exc.message,
        status_code=exc.status_code,
        path=request.url.path
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"errors": exc.messages}
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = validation_messages(exc)
    logger.warning("Request validation failed", errors=messages, path=request.url.path)
    return JSONResponse(status_code=400, content={"errors": messages})


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={"errors": [INTERNAL_ERROR_MESSAGE]}
    )
