from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
import time
from typing import Optional, Dict, Any

log = logging.getLogger("tk700.exceptions.projector")

class ProjectorException(Exception):
    """Base projector exception with error context"""
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        timestamp: Optional[float] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        self.timestamp = timestamp or time.time()
        super().__init__(self.message)

class DeviceConnectionError(ProjectorException):
    """Link to the projector could not be established or was lost"""
    def __init__(self, message: str = "Projector not reachable", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, 500, "CONNECTION_ERROR", context)

class LinkTimeout(DeviceConnectionError):
    """No reply within the response timeout"""
    def __init__(self, timeout_ms: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        ctx = {"timeout_ms": timeout_ms, **(context or {})} if timeout_ms else (context or {})
        super().__init__(f"Projector did not reply within {timeout_ms}ms" if timeout_ms else "Projector did not reply", ctx)
        self.error_code = "LINK_TIMEOUT"

class LinkClosed(DeviceConnectionError):
    """Remote end closed the connection mid-exchange"""
    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__("Projector closed the connection", context)
        self.error_code = "LINK_CLOSED"

class ProtocolError(ProjectorException):
    """Reply did not parse as the expected frame"""
    def __init__(self, message: str, frame: Optional[bytes] = None, context: Optional[Dict[str, Any]] = None):
        ctx = {"frame": frame.decode("ascii", "replace"), **(context or {})} if frame is not None else (context or {})
        super().__init__(f"Protocol error: {message}", 500, "PROTOCOL_ERROR", ctx)

class DeviceRejected(ProjectorException):
    """Projector answered but declined the command"""
    def __init__(self, command: str, reason: str, context: Optional[Dict[str, Any]] = None):
        ctx = {"command": command, "reason": reason, **(context or {})}
        super().__init__(f"Projector rejected '{command}': {reason}", 500, "DEVICE_REJECTED", ctx)
        self.command = command
        self.reason = reason

class ConfigurationError(ProjectorException):
    """Required connection parameters missing; fatal at startup"""
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, 500, "CONFIGURATION_ERROR", context)


# Exception handlers. Every response keeps the {error, data} envelope.
async def projector_exception_handler(request: Request, exc: ProjectorException):
    log.error(
        "Projector exception [%s] on %s %s: %s",
        exc.error_code, request.method, request.url.path, exc.message,
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "context": exc.context,
            "timestamp": exc.timestamp
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "data": None}
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {where} {first.get('msg', '')}".strip() if where else "Invalid request"
    log.info("Rejected %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=400, content={"error": message, "data": None})

async def general_exception_handler(request: Request, exc: Exception):
    log.error(
        f"Unexpected error: {str(exc)}",
        exc_info=True,
        extra={
            "error_type": exc.__class__.__name__,
            "request": {"method": request.method, "url": str(request.url)},
            "timestamp": time.time()
        }
    )
    return JSONResponse(
        status_code=500,
        content={"error": "An unexpected error occurred", "data": None}
    )
