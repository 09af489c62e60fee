"""Domain exceptions raised by the service layer.

Services raise these; routers translate them into HTTP responses.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class CallboardError(Exception):
    """Base class for domain errors."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(CallboardError):
    """A referenced row does not exist."""


class ValidationError(CallboardError, ValueError):
    """Input violates a data-model invariant."""


class InvalidTimeZoneError(ValidationError):
    """An IANA zone identifier could not be resolved."""

    def __init__(self, zone: str) -> None:
        super().__init__(f"Unknown time zone: {zone!r}")
        self.zone = zone


def register_exception_handlers(app: FastAPI) -> None:
    """Translate domain errors into JSON error responses."""

    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(ValidationError, _invalid)
