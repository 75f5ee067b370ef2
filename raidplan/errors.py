"""Error taxonomy shared by the scheduling core, the services and the API.

Every error carries a short machine-readable ``error`` string, a human
``detail`` and optional structured ``context`` (offending ids / fields) so
callers can render a precise message.

Usage:
    from raidplan.errors import NotFoundError, StateTransitionRejected

    if plan is None:
        raise NotFoundError(detail="Event plan not found", plan_id=plan_id)

    # in main.py
    register_exception_handlers(app)
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
    context: dict[str, Any] | None = None


class RaidPlanError(Exception):
    """Base class for raidplan errors."""

    status_code: int = 500
    error: str = "internal_error"
    detail: str = "An unexpected error occurred"

    def __init__(self, detail: str | None = None, **context: Any) -> None:
        self.detail = detail or self.__class__.detail
        self.context = context if context else None
        super().__init__(self.detail)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.error,
            detail=self.detail,
            context=self.context,
        )


class ValidationError(RaidPlanError, ValueError):
    """Malformed input: bad window, slot config, recurrence or poll options."""

    status_code = 400
    error = "validation_error"
    detail = "Invalid input"


class NotFoundError(RaidPlanError):
    status_code = 404
    error = "not_found"
    detail = "Resource not found"


class ForbiddenError(RaidPlanError):
    status_code = 403
    error = "forbidden"
    detail = "Access denied"


class StateTransitionRejected(RaidPlanError):
    """An operation is valid in shape but not allowed in the current state."""

    status_code = 409
    error = "state_transition_rejected"
    detail = "Operation not allowed in the current state"

    def __init__(
        self,
        detail: str | None = None,
        *,
        current: str | None = None,
        target: str | None = None,
        **context: Any,
    ) -> None:
        if current is not None:
            context["current"] = current
        if target is not None:
            context["target"] = target
        super().__init__(detail, **context)


class RosterBatchRejected(RaidPlanError):
    """A submitted roster batch was rejected as a whole."""

    status_code = 422
    error = "roster_batch_rejected"
    detail = "Roster update rejected"

    def __init__(
        self,
        detail: str | None = None,
        *,
        violations: list[dict[str, Any]] | None = None,
        **context: Any,
    ) -> None:
        self.violations = violations or []
        super().__init__(detail, violations=self.violations, **context)


async def raidplan_error_handler(request: Request, exc: RaidPlanError) -> JSONResponse:
    logger.warning(
        "Request rejected: %s (status=%d, path=%s)",
        exc.detail,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RaidPlanError, raidplan_error_handler)
