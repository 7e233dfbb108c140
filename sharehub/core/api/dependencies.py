"""
Request helpers shared by the routers.

Components are created once in the application lifespan and stored on
app.state; handlers reach them through the request.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from sharehub.core.errors import ValidationError
from sharehub.core.files.folders import FolderAggregator
from sharehub.core.files.lifecycle import FileLifecycleManager
from sharehub.core.files.models import AccessContext, as_utc, utcnow

ModelT = TypeVar("ModelT", bound=BaseModel)

_DURATION_PATTERN = re.compile(r"^(\d+)\s*([smhdw])$")
_DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def get_lifecycle(request: Request) -> FileLifecycleManager:
    return request.app.state.lifecycle


def get_folders(request: Request) -> FolderAggregator:
    return request.app.state.folders


def caller_id(request: Request) -> str | None:
    return getattr(request.state, "caller_id", None)


def access_context(request: Request) -> AccessContext:
    """
    Caller identity plus any password supplied for a protected file.

    The password comes from the configured header or the ``pw`` query
    parameter, so plain links to protected files can work too.
    """
    header = request.app.state.config_manager.api.password_header
    password = request.headers.get(header) or request.query_params.get("pw")
    return AccessContext(caller_id=caller_id(request), password=password or None)


def is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def parse_max_views(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(
            f"max_views must be a whole number, got {value!r}", field="max_views")


def parse_expiry(value: str | None, now: datetime | None = None) -> datetime | None:
    """
    Parse an expiry given as an ISO 8601 timestamp or a relative duration.

    Durations are a number and a unit: 30m, 12h, 7d, 2w.
    Naive timestamps are taken as UTC.
    """
    if value is None or not str(value).strip():
        return None
    value = str(value).strip()

    match = _DURATION_PATTERN.match(value.lower())
    if match:
        amount, unit = match.groups()
        try:
            return (now or utcnow()) + timedelta(**{_DURATION_UNITS[unit]: int(amount)})
        except (OverflowError, ValueError):
            raise ValidationError(
                f"Expiry {value!r} is too far in the future", field="expires_at")

    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"Invalid expiry {value!r}", field="expires_at")


async def parse_body(request: Request, model: type[ModelT]) -> ModelT:
    """Read and validate a JSON request body."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors()
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in errors)
        field = None
        if len(errors) == 1 and errors[0]["loc"]:
            field = str(errors[0]["loc"][0])
        raise ValidationError(f"Invalid request body: {details}", field=field)
