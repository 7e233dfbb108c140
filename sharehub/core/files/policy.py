"""
Access policy for stored files.

decide() is a pure function of the record, the caller context and the
clock. It never mutates anything, so the lifecycle manager can call it
before the view-counting update and as often as it likes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from sharehub.core.errors import AccessDeniedError, DenyReason, ExpiredError
from .models import AccessContext, FileRecord, Visibility, utcnow
from .passwords import verify_password


@dataclass(frozen=True)
class Allow:
    """Access granted."""

    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    """Access refused for the given reason."""
    reason: DenyReason

    @property
    def allowed(self) -> bool:
        return False

    def to_error(self) -> AccessDeniedError:
        if self.reason == DenyReason.EXPIRED:
            return ExpiredError()
        return AccessDeniedError(self.reason)


Decision = Union[Allow, Deny]


class AccessPolicyEvaluator:
    """
    Decides whether a file may be served to a caller.

    Evaluation order (first match wins):
    1. Expired (sticky flag, elapsed expires_at, or exhausted max_views)
    2. Private and caller is not the owner
    3. Password set and supplied password missing or wrong
    4. Allow

    A missing password and a wrong one are the same denial.
    """

    def decide(
        self,
        file: FileRecord,
        context: AccessContext,
        now: datetime | None = None,
    ) -> Decision:
        now = now or utcnow()

        if file.expired or file.is_time_expired(now) or file.is_view_exhausted():
            return Deny(DenyReason.EXPIRED)

        if file.visibility == Visibility.PRIVATE and context.caller_id != file.owner_id:
            return Deny(DenyReason.FORBIDDEN)

        if file.password_hash is not None and not verify_password(
                context.password, file.password_hash):
            return Deny(DenyReason.BAD_PASSWORD)

        return Allow()
