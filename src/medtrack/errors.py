"""Error taxonomy for tracker actions and external boundaries.

Every action error carries a stable ``code`` so callers can render a
specific message without matching on exception text.
"""

from __future__ import annotations

from typing import Literal

TrackerErrorClass = Literal[
    "validation",
    "daily_limit",
    "outside_window",
    "guarded_deletion",
    "external",
    "other",
]


class TrackerError(Exception):
    code = "tracker_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.field = field


class InvalidInputError(TrackerError):
    """A required field is missing or malformed. Nothing was changed."""

    code = "validation_error"


class UnknownEntityError(InvalidInputError):
    code = "unknown_entity"


class DailyLimitReachedError(TrackerError):
    """Every scheduled dose of the medication is already logged as taken today."""

    code = "daily_limit_reached"

    def __init__(self, medication_name: str, frequency: int) -> None:
        super().__init__(
            f"You've already logged all {frequency} doses for {medication_name} today."
        )
        self.medication_name = medication_name
        self.frequency = frequency


class OutsideDoseWindowError(TrackerError):
    """No configured dose window of the medication is open right now."""

    code = "outside_window"

    def __init__(self, medication_name: str) -> None:
        super().__init__(f"No dose window for {medication_name} is open right now.")
        self.medication_name = medication_name


class ProtectedProfileError(TrackerError):
    code = "protected_profile"


class AuthError(TrackerError):
    code = "auth_error"


class StorageError(TrackerError):
    code = "storage_error"


ERROR_CLASS_BY_CODE: dict[str, TrackerErrorClass] = {
    InvalidInputError.code: "validation",
    UnknownEntityError.code: "validation",
    DailyLimitReachedError.code: "daily_limit",
    OutsideDoseWindowError.code: "outside_window",
    ProtectedProfileError.code: "guarded_deletion",
    AuthError.code: "external",
    StorageError.code: "external",
}


def classify_error_code(error_code: str | None) -> TrackerErrorClass:
    normalized = str(error_code or "").strip().lower()
    if not normalized:
        return "other"
    return ERROR_CLASS_BY_CODE.get(normalized, "other")
