"""Error types for FormPulse.

Client-side validation failures are data, not exceptions: they are returned as
``FieldError`` objects (and flattened into a ``ValidationErrorSet``) and drive
per-field error tracking. The exception classes below are raised only for
programming errors (unknown field names, illegal orchestrator transitions,
overlapping submissions) and for transport failures of the signup call.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from formpulse.types import FieldErrorCode, SubmitState


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        path: Field name (e.g. "email", "confirmPassword")
        code: Machine-readable error code
        message: Human-readable error shown next to the field

    Examples:
        >>> err = FieldError(
        ...     path="email",
        ...     code=FieldErrorCode.INVALID_FORMAT,
        ...     message="Please enter a valid email address.",
        ... )
        >>> err.path
        'email'
    """
    path: str
    code: FieldErrorCode
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "path": self.path,
            "code": self.code.value if isinstance(self.code, FieldErrorCode) else self.code,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data["code"]
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(path=data["path"], code=code, message=data["message"])


class FormPulseError(Exception):
    """Base class for all FormPulse exceptions."""


class UnknownFieldError(FormPulseError, KeyError):
    """Raised when a tracking operation names a field the session does not know.

    Attributes:
        field: The offending field name
    """

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Unknown form field: '{field}'")

    def __str__(self) -> str:
        return self.args[0]


class InvalidStateTransitionError(FormPulseError):
    """Raised when the submission orchestrator attempts an invalid transition.

    Attributes:
        current_state: The state before the attempted transition
        target_state: The state that was attempted
    """

    def __init__(self, current_state: SubmitState, target_state: SubmitState, message: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(message)


class SubmissionInFlightError(FormPulseError):
    """Raised when submit is called while another submission is not finished."""

    def __init__(self, state: SubmitState):
        self.state = state
        super().__init__(
            f"Cannot submit while the form is '{state.value}'; "
            f"only one submission may be in flight per session."
        )


class TransportError(FormPulseError):
    """Raised by a signup client when the request never completed.

    Attributes:
        cause: The underlying exception, if any
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


__all__ = [
    "FieldError",
    "FormPulseError",
    "UnknownFieldError",
    "InvalidStateTransitionError",
    "SubmissionInFlightError",
    "TransportError",
]
