"""Core type definitions for FormPulse.

This module defines the fundamental types shared across the package:
- FieldName: The fields of the signup form
- FieldErrorCode: Machine-readable validation failure codes
- Outcome: Terminal outcomes of a submission that reached the server (or tried to)
- SubmitState: States of the submission orchestrator
- TelemetryLevel / MessageKind: Severity and kind of emitted telemetry messages
- SignupFields: The raw values of the signup form
"""

from enum import Enum
from typing import Dict, Tuple

from typing_extensions import TypedDict


class FieldName(str, Enum):
    """Fields tracked on the signup form, in display order."""
    NAME = "name"
    EMAIL = "email"
    PASSWORD = "password"
    CONFIRM_PASSWORD = "confirmPassword"


FIELD_NAMES: Tuple[str, ...] = tuple(f.value for f in FieldName)


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    TOO_SHORT = "too_short"
    INVALID_FORMAT = "invalid_format"
    MISMATCH = "mismatch"


class Outcome(str, Enum):
    """Terminal outcome reported by ``FormSession.emit_final_metrics``.

    Client-side validation failures are not an outcome: they are reported
    through per-field error-shown / error-corrected tracking instead.
    """
    SUCCESS = "success"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"


class SubmitState(str, Enum):
    """Submission orchestrator states.

    Terminal state: success. API and network errors return to idle.
    """
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUCCESS = "success"


class TelemetryLevel(str, Enum):
    """Severity of a breadcrumb or structured log record."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class MessageKind(str, Enum):
    """The three message kinds a telemetry sink accepts."""
    SPAN = "span"
    BREADCRUMB = "breadcrumb"
    LOG = "log"


class SignupFields(TypedDict):
    """Raw values of the signup form."""
    name: str
    email: str
    password: str
    confirmPassword: str


ValidationErrorSet = Dict[str, str]
"""Field name -> human-readable error. An empty mapping means the form is valid."""


def empty_fields() -> SignupFields:
    """Return a SignupFields mapping with every value blank."""
    return SignupFields(name="", email="", password="", confirmPassword="")


__all__ = [
    "FieldName",
    "FIELD_NAMES",
    "FieldErrorCode",
    "Outcome",
    "SubmitState",
    "TelemetryLevel",
    "MessageKind",
    "SignupFields",
    "ValidationErrorSet",
    "empty_fields",
]
