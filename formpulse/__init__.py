"""FormPulse: signup form interaction telemetry.

FormPulse turns signup form interactions into structured telemetry:
- Per-field tracking of focus, blur, keystrokes, paste and error corrections
- A form session aggregating dwell times, visit order and submission attempts
- A submission orchestrator that validates, calls the signup endpoint and
  reports the outcome
- Spans, breadcrumbs and structured logs delivered to a pluggable sink

Basic usage:
    >>> from formpulse import FormSession, RecordingSink
    >>> sink = RecordingSink()
    >>> session = FormSession(sink=sink)
    >>> session.on_focus("email")
    >>> session.field_visit_sequence
    ['email']
"""

__version__ = "0.1.0"

VERSION = (0, 1, 0)

from formpulse.orchestrator import SignupForm, SubmissionOrchestrator, SubmitResult
from formpulse.session import FormSession, FormSummary
from formpulse.telemetry import RecordingSink, StructlogSink
from formpulse.validation import has_errors, validate_signup

__all__ = [
    "__version__",
    "VERSION",
    "FormSession",
    "FormSummary",
    "SignupForm",
    "SubmissionOrchestrator",
    "SubmitResult",
    "RecordingSink",
    "StructlogSink",
    "has_errors",
    "validate_signup",
]
