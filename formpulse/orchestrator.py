"""Submission orchestrator and signup form controller.

The orchestrator drives one submit action through its states::

    IDLE -> VALIDATING -> IDLE                      (client-side errors shown)
                       -> SUBMITTING -> SUCCESS     (terminal, UI navigates away)
                                     -> IDLE        (API error or network error)

Only one submission may be in flight per session; a second ``submit`` while
validating or submitting raises ``SubmissionInFlightError``.

``SignupForm`` is the controller a UI binds its input events to. It keeps the
current field values and error set and forwards interactions to the
``FormSession``.

Usage:
    >>> import asyncio
    >>> from formpulse.client import InProcessSignupClient
    >>> from formpulse.service import SignupService
    >>> form = SignupForm(InProcessSignupClient(SignupService(persist_delay_ms=0, email_delay_ms=0, conflict_rate=0)))
    >>> result = asyncio.run(form.submit())
    >>> sorted(result.errors)
    ['confirmPassword', 'email', 'name', 'password']
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Set

from formpulse.client import SignupClient
from formpulse.clock import Clock, system_clock
from formpulse.config import Settings
from formpulse.errors import InvalidStateTransitionError, SubmissionInFlightError, UnknownFieldError
from formpulse.observability import get_logger
from formpulse.session import FormSession, FormSummary
from formpulse.telemetry import Breadcrumb, LogRecord, TelemetrySink, start_span
from formpulse.types import (
    FIELD_NAMES,
    Outcome,
    SignupFields,
    SubmitState,
    TelemetryLevel,
    ValidationErrorSet,
    empty_fields,
)
from formpulse.validation import ValidationEngine, as_text, has_errors

logger = get_logger(__name__)

GENERIC_API_ERROR = "Something went wrong. Please try again."
NETWORK_ERROR = "Network error. Please check your connection and try again."
SUCCESS_REDIRECT = "/signup/success"


VALID_TRANSITIONS: Dict[SubmitState, Set[SubmitState]] = {
    SubmitState.IDLE: {SubmitState.VALIDATING},
    SubmitState.VALIDATING: {SubmitState.IDLE, SubmitState.SUBMITTING},
    SubmitState.SUBMITTING: {SubmitState.IDLE, SubmitState.SUCCESS},
    # Terminal state - no transitions allowed
    SubmitState.SUCCESS: set(),
}


@dataclass(frozen=True)
class SubmitResult:
    """What a single submit action produced.

    Attributes:
        state: Orchestrator state after the submit (idle or success)
        attempt: 1-based submission attempt number
        outcome: Terminal outcome, or None when client-side validation failed
        errors: Field errors currently shown
        server_error: User-facing server or network message, if any
        status_code: HTTP status of the signup call, if one completed
        user_id: Created user identifier on success
        summary: Form summary emitted with the final metrics, if any
    """
    state: SubmitState
    attempt: int
    outcome: Optional[Outcome] = None
    errors: ValidationErrorSet = field(default_factory=dict)
    server_error: Optional[str] = None
    status_code: Optional[int] = None
    user_id: Optional[str] = None
    summary: Optional[FormSummary] = None


class SubmissionOrchestrator:
    """Validates, submits and reports the outcome of signup attempts.

    Attributes:
        session: The form session receiving tracking calls
        state: Current SubmitState
        errors: Field errors currently displayed
        server_error: Server-level message currently displayed
        redirect_to: Navigation target after success, else None
    """

    def __init__(
        self,
        session: FormSession,
        client: SignupClient,
        engine: Optional[ValidationEngine] = None,
        on_success: Optional[Callable[[str], None]] = None,
    ):
        self.session = session
        self.client = client
        self.engine = engine or ValidationEngine()
        self.on_success = on_success
        self.state = SubmitState.IDLE
        self.errors: ValidationErrorSet = {}
        self.server_error: Optional[str] = None
        self.redirect_to: Optional[str] = None

    @property
    def submitting(self) -> bool:
        """True while a submit action is being processed; the trigger is disabled."""
        return self.state in (SubmitState.VALIDATING, SubmitState.SUBMITTING)

    def can_transition_to(self, target: SubmitState) -> bool:
        return target in VALID_TRANSITIONS.get(self.state, set())

    def _transition(self, target: SubmitState) -> None:
        if not self.can_transition_to(target):
            valid = VALID_TRANSITIONS[self.state]
            raise InvalidStateTransitionError(
                current_state=self.state,
                target_state=target,
                message=(
                    f"Invalid submit transition: cannot go from '{self.state.value}' to "
                    f"'{target.value}'. Valid targets: {', '.join(sorted(s.value for s in valid))}"
                    if valid
                    else f"Invalid submit transition: '{self.state.value}' is a terminal state."
                ),
            )
        logger.debug("submit_transition", from_state=self.state.value, to_state=target.value)
        self.state = target

    def set_errors(self, errors: ValidationErrorSet) -> None:
        """Replace the displayed error set and record shown / corrected fields."""
        previous, self.errors = self.errors, dict(errors)
        self.session.sync_errors(previous, self.errors)

    def clear_field_error(self, field: str) -> None:
        """Remove one field's error (the user started correcting it)."""
        if field in self.errors:
            self.set_errors({k: v for k, v in self.errors.items() if k != field})

    async def submit(self, fields: SignupFields) -> SubmitResult:
        """Run one submit action to completion.

        Raises:
            SubmissionInFlightError: If a submission is already being processed
            InvalidStateTransitionError: If the form already succeeded
        """
        if self.submitting:
            raise SubmissionInFlightError(self.state)
        self._transition(SubmitState.VALIDATING)

        try:
            self.server_error = None
            attempt = self.session.track_submission_attempt()
            errors = self._validate(fields)
            if has_errors(errors):
                self._report_validation_failure(errors)
                self._transition(SubmitState.IDLE)
                return SubmitResult(state=self.state, attempt=attempt, errors=dict(self.errors))
            self._transition(SubmitState.SUBMITTING)
        finally:
            if self.state is SubmitState.VALIDATING:
                self._transition(SubmitState.IDLE)

        try:
            return await self._call_api(fields, attempt)
        finally:
            if self.state is SubmitState.SUBMITTING:
                self._transition(SubmitState.IDLE)

    def _validate(self, fields: SignupFields) -> ValidationErrorSet:
        with start_span(
            self.session.sink,
            f"{self.session.form_name}.validate",
            "ui.validate",
            attributes={
                "form.fields_filled": sum(1 for f in FIELD_NAMES if as_text(fields.get(f)).strip()),
                "form.total_fields": len(FIELD_NAMES),
            },
            clock=self.session.now,
        ):
            return self.engine.validate(fields).to_error_set()

    def _report_validation_failure(self, errors: ValidationErrorSet) -> None:
        form = self.session.form_name
        self.set_errors(errors)
        failed = sorted(errors)
        self.session.emit([
            Breadcrumb(
                category=f"{form}.validation",
                message=f"Validation failed on fields: {', '.join(failed)}",
                level=TelemetryLevel.WARNING,
                data={"errorFields": failed, "errorMessages": dict(errors)},
            ),
            LogRecord(
                level=TelemetryLevel.WARNING,
                event=f"{form}.validation_failure",
                fields={"fields": ",".join(failed), "errorCount": len(failed)},
            ),
        ])

    async def _call_api(self, fields: SignupFields, attempt: int) -> SubmitResult:
        sink = self.session.sink
        form = self.session.form_name
        self.session.emit([
            Breadcrumb(category=f"{form}.submit", message="Submitting signup form to API"),
        ])

        try:
            with start_span(sink, f"{form}.api_call", "http.client", clock=self.session.now) as span:
                response = await self.client.signup({
                    "name": fields["name"],
                    "email": fields["email"],
                    "password": fields["password"],
                })
                span.set_attribute("http.status_code", response.status_code)
        except Exception as exc:
            # Any failure before a response arrived is a network error for the user.
            logger.warning("signup_call_failed", error=str(exc), error_type=type(exc).__name__)
            self.server_error = NETWORK_ERROR
            self.session.emit([
                Breadcrumb(
                    category=f"{form}.exception",
                    message=f"{type(exc).__name__}: {exc}",
                    level=TelemetryLevel.ERROR,
                    data={"flow": form, "step": "api_call"},
                ),
            ])
            summary = self.session.emit_final_metrics(Outcome.NETWORK_ERROR)
            return SubmitResult(
                state=SubmitState.IDLE,
                attempt=attempt,
                outcome=Outcome.NETWORK_ERROR,
                server_error=self.server_error,
                summary=summary,
            )

        if not response.ok:
            message = response.error or GENERIC_API_ERROR
            self.server_error = message
            self.session.emit([
                Breadcrumb(
                    category=f"{form}.api_error",
                    message="Signup API returned an error",
                    level=TelemetryLevel.ERROR,
                    data={"status": str(response.status_code), "responseBody": response.body},
                ),
                LogRecord(
                    level=TelemetryLevel.ERROR,
                    event=f"{form}.api_error",
                    fields={"status": response.status_code, "error": message},
                ),
            ])
            summary = self.session.emit_final_metrics(Outcome.API_ERROR)
            return SubmitResult(
                state=SubmitState.IDLE,
                attempt=attempt,
                outcome=Outcome.API_ERROR,
                server_error=message,
                status_code=response.status_code,
                summary=summary,
            )

        user_id = response.user_id
        self.session.emit([
            Breadcrumb(
                category=f"{form}.success",
                message="Signup completed successfully",
                data={"userId": user_id},
            ),
            LogRecord(level=TelemetryLevel.INFO, event=f"{form}.success", fields={"userId": user_id}),
        ])
        summary = self.session.emit_final_metrics(Outcome.SUCCESS)
        self._transition(SubmitState.SUCCESS)
        self.redirect_to = SUCCESS_REDIRECT
        if self.on_success is not None:
            self.on_success(SUCCESS_REDIRECT)
        return SubmitResult(
            state=SubmitState.SUCCESS,
            attempt=attempt,
            outcome=Outcome.SUCCESS,
            status_code=response.status_code,
            user_id=user_id,
            summary=summary,
        )

    def reset(self) -> None:
        """Return to IDLE with no errors shown. Session metrics are left alone."""
        self.state = SubmitState.IDLE
        self.errors = {}
        self.server_error = None
        self.redirect_to = None


class SignupForm:
    """Controller binding UI input events to tracking and submission.

    Attributes:
        values: Current field values
        session: The form's FormSession
        orchestrator: The form's SubmissionOrchestrator
    """

    def __init__(
        self,
        client: SignupClient,
        sink: Optional[TelemetrySink] = None,
        clock: Clock = system_clock,
        settings: Optional[Settings] = None,
        on_success: Optional[Callable[[str], None]] = None,
    ):
        settings = settings or Settings()
        self.values: SignupFields = empty_fields()
        self.session = FormSession(
            FIELD_NAMES,
            sink=sink,
            clock=clock,
            form_name=settings.form_name,
            change_sample_every=settings.change_sample_every,
        )
        self.orchestrator = SubmissionOrchestrator(self.session, client, on_success=on_success)

    @property
    def errors(self) -> ValidationErrorSet:
        return self.orchestrator.errors

    @property
    def server_error(self) -> Optional[str]:
        return self.orchestrator.server_error

    @property
    def submitting(self) -> bool:
        return self.orchestrator.submitting

    @property
    def state(self) -> SubmitState:
        return self.orchestrator.state

    def handle_focus(self, field: str) -> None:
        self.session.on_focus(field)

    def handle_blur(self, field: str, value: Optional[str] = None) -> None:
        self.session.on_blur(field, self._value(field) if value is None else value)

    def handle_change(self, field: str, value: str) -> None:
        """Store the new value, track it, and clear the field's error."""
        self._value(field)
        self.values[field] = value  # type: ignore[literal-required]
        self.session.on_change(field, value)
        self.orchestrator.clear_field_error(field)

    def handle_paste(self, field: str) -> None:
        self.session.on_paste(field)

    async def submit(self) -> SubmitResult:
        return await self.orchestrator.submit(self.values)

    def reset(self) -> None:
        """Start over: blank values, no errors, fresh session metrics."""
        self.values = empty_fields()
        self.orchestrator.reset()
        self.session.reset()

    def _value(self, field: str) -> str:
        if field not in self.values:
            raise UnknownFieldError(field)
        return self.values[field]  # type: ignore[literal-required]


__all__ = [
    "GENERIC_API_ERROR",
    "NETWORK_ERROR",
    "SUCCESS_REDIRECT",
    "VALID_TRANSITIONS",
    "SubmitResult",
    "SubmissionOrchestrator",
    "SignupForm",
]
