"""Tests for the submission orchestrator and the signup form controller.

Tests cover:
- Submit state transitions and the terminal success state
- Client-side validation failures
- API errors, network errors and success
- In-flight submission rejection
- Returning to idle when validation itself fails
- Error clearing on change and reset
"""

import asyncio

import pytest

from formpulse.client import SignupResponse
from formpulse.clock import ManualClock
from formpulse.config import Settings
from formpulse.errors import (
    InvalidStateTransitionError,
    SubmissionInFlightError,
    TransportError,
    UnknownFieldError,
)
from formpulse.orchestrator import (
    GENERIC_API_ERROR,
    NETWORK_ERROR,
    SUCCESS_REDIRECT,
    VALID_TRANSITIONS,
    SignupForm,
    SubmissionOrchestrator,
)
from formpulse.session import FormSession
from formpulse.telemetry import RecordingSink
from formpulse.types import Outcome, SubmitState, TelemetryLevel
from formpulse.validation import ValidationEngine

VALID = {
    "name": "Jane Doe",
    "email": "jane@example.com",
    "password": "password123",
    "confirmPassword": "password123",
}


class StubClient:
    """Client answering every call with a fixed response."""

    def __init__(self, response):
        self.response = response
        self.payloads = []

    async def signup(self, payload):
        self.payloads.append(dict(payload))
        return self.response


class FailingClient:
    def __init__(self, exc=None):
        self.exc = exc or TransportError("connection refused")

    async def signup(self, payload):
        raise self.exc


class BlockingClient:
    """Client that waits for ``release`` before answering."""

    def __init__(self):
        self.release = asyncio.Event()
        self.called = asyncio.Event()

    async def signup(self, payload):
        self.called.set()
        await self.release.wait()
        return SignupResponse(201, {"ok": True, "userId": "user_00000001"})


class BrokenEngine(ValidationEngine):
    def validate(self, values):
        raise RuntimeError("rule table corrupted")


def make_form(client, **kwargs):
    clock = ManualClock(0)
    sink = RecordingSink()
    form = SignupForm(client, sink=sink, clock=clock, **kwargs)
    return form, clock, sink


def fill(form, values=VALID):
    for field, value in values.items():
        form.handle_focus(field)
        form.handle_change(field, value)
        form.handle_blur(field)


def ok_client():
    return StubClient(SignupResponse(201, {"ok": True, "userId": "user_1a2b3c4d"}))


class TestTransitions:
    """Test the submit state machine table."""

    def test_success_is_terminal(self):
        assert VALID_TRANSITIONS[SubmitState.SUCCESS] == set()

    def test_initial_state(self):
        orchestrator = SubmissionOrchestrator(FormSession(), ok_client())

        assert orchestrator.state == SubmitState.IDLE
        assert orchestrator.submitting is False
        assert orchestrator.can_transition_to(SubmitState.VALIDATING) is True
        assert orchestrator.can_transition_to(SubmitState.SUCCESS) is False


class TestValidationFailure:
    """Test submits blocked by client-side validation."""

    @pytest.mark.asyncio
    async def test_empty_form(self):
        client = ok_client()
        form, _, sink = make_form(client)

        result = await form.submit()

        assert result.state == SubmitState.IDLE
        assert result.outcome is None
        assert result.attempt == 1
        assert set(result.errors) == {"name", "email", "password", "confirmPassword"}
        assert form.state == SubmitState.IDLE
        assert client.payloads == []

    @pytest.mark.asyncio
    async def test_validation_telemetry(self):
        form, _, sink = make_form(ok_client())
        fill(form, dict(VALID, email="jane-at-example.com", confirmPassword="nope12345"))

        await form.submit()

        crumb = sink.breadcrumbs("signup.validation")[0]
        assert crumb.level == TelemetryLevel.WARNING
        assert crumb.message == "Validation failed on fields: confirmPassword, email"
        assert crumb.data["errorFields"] == ["confirmPassword", "email"]
        assert crumb.data["errorMessages"] == {
            "email": "Please enter a valid email address.",
            "confirmPassword": "Passwords do not match.",
        }
        log = sink.logs("signup.validation_failure")[0]
        assert log.fields == {"fields": "confirmPassword,email", "errorCount": 2}

    @pytest.mark.asyncio
    async def test_validate_span(self):
        form, _, sink = make_form(ok_client())
        fill(form, dict(VALID, password="", confirmPassword=""))

        await form.submit()

        span = sink.spans("ui.validate")[0]
        assert span.name == "signup.validate"
        assert span.attributes["form.fields_filled"] == 2
        assert span.attributes["form.total_fields"] == 4

    @pytest.mark.asyncio
    async def test_no_final_metrics(self):
        form, _, sink = make_form(ok_client())

        await form.submit()

        assert sink.spans("ui.form.complete") == []
        assert sink.logs("signup.form_metrics") == []

    @pytest.mark.asyncio
    async def test_errors_marked_shown(self):
        form, _, _ = make_form(ok_client())

        await form.submit()

        assert all(fs.had_error_shown for fs in form.session.fields.values())


class TestApiError:
    """Test non-2xx answers from the signup endpoint."""

    @pytest.mark.asyncio
    async def test_conflict_message_is_shown(self):
        client = StubClient(SignupResponse(409, {"error": "A user with this email already exists."}))
        form, _, sink = make_form(client)
        fill(form)

        result = await form.submit()

        assert result.outcome == Outcome.API_ERROR
        assert result.state == SubmitState.IDLE
        assert result.status_code == 409
        assert form.server_error == "A user with this email already exists."
        assert form.state == SubmitState.IDLE
        assert form.submitting is False

        crumb = sink.breadcrumbs("signup.api_error")[0]
        assert crumb.level == TelemetryLevel.ERROR
        assert crumb.data["status"] == "409"
        log = sink.logs("signup.api_error")[0]
        assert log.fields == {"status": 409, "error": "A user with this email already exists."}

        completed = sink.spans("ui.form.complete")[0]
        assert completed.attributes["form.outcome"] == "api_error"

    @pytest.mark.asyncio
    async def test_generic_message_without_error_body(self):
        form, _, _ = make_form(StubClient(SignupResponse(500, {})))
        fill(form)

        result = await form.submit()

        assert result.server_error == GENERIC_API_ERROR
        assert form.server_error == GENERIC_API_ERROR

    @pytest.mark.asyncio
    async def test_payload_omits_confirmation(self):
        client = StubClient(SignupResponse(500, {}))
        form, _, _ = make_form(client)
        fill(form)

        await form.submit()

        assert client.payloads == [{"name": "Jane Doe", "email": "jane@example.com", "password": "password123"}]

    @pytest.mark.asyncio
    async def test_api_call_span_status(self):
        form, _, sink = make_form(StubClient(SignupResponse(409, {"error": "dup"})))
        fill(form)

        await form.submit()

        span = sink.spans("http.client")[0]
        assert span.name == "signup.api_call"
        assert span.attributes["http.status_code"] == 409


class TestNetworkError:
    """Test signup calls that never complete."""

    @pytest.mark.asyncio
    async def test_transport_error(self):
        form, _, sink = make_form(FailingClient())
        fill(form)

        result = await form.submit()

        assert result.outcome == Outcome.NETWORK_ERROR
        assert result.server_error == NETWORK_ERROR
        assert form.state == SubmitState.IDLE
        crumb = sink.breadcrumbs("signup.exception")[0]
        assert crumb.level == TelemetryLevel.ERROR
        assert "connection refused" in crumb.message
        assert sink.spans("ui.form.complete")[0].attributes["form.outcome"] == "network_error"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_network_error(self):
        form, _, _ = make_form(FailingClient(RuntimeError("socket closed")))
        fill(form)

        result = await form.submit()

        assert result.outcome == Outcome.NETWORK_ERROR
        assert form.server_error == NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_retry_after_network_error(self):
        client = FailingClient()
        form, _, sink = make_form(client)
        fill(form)

        await form.submit()
        form.orchestrator.client = ok_client()
        result = await form.submit()

        assert result.outcome == Outcome.SUCCESS
        assert result.attempt == 2
        assert form.server_error is None
        assert len(sink.spans("ui.form.complete")) == 2


class TestSuccess:
    """Test successful submissions."""

    @pytest.mark.asyncio
    async def test_success(self):
        redirects = []
        form, clock, sink = make_form(ok_client(), on_success=redirects.append)
        fill(form)
        clock.advance(5_000)

        result = await form.submit()

        assert result.state == SubmitState.SUCCESS
        assert result.outcome == Outcome.SUCCESS
        assert result.user_id == "user_1a2b3c4d"
        assert result.status_code == 201
        assert form.state == SubmitState.SUCCESS
        assert form.orchestrator.redirect_to == SUCCESS_REDIRECT
        assert redirects == [SUCCESS_REDIRECT]
        assert result.summary.submission_attempts == 1
        assert result.summary.total_duration_ms == 5_000

    @pytest.mark.asyncio
    async def test_success_telemetry(self):
        form, _, sink = make_form(ok_client())
        fill(form)

        await form.submit()

        assert sink.breadcrumbs("signup.submit")
        assert sink.breadcrumbs("signup.success")[0].data == {"userId": "user_1a2b3c4d"}
        assert sink.logs("signup.success")[0].fields == {"userId": "user_1a2b3c4d"}
        completed = sink.spans("ui.form.complete")[0]
        assert completed.attributes["form.outcome"] == "success"
        assert completed.attributes["form.visit_sequence"] == "name -> email -> password -> confirmPassword"
        assert len(sink.logs("signup.form_metrics")) == 1

    @pytest.mark.asyncio
    async def test_submit_after_success_is_rejected(self):
        form, _, _ = make_form(ok_client())
        fill(form)
        await form.submit()

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await form.submit()

        assert exc_info.value.current_state == SubmitState.SUCCESS
        assert form.session.submission_attempts == 1

    @pytest.mark.asyncio
    async def test_success_after_validation_failure(self):
        form, _, sink = make_form(ok_client())
        fill(form, dict(VALID, password="short", confirmPassword="short"))

        first = await form.submit()
        assert first.errors == {"password": "Password must be at least 8 characters."}

        form.handle_change("password", "password123")
        form.handle_change("confirmPassword", "password123")
        second = await form.submit()

        assert second.outcome == Outcome.SUCCESS
        assert second.attempt == 2
        assert form.session.fields["password"].correction_count == 1
        assert len(sink.spans("ui.form.complete")) == 1


class TestValidationPhaseRecovery:
    """Test that a submit always leaves the validating state."""

    @pytest.mark.asyncio
    async def test_none_values_are_treated_as_empty(self):
        orchestrator = SubmissionOrchestrator(FormSession(clock=ManualClock(0)), ok_client())

        result = await orchestrator.submit(dict(VALID, name=None))

        assert result.errors == {"name": "Name is required."}
        assert orchestrator.state == SubmitState.IDLE
        assert orchestrator.submitting is False

    @pytest.mark.asyncio
    async def test_none_values_count_as_unfilled(self):
        sink = RecordingSink()
        orchestrator = SubmissionOrchestrator(FormSession(sink=sink, clock=ManualClock(0)), ok_client())

        await orchestrator.submit({"name": None, "email": "jane@example.com"})

        assert sink.spans("ui.validate")[0].attributes["form.fields_filled"] == 1

    @pytest.mark.asyncio
    async def test_engine_failure_returns_to_idle(self):
        client = ok_client()
        orchestrator = SubmissionOrchestrator(
            FormSession(clock=ManualClock(0)), client, engine=BrokenEngine()
        )

        with pytest.raises(RuntimeError):
            await orchestrator.submit(VALID)

        assert orchestrator.state == SubmitState.IDLE
        orchestrator.engine = ValidationEngine()
        result = await orchestrator.submit(VALID)
        assert result.outcome == Outcome.SUCCESS
        assert result.attempt == 2


class TestInFlight:
    """Test overlapping submissions."""

    @pytest.mark.asyncio
    async def test_second_submit_is_rejected(self):
        client = BlockingClient()
        form, _, _ = make_form(client)
        fill(form)

        first = asyncio.ensure_future(form.submit())
        await client.called.wait()

        assert form.submitting is True
        assert form.state == SubmitState.SUBMITTING
        with pytest.raises(SubmissionInFlightError):
            await form.submit()
        assert form.session.submission_attempts == 1

        client.release.set()
        result = await first

        assert result.outcome == Outcome.SUCCESS
        assert form.submitting is False


class TestSignupForm:
    """Test the form controller."""

    def test_change_stores_value(self):
        form, _, _ = make_form(ok_client())
        form.handle_change("email", "jane@example.com")

        assert form.values["email"] == "jane@example.com"
        assert form.session.fields["email"].change_count == 1

    def test_blur_uses_stored_value(self):
        form, clock, sink = make_form(ok_client())
        form.handle_focus("name")
        form.handle_change("name", "Jane")
        clock.advance(10)
        form.handle_blur("name")

        assert sink.spans("ui.field.dwell")[0].attributes["form.value_length"] == 4

    @pytest.mark.asyncio
    async def test_change_clears_field_error(self):
        form, _, sink = make_form(ok_client())
        await form.submit()

        form.handle_change("email", "j")

        assert "email" not in form.errors
        assert "name" in form.errors
        assert form.session.fields["email"].correction_count == 1
        assert len(sink.logs("signup.field_error_corrected")) == 1

    @pytest.mark.asyncio
    async def test_resubmit_with_same_error_is_not_a_new_showing(self):
        form, _, sink = make_form(ok_client())
        await form.submit()
        await form.submit()

        assert len(sink.breadcrumbs("signup.field.error_shown")) == 4

    def test_unknown_field(self):
        form, _, _ = make_form(ok_client())

        with pytest.raises(UnknownFieldError):
            form.handle_change("phone", "555")
        with pytest.raises(UnknownFieldError):
            form.handle_blur("phone")

    def test_paste(self):
        form, _, sink = make_form(ok_client())
        form.handle_paste("email")

        assert form.session.fields["email"].paste_count == 1
        assert len(sink.logs("signup.field_paste")) == 1

    @pytest.mark.asyncio
    async def test_reset(self):
        form, _, _ = make_form(ok_client())
        fill(form)
        await form.submit()

        form.reset()

        assert form.state == SubmitState.IDLE
        assert form.values["email"] == ""
        assert form.errors == {}
        assert form.session.submission_attempts == 0
        assert form.session.form_started_at is None

    def test_settings_are_applied(self):
        settings = Settings(form_name="register", change_sample_every=2)
        form, _, sink = make_form(ok_client(), settings=settings)
        for value in ["a", "ab", "abc", "abcd"]:
            form.handle_change("name", value)

        assert [c.data["changeCount"] for c in sink.breadcrumbs("register.field.change")] == [1, 2, 4]
