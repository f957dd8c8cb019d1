"""Integration tests for FormPulse.

Tests cover:
- The simulated signup endpoint and its status codes
- HttpSignupClient against the endpoint over an httpx transport
- Every scripted scenario end to end
- The simulate command
"""

import json
import random

import httpx
import pytest
import structlog

from formpulse import __main__ as cli
from formpulse.client import HttpSignupClient, InProcessSignupClient, SignupResponse
from formpulse.clock import ManualClock
from formpulse.config import Settings
from formpulse.errors import TransportError
from formpulse.orchestrator import SignupForm
from formpulse.scenarios import SCENARIOS, get_scenario, pick_weighted, run_scenario, succeeded
from formpulse.service import SignupService
from formpulse.telemetry import RecordingSink
from formpulse.types import Outcome, SubmitState

PAYLOAD = {"name": "Jane Doe", "email": "jane@example.com", "password": "password123"}


async def no_sleep(seconds):
    return None


def make_service(sink=None, conflict_rate=0.0, seed=1):
    return SignupService(
        sink=sink,
        persist_delay_ms=0,
        email_delay_ms=0,
        conflict_rate=conflict_rate,
        rng=random.Random(seed),
        sleep=no_sleep,
        clock=ManualClock(0),
    )


class BrokenStore(SignupService):
    async def _persist(self, email):
        raise RuntimeError("database unavailable")


class TestSignupService:
    """Test the simulated endpoint."""

    @pytest.mark.asyncio
    async def test_created(self):
        sink = RecordingSink()
        service = make_service(sink)

        response = await service.handle(PAYLOAD)

        assert response.status_code == 201
        assert response.body["ok"] is True
        assert response.user_id.startswith("user_")
        assert len(response.user_id) == len("user_") + 8
        assert service.users == {"jane@example.com": response.user_id}

        root = sink.spans("http.server")[0]
        assert root.name == "POST /api/signup"
        assert root.attributes["signup.outcome"] == "success"
        assert [s.name for s in sink.spans()][-1] == "POST /api/signup"
        assert sink.spans("db")[0].name == "signup.persist_user"
        assert sink.spans("email.send")
        assert sink.logs("signup.user_created")[0].fields == {"userId": response.user_id}

    @pytest.mark.asyncio
    async def test_accepts_raw_json(self):
        response = await make_service().handle(json.dumps(PAYLOAD).encode())

        assert response.status_code == 201

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", "null"])
    async def test_bad_request(self, body):
        sink = RecordingSink()
        response = await make_service(sink).handle(body)

        assert response.status_code == 400
        assert response.error == "Invalid request body."
        assert sink.breadcrumbs("signup.bad_request")
        assert sink.spans("http.server")[0].attributes["signup.outcome"] == "bad_request"

    @pytest.mark.asyncio
    async def test_server_validation(self):
        sink = RecordingSink()
        response = await make_service(sink).handle({"name": "J", "email": "nope", "password": 12345678})

        assert response.status_code == 422
        assert response.error == "Validation failed."
        assert response.body["details"] == {
            "name": "Name must be at least 2 characters.",
            "email": "Please enter a valid email address.",
            "password": "Password is required.",
        }
        assert sink.logs("signup.server_validation_failure")[0].fields == {"fields": "name,email,password"}

    @pytest.mark.asyncio
    async def test_synthetic_conflict(self):
        sink = RecordingSink()
        response = await make_service(sink, conflict_rate=1.0).handle(PAYLOAD)

        assert response.status_code == 409
        assert response.error == "A user with this email already exists."
        assert sink.logs("signup.duplicate_email")
        assert sink.spans("http.server")[0].attributes["signup.outcome"] == "conflict"

    @pytest.mark.asyncio
    async def test_duplicate_email(self):
        service = make_service()
        first = await service.handle(PAYLOAD)
        second = await service.handle(dict(PAYLOAD, email="JANE@example.com"))

        assert first.status_code == 201
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_internal_error(self):
        sink = RecordingSink()
        service = BrokenStore(sink=sink, sleep=no_sleep, clock=ManualClock(0))

        response = await service.handle(PAYLOAD)

        assert response.status_code == 500
        assert response.error == "An unexpected error occurred."
        assert "database unavailable" in sink.breadcrumbs("signup.exception")[0].message
        assert sink.spans("db")[0].attributes["span.status"] == "error"

    def test_invalid_conflict_rate(self):
        with pytest.raises(ValueError):
            SignupService(conflict_rate=1.5)


class TestHttpSignupClient:
    """Test the httpx client."""

    @pytest.mark.asyncio
    async def test_over_service_transport(self):
        service = make_service()
        async with HttpSignupClient("http://testserver", transport=service.as_transport()) as client:
            created = await client.signup(PAYLOAD)
            conflict = await client.signup(PAYLOAD)

        assert created.status_code == 201
        assert created.ok is True
        assert conflict.status_code == 409
        assert conflict.error == "A user with this email already exists."

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with HttpSignupClient("http://testserver", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.signup(PAYLOAD)

        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request):
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        async with HttpSignupClient("http://testserver", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError, match="502"):
                await client.signup(PAYLOAD)

    @pytest.mark.asyncio
    async def test_sends_json_post(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(201, json={"ok": True, "userId": "user_00000001"})

        async with HttpSignupClient("http://testserver/", transport=httpx.MockTransport(handler)) as client:
            response = await client.signup(PAYLOAD)

        assert seen == [("POST", "/api/signup", PAYLOAD)]
        assert response.user_id == "user_00000001"

    @pytest.mark.asyncio
    async def test_unknown_route(self):
        service = make_service()
        transport = service.as_transport()
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/api/signup")

        assert response.status_code == 404

    def test_response_without_error(self):
        assert SignupResponse(500, {"error": ""}).error is None
        assert SignupResponse(500).ok is False


class TestFormOverHttp:
    """Test the form controller against the endpoint over HTTP."""

    @pytest.mark.asyncio
    async def test_success_and_server_spans(self):
        sink = RecordingSink()
        service = make_service(sink)
        clock = ManualClock(0)
        async with HttpSignupClient("http://testserver", transport=service.as_transport()) as client:
            form = SignupForm(client, sink=sink, clock=clock)
            for field, value in {**PAYLOAD, "confirmPassword": "password123"}.items():
                form.handle_focus(field)
                clock.advance(100)
                form.handle_change(field, value)
                form.handle_blur(field)
            result = await form.submit()

        assert result.outcome == Outcome.SUCCESS
        assert result.user_id == service.users["jane@example.com"]
        assert sink.spans("http.client")[0].attributes["http.status_code"] == 201
        assert sink.spans("http.server")[0].attributes["signup.outcome"] == "success"


class TestScenarios:
    """Test every scripted journey end to end."""

    async def play(self, name, seed=3):
        sink = RecordingSink()
        clock = ManualClock(1_700_000_000_000)
        rng = random.Random(seed)
        form = SignupForm(InProcessSignupClient(make_service(sink, seed=seed)), sink=sink, clock=clock)
        results = await run_scenario(get_scenario(name), form, clock, rng)
        return form, sink, results

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", [s.name for s in SCENARIOS])
    async def test_scenario_succeeds(self, name):
        form, sink, results = await self.play(name)

        assert succeeded(results)
        assert form.state == SubmitState.SUCCESS
        assert len(sink.spans("ui.form.complete")) == 1
        assert sink.spans("ui.form.complete")[0].attributes["form.outcome"] == "success"

    @pytest.mark.asyncio
    async def test_multiple_retries(self):
        form, _, results = await self.play("multiple-retries")

        assert [r.attempt for r in results] == [1, 2, 3]
        assert [r.outcome for r in results] == [None, None, Outcome.SUCCESS]
        assert form.session.submission_attempts == 3

    @pytest.mark.asyncio
    async def test_paste_email(self):
        form, sink, _ = await self.play("paste-email")

        assert form.session.fields["email"].paste_count == 1
        assert form.session.fields["name"].paste_count == 0
        assert len(sink.logs("signup.field_paste")) == 1

    @pytest.mark.asyncio
    async def test_out_of_order(self):
        _, sink, _ = await self.play("out-of-order")
        completed = sink.spans("ui.form.complete")[0]

        assert completed.attributes["form.visit_sequence"] == "email -> name -> confirmPassword -> password"

    @pytest.mark.asyncio
    async def test_password_mismatch_is_corrected(self):
        form, _, results = await self.play("password-mismatch")

        assert results[0].errors == {"confirmPassword": "Passwords do not match."}
        assert form.session.fields["confirmPassword"].correction_count == 1

    @pytest.mark.asyncio
    async def test_slow_user_dwell(self):
        form, _, _ = await self.play("slow-user")

        assert form.session.fields["name"].total_focus_ms >= 1_500

    def test_weighted_pick_covers_scenarios(self):
        rng = random.Random(0)
        picked = {pick_weighted(rng).name for _ in range(500)}

        assert picked == {s.name for s in SCENARIOS}

    def test_unknown_scenario(self):
        with pytest.raises(KeyError):
            get_scenario("rage-quit")


class TestSimulateCommand:
    """Test the simulate entry point."""

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    @pytest.mark.asyncio
    async def test_simulate_counts_outcomes(self):
        settings = Settings(persist_delay_ms=0, email_delay_ms=0, conflict_rate=0.0)

        outcomes = await cli.simulate(6, seed=11, scenario_name="happy-path", settings=settings)

        assert outcomes == {"success": 6}

    @pytest.mark.asyncio
    async def test_http_client_closed_when_scenario_fails(self, monkeypatch):
        closed = []

        class TrackingClient(HttpSignupClient):
            async def close(self):
                closed.append(self.base_url)
                await super().close()

        async def crashing_scenario(scenario, form, clock, rng):
            raise RuntimeError("scenario crashed")

        monkeypatch.setattr(cli, "HttpSignupClient", TrackingClient)
        monkeypatch.setattr(cli, "run_scenario", crashing_scenario)

        with pytest.raises(RuntimeError, match="scenario crashed"):
            await cli.simulate(
                1,
                seed=1,
                scenario_name="happy-path",
                base_url="http://testserver",
                settings=Settings(),
            )

        assert closed == ["http://testserver"]

    def test_main(self, monkeypatch):
        monkeypatch.setenv("FORMPULSE_PERSIST_DELAY_MS", "0")
        monkeypatch.setenv("FORMPULSE_EMAIL_DELAY_MS", "0")
        monkeypatch.setattr(cli, "get_settings", Settings)
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)

        assert cli.main(["simulate", "--iterations", "3", "--seed", "5"]) == 0

    def test_rejects_zero_iterations(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)

        with pytest.raises(SystemExit):
            cli.main(["simulate", "--iterations", "0"])
