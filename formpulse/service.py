"""Simulated signup endpoint.

Stands in for the server side of ``POST /api/signup``: it parses and
validates the body, "persists" the user after a delay (with a configurable
rate of synthetic email conflicts), "sends" a welcome email, and answers with
the status codes and bodies the client expects:

- 201 ``{"ok": true, "userId": "user_1a2b3c4d"}``
- 400 ``{"error": "Invalid request body."}``
- 409 ``{"error": "A user with this email already exists."}``
- 422 ``{"error": "Validation failed.", "details": {...}}``
- 500 ``{"error": "An unexpected error occurred."}``

Every step is reported to the telemetry sink as spans, breadcrumbs and logs.
"""

import asyncio
import json
import random
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from formpulse.client import SIGNUP_PATH, SignupResponse
from formpulse.clock import Clock, system_clock
from formpulse.observability import get_logger
from formpulse.telemetry import Breadcrumb, LogRecord, TelemetrySink, emit_all, start_span
from formpulse.types import FieldName, TelemetryLevel
from formpulse.validation import SIGNUP_RULES, ValidationEngine

logger = get_logger(__name__)

# The endpoint receives no confirmation field.
SERVER_FIELDS = (FieldName.NAME.value, FieldName.EMAIL.value, FieldName.PASSWORD.value)

Sleep = Callable[[float], Awaitable[None]]


class ConflictError(Exception):
    """A user with the same email already exists."""


class SignupService:
    """In-memory signup endpoint with simulated persistence.

    Attributes:
        persist_delay_ms: Simulated database latency
        email_delay_ms: Simulated welcome email latency
        conflict_rate: Probability in [0, 1] of a synthetic 409 conflict
    """

    def __init__(
        self,
        sink: Optional[TelemetrySink] = None,
        persist_delay_ms: int = 150,
        email_delay_ms: int = 50,
        conflict_rate: float = 0.1,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = system_clock,
    ):
        if not 0.0 <= conflict_rate <= 1.0:
            raise ValueError("conflict_rate must be between 0 and 1")
        self.persist_delay_ms = persist_delay_ms
        self.email_delay_ms = email_delay_ms
        self.conflict_rate = conflict_rate
        self._sink = sink
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._clock = clock
        self._engine = ValidationEngine({name: SIGNUP_RULES[name] for name in SERVER_FIELDS})
        self.users: Dict[str, str] = {}

    async def handle(self, body: Union[bytes, str, Dict[str, Any]]) -> SignupResponse:
        """Handle one signup request body and return the HTTP answer."""
        with start_span(self._sink, "POST /api/signup", "http.server", clock=self._clock) as root:
            try:
                with start_span(self._sink, "signup.parse_body", "serialize.parse", clock=self._clock):
                    payload = _parse_body(body)
            except ValueError:
                self._emit(
                    Breadcrumb(
                        category="signup.bad_request",
                        message="Signup API received malformed JSON",
                        level=TelemetryLevel.WARNING,
                    ),
                )
                root.set_attribute("signup.outcome", "bad_request")
                return SignupResponse(400, {"error": "Invalid request body."})

            name = _text(payload.get("name"))
            email = _text(payload.get("email"))
            password = _text(payload.get("password"))

            with start_span(
                self._sink,
                "signup.server_validate",
                "validate",
                attributes={
                    "validate.has_name": bool(name),
                    "validate.has_email": bool(email),
                    "validate.has_password": bool(password),
                },
                clock=self._clock,
            ):
                result = self._engine.validate({
                    FieldName.NAME.value: name,
                    FieldName.EMAIL.value: email,
                    FieldName.PASSWORD.value: password,
                })

            if not result.is_valid:
                details = result.to_error_set()
                failed = ",".join(details)
                self._emit(
                    Breadcrumb(
                        category="signup.server_validation",
                        message="Server-side validation failed",
                        level=TelemetryLevel.WARNING,
                        data={"fields": list(details), "errors": details},
                    ),
                    LogRecord(
                        level=TelemetryLevel.WARNING,
                        event="signup.server_validation_failure",
                        fields={"fields": failed},
                    ),
                )
                root.set_attribute("signup.outcome", "validation_error")
                root.set_attribute("signup.validation_errors", failed)
                return SignupResponse(422, {"error": "Validation failed.", "details": details})

            try:
                with start_span(
                    self._sink,
                    "signup.persist_user",
                    "db",
                    attributes={"db.system": "simulated"},
                    clock=self._clock,
                ):
                    user_id = await self._persist(email)

                with start_span(self._sink, "signup.send_welcome_email", "email.send", clock=self._clock):
                    await self._sleep(self.email_delay_ms / 1000)
            except ConflictError as exc:
                self._emit(
                    Breadcrumb(
                        category="signup.conflict",
                        message="Duplicate email detected",
                        level=TelemetryLevel.WARNING,
                    ),
                    LogRecord(
                        level=TelemetryLevel.WARNING,
                        event="signup.duplicate_email",
                        fields={"email": email},
                    ),
                )
                root.set_attribute("signup.outcome", "conflict")
                return SignupResponse(409, {"error": str(exc)})
            except Exception as exc:
                logger.exception("signup_persist_failed")
                self._emit(
                    Breadcrumb(
                        category="signup.exception",
                        message=f"{type(exc).__name__}: {exc}",
                        level=TelemetryLevel.ERROR,
                        data={"flow": "signup", "step": "persist_user"},
                    ),
                )
                root.set_attribute("signup.outcome", "internal_error")
                return SignupResponse(500, {"error": "An unexpected error occurred."})

            self._emit(
                Breadcrumb(
                    category="signup.complete",
                    message=f"New user created: {user_id}",
                ),
                LogRecord(level=TelemetryLevel.INFO, event="signup.user_created", fields={"userId": user_id}),
            )
            root.set_attribute("signup.outcome", "success")
            root.set_attribute("signup.user_id", user_id)
            return SignupResponse(201, {"ok": True, "userId": user_id})

    async def _persist(self, email: str) -> str:
        await self._sleep(self.persist_delay_ms / 1000)
        if email.lower() in self.users or self._rng.random() < self.conflict_rate:
            raise ConflictError("A user with this email already exists.")
        user_id = f"user_{self._rng.getrandbits(32):08x}"
        self.users[email.lower()] = user_id
        return user_id

    def _emit(self, *messages) -> None:
        if self._sink is not None:
            emit_all(self._sink, messages)

    def as_transport(self) -> httpx.MockTransport:
        """Expose the service as an httpx transport for ``HttpSignupClient``."""

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.method != "POST" or request.url.path != SIGNUP_PATH:
                return httpx.Response(404, json={"error": "Not found."})
            response = await self.handle(await request.aread())
            return httpx.Response(response.status_code, json=response.body)

        return httpx.MockTransport(handler)


def _parse_body(body: Union[bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(body, dict):
        return body
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise ValueError("malformed JSON body") from exc
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")
    return payload


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


__all__ = [
    "ConflictError",
    "SignupService",
]
