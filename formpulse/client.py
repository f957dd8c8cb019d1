"""Signup endpoint clients.

Both clients return a ``SignupResponse`` for every HTTP answer, success or
not, and raise ``TransportError`` only when the request never completed
(connection failure, timeout, unreadable response body).

Usage:
    from formpulse.client import HttpSignupClient

    async with HttpSignupClient("http://localhost:3000") as client:
        response = await client.signup({"name": "Jane", "email": "jane@example.com", "password": "..."})
        print(response.status_code, response.body)
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

import httpx
from typing_extensions import Protocol

from formpulse.errors import TransportError
from formpulse.observability import get_logger

if TYPE_CHECKING:
    from formpulse.service import SignupService

logger = get_logger(__name__)

SIGNUP_PATH = "/api/signup"


@dataclass(frozen=True)
class SignupResponse:
    """An HTTP answer from the signup endpoint.

    Attributes:
        status_code: HTTP status
        body: Decoded JSON body (``{}`` when the body is not an object)
    """
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def error(self) -> Optional[str]:
        """Server-provided error message, if any."""
        error = self.body.get("error")
        return error if isinstance(error, str) and error else None

    @property
    def user_id(self) -> Optional[str]:
        return self.body.get("userId")


class SignupClient(Protocol):
    """Anything that can perform the remote signup call."""

    async def signup(self, payload: Mapping[str, str]) -> SignupResponse:
        ...


class HttpSignupClient:
    """Async HTTP client for the signup endpoint, built on httpx.

    Attributes:
        base_url: Base URL of the server hosting ``/api/signup``
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the server
            timeout: Request timeout in seconds (expiry surfaces as TransportError)
            transport: Optional httpx transport (e.g. ``SignupService.as_transport()``)
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "HttpSignupClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def signup(self, payload: Mapping[str, str]) -> SignupResponse:
        """POST the signup payload.

        Raises:
            TransportError: If the request failed or the body is not JSON
        """
        try:
            response = await self._client.post(
                SIGNUP_PATH,
                json=dict(payload),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning("signup_request_failed", error=str(exc), error_type=type(exc).__name__)
            raise TransportError(f"Signup request failed: {exc}", cause=exc) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Signup response (HTTP {response.status_code}) is not valid JSON", cause=exc
            ) from exc

        return SignupResponse(
            status_code=response.status_code,
            body=body if isinstance(body, dict) else {},
        )


class InProcessSignupClient:
    """Client calling a ``SignupService`` directly, without HTTP."""

    def __init__(self, service: "SignupService"):
        self.service = service

    async def signup(self, payload: Mapping[str, str]) -> SignupResponse:
        return await self.service.handle(dict(payload))


__all__ = [
    "SIGNUP_PATH",
    "SignupResponse",
    "SignupClient",
    "HttpSignupClient",
    "InProcessSignupClient",
]
