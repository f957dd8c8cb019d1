"""Scripted user journeys through the signup form.

Each scenario drives a ``SignupForm`` the way a person would: focusing
fields, typing character by character, tabbing away, pasting, submitting and
fixing mistakes. Time is simulated with a ``ManualClock`` so a run is fast and,
given a seed, reproducible. Scenarios are picked by weight, favouring the
happy path.
"""

import random
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from formpulse.clock import ManualClock
from formpulse.orchestrator import SignupForm, SubmitResult
from formpulse.types import FieldName, SubmitState

NAMES = [
    "Alice Johnson",
    "Bob Smith",
    "Carlos García",
    "Diana Lee",
    "Elena Petrova",
    "Frank Miller",
    "Grace Chen",
    "Hiro Tanaka",
    "Isla Murphy",
    "Jamal Williams",
    "Kira Novak",
    "Liam O'Brien",
    "Maya Patel",
    "Noah Kim",
    "Olivia Sánchez",
]

DOMAINS = ["gmail.com", "outlook.com", "yahoo.com", "company.io", "example.org"]

NAME = FieldName.NAME.value
EMAIL = FieldName.EMAIL.value
PASSWORD = FieldName.PASSWORD.value
CONFIRM = FieldName.CONFIRM_PASSWORD.value


class User:
    """A simulated person filling in the form."""

    def __init__(self, form: SignupForm, clock: ManualClock, rng: random.Random):
        self.form = form
        self.clock = clock
        self.rng = rng
        self.results: List[SubmitResult] = []

    def pause(self, low_ms: int, high_ms: Optional[int] = None) -> None:
        self.clock.advance(low_ms if high_ms is None else self.rng.randint(low_ms, high_ms))

    def type_into(self, field: str, text: str, leave: bool = True, focus: bool = True) -> None:
        """Focus ``field``, type ``text`` one character at a time, optionally tab away."""
        if focus:
            self.form.handle_focus(field)
        value = self.form.values[field]  # type: ignore[literal-required]
        for char in text:
            self.pause(30, 100)
            value += char
            self.form.handle_change(field, value)
        if leave:
            self.leave(field)

    def retype(self, field: str, text: str) -> None:
        """Go back to ``field``, wipe it and type ``text``."""
        self.form.handle_focus(field)
        self.pause(100, 300)
        self.form.handle_change(field, "")
        self.type_into(field, text, focus=False)

    def paste_into(self, field: str, text: str) -> None:
        self.form.handle_focus(field)
        self.pause(200, 400)
        self.form.handle_paste(field)
        self.form.handle_change(field, text)
        self.leave(field)

    def leave(self, field: str) -> None:
        self.pause(50, 150)
        self.form.handle_blur(field)

    async def submit(self) -> SubmitResult:
        self.pause(150, 400)
        result = await self.form.submit()
        self.results.append(result)
        return result

    def random_identity(self):
        name = self.rng.choice(NAMES)
        slug = "".join(c for c in name.lower() if "a" <= c <= "z")
        email = f"{slug}{self.rng.randint(0, 9999)}@{self.rng.choice(DOMAINS)}"
        password = f"Str0ng!Pass{self.rng.randint(0, 999)}"
        return name, email, password


async def happy_path(user: User) -> None:
    """Fill everything correctly, submit once."""
    name, email, password = user.random_identity()
    user.type_into(NAME, name)
    user.pause(200, 500)
    user.type_into(EMAIL, email)
    user.pause(150, 350)
    user.type_into(PASSWORD, password)
    user.pause(100, 250)
    user.type_into(CONFIRM, password)
    await user.submit()


async def empty_then_fix(user: User) -> None:
    """Submit an empty form, then fill every field and retry."""
    name, email, password = user.random_identity()
    await user.submit()
    user.pause(800)
    for field, text in ((NAME, name), (EMAIL, email), (PASSWORD, password), (CONFIRM, password)):
        user.type_into(field, text)
        user.pause(200, 300)
    await user.submit()


async def password_mismatch(user: User) -> None:
    """Mistype the confirmation, submit, then correct it."""
    name, email, password = user.random_identity()
    user.type_into(NAME, name)
    user.type_into(EMAIL, email)
    user.type_into(PASSWORD, password)
    user.type_into(CONFIRM, "wrongPassword123")
    await user.submit()
    user.pause(800)
    user.retype(CONFIRM, password)
    await user.submit()


async def invalid_email(user: User) -> None:
    """Enter a malformed email, submit, then fix it."""
    name, email, password = user.random_identity()
    user.type_into(NAME, name)
    user.type_into(EMAIL, email.split("@")[0] + "-at-" + email.split("@")[1])
    user.type_into(PASSWORD, password)
    user.type_into(CONFIRM, password)
    await user.submit()
    user.pause(800)
    user.retype(EMAIL, email)
    await user.submit()


async def short_password(user: User) -> None:
    """Use a too-short password, submit, then choose a longer one."""
    name, email, password = user.random_identity()
    user.type_into(NAME, name)
    user.type_into(EMAIL, email)
    user.type_into(PASSWORD, "abc")
    user.type_into(CONFIRM, "abc")
    await user.submit()
    user.pause(800)
    for field in (PASSWORD, CONFIRM):
        user.retype(field, password)
    await user.submit()


async def out_of_order(user: User) -> None:
    """Fill the fields in a non-linear order."""
    name, email, password = user.random_identity()
    user.type_into(EMAIL, email)
    user.type_into(NAME, name)
    user.type_into(CONFIRM, password)
    user.type_into(PASSWORD, password)
    await user.submit()


async def paste_email(user: User) -> None:
    """Paste the email instead of typing it."""
    name, email, password = user.random_identity()
    user.type_into(NAME, name)
    user.paste_into(EMAIL, email)
    user.type_into(PASSWORD, password)
    user.type_into(CONFIRM, password)
    await user.submit()


async def multiple_retries(user: User) -> None:
    """Fail validation twice before getting it right (three attempts)."""
    name, email, password = user.random_identity()
    await user.submit()
    user.type_into(NAME, name)
    user.type_into(EMAIL, "not-an-email")
    await user.submit()
    user.retype(EMAIL, email)
    user.type_into(PASSWORD, password)
    user.type_into(CONFIRM, password)
    await user.submit()


async def slow_user(user: User) -> None:
    """Hesitant user with long dwell times between and inside fields."""
    name, email, password = user.random_identity()
    user.pause(2000)
    user.type_into(NAME, name, leave=False)
    user.pause(1500)
    user.leave(NAME)
    user.pause(1000)
    user.type_into(EMAIL, email, leave=False)
    user.pause(1800)
    user.leave(EMAIL)
    user.pause(1200)
    user.type_into(PASSWORD, password, leave=False)
    user.pause(1500)
    user.leave(PASSWORD)
    user.pause(800)
    user.type_into(CONFIRM, password)
    await user.submit()


ScenarioFn = Callable[[User], Awaitable[None]]


@dataclass(frozen=True)
class Scenario:
    name: str
    run: ScenarioFn
    weight: int


SCENARIOS: Sequence[Scenario] = (
    Scenario("happy-path", happy_path, 4),
    Scenario("empty-then-fix", empty_then_fix, 2),
    Scenario("password-mismatch", password_mismatch, 2),
    Scenario("invalid-email", invalid_email, 2),
    Scenario("short-password", short_password, 1),
    Scenario("out-of-order", out_of_order, 2),
    Scenario("paste-email", paste_email, 2),
    Scenario("multiple-retries", multiple_retries, 2),
    Scenario("slow-user", slow_user, 1),
)


def get_scenario(name: str) -> Scenario:
    for scenario in SCENARIOS:
        if scenario.name == name:
            return scenario
    raise KeyError(f"Unknown scenario: '{name}'")


def pick_weighted(rng: random.Random, scenarios: Sequence[Scenario] = SCENARIOS) -> Scenario:
    """Choose a scenario with probability proportional to its weight."""
    return rng.choices(list(scenarios), weights=[s.weight for s in scenarios], k=1)[0]


async def run_scenario(
    scenario: Scenario,
    form: SignupForm,
    clock: ManualClock,
    rng: random.Random,
) -> List[SubmitResult]:
    """Play one scenario against a form and return every submit result."""
    user = User(form, clock, rng)
    await scenario.run(user)
    return user.results


def succeeded(results: Sequence[SubmitResult]) -> bool:
    return any(r.state is SubmitState.SUCCESS for r in results)


__all__ = [
    "NAMES",
    "DOMAINS",
    "User",
    "Scenario",
    "SCENARIOS",
    "get_scenario",
    "pick_weighted",
    "run_scenario",
    "succeeded",
]
