"""Generate signup telemetry by simulating users.

Usage:
    # 20 weighted-random sessions, telemetry logged to stderr
    python -m formpulse simulate

    # Reproducible run of one scenario, JSON logs
    python -m formpulse simulate --scenario paste-email --iterations 5 --seed 7 --format json
"""

import argparse
import asyncio
import random
import sys
from collections import Counter
from typing import List, Optional

from formpulse.client import HttpSignupClient, InProcessSignupClient, SignupClient
from formpulse.clock import ManualClock, system_clock
from formpulse.config import Settings, get_settings
from formpulse.observability import get_logger, setup_logging
from formpulse.orchestrator import SignupForm
from formpulse.scenarios import SCENARIOS, get_scenario, pick_weighted, run_scenario
from formpulse.service import SignupService
from formpulse.telemetry import AsyncDispatchSink, StructlogSink

logger = get_logger("formpulse.simulate")


async def simulate(
    iterations: int,
    seed: Optional[int],
    scenario_name: Optional[str],
    base_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Counter:
    """Run ``iterations`` simulated sessions and count their final outcomes.

    Without ``base_url`` the signup endpoint is simulated in-process; with it,
    submissions go over HTTP to a real server.
    """
    settings = settings or get_settings()
    rng = random.Random(seed)
    outcomes: Counter = Counter()

    async with AsyncDispatchSink(StructlogSink(), maxsize=settings.dispatch_queue_size) as sink:
        client: SignupClient
        if base_url:
            client = HttpSignupClient(base_url, timeout=settings.request_timeout)
        else:
            client = InProcessSignupClient(SignupService(
                sink=sink,
                persist_delay_ms=settings.persist_delay_ms,
                email_delay_ms=settings.email_delay_ms,
                conflict_rate=settings.conflict_rate,
                rng=rng,
            ))

        try:
            for i in range(1, iterations + 1):
                scenario = get_scenario(scenario_name) if scenario_name else pick_weighted(rng)
                clock = ManualClock(system_clock())
                form = SignupForm(client, sink=sink, clock=clock, settings=settings)

                logger.info("scenario_started", iteration=i, total=iterations, scenario=scenario.name)
                results = await run_scenario(scenario, form, clock, rng)
                last = results[-1] if results else None
                outcome = last.outcome.value if last and last.outcome else "validation_error"
                outcomes[outcome] += 1
                logger.info(
                    "scenario_finished",
                    iteration=i,
                    scenario=scenario.name,
                    attempts=form.session.submission_attempts,
                    outcome=outcome,
                )
                await sink.flush()
        finally:
            if isinstance(client, HttpSignupClient):
                await client.close()

    return outcomes


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="formpulse", description="Signup form telemetry tools")
    commands = parser.add_subparsers(dest="command", required=True)

    sim = commands.add_parser("simulate", help="Simulate users filling in the signup form")
    sim.add_argument("--iterations", type=int, default=20, help="Number of sessions (default: 20)")
    sim.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible run")
    sim.add_argument(
        "--scenario",
        choices=[s.name for s in SCENARIOS],
        default=None,
        help="Always run this scenario instead of a weighted random pick",
    )
    sim.add_argument(
        "--base-url",
        default=None,
        help="Submit to a running server instead of the in-process endpoint",
    )
    sim.add_argument("--format", choices=["json", "console"], default=None, help="Log format")
    sim.add_argument("--log-level", default=None, help="Minimum log level")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(
        level=args.log_level or settings.log_level,
        format=args.format or settings.log_format,
        redact_pii=settings.redact_pii,
    )

    if args.iterations < 1:
        parser.error("--iterations must be at least 1")

    outcomes = asyncio.run(simulate(
        args.iterations,
        args.seed,
        args.scenario,
        base_url=args.base_url or settings.signup_base_url,
        settings=settings,
    ))
    logger.info("simulation_complete", sessions=args.iterations, **dict(outcomes))
    return 0


if __name__ == "__main__":
    sys.exit(main())
