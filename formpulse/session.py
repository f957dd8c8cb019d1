"""Form session aggregator.

A ``FormSession`` is the explicit, per-form owner of all interaction state:
the field states, the field visit sequence, the submission attempt counter and
the form start time. Input handlers call its ``on_*`` methods; the submission
orchestrator calls ``track_submission_attempt`` and ``emit_final_metrics``.

Several sessions can live side by side in one process (one per mounted form,
tab or request); nothing here is module-global.

Usage:
    >>> from formpulse.clock import ManualClock
    >>> from formpulse.telemetry import RecordingSink
    >>> clock, sink = ManualClock(0), RecordingSink()
    >>> session = FormSession(["name", "email"], sink=sink, clock=clock)
    >>> session.on_focus("email")
    >>> clock.advance(1200)
    1200
    >>> session.on_blur("email", "jane@example.com")
    >>> session.fields["email"].total_focus_ms
    1200
"""

from dataclasses import dataclass, field
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from formpulse.clock import Clock, system_clock
from formpulse.errors import UnknownFieldError
from formpulse.observability import get_logger
from formpulse.telemetry import (
    Breadcrumb,
    LogRecord,
    Scalar,
    Span,
    TelemetryMessage,
    TelemetrySink,
    emit_all,
)
from formpulse.tracker import (
    DEFAULT_CHANGE_SAMPLE_EVERY,
    FieldEvent,
    FieldEventKind,
    FieldState,
    apply,
)
from formpulse.types import FIELD_NAMES, Outcome, TelemetryLevel, ValidationErrorSet
from formpulse.validation import diff_errors

logger = get_logger(__name__)

VISIT_SEPARATOR = " -> "

# Per-field metrics reported at form completion, as (snake_case, camelCase).
_BREAKDOWN_METRICS = (
    ("focus_count", "focusCount"),
    ("change_count", "changeCount"),
    ("paste_count", "pasteCount"),
    ("total_focus_ms", "totalFocusMs"),
    ("correction_count", "correctionCount"),
)


@dataclass(frozen=True)
class FormSummary:
    """Point-in-time snapshot of a form session.

    Attributes:
        form_started_at: Epoch ms of the first focus, or None if never started
        form_ended_at: Epoch ms when the snapshot was taken
        total_duration_ms: ``form_ended_at - form_started_at`` (0 if never started)
        field_visit_sequence: Field names in focus order
        submission_attempts: Number of submit actions
        fields: Copies of every field state
    """
    form_started_at: Optional[int]
    form_ended_at: int
    total_duration_ms: int
    field_visit_sequence: List[str]
    submission_attempts: int
    fields: Dict[str, FieldState] = field(default_factory=dict)

    @property
    def visit_path(self) -> str:
        """The visit sequence as ``"email -> name -> ..."``."""
        return VISIT_SEPARATOR.join(self.field_visit_sequence)

    @property
    def unique_fields_visited(self) -> int:
        return len(set(self.field_visit_sequence))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "formStartedAt": self.form_started_at,
            "formEndedAt": self.form_ended_at,
            "totalDurationMs": self.total_duration_ms,
            "fieldVisitSequence": list(self.field_visit_sequence),
            "submissionAttempts": self.submission_attempts,
            "fields": {name: fs.to_dict() for name, fs in self.fields.items()},
        }


class FormSession:
    """Aggregates interaction state for one form instance and emits telemetry.

    Attributes:
        field_names: The form's known fields (fixed at creation)
        form_name: Prefix for telemetry names
        change_sample_every: Sampling interval for change breadcrumbs
        form_started_at: Epoch ms of the first focus, or None
        field_visit_sequence: One entry per focus event
        submission_attempts: One per submit action
        fields: Field name -> FieldState
    """

    def __init__(
        self,
        field_names: Sequence[str] = FIELD_NAMES,
        sink: Optional[TelemetrySink] = None,
        clock: Clock = system_clock,
        form_name: str = "signup",
        change_sample_every: int = DEFAULT_CHANGE_SAMPLE_EVERY,
    ):
        if change_sample_every < 1:
            raise ValueError("change_sample_every must be at least 1")
        self.field_names = tuple(field_names)
        self.form_name = form_name
        self.change_sample_every = change_sample_every
        self._sink = sink
        self._clock = clock
        # Counters and dwell accumulation are compound updates.
        self._lock = threading.RLock()
        self._init_state()

    def _init_state(self) -> None:
        self.form_started_at: Optional[int] = None
        self.field_visit_sequence: List[str] = []
        self.submission_attempts = 0
        self.fields: Dict[str, FieldState] = {name: FieldState() for name in self.field_names}

    # ------------------------------------------------------------------
    # Field interactions
    # ------------------------------------------------------------------

    def on_focus(self, field: str) -> None:
        """Record a focus; starts the form on its first ever focus."""
        with self._lock:
            self._require(field)
            now = self._clock()
            messages: List[TelemetryMessage] = []
            if self.form_started_at is None:
                self.form_started_at = now
                messages.extend(self._form_started(now))
            self.field_visit_sequence.append(field)
            messages.extend(self._apply(FieldEvent(
                kind=FieldEventKind.FOCUS,
                field=field,
                at=now,
                visit_index=len(self.field_visit_sequence),
            )))
        self._emit(messages)

    def on_blur(self, field: str, value: str) -> None:
        """Record a blur, closing any open dwell interval."""
        self._track(FieldEventKind.BLUR, field, value)

    def on_change(self, field: str, value: str) -> None:
        """Record a keystroke-level change (telemetry is sampled)."""
        self._track(FieldEventKind.CHANGE, field, value)

    def on_paste(self, field: str) -> None:
        """Record a paste (never sampled)."""
        self._track(FieldEventKind.PASTE, field)

    def on_error_shown(self, field: str) -> None:
        """Record that a validation error became visible on a field."""
        self._track(FieldEventKind.ERROR_SHOWN, field)

    def on_error_corrected(self, field: str) -> None:
        """Record that a displayed validation error went away."""
        self._track(FieldEventKind.ERROR_CORRECTED, field)

    def sync_errors(self, previous: ValidationErrorSet, current: ValidationErrorSet) -> None:
        """Diff two error sets and record shown / corrected transitions.

        Fields are visited in form order; corrections are applied before new
        errors for the same pass. Error keys that are not form fields are
        ignored.
        """
        shown, corrected = diff_errors(previous, current, list(self.field_names))
        for name in corrected:
            self.on_error_corrected(name)
        for name in shown:
            self.on_error_shown(name)

    def _track(self, kind: FieldEventKind, field: str, value: Optional[str] = None) -> None:
        with self._lock:
            self._require(field)
            messages = self._apply(FieldEvent(kind=kind, field=field, at=self._clock(), value=value))
        self._emit(messages)

    def _apply(self, event: FieldEvent) -> List[TelemetryMessage]:
        transition = apply(
            self.fields[event.field],
            event,
            form_name=self.form_name,
            change_sample_every=self.change_sample_every,
        )
        self.fields[event.field] = transition.state
        return transition.messages

    def _form_started(self, now: int) -> List[TelemetryMessage]:
        return [
            Breadcrumb(
                category=f"{self.form_name}.lifecycle",
                message="Form interaction started",
                data={"timestamp": now},
            ),
            LogRecord(level=TelemetryLevel.INFO, event=f"{self.form_name}.form_started"),
        ]

    # ------------------------------------------------------------------
    # Submission & completion
    # ------------------------------------------------------------------

    def track_submission_attempt(self) -> int:
        """Count a submit action, whatever its outcome. Returns the attempt number."""
        with self._lock:
            self.submission_attempts += 1
            attempt = self.submission_attempts
        self._emit([
            Breadcrumb(
                category=f"{self.form_name}.submit_attempt",
                message=f"Submit attempt #{attempt}",
                data={"attempt": attempt},
            ),
            LogRecord(
                level=TelemetryLevel.INFO,
                event=f"{self.form_name}.submit_attempt",
                fields={"attempt": attempt},
            ),
        ])
        return attempt

    def build_summary(self) -> FormSummary:
        """Snapshot the session without modifying it."""
        with self._lock:
            now = self._clock()
            started = self.form_started_at
            return FormSummary(
                form_started_at=started,
                form_ended_at=now,
                total_duration_ms=now - started if started is not None else 0,
                field_visit_sequence=list(self.field_visit_sequence),
                submission_attempts=self.submission_attempts,
                fields={name: fs.copy() for name, fs in self.fields.items()},
            )

    def emit_final_metrics(self, outcome: Union[Outcome, str]) -> FormSummary:
        """Emit the completion span, the per-field breakdown span and the metrics log.

        Called once per submission that reaches a terminal outcome. Client-side
        validation failures are not reported here.

        Args:
            outcome: success, api_error or network_error

        Returns:
            The summary the telemetry was built from
        """
        outcome = Outcome(outcome)
        summary = self.build_summary()
        form = self.form_name

        completed = Span(
            name=f"{form}.form_completed",
            op="ui.form.complete",
            attributes={
                "form.outcome": outcome.value,
                "form.total_duration_ms": summary.total_duration_ms,
                "form.submission_attempts": summary.submission_attempts,
                "form.unique_fields_visited": summary.unique_fields_visited,
                "form.total_field_visits": len(summary.field_visit_sequence),
                "form.visit_sequence": summary.visit_path,
            },
        )

        breakdown: Dict[str, Scalar] = {}
        per_field: Dict[str, Scalar] = {}
        for name, fs in summary.fields.items():
            for attr, camel in _BREAKDOWN_METRICS:
                breakdown[f"form.field.{name}.{attr}"] = getattr(fs, attr)
                per_field[f"{name}_{camel}"] = getattr(fs, attr)

        metrics_log = LogRecord(
            level=TelemetryLevel.INFO,
            event=f"{form}.form_metrics",
            fields={
                "outcome": outcome.value,
                "totalDurationMs": summary.total_duration_ms,
                "submissionAttempts": summary.submission_attempts,
                "visitSequence": summary.visit_path,
                **per_field,
            },
        )

        self._emit([
            completed,
            Span(name=f"{form}.field_breakdown", op="ui.form.field_breakdown", attributes=breakdown),
            metrics_log,
        ])
        logger.debug("form_completed", outcome=outcome.value, attempts=summary.submission_attempts)
        return summary

    def reset(self) -> None:
        """Return the session to its initial, unstarted state."""
        with self._lock:
            self._init_state()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def sink(self) -> Optional[TelemetrySink]:
        return self._sink

    def emit(self, messages: Iterable[TelemetryMessage]) -> None:
        """Send messages to this session's sink (used by the orchestrator)."""
        self._emit(list(messages))

    def now(self) -> int:
        return self._clock()

    def _require(self, field: str) -> None:
        if field not in self.fields:
            raise UnknownFieldError(field)

    def _emit(self, messages: List[TelemetryMessage]) -> None:
        if self._sink is not None and messages:
            emit_all(self._sink, messages)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the live session state (camelCase keys)."""
        with self._lock:
            return {
                "formName": self.form_name,
                "changeSampleEvery": self.change_sample_every,
                "formStartedAt": self.form_started_at,
                "fieldVisitSequence": list(self.field_visit_sequence),
                "submissionAttempts": self.submission_attempts,
                "fields": {name: fs.to_dict() for name, fs in self.fields.items()},
            }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        sink: Optional[TelemetrySink] = None,
        clock: Clock = system_clock,
    ) -> "FormSession":
        """Restore a session serialized with ``to_dict``."""
        fields = data["fields"]
        session = cls(
            list(fields),
            sink=sink,
            clock=clock,
            form_name=data.get("formName", "signup"),
            change_sample_every=data.get("changeSampleEvery", DEFAULT_CHANGE_SAMPLE_EVERY),
        )
        session.form_started_at = data.get("formStartedAt")
        session.field_visit_sequence = list(data.get("fieldVisitSequence", []))
        session.submission_attempts = data.get("submissionAttempts", 0)
        session.fields = {name: FieldState.from_dict(fs) for name, fs in fields.items()}
        return session


__all__ = [
    "VISIT_SEPARATOR",
    "FormSummary",
    "FormSession",
]
