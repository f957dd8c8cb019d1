"""Per-field interaction tracking.

The tracker is a pure state-update function::

    apply(FieldState, FieldEvent) -> Transition(FieldState', [messages])

It never mutates its input and never talks to a sink, so the whole per-field
behaviour can be unit tested without a UI, a clock or a telemetry backend.
``formpulse.session.FormSession`` owns the states, feeds events in, and
delivers the returned messages.

Invariant: ``last_focus_start`` is set iff the field is currently focused.
Every blur matched to an open focus adds exactly one dwell measurement.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from formpulse.telemetry import Breadcrumb, LogRecord, Span, TelemetryMessage
from formpulse.types import TelemetryLevel

DEFAULT_CHANGE_SAMPLE_EVERY = 10


@dataclass
class FieldState:
    """Interaction state of a single form field.

    Timestamps are epoch milliseconds; ``None`` means "not yet".
    """
    focus_count: int = 0
    blur_count: int = 0
    change_count: int = 0
    paste_count: int = 0
    total_focus_ms: int = 0
    first_focus_at: Optional[int] = None
    last_blur_at: Optional[int] = None
    last_focus_start: Optional[int] = None
    had_error_shown: bool = False
    correction_count: int = 0

    @property
    def is_focused(self) -> bool:
        return self.last_focus_start is not None

    def copy(self) -> "FieldState":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (camelCase keys)."""
        return {
            "focusCount": self.focus_count,
            "blurCount": self.blur_count,
            "changeCount": self.change_count,
            "pasteCount": self.paste_count,
            "totalFocusMs": self.total_focus_ms,
            "firstFocusAt": self.first_focus_at,
            "lastBlurAt": self.last_blur_at,
            "lastFocusStart": self.last_focus_start,
            "hadErrorShown": self.had_error_shown,
            "correctionCount": self.correction_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldState":
        """Create FieldState from dict."""
        return cls(
            focus_count=data.get("focusCount", 0),
            blur_count=data.get("blurCount", 0),
            change_count=data.get("changeCount", 0),
            paste_count=data.get("pasteCount", 0),
            total_focus_ms=data.get("totalFocusMs", 0),
            first_focus_at=data.get("firstFocusAt"),
            last_blur_at=data.get("lastBlurAt"),
            last_focus_start=data.get("lastFocusStart"),
            had_error_shown=data.get("hadErrorShown", False),
            correction_count=data.get("correctionCount", 0),
        )


class FieldEventKind(str, Enum):
    """Interactions a field can receive."""
    FOCUS = "focus"
    BLUR = "blur"
    CHANGE = "change"
    PASTE = "paste"
    ERROR_SHOWN = "error_shown"
    ERROR_CORRECTED = "error_corrected"


@dataclass(frozen=True)
class FieldEvent:
    """A single interaction with a field.

    Attributes:
        kind: What happened
        field: Field name
        at: Epoch milliseconds of the interaction
        value: Current field value (blur and change only)
        visit_index: 1-based position in the form's visit sequence (focus only)
    """
    kind: FieldEventKind
    field: str
    at: int
    value: Optional[str] = None
    visit_index: Optional[int] = None


@dataclass(frozen=True)
class Transition:
    """Result of applying an event: the new state and the messages to emit."""
    state: FieldState
    messages: List[TelemetryMessage] = field(default_factory=list)


def should_sample_change(change_count: int, every: int = DEFAULT_CHANGE_SAMPLE_EVERY) -> bool:
    """True for the 1st change and every ``every``-th change after it.

    Examples:
        >>> [n for n in range(1, 26) if should_sample_change(n)]
        [1, 10, 20]
    """
    return change_count == 1 or change_count % every == 0


def apply(
    state: FieldState,
    event: FieldEvent,
    *,
    form_name: str = "signup",
    change_sample_every: int = DEFAULT_CHANGE_SAMPLE_EVERY,
) -> Transition:
    """Apply one interaction to a field state.

    Args:
        state: Current state (not modified)
        event: The interaction
        form_name: Prefix for telemetry names
        change_sample_every: Sampling interval for change breadcrumbs

    Returns:
        Transition with the updated state and the telemetry to emit
    """
    handler = _HANDLERS[FieldEventKind(event.kind)]
    return handler(state, event, form_name, change_sample_every)


def _on_focus(state: FieldState, event: FieldEvent, form: str, _every: int) -> Transition:
    name = event.field
    new = replace(
        state,
        focus_count=state.focus_count + 1,
        last_focus_start=event.at,
        first_focus_at=event.at if state.first_focus_at is None else state.first_focus_at,
    )
    return Transition(new, [
        Breadcrumb(
            category=f"{form}.field.focus",
            message=f"Focused on {name}",
            data={
                "field": name,
                "focusCount": new.focus_count,
                "visitIndex": event.visit_index,
            },
        ),
        Span(
            name=f"{form}.field.active.{name}",
            op="ui.field.focus",
            attributes={"form.field": name, "form.focus_count": new.focus_count},
        ),
    ])


def _on_blur(state: FieldState, event: FieldEvent, form: str, _every: int) -> Transition:
    name = event.field
    value = event.value or ""
    messages: List[TelemetryMessage] = []
    total_focus_ms = state.total_focus_ms

    if state.last_focus_start is not None:
        dwell_ms = event.at - state.last_focus_start
        total_focus_ms += dwell_ms
        messages.append(Span(
            name=f"{form}.field.dwell.{name}",
            op="ui.field.dwell",
            attributes={
                "form.field": name,
                "form.dwell_ms": dwell_ms,
                "form.total_focus_ms": total_focus_ms,
                "form.value_length": len(value),
                "form.is_empty": len(value) == 0,
            },
        ))

    new = replace(
        state,
        blur_count=state.blur_count + 1,
        last_blur_at=event.at,
        total_focus_ms=total_focus_ms,
        last_focus_start=None,
    )

    left_empty = not value.strip()
    messages.append(Breadcrumb(
        category=f"{form}.field.blur",
        message=f"Left {name}{' (empty)' if left_empty else ''}",
        level=TelemetryLevel.WARNING if left_empty else TelemetryLevel.INFO,
        data={
            "field": name,
            "blurCount": new.blur_count,
            "totalFocusMs": new.total_focus_ms,
            "leftEmpty": left_empty,
        },
    ))

    if left_empty and new.change_count > 0:
        messages.append(LogRecord(
            level=TelemetryLevel.WARNING,
            event=f"{form}.field_cleared",
            fields={"field": name, "changeCount": new.change_count},
        ))

    return Transition(new, messages)


def _on_change(state: FieldState, event: FieldEvent, form: str, every: int) -> Transition:
    name = event.field
    new = replace(state, change_count=state.change_count + 1)
    if not should_sample_change(new.change_count, every):
        return Transition(new)
    return Transition(new, [
        Breadcrumb(
            category=f"{form}.field.change",
            message=f"{name} changed (keystroke #{new.change_count})",
            data={
                "field": name,
                "changeCount": new.change_count,
                "valueLength": len(event.value or ""),
            },
        ),
    ])


def _on_paste(state: FieldState, event: FieldEvent, form: str, _every: int) -> Transition:
    name = event.field
    new = replace(state, paste_count=state.paste_count + 1)
    return Transition(new, [
        Breadcrumb(
            category=f"{form}.field.paste",
            message=f"Paste into {name}",
            data={"field": name, "pasteCount": new.paste_count},
        ),
        LogRecord(
            level=TelemetryLevel.INFO,
            event=f"{form}.field_paste",
            fields={"field": name, "pasteCount": new.paste_count},
        ),
    ])


def _on_error_shown(state: FieldState, event: FieldEvent, form: str, _every: int) -> Transition:
    if state.had_error_shown:
        return Transition(state)
    name = event.field
    return Transition(replace(state, had_error_shown=True), [
        Breadcrumb(
            category=f"{form}.field.error_shown",
            message=f"Validation error displayed on {name}",
            level=TelemetryLevel.WARNING,
            data={"field": name},
        ),
    ])


def _on_error_corrected(state: FieldState, event: FieldEvent, form: str, _every: int) -> Transition:
    # A correction only counts against an error that is still displayed.
    if not state.had_error_shown:
        return Transition(state)
    name = event.field
    new = replace(state, had_error_shown=False, correction_count=state.correction_count + 1)
    return Transition(new, [
        Breadcrumb(
            category=f"{form}.field.error_corrected",
            message=f"User corrected error on {name}",
            data={"field": name, "correctionCount": new.correction_count},
        ),
        LogRecord(
            level=TelemetryLevel.INFO,
            event=f"{form}.field_error_corrected",
            fields={"field": name, "correctionCount": new.correction_count},
        ),
    ])


_HANDLERS = {
    FieldEventKind.FOCUS: _on_focus,
    FieldEventKind.BLUR: _on_blur,
    FieldEventKind.CHANGE: _on_change,
    FieldEventKind.PASTE: _on_paste,
    FieldEventKind.ERROR_SHOWN: _on_error_shown,
    FieldEventKind.ERROR_CORRECTED: _on_error_corrected,
}


__all__ = [
    "DEFAULT_CHANGE_SAMPLE_EVERY",
    "FieldState",
    "FieldEventKind",
    "FieldEvent",
    "Transition",
    "should_sample_change",
    "apply",
]
