"""Test suite for FormPulse.

This package contains tests for:
- Validation engine (rule order, messages, error diffing)
- Field tracker (pure state updates and emitted telemetry)
- Form session (visit sequence, dwell accumulation, summaries, reset)
- Telemetry messages and sinks
- Submission orchestrator (state machine, outcomes, in-flight rejection)
- Integration (simulated service, HTTP client, scripted scenarios)
"""
