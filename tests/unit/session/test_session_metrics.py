"""
Unit tests for SessionMetrics.
"""

from unittest.mock import MagicMock

import pytest

from corecast.session import MetricSnapshot, SessionMetrics
from corecast.session.metrics import STATE_MAPPING, StateValue


class TestMetricSnapshot:
    """Tests for MetricSnapshot."""

    def test_defaults(self):
        """Test an empty snapshot."""
        snapshot = MetricSnapshot()
        assert snapshot.messages_received == 0
        assert snapshot.current_state == StateValue.UNKNOWN
        assert snapshot.current_state_name == "unknown"

    def test_to_dict(self):
        """Test serialization."""
        snapshot = MetricSnapshot(messages_received=3, reconnect_attempts=1)
        data = snapshot.to_dict()
        assert data["messages_received"] == 3
        assert data["reconnect_attempts"] == 1
        assert data["total_backoff_ms"] == 0.0


class TestSessionMetrics:
    """Tests for recording session metrics."""

    @pytest.mark.parametrize("enabled", [True, False])
    def test_record_message(self, enabled):
        """Test message counting with and without OpenTelemetry."""
        metrics = SessionMetrics("trades", enable_metrics=enabled)

        metrics.record_message()
        metrics.record_message()

        assert metrics.get_snapshot().messages_received == 2

    def test_record_backoff_transition(self):
        """Test entering backoff counts a reconnect attempt and its delay."""
        metrics = SessionMetrics("trades", enable_metrics=False)

        metrics.record_transition("backoff", delay_ms=1500.0)
        metrics.record_transition("connecting")
        metrics.record_transition("backoff", delay_ms=2500.0)

        snapshot = metrics.get_snapshot()
        assert snapshot.reconnect_attempts == 2
        assert snapshot.total_backoff_ms == 4000.0
        assert snapshot.transitions == 3
        assert snapshot.current_state_name == "backoff"
        assert snapshot.current_state == StateValue.BACKOFF

    def test_state_names_are_normalized(self):
        """Test state names are matched case-insensitively."""
        metrics = SessionMetrics("trades", enable_metrics=False)
        metrics.record_transition("STREAMING")
        assert metrics.get_snapshot().current_state == StateValue.STREAMING

    def test_unknown_state(self):
        """Test unknown state names map to UNKNOWN."""
        metrics = SessionMetrics("trades", enable_metrics=False)
        metrics.record_transition("paused")
        assert metrics.get_snapshot().current_state == StateValue.UNKNOWN

    def test_snapshot_is_a_copy(self):
        """Test snapshots do not change after being taken."""
        metrics = SessionMetrics("trades", enable_metrics=False)
        snapshot = metrics.get_snapshot()
        metrics.record_message()
        assert snapshot.messages_received == 0

    def test_instruments_receive_session_attribute(self):
        """Test counters are labelled with the session name."""
        metrics = SessionMetrics("trades", enable_metrics=False)
        counter = MagicMock()
        metrics._messages_counter = counter

        metrics.record_message()

        counter.add.assert_called_once_with(1, {"session": "trades"})

    def test_state_gauge_observation(self):
        """Test the state gauge reports the current state."""
        metrics = SessionMetrics("trades", enable_metrics=False)
        metrics.record_transition("failed")

        observations = list(metrics._observe_state(MagicMock()))

        assert observations[0].value == StateValue.FAILED
        assert observations[0].attributes["state_name"] == "failed"

    def test_state_mapping_covers_all_states(self):
        """Test every session state has a gauge value."""
        assert set(STATE_MAPPING) == {
            "idle",
            "connecting",
            "streaming",
            "backoff",
            "failed",
            "stopped",
        }
