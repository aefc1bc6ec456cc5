"""Unit tests for telemetry utilities."""

import pytest
import structlog
from prometheus_client import REGISTRY

from serverpool.utils.telemetry import (
    MonotonicClock,
    PerformanceTimer,
    async_performance_timer,
    get_logger,
    pii_redaction_processor,
    record_placement_outcome,
    record_provisioner_operation,
    record_scaling_action,
    redact_pii,
    setup_logging,
    update_pool_gauges,
)


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestPIIRedaction:
    """Test PII redaction functionality."""

    def test_redact_email(self):
        result = redact_pii("player alice@example.com joined")
        assert "alice@example.com" not in result
        assert "[REDACTED_EMAIL]" in result

    def test_redact_token(self):
        token = "abc123def456ghi789jkl012mno345pqr678"
        result = redact_pii(f"session {token}")
        assert token not in result
        assert "[REDACTED_TOKEN]" in result

    def test_short_player_ids_are_kept(self):
        assert redact_pii("player-42") == "player-42"

    def test_redact_non_string(self):
        assert redact_pii(123) == 123
        assert redact_pii(None) is None

    def test_processor_redacts_nested_values(self):
        event = {
            "event": "Player placed",
            "player_id": "bob@example.com",
            "extra": {"emails": ["eve@example.com"]},
        }

        result = pii_redaction_processor(None, "info", event)

        assert result["event"] == "Player placed"
        assert result["player_id"] == "[REDACTED_EMAIL]"
        assert result["extra"]["emails"] == ["[REDACTED_EMAIL]"]


class TestLoggingSetup:
    def test_setup_logging_json(self):
        setup_logging("INFO")
        logger = get_logger("test", component="scaling")
        logger.info("Test message", server_id="game-server-1")

    def test_setup_logging_text_with_redaction(self):
        setup_logging("DEBUG", log_format="text", enable_pii_redaction=True)
        structlog.get_logger("test").debug("Debug message", player_id="a@b.io")


class TestMetrics:
    def test_placement_outcome_counter(self):
        before = sample("serverpool_placement_requests_total", {"outcome": "success"})
        record_placement_outcome("success")
        after = sample("serverpool_placement_requests_total", {"outcome": "success"})
        assert after == before + 1

    def test_provisioner_operation_counter(self):
        labels = {"operation": "create", "status": "error"}
        before = sample("serverpool_provisioner_operations_total", labels)
        record_provisioner_operation("create", "error")
        assert sample("serverpool_provisioner_operations_total", labels) == before + 1

    def test_scaling_action_counter(self):
        labels = {"action": "scale_down"}
        before = sample("serverpool_scaling_actions_total", labels)
        record_scaling_action("scale_down")
        assert sample("serverpool_scaling_actions_total", labels) == before + 1

    def test_pool_gauges(self):
        update_pool_gauges(running=3, starting=1, bound_players=42)

        assert sample("serverpool_running_instances") == 3
        assert sample("serverpool_starting_instances") == 1
        assert sample("serverpool_bound_players") == 42


class TestPerformanceTimer:
    @pytest.mark.asyncio
    async def test_async_timer_records_duration(self):
        async with async_performance_timer("unit.success", create_span=False) as timer:
            pass

        assert isinstance(timer, PerformanceTimer)
        assert timer.duration is not None
        assert timer.duration >= 0
        count = sample(
            "serverpool_operation_duration_seconds_count",
            {"operation": "unit.success"},
        )
        assert count >= 1

    @pytest.mark.asyncio
    async def test_async_timer_propagates_errors(self):
        with pytest.raises(RuntimeError, match="boom"):
            async with async_performance_timer("unit.failure", create_span=True):
                raise RuntimeError("boom")

    @pytest.mark.asyncio
    async def test_monotonic_clock_uses_loop_time(self):
        first = MonotonicClock.now()
        second = MonotonicClock.now()
        assert second >= first
