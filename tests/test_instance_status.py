"""Tests for shutdown/protection flags and stats reporting."""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from fleet_state.instance_status import ShutdownFlagStore, instance_key
from fleet_state.models import InstanceDetails, RecorderState, StatsReport


@pytest.fixture
def recorder_tracker():
    tracker = MagicMock()
    tracker.track = AsyncMock(return_value=True)
    return tracker


@pytest.fixture
def flags(redis_client, recorder_tracker):
    return ShutdownFlagStore(redis_client, recorder_tracker)


class TestShutdownStatus:

    @pytest.mark.asyncio
    async def test_never_set_reads_false(self, flags):
        assert await flags.get_shutdown_status("i-1") is False

    @pytest.mark.asyncio
    async def test_set_then_get(self, flags, redis_client):
        assert await flags.set_shutdown_status("i-1") is True
        assert await flags.get_shutdown_status("i-1") is True
        assert await redis_client.ttl("instance:shutdown:i-1") == 900

    @pytest.mark.asyncio
    async def test_expired_reads_false(self, flags, clock):
        await flags.set_shutdown_status("i-1")
        clock.advance(901)
        assert await flags.get_shutdown_status("i-1") is False

    @pytest.mark.asyncio
    async def test_other_values_read_false(self, flags):
        assert await flags.set_shutdown_status("i-1", status="running") is True
        assert await flags.get_shutdown_status("i-1") is False


class TestScaleDownProtection:

    @pytest.mark.asyncio
    async def test_protection_with_custom_ttl(self, flags, redis_client, clock):
        await flags.set_scale_down_protected("i-1", ttl_sec=60)

        assert await flags.is_scale_down_protected("i-1") is True
        assert await redis_client.ttl("instance:scaleDownProtected:i-1") == 60
        clock.advance(61)
        assert await flags.is_scale_down_protected("i-1") is False

    @pytest.mark.asyncio
    async def test_unprotected_by_default(self, flags):
        assert await flags.is_scale_down_protected("i-1") is False


class TestReportStats:

    @pytest.mark.asyncio
    async def test_recorder_stats_delegate_to_tracker(self, flags, recorder_tracker, redis_client):
        instance = InstanceDetails("rec-1", "recorder", cloud="runpod", region="eu", group="recorders")
        status = {"busyStatus": "IDLE", "health": {"healthStatus": "HEALTHY"}}

        assert await flags.report_stats(StatsReport(instance, {"status": status}, timestamp=1234)) is True

        recorder_tracker.track.assert_awaited_once()
        state = recorder_tracker.track.await_args.args[0]
        assert isinstance(state, RecorderState)
        assert state.recorder_id == "rec-1"
        assert state.status == status
        assert state.timestamp == 1234
        assert state.metadata["group"] == "recorders"
        assert redis_client.keys_matching("instance:stats:*") == []

    @pytest.mark.asyncio
    async def test_tracker_result_is_returned(self, flags, recorder_tracker):
        recorder_tracker.track = AsyncMock(return_value=False)
        instance = InstanceDetails("rec-1", "recorder")
        assert await flags.report_stats(StatsReport(instance, {"status": {}})) is False

    @pytest.mark.asyncio
    async def test_other_types_store_blob_verbatim(self, flags, recorder_tracker, redis_client):
        stats = {"participants": 12, "stress_level": 0.4, "nested": [1, {"a": None}]}
        instance = InstanceDetails("br-1", "bridge")

        assert await flags.report_stats(StatsReport(instance, stats)) is True

        assert json.loads(await redis_client.get(instance_key("br-1", "stats"))) == stats
        assert await redis_client.ttl("instance:stats:br-1") == 900
        recorder_tracker.track.assert_not_awaited()


def test_instance_key_layout():
    assert instance_key("i-1") == "instance:shutdown:i-1"
    assert instance_key("i-1", "stats") == "instance:stats:i-1"
