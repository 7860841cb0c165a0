"""
Short-lived per-instance flags: shutdown status, scale-down protection and
opaque stats blobs.

Every flag carries its own TTL and simply expires. A missing flag reads as
False; "never set" and "expired" are indistinguishable by design of the store.
"""

import json
import logging
from typing import Optional, Protocol

import redis.asyncio as aioredis

from .models import InstanceType, RecorderState, StatsReport

logger = logging.getLogger(__name__)

SHUTDOWN_TTL_SEC = 900
STATS_TTL_SEC = 900
SCALE_DOWN_PROTECTED_TTL_SEC = 900

SHUTDOWN_SENTINEL = "shutdown"
PROTECTED_SENTINEL = "protected"


class RecorderTracker(Protocol):
    """Dedicated tracker for recorder instances and their idle/busy state."""

    async def track(self, state: RecorderState) -> bool:
        ...


def instance_key(instance_id: str, kind: str = "shutdown") -> str:
    return f"instance:{kind}:{instance_id}"


class ShutdownFlagStore:
    """Shutdown/protection flags and stats blobs, one key per instance each."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        recorder_tracker: RecorderTracker,
        shutdown_ttl_sec: int = SHUTDOWN_TTL_SEC,
        stats_ttl_sec: int = STATS_TTL_SEC,
        scale_down_protected_ttl_sec: int = SCALE_DOWN_PROTECTED_TTL_SEC,
    ):
        self.redis = redis_client
        self.recorder_tracker = recorder_tracker
        self.shutdown_ttl_sec = shutdown_ttl_sec
        self.stats_ttl_sec = stats_ttl_sec
        self.scale_down_protected_ttl_sec = scale_down_protected_ttl_sec

    async def set_shutdown_status(self, instance_id: str, status: str = SHUTDOWN_SENTINEL) -> bool:
        key = instance_key(instance_id)
        logger.debug(f"Writing shutdown status {key}={status}")
        await self.redis.set(key, status, ex=self.shutdown_ttl_sec)
        return True

    async def get_shutdown_status(self, instance_id: str) -> bool:
        key = instance_key(instance_id)
        value = await self.redis.get(key)
        logger.debug(f"Read shutdown status {key}={value}")
        return value == SHUTDOWN_SENTINEL

    async def set_scale_down_protected(self, instance_id: str, ttl_sec: Optional[int] = None) -> bool:
        key = instance_key(instance_id, "scaleDownProtected")
        ttl = ttl_sec or self.scale_down_protected_ttl_sec
        logger.debug(f"Writing scale-down protection {key} for {ttl}s")
        await self.redis.set(key, PROTECTED_SENTINEL, ex=ttl)
        return True

    async def is_scale_down_protected(self, instance_id: str) -> bool:
        value = await self.redis.get(instance_key(instance_id, "scaleDownProtected"))
        return value == PROTECTED_SENTINEL

    async def report_stats(self, report: StatsReport) -> bool:
        """
        Record a stats heartbeat.

        Recorder reports go to the recorder tracker, which owns their state
        machine. Everything else is stored verbatim as an opaque blob.
        """
        instance = report.instance
        if instance.instance_type == InstanceType.RECORDER.value:
            stats = report.stats if isinstance(report.stats, dict) else {}
            state = RecorderState(
                recorder_id=instance.instance_id,
                status=stats.get('status'),
                timestamp=report.timestamp,
                metadata=instance.to_dict(),
            )
            logger.debug(f"Tracking recorder state for {instance.instance_id}: {state.status}")
            return await self.recorder_tracker.track(state)

        key = instance_key(instance.instance_id, "stats")
        logger.debug(f"Writing instance stats {key}")
        await self.redis.set(key, json.dumps(report.stats), ex=self.stats_ttl_sec)
        return True
