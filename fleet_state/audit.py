"""
Audit event store.

Lifecycle events for instances and groups are written as JSON under
composite keys with a TTL, and read back through a cursor-based SCAN:

    audit:{group}:{instanceId}:request-to-launch
    audit:{group}:{instanceId}:request-to-terminate
    audit:{group}:{instanceId}:latest-status
    audit:{group}:last-launcher-run
    audit:{group}:last-autoScaler-run
    audit:{group}:launcher-action-item:{ts}
    audit:{group}:autoScaler-action-item:{ts}

Every write replaces prior content and TTL of its key. Events simply expire
after the audit TTL; an expired event reads exactly like one that never
happened.
"""

import asyncio
import dataclasses
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as aioredis

from .audit_projection import project_group_audit, project_instance_audit
from .errors import PersistenceError
from .models import (
    AuditEvent,
    AutoScalerActionItem,
    GroupAuditResponse,
    GroupEvent,
    GroupEventKind,
    InstanceAuditResponse,
    InstanceDetails,
    InstanceEvent,
    InstanceEventKind,
    InstanceState,
    LauncherActionItem,
)

logger = logging.getLogger(__name__)

DEFAULT_SCAN_COUNT = 100


# =============================================================================
# Persisted event format
# =============================================================================

def encode_event(event: AuditEvent) -> str:
    """Serialize an event to the JSON stored under its key."""
    if isinstance(event, InstanceEvent):
        value: Dict[str, Any] = {
            "instanceId": event.instance_id,
            "type": event.kind.value,
            "timestamp": event.timestamp,
        }
        if event.state is not None:
            value["state"] = event.state
        return json.dumps(value)

    value = {
        "groupName": event.group_name,
        "type": event.kind.value,
        "timestamp": event.timestamp,
    }
    if isinstance(event.payload, LauncherActionItem):
        value["launcherActionItem"] = event.payload.to_dict()
    elif isinstance(event.payload, AutoScalerActionItem):
        value["autoScalerActionItem"] = event.payload.to_dict()
    return json.dumps(value)


_INSTANCE_KINDS = {kind.value: kind for kind in InstanceEventKind}
_GROUP_KINDS = {kind.value: kind for kind in GroupEventKind}


def decode_event(raw: str) -> Optional[AuditEvent]:
    """Parse a stored value. Returns None for values that are not audit events."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        return None
    event_type = data.get("type")

    if event_type in _INSTANCE_KINDS:
        return InstanceEvent(
            instance_id=data["instanceId"],
            kind=_INSTANCE_KINDS[event_type],
            timestamp=int(data["timestamp"]),
            state=data.get("state"),
        )

    if event_type in _GROUP_KINDS:
        kind = _GROUP_KINDS[event_type]
        payload = None
        if kind is GroupEventKind.LAUNCHER_ACTION and data.get("launcherActionItem"):
            payload = LauncherActionItem.from_dict(data["launcherActionItem"])
        elif kind is GroupEventKind.AUTOSCALER_ACTION and data.get("autoScalerActionItem"):
            payload = AutoScalerActionItem.from_dict(data["autoScalerActionItem"])
        return GroupEvent(
            group_name=data["groupName"],
            kind=kind,
            timestamp=int(data["timestamp"]),
            payload=payload,
        )

    return None


# =============================================================================
# Store
# =============================================================================

class AuditStore:
    """Append/query of TTL-bounded lifecycle events for instances and groups."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        audit_ttl_sec: int,
        scan_count: int = DEFAULT_SCAN_COUNT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.redis = redis_client
        self.audit_ttl_sec = audit_ttl_sec
        self.scan_count = scan_count
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    @staticmethod
    def _instance_key(group_name: str, instance_id: str, kind: InstanceEventKind) -> str:
        return f"audit:{group_name}:{instance_id}:{kind.value}"

    @staticmethod
    def _group_key(group_name: str, kind: GroupEventKind, timestamp: Optional[int] = None) -> str:
        if timestamp is None:
            return f"audit:{group_name}:{kind.value}"
        return f"audit:{group_name}:{kind.value}:{timestamp}"

    # -------------------------------------------------------------------------
    # Instance events
    # -------------------------------------------------------------------------

    async def save_launch_event(self, group_name: str, instance_id: str) -> bool:
        kind = InstanceEventKind.LAUNCH_REQUESTED
        event = InstanceEvent(instance_id=instance_id, kind=kind, timestamp=self._now_ms())
        return await self._set_value(self._instance_key(group_name, instance_id, kind), event)

    async def save_shutdown_events(self, instances: List[InstanceDetails]) -> None:
        """
        Write one request-to-terminate event per instance in a single pipeline.

        The pipeline is not transactional: some keys may land while others fail.
        """
        kind = InstanceEventKind.TERMINATE_REQUESTED
        keys = []
        async with self.redis.pipeline(transaction=False) as pipe:
            for instance in instances:
                if not instance.group:
                    logger.warning(f"Skipping terminate audit for {instance.instance_id}: no group")
                    continue
                key = self._instance_key(instance.group, instance.instance_id, kind)
                event = InstanceEvent(instance_id=instance.instance_id, kind=kind, timestamp=self._now_ms())
                pipe.set(key, encode_event(event), ex=self.audit_ttl_sec)
                keys.append(key)
            if not keys:
                return
            results = await pipe.execute()

        for key, result in zip(keys, results):
            if not result:
                raise PersistenceError(key)
        logger.debug(f"Saved {len(keys)} terminate audit events")

    async def save_latest_status(self, group_name: str, instance_id: str, state: InstanceState) -> bool:
        """
        Write the latest-status event, then keep the instance's launch and
        terminate events alive for another audit TTL.
        """
        kind = InstanceEventKind.LATEST_STATUS
        event = InstanceEvent(instance_id=instance_id, kind=kind, timestamp=self._now_ms(), state=state.to_dict())
        saved = await self._set_value(self._instance_key(group_name, instance_id, kind), event)
        if saved:
            await asyncio.gather(
                self._attempt(
                    self._extend(self._instance_key(group_name, instance_id, InstanceEventKind.LAUNCH_REQUESTED)),
                    "launch event TTL refresh",
                ),
                self._attempt(
                    self._extend(self._instance_key(group_name, instance_id, InstanceEventKind.TERMINATE_REQUESTED)),
                    "terminate event TTL refresh",
                ),
            )
        return saved

    async def _extend(self, key: str) -> bool:
        """Reset a key's TTL to the audit TTL. False if the key is gone."""
        return bool(await self.redis.expire(key, self.audit_ttl_sec))

    @staticmethod
    async def _attempt(call: Awaitable[Any], description: str) -> bool:
        """Best-effort call: any failure is logged and reported as False, never raised."""
        try:
            return bool(await call)
        except Exception as e:
            logger.debug(f"Ignoring failed {description}: {e}")
            return False

    # -------------------------------------------------------------------------
    # Group events
    # -------------------------------------------------------------------------

    async def update_last_launcher_run(self, group_name: str) -> bool:
        return await self._save_run_marker(group_name, GroupEventKind.LAST_LAUNCHER_RUN)

    async def update_last_autoscaler_run(self, group_name: str) -> bool:
        return await self._save_run_marker(group_name, GroupEventKind.LAST_AUTOSCALER_RUN)

    async def _save_run_marker(self, group_name: str, kind: GroupEventKind) -> bool:
        event = GroupEvent(group_name=group_name, kind=kind, timestamp=self._now_ms())
        return await self._set_value(self._group_key(group_name, kind), event)

    async def save_launcher_action_item(self, group_name: str, item: LauncherActionItem) -> bool:
        return await self._save_action_item(group_name, GroupEventKind.LAUNCHER_ACTION, item)

    async def save_autoscaler_action_item(self, group_name: str, item: AutoScalerActionItem) -> bool:
        return await self._save_action_item(group_name, GroupEventKind.AUTOSCALER_ACTION, item)

    async def _save_action_item(self, group_name: str, kind: GroupEventKind, item) -> bool:
        if not isinstance(item.timestamp, int):
            item = dataclasses.replace(item, timestamp=self._now_ms())
        event = GroupEvent(group_name=group_name, kind=kind, timestamp=item.timestamp, payload=item)
        return await self._set_value(self._group_key(group_name, kind, item.timestamp), event)

    async def _set_value(self, key: str, event: AuditEvent) -> bool:
        result = await self.redis.set(key, encode_event(event), ex=self.audit_ttl_sec)
        if not result:
            raise PersistenceError(key)
        logger.debug(f"Saved audit event {key}")
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_instance_audit(self, group_name: str) -> List[InstanceEvent]:
        events = await self._scan_events(f"audit:{group_name}:*:*")
        audit = [e for e in events if isinstance(e, InstanceEvent)]
        logger.debug(f"Instance audit for {group_name}: {len(audit)} events")
        return audit

    async def get_group_audit(self, group_name: str) -> List[GroupEvent]:
        events = await self._scan_events(f"audit:{group_name}:*")
        audit = [e for e in events if isinstance(e, GroupEvent)]
        logger.debug(f"Group audit for {group_name}: {len(audit)} events")
        return audit

    async def _scan_events(self, pattern: str) -> List[AuditEvent]:
        """
        Drain a SCAN over `pattern`, batch-fetching each page in a pipeline.

        Keys that expire between SCAN and GET are skipped. SCAN may return a key
        more than once; each key is fetched once.
        """
        events: List[AuditEvent] = []
        seen = set()
        cursor = 0
        while True:
            cursor, keys = await self.redis.scan(cursor=cursor, match=pattern, count=self.scan_count)
            keys = [key for key in keys if key not in seen]
            seen.update(keys)
            if keys:
                async with self.redis.pipeline(transaction=False) as pipe:
                    for key in keys:
                        pipe.get(key)
                    values = await pipe.execute()
                for key, value in zip(keys, values):
                    if not value:
                        continue
                    event = self._decode(key, value)
                    if event is not None:
                        events.append(event)
            if cursor == 0:
                break
        return events

    @staticmethod
    def _decode(key: str, value: str) -> Optional[AuditEvent]:
        try:
            return decode_event(value)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping unreadable audit value at {key}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Operator views
    # -------------------------------------------------------------------------

    async def generate_instance_audit(self, group_name: str) -> List[InstanceAuditResponse]:
        responses = project_instance_audit(await self.get_instance_audit(group_name))
        logger.info(f"Generated instance audit for {group_name}: {len(responses)} instances")
        return responses

    async def generate_group_audit(self, group_name: str) -> GroupAuditResponse:
        response = project_group_audit(await self.get_group_audit(group_name))
        logger.info(
            f"Generated group audit for {group_name}: "
            f"{len(response.launcher_action_items)} launcher / {len(response.autoscaler_action_items)} autoscaler actions"
        )
        return response
