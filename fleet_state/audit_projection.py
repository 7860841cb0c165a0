"""
Pure projections from raw audit events to operator-facing summaries.

No I/O. The store returns events in arbitrary order; everything here re-sorts
before folding.
"""

import dataclasses
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import List, Dict

from .models import (
    GroupAuditResponse,
    GroupEvent,
    GroupEventKind,
    InstanceAuditResponse,
    InstanceEvent,
    InstanceEventKind,
)


def format_timestamp(timestamp_ms: int) -> str:
    """Epoch millis -> RFC 1123 UTC string, e.g. 'Sat, 17 Oct 2026 12:00:00 GMT'."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return format_datetime(dt, usegmt=True)


def project_instance_audit(events: List[InstanceEvent]) -> List[InstanceAuditResponse]:
    """
    Fold instance events into one response per instance.

    Events are applied in ascending timestamp order so the latest event of each
    kind wins. Instances appear in order of their earliest event.
    """
    ordered = sorted(events, key=lambda e: e.timestamp)

    responses: Dict[str, InstanceAuditResponse] = {}
    for instance_id in dict.fromkeys(e.instance_id for e in ordered):
        responses[instance_id] = InstanceAuditResponse(instance_id=instance_id)

    for event in ordered:
        response = responses[event.instance_id]
        if event.kind is InstanceEventKind.LAUNCH_REQUESTED:
            response.request_to_launch = format_timestamp(event.timestamp)
        elif event.kind is InstanceEventKind.TERMINATE_REQUESTED:
            response.request_to_terminate = format_timestamp(event.timestamp)
        elif event.kind is InstanceEventKind.LATEST_STATUS:
            response.latest_status = format_timestamp(event.timestamp)
            response.latest_status_info = event.state

    return list(responses.values())


def project_group_audit(events: List[GroupEvent]) -> GroupAuditResponse:
    """
    Classify group events into run markers and action items.

    Action item lists come back most recent first with display timestamps.
    """
    response = GroupAuditResponse()
    launcher_items = []
    autoscaler_items = []

    for event in events:
        if event.kind is GroupEventKind.LAST_LAUNCHER_RUN:
            response.last_launcher_run = format_timestamp(event.timestamp)
        elif event.kind is GroupEventKind.LAST_AUTOSCALER_RUN:
            response.last_autoscaler_run = format_timestamp(event.timestamp)
        elif event.kind is GroupEventKind.LAUNCHER_ACTION and event.payload is not None:
            launcher_items.append(event.payload)
        elif event.kind is GroupEventKind.AUTOSCALER_ACTION and event.payload is not None:
            autoscaler_items.append(event.payload)

    response.launcher_action_items = _newest_first(launcher_items)
    response.autoscaler_action_items = _newest_first(autoscaler_items)
    return response


def _newest_first(items: list) -> list:
    items = sorted(items, key=lambda item: item.timestamp, reverse=True)
    return [dataclasses.replace(item, timestamp=format_timestamp(item.timestamp)) for item in items]
