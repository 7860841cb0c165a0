"""
Data model for the fleet state core.

Three families of types live here:
- Tracked/cloud instance views: what the control loop believes (InstanceState)
  and what the cloud provider reports (CloudInstance)
- Audit events: a tagged union of InstanceEvent and GroupEvent, discriminated
  by their kind enums
- Derived views: InstanceReport/GroupReport and the audit responses, which are
  recomputed on every request and never persisted

All to_dict() methods produce the camelCase shape served to operators.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union


UNKNOWN = "unknown"
PROVISIONING = "PROVISIONING"
ONLINE = "ONLINE"


class InstanceType(Enum):
    """Instance types the reconciler knows how to classify."""

    RECORDER = "recorder"  # Media worker with an idle/busy state machine
    BRIDGE = "bridge"      # Media relay, no richer status model yet


class BusyStatus(Enum):
    """Busy status reported by recorder instances."""

    IDLE = "IDLE"
    BUSY = "BUSY"
    EXPIRED = "EXPIRED"


class CloudStatus(Enum):
    """Normalized cloud inventory status."""

    PROVISIONING = "Provisioning"
    RUNNING = "Running"
    STOPPED = "Stopped"
    TERMINATED = "Terminated"
    UNKNOWN = "Unknown"


LIVE_CLOUD_STATUSES = (CloudStatus.PROVISIONING.value, CloudStatus.RUNNING.value)


# =============================================================================
# Instance views
# =============================================================================

@dataclass(frozen=True)
class InstanceDetails:
    """Identifies an instance across subsystems. Immutable once created."""
    instance_id: str
    instance_type: str
    cloud: Optional[str] = None
    region: Optional[str] = None
    group: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "instanceType": self.instance_type,
            "cloud": self.cloud,
            "region": self.region,
            "group": self.group,
        }


@dataclass
class InstanceStatusInfo:
    """Status sub-document of a tracked instance."""
    provisioning: bool = False
    busy_status: Optional[BusyStatus] = None  # Recorder instances only


@dataclass
class InstanceMetadata:
    group: Optional[str] = None
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None


@dataclass
class InstanceState:
    """An instance as last reported into the tracker."""
    instance_id: str
    instance_type: str
    status: InstanceStatusInfo = field(default_factory=InstanceStatusInfo)
    metadata: InstanceMetadata = field(default_factory=InstanceMetadata)
    shutdown_status: bool = False
    timestamp: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "instanceType": self.instance_type,
            "status": {
                "provisioning": self.status.provisioning,
                "busyStatus": self.status.busy_status.value if self.status.busy_status else None,
            },
            "metadata": {
                "group": self.metadata.group,
                "publicIp": self.metadata.public_ip,
                "privateIp": self.metadata.private_ip,
            },
            "shutdownStatus": self.shutdown_status,
            "timestamp": self.timestamp,
        }


@dataclass
class CloudInstance:
    """An instance as reported by the cloud provider's inventory."""
    instance_id: str
    display_name: str
    cloud_status: str


@dataclass
class InstanceGroup:
    """Group configuration, owned by the external group registry."""
    name: str
    type: Optional[InstanceType]
    desired_count: int = 0


@dataclass
class StatsReport:
    """Heartbeat stats pushed by an instance. `stats` is opaque."""
    instance: InstanceDetails
    stats: Any
    timestamp: Optional[int] = None


@dataclass
class RecorderState:
    """State handed to the recorder tracker for recorder stats reports."""
    recorder_id: str
    status: Any
    timestamp: Optional[int]
    metadata: Dict[str, Any]


# =============================================================================
# Audit events (tagged union)
# =============================================================================

class InstanceEventKind(Enum):
    LAUNCH_REQUESTED = "request-to-launch"
    TERMINATE_REQUESTED = "request-to-terminate"
    LATEST_STATUS = "latest-status"


class GroupEventKind(Enum):
    LAST_LAUNCHER_RUN = "last-launcher-run"
    LAST_AUTOSCALER_RUN = "last-autoScaler-run"
    LAUNCHER_ACTION = "launcher-action-item"
    AUTOSCALER_ACTION = "autoScaler-action-item"


@dataclass
class LauncherActionItem:
    """One launcher decision. `timestamp` is epoch millis until formatted for display."""
    timestamp: Union[int, str]
    action_type: str
    count: int
    desired_count: int
    scale_quantity: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "actionType": self.action_type,
            "count": self.count,
            "desiredCount": self.desired_count,
            "scaleQuantity": self.scale_quantity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LauncherActionItem':
        return cls(
            timestamp=data['timestamp'],
            action_type=data['actionType'],
            count=data.get('count', 0),
            desired_count=data.get('desiredCount', 0),
            scale_quantity=data.get('scaleQuantity', 0),
        )


@dataclass
class AutoScalerActionItem:
    """One autoscaler decision. `timestamp` is epoch millis until formatted for display."""
    timestamp: Union[int, str]
    action_type: str
    count: int
    old_desired_count: int
    new_desired_count: int
    scale_metrics: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "actionType": self.action_type,
            "count": self.count,
            "oldDesiredCount": self.old_desired_count,
            "newDesiredCount": self.new_desired_count,
            "scaleMetrics": list(self.scale_metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AutoScalerActionItem':
        return cls(
            timestamp=data['timestamp'],
            action_type=data['actionType'],
            count=data.get('count', 0),
            old_desired_count=data.get('oldDesiredCount', 0),
            new_desired_count=data.get('newDesiredCount', 0),
            scale_metrics=list(data.get('scaleMetrics') or []),
        )


ActionItem = Union[LauncherActionItem, AutoScalerActionItem]


@dataclass
class InstanceEvent:
    instance_id: str
    kind: InstanceEventKind
    timestamp: int
    state: Optional[Dict[str, Any]] = None  # LATEST_STATUS only


@dataclass
class GroupEvent:
    group_name: str
    kind: GroupEventKind
    timestamp: int
    payload: Optional[ActionItem] = None  # *_ACTION kinds only


AuditEvent = Union[InstanceEvent, GroupEvent]


# =============================================================================
# Derived views
# =============================================================================

@dataclass
class InstanceAuditResponse:
    instance_id: str
    request_to_launch: str = UNKNOWN
    request_to_terminate: str = UNKNOWN
    latest_status: str = UNKNOWN
    latest_status_info: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "instanceId": self.instance_id,
            "requestToLaunch": self.request_to_launch,
            "latestStatus": self.latest_status,
            "requestToTerminate": self.request_to_terminate,
        }
        if self.latest_status_info is not None:
            result["latestStatusInfo"] = self.latest_status_info
        return result


@dataclass
class GroupAuditResponse:
    last_launcher_run: str = UNKNOWN
    last_autoscaler_run: str = UNKNOWN
    launcher_action_items: List[LauncherActionItem] = field(default_factory=list)
    autoscaler_action_items: List[AutoScalerActionItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastLauncherRun": self.last_launcher_run,
            "lastAutoScalerRun": self.last_autoscaler_run,
            "autoScalerActionItems": [item.to_dict() for item in self.autoscaler_action_items],
            "launcherActionItems": [item.to_dict() for item in self.launcher_action_items],
        }


@dataclass
class InstanceReport:
    """Merged tracked + cloud view of one instance."""
    instance_id: str
    display_name: str = UNKNOWN
    scale_status: str = UNKNOWN
    cloud_status: str = UNKNOWN
    is_shutting_down: bool = False
    is_scale_down_protected: bool = False
    private_ip: Optional[str] = None
    public_ip: Optional[str] = None

    @property
    def is_live_in_cloud(self) -> bool:
        return self.cloud_status in LIVE_CLOUD_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "instanceId": self.instance_id,
            "displayName": self.display_name,
            "scaleStatus": self.scale_status,
            "cloudStatus": self.cloud_status,
            "isShuttingDown": self.is_shutting_down,
            "isScaleDownProtected": self.is_scale_down_protected,
        }
        if self.private_ip:
            result["privateIp"] = self.private_ip
        if self.public_ip:
            result["publicIp"] = self.public_ip
        return result


@dataclass
class GroupReport:
    """Group-level rollup. Counters are folds over `instances`."""
    group_name: str
    desired_count: int = 0
    count: int = 0
    cloud_count: int = 0
    provisioning_count: int = 0
    available_count: int = 0
    busy_count: int = 0
    untracked_count: int = 0
    shutting_down_count: int = 0
    scale_down_protected_count: int = 0
    instances: List[InstanceReport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groupName": self.group_name,
            "desiredCount": self.desired_count,
            "count": self.count,
            "cloudCount": self.cloud_count,
            "provisioningCount": self.provisioning_count,
            "availableCount": self.available_count,
            "busyCount": self.busy_count,
            "unTrackedCount": self.untracked_count,
            "shuttingDownCount": self.shutting_down_count,
            "scaleDownProtectedCount": self.scale_down_protected_count,
            "instances": [instance.to_dict() for instance in self.instances],
        }
