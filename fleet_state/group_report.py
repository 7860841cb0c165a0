"""
Fleet state reconciliation.

Builds a GroupReport by merging two independently sourced views of a group:
- the tracked view (InstanceTracker): what the control loop believes
- the cloud view (CloudManager): what the provider says actually exists

Each merged instance is annotated with its shutdown and scale-down protection
flags, then the group counters are folded from the instance list. Any failed
collaborator call fails the whole report; no partial report is returned.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from .cloud import CloudRetryStrategy
from .errors import DependencyError, GroupNotFoundError, UnsupportedGroupTypeError
from .models import (
    PROVISIONING,
    ONLINE,
    UNKNOWN,
    BusyStatus,
    CloudInstance,
    GroupReport,
    InstanceGroup,
    InstanceReport,
    InstanceState,
    InstanceType,
)

logger = logging.getLogger(__name__)


class InstanceTracker(Protocol):
    async def get_current(self, group_name: str, strict: bool) -> List[InstanceState]:
        ...


class CloudManager(Protocol):
    async def get_instances(self, group: InstanceGroup, retry_strategy: CloudRetryStrategy) -> List[CloudInstance]:
        ...


class InstanceGroupManager(Protocol):
    async def get_instance_group(self, group_name: str) -> Optional[InstanceGroup]:
        ...


class ShutdownStatusProvider(Protocol):
    async def get_shutdown_status(self, instance_id: str) -> bool:
        ...

    async def is_scale_down_protected(self, instance_id: str) -> bool:
        ...


def classify_scale_status(group_type: InstanceType, state: InstanceState) -> str:
    """Scale status of a tracked instance for the group's instance type."""
    if state.status.provisioning:
        return PROVISIONING
    if group_type is InstanceType.RECORDER:
        if state.status.busy_status is not None:
            return state.status.busy_status.value
        return UNKNOWN
    if group_type is InstanceType.BRIDGE:
        # TODO: derive bridge statuses from its stats once bridges report load
        return ONLINE
    return UNKNOWN


def merge_instance_views(
    group: InstanceGroup,
    instance_states: List[InstanceState],
    cloud_instances: List[CloudInstance],
) -> Dict[str, InstanceReport]:
    """
    Merge tracked and cloud views by instance id.

    Tracked entries supply scale status, shutdown flag and IPs. Cloud entries
    supply display name and cloud status, overwriting the tracked defaults.
    """
    reports: Dict[str, InstanceReport] = {}

    for state in instance_states:
        reports[state.instance_id] = InstanceReport(
            instance_id=state.instance_id,
            scale_status=classify_scale_status(group.type, state),
            is_shutting_down=state.shutdown_status,
            public_ip=state.metadata.public_ip or None,
            private_ip=state.metadata.private_ip or None,
        )

    for cloud_instance in cloud_instances:
        report = reports.get(cloud_instance.instance_id)
        if report is None:
            report = InstanceReport(instance_id=cloud_instance.instance_id)
            reports[cloud_instance.instance_id] = report
        report.display_name = cloud_instance.display_name
        report.cloud_status = cloud_instance.cloud_status

    return reports


def fold_group_counts(report: GroupReport, group_type: InstanceType) -> None:
    """Compute the group counters from report.instances (count is set by the caller)."""
    for instance in report.instances:
        if instance.is_live_in_cloud:
            report.cloud_count += 1
        if instance.is_shutting_down:
            report.shutting_down_count += 1
        if instance.is_scale_down_protected:
            report.scale_down_protected_count += 1
        if instance.scale_status == UNKNOWN and instance.is_live_in_cloud:
            report.untracked_count += 1
        if instance.scale_status == PROVISIONING:
            report.provisioning_count += 1

        if group_type is InstanceType.RECORDER:
            if instance.scale_status == BusyStatus.IDLE.value:
                report.available_count += 1
            elif instance.scale_status == BusyStatus.BUSY.value:
                report.busy_count += 1


class FleetStateReconciler:
    """Produces point-in-time GroupReports. Owns no persistent state."""

    def __init__(
        self,
        instance_tracker: InstanceTracker,
        instance_group_manager: InstanceGroupManager,
        cloud_manager: CloudManager,
        shutdown_status: ShutdownStatusProvider,
        retry_strategy: CloudRetryStrategy,
    ):
        self.instance_tracker = instance_tracker
        self.instance_group_manager = instance_group_manager
        self.cloud_manager = cloud_manager
        self.shutdown_status = shutdown_status
        self.retry_strategy = retry_strategy

    async def generate_report(self, group_name: str) -> GroupReport:
        try:
            group = await self.instance_group_manager.get_instance_group(group_name)
        except Exception as e:
            raise DependencyError(f"Failed to load group {group_name}") from e
        if not group:
            raise GroupNotFoundError(group_name)
        if not group.type:
            raise UnsupportedGroupTypeError(group_name)

        try:
            instance_states, cloud_instances = await asyncio.gather(
                self.instance_tracker.get_current(group_name, False),
                self.cloud_manager.get_instances(group, self.retry_strategy),
            )
        except Exception as e:
            logger.error(f"Report for {group_name} failed fetching instance views: {e}")
            raise DependencyError(f"Failed to fetch instances for group {group_name}") from e

        report = GroupReport(
            group_name=group_name,
            desired_count=group.desired_count,
            count=len(instance_states),
            instances=list(merge_instance_views(group, instance_states, cloud_instances).values()),
        )

        try:
            await self._annotate(report.instances)
        except Exception as e:
            logger.error(f"Report for {group_name} failed fetching instance flags: {e}")
            raise DependencyError(f"Failed to fetch instance flags for group {group_name}") from e

        fold_group_counts(report, group.type)

        logger.info(
            f"Generated report for {group_name}: {report.count} tracked, {report.cloud_count} in cloud, "
            f"{report.untracked_count} untracked, {report.shutting_down_count} shutting down"
        )
        return report

    async def _annotate(self, instances: List[InstanceReport]) -> None:
        """
        Fetch shutdown and protection flags for every instance in parallel.

        Results are matched back by index. The first failure propagates.
        """
        shutdown_calls = [self._shutdown_status(instance) for instance in instances]
        protected_calls = [self.shutdown_status.is_scale_down_protected(instance.instance_id) for instance in instances]
        results = await asyncio.gather(*shutdown_calls, *protected_calls)

        shutting_down = results[:len(instances)]
        protected = results[len(instances):]
        for index, instance in enumerate(instances):
            instance.is_shutting_down = bool(shutting_down[index])
            instance.is_scale_down_protected = bool(protected[index])

    async def _shutdown_status(self, instance: InstanceReport) -> bool:
        if instance.is_shutting_down:
            return True
        return await self.shutdown_status.get_shutdown_status(instance.instance_id)
