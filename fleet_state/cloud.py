"""
Cloud inventory access for report generation.

- CloudRetryStrategy: retry policy handed to CloudManager.get_instances()
- call_with_retry(): runs an async call under a CloudRetryStrategy
- RunpodCloudManager: lists a group's pods through the RunPod SDK
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import runpod

from .models import CloudInstance, CloudStatus, InstanceGroup

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class CloudRetryStrategy:
    """How often and how patiently to retry a cloud call."""
    max_attempts: int = 3
    delay_sec: float = 1.0
    backoff: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return self.delay_sec * (self.backoff ** (attempt - 1))


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    strategy: CloudRetryStrategy,
    description: str,
) -> T:
    """
    Await fn() until it succeeds or the strategy runs out of attempts.

    The last error is re-raised unchanged.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= strategy.max_attempts:
                logger.error(f"{description} failed after {attempt} attempt(s): {e}")
                raise
            delay = strategy.delay_for(attempt)
            logger.warning(f"{description} failed (attempt {attempt}/{strategy.max_attempts}), retrying in {delay:.1f}s: {e}")
            await asyncio.sleep(delay)
            attempt += 1


def pod_cloud_status(pod: Dict[str, Any]) -> str:
    """Map a RunPod pod to a normalized cloud status."""
    desired = pod.get('desiredStatus')
    if desired == 'RUNNING':
        # Pods report no runtime until the container is up
        return CloudStatus.RUNNING.value if pod.get('runtime') else CloudStatus.PROVISIONING.value
    if desired == 'EXITED':
        return CloudStatus.STOPPED.value
    if desired == 'TERMINATED':
        return CloudStatus.TERMINATED.value
    return CloudStatus.UNKNOWN.value


class RunpodCloudManager:
    """CloudManager backed by the RunPod pod inventory.

    Pods belong to a group when their name starts with "{group}-".
    """

    def __init__(self, api_key: Optional[str] = None):
        if api_key:
            runpod.api_key = api_key

    async def get_instances(self, group: InstanceGroup, retry_strategy: CloudRetryStrategy) -> List[CloudInstance]:
        pods = await call_with_retry(
            lambda: asyncio.to_thread(runpod.get_pods),
            retry_strategy,
            f"Listing RunPod pods for group {group.name}",
        )

        prefix = f"{group.name}-"
        instances = [
            CloudInstance(
                instance_id=pod['id'],
                display_name=pod.get('name', ''),
                cloud_status=pod_cloud_status(pod),
            )
            for pod in pods or []
            if pod.get('name', '').startswith(prefix)
        ]
        logger.debug(f"Cloud inventory for {group.name}: {len(instances)} of {len(pods or [])} pods")
        return instances
