"""Shared async Redis client for all fleet state stores."""

import logging

import redis.asyncio as aioredis

from .config import FleetStateConfig

logger = logging.getLogger(__name__)


def create_redis_client(config: FleetStateConfig) -> aioredis.Redis:
    """Build the client. No connection is opened until the first command."""
    logger.debug("Creating Redis client")
    return aioredis.from_url(config.redis_url, decode_responses=True)
