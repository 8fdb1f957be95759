# SPDX-License-Identifier: Apache-2.0

"""
Redis service for cross-process coordination.

Provides the distributed lock that serializes donor ranking passes across
workers, and the JWT token blocklist. Redis is optional: without it the
service reports itself unavailable and callers fall back to process-local
behaviour.
"""

import os
from typing import Optional
import redis
from redis.exceptions import RedisError
from redis.lock import Lock
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

BLOCKLIST_PREFIX = "blocklist:"
LOCK_PREFIX = "lock:"


class RedisService:
    """Redis client wrapper that degrades gracefully when Redis is absent."""
    
    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize the Redis service.
        
        Args:
            redis_url: Redis connection URL (redis://host:port/db); empty disables Redis
            client: Pre-built client, used instead of connecting
        """
        self.redis_url = redis_url if redis_url is not None else os.getenv("REDIS_URL", "")
        self.client = client
        
        if self.client is None and self.redis_url:
            try:
                self.client = redis.from_url(self.redis_url, decode_responses=True)
                self.client.ping()
                logger.info(f"Redis service initialized at {self.redis_url}")
            except RedisError as e:
                logger.error(f"Failed to initialize Redis service: {str(e)}")
                self.client = None
        elif self.client is None:
            logger.info("Redis not configured, using process-local coordination")
    
    def health_check(self) -> dict:
        if not self.client:
            return {'status': 'disabled'}
        try:
            return {'status': 'healthy' if self.client.ping() else 'unhealthy'}
        except RedisError as e:
            logger.error(f"Redis health check failed: {str(e)}")
            return {'status': 'unhealthy'}
    
    def lock(self, name: str, timeout: float, blocking_timeout: float) -> Optional[Lock]:
        """
        Build a distributed lock, or None when Redis is unavailable.
        
        Args:
            name: Lock name
            timeout: Seconds before an abandoned lock expires
            blocking_timeout: Seconds to wait when acquiring
        """
        if not self.client:
            return None
        return self.client.lock(
            f"{LOCK_PREFIX}{name}",
            timeout=timeout,
            blocking_timeout=blocking_timeout
        )
    
    def is_token_blocked(self, jti: str) -> bool:
        """
        Check the blocklist.
        
        Raises:
            RedisError: If Redis is configured but cannot be queried
        """
        if not self.client:
            return False
        with tracer.start_as_current_span("redis.blocklist.check"):
            return bool(self.client.exists(f"{BLOCKLIST_PREFIX}{jti}"))
