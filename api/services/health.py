"""
Health Check Service

Reports the health of the record store and the optional Redis coordinator.
"""

import os
import time
from typing import Dict, Any
from opentelemetry import trace

from models.base import utc_now

tracer = trace.get_tracer(__name__)

SERVICE_NAME = "relief-verification-api"


class HealthCheckService:
    """Dependency health for the liveness endpoint."""
    
    def __init__(self, store, redis_service=None, service_version: str = "1.0.0"):
        self.store = store
        self.redis_service = redis_service
        self.service_version = service_version
    
    def get_health(self) -> Dict[str, Any]:
        with tracer.start_as_current_span("health.check") as span:
            start_time = time.time()
            
            store_health = self.store.health_check()
            redis_health = (
                self.redis_service.health_check() if self.redis_service else {'status': 'disabled'}
            )
            overall_status = self._determine_overall_status(store_health["status"], redis_health["status"])
            response_time_ms = round((time.time() - start_time) * 1000, 2)
            
            span.set_attributes({
                "health.overall_status": overall_status,
                "health.store_status": store_health["status"],
                "health.redis_status": redis_health["status"]
            })
            
            return {
                "status": overall_status,
                "service": SERVICE_NAME,
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": utc_now().isoformat(),
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "store": store_health,
                    "redis": redis_health
                }
            }
    
    @staticmethod
    def _determine_overall_status(store_status: str, redis_status: str) -> str:
        """The store is required; Redis only degrades the service."""
        if store_status != "healthy":
            return "unhealthy"
        if redis_status == "unhealthy":
            return "degraded"
        return "healthy"
