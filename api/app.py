"""
Relief Verification API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support,
configures observability and error handling, and wires the record store
into the verification, analytics and leaderboard services.
"""

import os
from datetime import timedelta
from typing import Any, Dict, Optional
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag
from observability.config import setup_observability
from observability.middleware import add_observability_middleware

from middleware.auth import AuthMiddleware
from middleware.error_handler import ErrorHandlerMiddleware
from services.analytics import ImpactService, QueueMetricsService
from services.audit import AuditService
from services.auth import AuthService
from services.hal import create_hal_formatter
from services.health import HealthCheckService
from services.leaderboard import DonorScoringService
from services.memory_store import InMemoryStore
from services.mongodb import MongoDBService
from services.redis import RedisService
from services.verification import VerificationService

# OpenAPI info
info = Info(
    title="Relief Verification API",
    version="1.0.0",
    description="Verification workflow, auto-approval and analytics for disaster response records"
)

# API tags for organization
tags = [
    Tag(name="Verification", description="Record verification workflow"),
    Tag(name="Analytics", description="Donor performance and incident impact"),
    Tag(name="Health", description="System health and status")
]


def load_config() -> Dict[str, Any]:
    """Application configuration from environment variables."""
    environment = os.getenv('ENVIRONMENT', 'development')
    return {
        'ENVIRONMENT': environment,
        'DEBUG': environment == 'development',
        'OTEL_ENABLED': os.getenv('OTEL_ENABLED', 'true').lower() == 'true',
        'BASE_URL': os.getenv('BASE_URL', 'http://localhost:5000'),
        'STORE_BACKEND': os.getenv('STORE_BACKEND', 'mongodb'),
        'MONGODB_URI': os.getenv('MONGODB_URI', 'mongodb://localhost:27017/relief_verification'),
        'MONGODB_DATABASE': os.getenv('MONGODB_DATABASE', 'relief_verification'),
        'REDIS_URL': os.getenv('REDIS_URL', ''),
        'JWT_SECRET': os.getenv('JWT_SECRET', ''),
        'JWT_ALGORITHM': os.getenv('JWT_ALGORITHM', 'HS256'),
        'RANKING_LOCK_TIMEOUT': float(os.getenv('RANKING_LOCK_TIMEOUT', '30')),
        'QUEUE_METRICS_WINDOW_HOURS': int(os.getenv('QUEUE_METRICS_WINDOW_HOURS', '168'))
    }


def create_store(config: Dict[str, Any]):
    """Record store selected by STORE_BACKEND."""
    if config['STORE_BACKEND'] == 'memory':
        return InMemoryStore()
    if config['STORE_BACKEND'] != 'mongodb':
        raise ValueError(f"Unknown STORE_BACKEND: {config['STORE_BACKEND']}")
    return MongoDBService(config['MONGODB_URI'], config['MONGODB_DATABASE'])


def create_app(config: Optional[Dict[str, Any]] = None, store=None, redis_service=None) -> OpenAPI:
    """
    Build the application.
    
    Args:
        config: Overrides applied on top of the environment configuration
        store: Record store to use instead of the configured backend
        redis_service: Redis service to use instead of connecting to REDIS_URL
        
    Returns:
        Configured OpenAPI (Flask) application
    """
    settings = {**load_config(), **(config or {})}
    setup_observability(settings['ENVIRONMENT'], settings['OTEL_ENABLED'])
    
    app = OpenAPI(__name__, info=info)
    app.config.update(settings)
    if settings['OTEL_ENABLED'] and settings['ENVIRONMENT'] != 'test':
        add_observability_middleware(app)
    
    # Initialize services
    store = store if store is not None else create_store(settings)
    if redis_service is None:
        redis_service = RedisService(settings['REDIS_URL'])
    auth_service = AuthService(
        settings['JWT_SECRET'] or None, settings['JWT_ALGORITHM'], environment=settings['ENVIRONMENT']
    )
    audit_service = AuditService(store)
    queue_metrics_service = QueueMetricsService(
        store, default_window=timedelta(hours=settings['QUEUE_METRICS_WINDOW_HOURS'])
    )
    
    hal_formatter = create_hal_formatter(settings['BASE_URL'])
    ErrorHandlerMiddleware(app, hal_formatter)
    
    # Make services available to routes
    app.store = store
    app.redis_service = redis_service
    app.auth_service = auth_service
    app.audit_service = audit_service
    app.hal_formatter = hal_formatter
    app.auth_middleware = AuthMiddleware(auth_service, redis_service)
    app.queue_metrics_service = queue_metrics_service
    app.verification_service = VerificationService(store, audit_service, queue_metrics_service)
    app.impact_service = ImpactService(store)
    app.donor_scoring_service = DonorScoringService(
        store, audit_service, redis_service, settings['RANKING_LOCK_TIMEOUT']
    )
    app.health_service = HealthCheckService(store, redis_service)
    
    # Register routes
    from routes.verification import verification_bp
    from routes.analytics import analytics_bp
    
    app.register_api(verification_bp)
    app.register_api(analytics_bp)
    
    @app.get('/api/healthz', tags=[tags[2]])
    def health_check():
        """Liveness with store and Redis status."""
        health_data = app.health_service.get_health()
        status_code = 503 if health_data["status"] == "unhealthy" else 200
        body = hal_formatter.format_resource(health_data, "/api/healthz")
        return jsonify(body), status_code
    
    return app


if __name__ == '__main__':
    # Development server
    application = create_app()
    application.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=application.config['DEBUG']
    )
