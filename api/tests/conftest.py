# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, Any
from bson import ObjectId

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['MONGODB_DATABASE'] = 'relief_verification_test'

from domain import authorization as perms
from models.entities import (
    Commitment, Donor, Entity, Incident, SubmittedRecord, UserContext
)
from services.analytics import ImpactService, QueueMetricsService
from services.audit import AuditService
from services.auth import AuthService
from services.leaderboard import DonorScoringService
from services.memory_store import InMemoryStore
from services.redis import RedisService
from services.verification import VerificationService

TEST_JWT_SECRET = "test-secret"

ALL_PERMISSIONS = perms.ALL_PERMISSIONS


@pytest.fixture
def now():
    """Fixed evaluation time."""
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """Fresh in-memory record store."""
    return InMemoryStore()


@pytest.fixture
def audit_service(store):
    return AuditService(store)


@pytest.fixture
def queue_metrics_service(store):
    return QueueMetricsService(store)


@pytest.fixture
def verification_service(store, audit_service, queue_metrics_service):
    return VerificationService(store, audit_service, queue_metrics_service)


@pytest.fixture
def impact_service(store):
    return ImpactService(store)


@pytest.fixture
def donor_scoring_service(store, audit_service):
    return DonorScoringService(store, audit_service, RedisService(""))


@pytest.fixture
def coordinator():
    """Coordinator allowed to verify and reject."""
    return UserContext(
        user_id=str(ObjectId()),
        email="coordinator@example.org",
        name="Coordinator",
        permissions=ALL_PERMISSIONS
    )


@pytest.fixture
def field_user():
    """Field assessor who can only submit and read."""
    return UserContext(
        user_id=str(ObjectId()),
        email="assessor@example.org",
        name="Field Assessor",
        permissions=[perms.RECORD_SUBMIT, perms.RECORD_READ]
    )


@pytest.fixture
def entity(store):
    """Stored entity without an auto-approval rule."""
    entity = Entity(name="Maiduguri Camp", type="CAMP", latitude=11.85, longitude=13.16)
    store.create("entities", entity.to_document())
    return entity


@pytest.fixture
def incident(store):
    incident = Incident(type="FLOOD", description="River flooding")
    store.create("incidents", incident.to_document())
    return incident


@pytest.fixture
def make_record(store, field_user):
    """Factory storing a record in the given status."""
    def _make(entity_id: str, **overrides) -> SubmittedRecord:
        values: Dict[str, Any] = {
            "kind": "assessment",
            "type": "HEALTH",
            "priority": "MEDIUM",
            "status": "SUBMITTED",
            "entity_id": entity_id,
            "assessor_id": field_user.user_id,
            "data": {}
        }
        values.update(overrides)
        record = SubmittedRecord(**values)
        store.create("records", record.to_document())
        return record
    return _make


@pytest.fixture
def make_donor(store):
    def _make(name: str, **overrides) -> Donor:
        donor = Donor(name=name, **overrides)
        store.create("donors", donor.to_document())
        return donor
    return _make


@pytest.fixture
def make_commitment(store, now):
    def _make(donor_id: str, **overrides) -> Commitment:
        values: Dict[str, Any] = {
            "donor_id": donor_id,
            "status": "COMPLETE",
            "total_committed_quantity": 100,
            "delivered_quantity": 100,
            "verified_delivered_quantity": 100,
            "total_value_estimated": 1000,
            "commitment_date": now - timedelta(days=1)
        }
        values.update(overrides)
        commitment = Commitment(**values)
        store.create("commitments", commitment.to_document())
        return commitment
    return _make


@pytest.fixture
def auth_service():
    return AuthService(TEST_JWT_SECRET, "HS256")


@pytest.fixture
def app(store):
    """Flask application over the in-memory store."""
    from app import create_app
    
    application = create_app(
        {
            'ENVIRONMENT': 'test',
            'OTEL_ENABLED': False,
            'JWT_SECRET': TEST_JWT_SECRET,
            'BASE_URL': 'http://localhost:5000'
        },
        store=store,
        redis_service=RedisService("")
    )
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(auth_service):
    """Build bearer headers for a user with the given permissions."""
    def _headers(permissions=None, user_id: str = "coordinator-1") -> Dict[str, str]:
        token = auth_service.generate_token(
            user_id, ALL_PERMISSIONS if permissions is None else permissions
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers
