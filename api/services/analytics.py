# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Read-only analytics over committed records: incident impact and queue health.

These services never write. A failure here surfaces to the caller only and
cannot affect verification transitions.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain.impact import PopulationImpact, calculate_impact
from domain.queue_metrics import QueueMetrics, compute_queue_metrics
from middleware.error_handler import NotFoundException, store_guard
from models.base import utc_now
from models.entities import Incident, SubmittedRecord
from models.enums import RecordKind, TERMINAL_STATUSES, VerificationStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RECORDS = "records"
INCIDENTS = "incidents"

DECIDED_STATUSES = sorted(status.value for status in TERMINAL_STATUSES)


class ImpactService:
    """Population impact snapshots for incidents."""
    
    def __init__(self, store):
        self.store = store
    
    def linked_assessments(self, incident_id: str) -> List[SubmittedRecord]:
        documents = self.store.find(
            RECORDS,
            {"incidentId": incident_id, "kind": RecordKind.ASSESSMENT.value},
            sort=[("createdAt", 1)]
        )
        return [SubmittedRecord.from_document(doc) for doc in documents]
    
    def population_impact(self, incident_id: str) -> PopulationImpact:
        """
        Aggregate the impact of every assessment linked to an incident.
        
        Args:
            incident_id: Incident identifier
            
        Returns:
            PopulationImpact snapshot
            
        Raises:
            NotFoundException: If the incident does not exist
        """
        with tracer.start_as_current_span("analytics.population_impact") as span:
            span.set_attribute("incident.id", incident_id)
            
            with store_guard("population_impact"):
                incident_doc = self.store.find_one(INCIDENTS, incident_id)
                if incident_doc is None:
                    span.set_status(Status(StatusCode.ERROR, "Incident not found"))
                    raise NotFoundException(f"Incident {incident_id} not found")
                incident = Incident.from_document(incident_doc)
                assessments = self.linked_assessments(incident.id)
            
            impact = calculate_impact(incident.id, assessments)
            span.set_attributes({
                "impact.assessment_count": impact.assessment_count,
                "impact.has_epicenter": impact.epicenter is not None
            })
            logger.info(
                "Population impact calculated",
                extra={
                    "incident_id": incident_id,
                    "assessment_count": impact.assessment_count
                }
            )
            return impact


class QueueMetricsService:
    """Depth, waits and throughput of the verification queue."""
    
    def __init__(self, store, default_window: timedelta = timedelta(days=7)):
        self.store = store
        self.default_window = default_window
    
    def queue_metrics(
        self,
        base_query: Optional[Dict[str, Any]] = None,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> QueueMetrics:
        """
        Compute queue metrics over records matching ``base_query``.
        
        Args:
            base_query: Store filters other than status (entity, kind, ...)
            window: Trailing window for the verification rate
            now: Evaluation time, defaults to the current time
            
        Returns:
            QueueMetrics, zero-valued for an empty queue
        """
        now = now or utc_now()
        window = window or self.default_window
        base_query = dict(base_query or {})
        
        with tracer.start_as_current_span("analytics.queue_metrics") as span:
            with store_guard("queue_metrics"):
                pending_docs = self.store.find(
                    RECORDS, {**base_query, "status": VerificationStatus.SUBMITTED.value}
                )
                decided_docs = self.store.find(
                    RECORDS,
                    {
                        **base_query,
                        "status": {"$in": DECIDED_STATUSES},
                        "verifiedAt": {"$gte": now - window, "$lte": now}
                    }
                )
            
            metrics = compute_queue_metrics(
                [SubmittedRecord.from_document(doc) for doc in pending_docs],
                [SubmittedRecord.from_document(doc) for doc in decided_docs],
                now,
                window
            )
            span.set_attributes({
                "queue.depth": metrics.queue_depth.total,
                "queue.verification_rate": metrics.verification_rate
            })
            return metrics
