# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service writing one entry per committed state change, correlated with
the active OpenTelemetry trace.
"""

import logging
from typing import Dict, List, Optional, Any
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.entities import AuditLog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditService:
    """Append-only audit trail over the record store."""
    
    def __init__(self, store, collection_name: str = "audit_logs"):
        self.store = store
        self.collection_name = collection_name
    
    def log_action(
        self,
        actor: str,
        action: str,
        entity: str,
        resource_id: str,
        notes: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an audit trail entry with trace correlation and structured logging.
        
        Args:
            actor: User ID, or "system" for automatic transitions
            action: Action performed
            entity: Resource type ("record", "entity", "donor")
            resource_id: ID of the resource acted upon
            notes: Notes supplied with the action
            before: State before the action
            after: State after the action
        
        Returns:
            str: ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            span_context = span.get_span_context()
            entry = AuditLog(
                actor=actor,
                action=action,
                entity=entity,
                resource_id=resource_id,
                notes=notes,
                before=before,
                after=after
            )
            if span_context.is_valid:
                entry.trace_id = format(span_context.trace_id, "032x")
                entry.span_id = format(span_context.span_id, "016x")
            
            span.set_attributes({
                "audit.entity": entity,
                "audit.action": action,
                "audit.actor": actor,
                "audit.resource_id": resource_id
            })
            
            document = entry.to_document()
            document["_id"] = document.pop("id")
            
            try:
                audit_id = self.store.create(self.collection_name, document, actor)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "resource_id": resource_id,
                        "action": action,
                        "actor": actor
                    },
                    exc_info=True
                )
                raise
            
            logger.info(
                "Audit trail entry created",
                extra={
                    "audit_id": audit_id,
                    "entity": entity,
                    "resource_id": resource_id,
                    "action": action,
                    "actor": actor,
                    "trace_id": entry.trace_id,
                    "changes_count": len(self._calculate_changes(before or {}, after or {}))
                }
            )
            return audit_id
    
    def history(self, resource_id: str, limit: int = 100) -> List[AuditLog]:
        """Audit entries of one resource, newest first."""
        with tracer.start_as_current_span("audit.history") as span:
            span.set_attribute("audit.resource_id", resource_id)
            documents = self.store.find(
                self.collection_name,
                {"resourceId": resource_id},
                sort=[("timestamp", -1)],
                limit=limit
            )
            span.set_attribute("audit.entries", len(documents))
            return [AuditLog.model_validate(document) for document in documents]
    
    def _calculate_changes(self, before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Field-level differences between two snapshots."""
        changes = []
        for key in set(before) | set(after):
            if key in ("updated_at", "updated_by", "id"):
                continue
            if before.get(key) != after.get(key):
                changes.append({
                    "field": key,
                    "old_value": before.get(key),
                    "new_value": after.get(key)
                })
        return changes
