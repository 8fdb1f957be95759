# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Verification workflow service.

Applies the domain state machine to stored records. Every transition is a
compare-and-set on the record's current status: of several concurrent
decisions on the same SUBMITTED record exactly one commits, the others get
StateConflictException and observe the committed state.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain import auto_approval as auto_approval_domain
from domain import verification as verification_domain
from domain.verification import WorkflowResult
from middleware.error_handler import (
    InvalidStateTransitionException,
    NotFoundException,
    StateConflictException,
    ValidationException,
    store_guard
)
from models.base import utc_now
from models.entities import (
    AUTO_APPROVAL_FIELD,
    SYSTEM_ACTOR,
    AuditLog,
    Entity,
    SubmittedRecord,
    UserContext
)
from models.enums import AuditAction, VerificationStatus
from models.requests import (
    ConfigureAutoApprovalRequest,
    PaginationParams,
    QueueFilters,
    SubmitRecordRequest
)
from models.responses import SubmitRecordResponse
from services.mongodb import PaginationResult, StoreError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RECORDS = "records"
ENTITIES = "entities"

# Highest priority first, then oldest first
QUEUE_SORT = [("priorityRank", -1), ("createdAt", 1)]


class VerificationService:
    """Record submission, manual decisions and auto-approval."""
    
    def __init__(self, store, audit_service, queue_metrics_service=None):
        self.store = store
        self.audit_service = audit_service
        self.queue_metrics_service = queue_metrics_service
    
    # Reads
    
    def get_record(self, record_id: str) -> SubmittedRecord:
        """
        Load a record by ID.
        
        Raises:
            NotFoundException: If the record does not exist
        """
        with tracer.start_as_current_span("db.record.get") as span:
            span.set_attribute("record.id", record_id)
            with store_guard("get_record"):
                document = self.store.find_one(RECORDS, record_id)
            span.set_attribute("db.found", document is not None)
        
        if document is None:
            raise NotFoundException(f"Record {record_id} not found")
        return SubmittedRecord.from_document(document)
    
    def get_entity(self, entity_id: str) -> Entity:
        with store_guard("get_entity"):
            document = self.store.find_one(ENTITIES, entity_id)
        if document is None:
            raise NotFoundException(f"Entity {entity_id} not found")
        return Entity.from_document(document)
    
    def record_history(self, record_id: str, limit: int = 100) -> List[AuditLog]:
        """Audit trail of a record, newest first."""
        self.get_record(record_id)
        with store_guard("record_history"):
            return self.audit_service.history(record_id, limit)
    
    # Submission
    
    def submit(self, request: SubmitRecordRequest, user_context: UserContext) -> SubmitRecordResponse:
        """
        Store a new record and run auto-approval when it enters the queue.
        
        Args:
            request: Validated submission request
            user_context: Submitting field user
            
        Returns:
            SubmitRecordResponse with the final status
            
        Raises:
            NotFoundException: If the referenced entity does not exist
        """
        with tracer.start_as_current_span(
            "record.submit",
            attributes={
                "user.id": user_context.user_id,
                "record.kind": request.kind,
                "record.type": request.type,
                "record.priority": request.priority
            }
        ) as span:
            self.get_entity(request.entity_id)
            record = verification_domain.build_record(request, user_context)
            
            with store_guard("submit"):
                self.store.create(RECORDS, record.to_document(), user_context.user_id)
            
            span.set_attributes({"record.id": record.id, "record.status": record.status})
            logger.info(
                "Record created",
                extra={
                    "record_id": record.id,
                    "entity_id": record.entity_id,
                    "user_id": user_context.user_id,
                    "status": record.status
                }
            )
            self._audit(
                user_context.user_id,
                AuditAction.SUBMIT,
                record.id,
                notes=record.notes,
                after=verification_domain.decision_snapshot(record)
            )
            
            if record.status == VerificationStatus.SUBMITTED:
                record = self.try_auto_approve(record)
            
            return SubmitRecordResponse(
                id=record.id,
                status=record.status,
                auto_approved=record.status == VerificationStatus.AUTO_VERIFIED
            )
    
    def submit_draft(self, record_id: str, user_context: UserContext) -> SubmittedRecord:
        """Move a DRAFT record into the queue, then try auto-approval."""
        record = self._apply_transition(
            record_id,
            expected_status=VerificationStatus.DRAFT,
            action=AuditAction.SUBMIT,
            actor=user_context.user_id,
            workflow=lambda current: verification_domain.submit_record(current, user_context)
        )
        return self.try_auto_approve(record)
    
    # Decisions
    
    def verify(self, record_id: str, user_context: UserContext, notes: Optional[str]) -> SubmittedRecord:
        """
        Manually verify a SUBMITTED record.
        
        Raises:
            NotFoundException: Unknown record
            ValidationException: Missing or oversized notes
            InvalidStateTransitionException: Record is not SUBMITTED
            StateConflictException: Another decision committed first
        """
        return self._apply_transition(
            record_id,
            expected_status=VerificationStatus.SUBMITTED,
            action=AuditAction.VERIFY,
            actor=user_context.user_id,
            notes=notes,
            workflow=lambda current: verification_domain.verify_record(current, notes, user_context)
        )
    
    def reject(self, record_id: str, user_context: UserContext, reason: Any,
               notes: Optional[str]) -> SubmittedRecord:
        """Reject a SUBMITTED record with a reason and notes."""
        return self._apply_transition(
            record_id,
            expected_status=VerificationStatus.SUBMITTED,
            action=AuditAction.REJECT,
            actor=user_context.user_id,
            notes=notes,
            workflow=lambda current: verification_domain.reject_record(current, reason, notes, user_context)
        )
    
    def auto_verify(self, record_id: str, rule_id: str, requires_documentation: bool = False) -> SubmittedRecord:
        """Apply an auto-approval decision on behalf of the system actor."""
        return self._apply_transition(
            record_id,
            expected_status=VerificationStatus.SUBMITTED,
            action=AuditAction.AUTO_VERIFY,
            actor=SYSTEM_ACTOR,
            notes=rule_id,
            workflow=lambda current: verification_domain.auto_verify_record(
                current, rule_id, requires_documentation
            )
        )
    
    def try_auto_approve(self, record: SubmittedRecord) -> SubmittedRecord:
        """
        Evaluate the entity's rule and auto-verify on a match.
        
        A missing or malformed rule, a non-match, or a lost race all leave
        the record as it is for manual review.
        """
        with tracer.start_as_current_span("record.auto_approval") as span:
            span.set_attribute("record.id", record.id)
            with store_guard("auto_approval_lookup"):
                entity_document = self.store.find_one(ENTITIES, record.entity_id)
            raw_config = (entity_document or {}).get(AUTO_APPROVAL_FIELD)
            
            config = auto_approval_domain.decode_config(raw_config)
            evaluation = auto_approval_domain.evaluate_rule(record, config)
            span.set_attributes({
                "auto_approval.matched": evaluation.matched,
                "auto_approval.failed_conditions": ",".join(evaluation.failed_conditions)
            })
            if not evaluation.matched:
                logger.debug(
                    "Record left for manual review",
                    extra={"record_id": record.id, "failed_conditions": evaluation.failed_conditions}
                )
                return record
            
            rule_id = auto_approval_domain.rule_id_for(record.entity_id, config)
            try:
                return self.auto_verify(record.id, rule_id, config.requires_documentation)
            except StateConflictException:
                logger.info(
                    "Auto-approval lost to a concurrent decision",
                    extra={"record_id": record.id, "rule_id": rule_id}
                )
                return self.get_record(record.id)
    
    def _apply_transition(
        self,
        record_id: str,
        expected_status: VerificationStatus,
        action: AuditAction,
        actor: str,
        workflow: Callable[[SubmittedRecord], WorkflowResult],
        notes: Optional[str] = None
    ) -> SubmittedRecord:
        with tracer.start_as_current_span(
            f"record.{action.value}",
            attributes={"record.id": record_id, "user.id": actor, "operation": action.value}
        ) as span:
            current = self.get_record(record_id)
            
            with tracer.start_as_current_span(f"domain.record.{action.value}") as domain_span:
                result = workflow(current)
                domain_span.set_attributes({
                    "domain.operation": action.value,
                    "domain.result": "success" if result.success else "failed"
                })
            
            if not result.success:
                span.set_status(Status(StatusCode.ERROR, result.error_message))
                logger.warning(
                    "Record transition refused",
                    extra={
                        "record_id": record_id,
                        "action": action.value,
                        "status": current.status,
                        "error": result.error_message,
                        "validation_errors": result.validation_errors
                    }
                )
                if result.invalid_transition:
                    raise InvalidStateTransitionException(result.error_message, current.status)
                raise ValidationException(result.error_message, result.validation_errors)
            
            updated = result.record
            with tracer.start_as_current_span("db.record.compare_and_set") as db_span:
                with store_guard(action.value):
                    document = self.store.compare_and_set(
                        RECORDS,
                        record_id,
                        {"status": expected_status.value},
                        verification_domain.decision_updates(updated),
                        actor
                    )
                db_span.set_attribute("db.committed", document is not None)
            
            if document is None:
                # Lost the race; report what committed instead
                with store_guard(action.value):
                    latest = self.store.find_one(RECORDS, record_id)
                if latest is None:
                    raise NotFoundException(f"Record {record_id} not found")
                committed = SubmittedRecord.from_document(latest)
                span.set_status(Status(StatusCode.ERROR, "State conflict"))
                logger.warning(
                    "Record transition lost to a concurrent decision",
                    extra={
                        "record_id": record_id,
                        "action": action.value,
                        "expected_status": expected_status.value,
                        "current_status": committed.status
                    }
                )
                raise StateConflictException(
                    f"Record {record_id} was already decided (status: {committed.status})",
                    committed.status
                )
            
            committed = SubmittedRecord.from_document(document)
            span.set_attribute("record.status", committed.status)
            logger.info(
                "Record transition committed",
                extra={
                    "record_id": record_id,
                    "action": action.value,
                    "user_id": actor,
                    "from_status": current.status,
                    "to_status": committed.status
                }
            )
            self._audit(
                actor,
                action,
                record_id,
                notes=notes,
                before=verification_domain.decision_snapshot(current),
                after=verification_domain.decision_snapshot(committed)
            )
            return committed
    
    def _audit(self, actor: str, action: AuditAction, resource_id: str, entity: str = "record", **kwargs) -> None:
        # The transition is already committed; a failed audit write must not undo it
        try:
            self.audit_service.log_action(actor, action.value, entity, resource_id, **kwargs)
        except (StoreError, ValueError) as e:
            logger.error(
                "Audit entry lost for committed change",
                extra={"resource_id": resource_id, "action": action.value, "error": str(e)}
            )
    
    # Auto-approval configuration
    
    def configure_auto_approval(
        self,
        request: ConfigureAutoApprovalRequest,
        user_context: UserContext
    ) -> Dict[str, Any]:
        """
        Write one rule to every listed entity.
        
        All entities must exist before anything is written. The write itself
        is a single unordered bulk update.
        
        Raises:
            NotFoundException: If any entity ID is unknown
        """
        with tracer.start_as_current_span(
            "auto_approval.configure",
            attributes={
                "user.id": user_context.user_id,
                "auto_approval.entity_count": len(request.entity_ids),
                "auto_approval.enabled": request.enabled
            }
        ) as span:
            with store_guard("configure_auto_approval"):
                documents = self.store.find(ENTITIES, {"_id": {"$in": request.entity_ids}})
            found = {str(doc["id"]): doc for doc in documents}
            missing = [entity_id for entity_id in request.entity_ids if entity_id not in found]
            if missing:
                span.set_status(Status(StatusCode.ERROR, "Unknown entities"))
                raise NotFoundException(f"Entities not found: {', '.join(missing)}")
            
            config = auto_approval_domain.build_config(request, user_context.user_id)
            stored = config.to_document(mode="json")
            now = utc_now()
            with store_guard("configure_auto_approval"):
                updated = self.store.bulk_update(
                    ENTITIES,
                    [
                        (entity_id, {AUTO_APPROVAL_FIELD: stored, "updatedAt": now, "updatedBy": user_context.user_id})
                        for entity_id in request.entity_ids
                    ]
                )
            
            logger.info(
                "Auto-approval configured",
                extra={
                    "user_id": user_context.user_id,
                    "entity_ids": request.entity_ids,
                    "enabled": request.enabled,
                    "updated": updated
                }
            )
            for entity_id in request.entity_ids:
                self._audit(
                    user_context.user_id,
                    AuditAction.CONFIGURE_AUTO_APPROVAL,
                    entity_id,
                    entity="entity",
                    before={AUTO_APPROVAL_FIELD: found[entity_id].get(AUTO_APPROVAL_FIELD)},
                    after={AUTO_APPROVAL_FIELD: stored}
                )
            
            return {"entity_ids": request.entity_ids, "updated": updated, "config": stored}
    
    def auto_approval_overview(self) -> Dict[str, Any]:
        """Per-entity rule state with auto-verification counts."""
        with tracer.start_as_current_span("auto_approval.overview") as span:
            with store_guard("auto_approval_overview"):
                entity_documents = self.store.find(ENTITIES, sort=[("name", 1)])
                auto_verified = self.store.find(
                    RECORDS, {"status": VerificationStatus.AUTO_VERIFIED.value}
                )
                pending = self.store.find(
                    RECORDS, {"status": VerificationStatus.SUBMITTED.value}
                )
            
            counts: Dict[str, int] = {}
            for document in auto_verified:
                counts[document["entityId"]] = counts.get(document["entityId"], 0) + 1
            pending_counts: Dict[str, int] = {}
            for document in pending:
                pending_counts[document["entityId"]] = pending_counts.get(document["entityId"], 0) + 1
            
            entities = []
            for document in entity_documents:
                entity = Entity.from_document(document)
                config = entity.auto_approval
                entities.append({
                    "entity_id": entity.id,
                    "name": entity.name,
                    "type": entity.type,
                    "config": config.model_dump(mode="json") if config else None,
                    "enabled": bool(config and config.enabled),
                    "auto_verified_count": counts.get(entity.id, 0),
                    "pending_count": pending_counts.get(entity.id, 0)
                })
            
            summary = {
                "total_entities": len(entities),
                "enabled_count": sum(1 for item in entities if item["enabled"]),
                "total_auto_verified": len(auto_verified)
            }
            span.set_attributes({
                "auto_approval.enabled_count": summary["enabled_count"],
                "auto_approval.total_auto_verified": summary["total_auto_verified"]
            })
            return {"entities": entities, "summary": summary}
    
    # Queue
    
    @staticmethod
    def queue_query(filters: QueueFilters) -> Dict[str, Any]:
        """Store filters for a queue listing, without the status clause."""
        query: Dict[str, Any] = {}
        for field_name, key in (
            ("kind", "kind"),
            ("type", "type"),
            ("priority", "priority"),
            ("entity_id", "entityId"),
            ("donor_id", "donorId"),
            ("assessor_id", "assessorId")
        ):
            value = getattr(filters, field_name)
            if value is not None:
                query[key] = value
        
        created: Dict[str, datetime] = {}
        if filters.date_from:
            created["$gte"] = filters.date_from
        if filters.date_to:
            created["$lte"] = filters.date_to
        if created:
            query["createdAt"] = created
        return query
    
    def list_queue(
        self,
        filters: QueueFilters,
        pagination: PaginationParams,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        List SUBMITTED records, highest priority first then oldest first.
        
        Returns:
            Dict with ``items``, ``page`` (PaginationResult) and ``metrics``
            (QueueMetrics over the same filters, or None)
        """
        with tracer.start_as_current_span("verification.queue.list") as span:
            base_query = self.queue_query(filters)
            query = {**base_query, "status": VerificationStatus.SUBMITTED.value}
            
            with store_guard("list_queue"):
                page: PaginationResult = self.store.paginate(
                    RECORDS,
                    page=pagination.page,
                    page_size=pagination.limit,
                    filters=query,
                    sort=QUEUE_SORT
                )
            items: List[SubmittedRecord] = [SubmittedRecord.from_document(doc) for doc in page.items]
            
            metrics = None
            if self.queue_metrics_service is not None:
                metrics = self.queue_metrics_service.queue_metrics(base_query, window, now)
            
            span.set_attributes({
                "queue.total": page.total,
                "queue.page": page.page,
                "queue.returned": len(items)
            })
            return {"items": items, "page": page, "metrics": metrics}
