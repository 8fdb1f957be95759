# SPDX-License-Identifier: Apache-2.0

"""
Verification workflow endpoints.

Record submission, detail, manual decisions, the verification queue with
its metrics, and entity auto-approval configuration.
"""

from datetime import timedelta
from flask import current_app, g, jsonify
from flask_openapi3 import APIBlueprint, Tag
from pydantic import BaseModel, Field

from domain import authorization as perms
from middleware.auth import require_permission
from models.entities import SubmittedRecord
from models.requests import (
    ConfigureAutoApprovalRequest,
    PaginationParams,
    QueueFilters,
    QueueMetricsQuery,
    RejectRecordRequest,
    SubmitRecordRequest,
    VerifyRecordRequest
)
from services.hal import API_PREFIX
from utils.request import RequestParser

verification_tag = Tag(name="Verification", description="Record verification workflow")
verification_bp = APIBlueprint(
    'verification',
    __name__,
    url_prefix=API_PREFIX,
    abp_tags=[verification_tag]
)


class RecordPath(BaseModel):
    record_id: str = Field(..., description="Record ID")


def _record_body(record: SubmittedRecord):
    return current_app.hal_formatter.format_record(
        record.model_dump(mode="json"), g.user_context.permissions
    )


@verification_bp.post('/records')
@require_permission(perms.RECORD_SUBMIT)
def submit_record():
    """
    Submit an assessment or response.
    
    The record enters the queue as SUBMITTED (or stays DRAFT when requested)
    and is checked against its entity's auto-approval rule.
    """
    submit_request = RequestParser.parse_body(SubmitRecordRequest)
    result = current_app.verification_service.submit(submit_request, g.user_context)
    
    links = current_app.hal_formatter.builder.affordance_builder.build_record_affordances(
        result.id, result.status, g.user_context.permissions
    )
    body = current_app.hal_formatter.builder.build_resource_response(result.model_dump(), links)
    return jsonify(body), 201


@verification_bp.get('/records/<record_id>')
@require_permission(perms.RECORD_READ)
def get_record(path: RecordPath):
    """Get a record with its currently available decision links."""
    record = current_app.verification_service.get_record(path.record_id)
    return jsonify(_record_body(record))


@verification_bp.get('/records/<record_id>/audit')
@require_permission(perms.RECORD_READ)
def get_record_audit(path: RecordPath):
    """Audit trail of a record, newest first."""
    entries = current_app.verification_service.record_history(path.record_id)
    return jsonify(current_app.hal_formatter.format_resource(
        {
            "record_id": path.record_id,
            "entries": [entry.model_dump(mode="json") for entry in entries],
            "total": len(entries)
        },
        f"{API_PREFIX}/records/{path.record_id}/audit"
    ))


@verification_bp.post('/records/<record_id>/submit')
@require_permission(perms.RECORD_SUBMIT)
def submit_draft(path: RecordPath):
    """Move a draft record into the verification queue."""
    record = current_app.verification_service.submit_draft(path.record_id, g.user_context)
    return jsonify(_record_body(record))


@verification_bp.post('/records/<record_id>/verify')
@require_permission(perms.RECORD_VERIFY)
def verify_record(path: RecordPath):
    """
    Verify a submitted record.
    
    Returns 409 when the record is not SUBMITTED or another decision
    committed first.
    """
    verify_request = RequestParser.parse_body(VerifyRecordRequest)
    record = current_app.verification_service.verify(
        path.record_id, g.user_context, verify_request.notes
    )
    return jsonify(_record_body(record))


@verification_bp.post('/records/<record_id>/reject')
@require_permission(perms.RECORD_REJECT)
def reject_record(path: RecordPath):
    """Reject a submitted record with a reason and notes."""
    reject_request = RequestParser.parse_body(RejectRecordRequest)
    record = current_app.verification_service.reject(
        path.record_id, g.user_context, reject_request.reason, reject_request.notes
    )
    return jsonify(_record_body(record))


@verification_bp.get('/verification/queue')
@require_permission(perms.RECORD_READ)
def list_queue():
    """List submitted records, highest priority first then oldest first."""
    filters = RequestParser.parse_query(QueueFilters)
    pagination = RequestParser.parse_query(PaginationParams)
    
    result = current_app.verification_service.list_queue(filters, pagination)
    page = result["page"]
    metrics = result["metrics"]
    extra = {}
    if metrics is not None:
        extra["queue_depth"] = metrics.to_dict()["queue_depth"]
        extra["metrics"] = metrics.to_dict()
    
    body = current_app.hal_formatter.format_record_collection(
        [record.model_dump(mode="json") for record in result["items"]],
        page.total,
        page.page,
        page.page_size,
        g.user_context.permissions,
        filters.model_dump(mode="json", exclude_none=True),
        extra
    )
    return jsonify(body)


@verification_bp.get('/verification/metrics')
@require_permission(perms.ANALYTICS_READ)
def queue_metrics():
    """Queue depth, waiting times and the trailing verification rate."""
    query = RequestParser.parse_query(QueueMetricsQuery)
    window = timedelta(hours=query.window_hours) if query.window_hours else None
    metrics = current_app.queue_metrics_service.queue_metrics(window=window)
    return jsonify(current_app.hal_formatter.format_resource(
        metrics.to_dict(), f"{API_PREFIX}/verification/metrics"
    ))


@verification_bp.get('/auto-approval')
@require_permission(perms.RECORD_READ)
def get_auto_approval():
    """Auto-approval rule of every entity with usage counts."""
    overview = current_app.verification_service.auto_approval_overview()
    return jsonify(current_app.hal_formatter.format_resource(overview, f"{API_PREFIX}/auto-approval"))


@verification_bp.put('/auto-approval')
@require_permission(perms.AUTOAPPROVAL_CONFIGURE)
def configure_auto_approval():
    """Apply one auto-approval rule to one or more entities."""
    configure_request = RequestParser.parse_body(ConfigureAutoApprovalRequest)
    result = current_app.verification_service.configure_auto_approval(configure_request, g.user_context)
    return jsonify(current_app.hal_formatter.format_resource(result, f"{API_PREFIX}/auto-approval"))
