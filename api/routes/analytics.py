# SPDX-License-Identifier: Apache-2.0

"""
Analytics endpoints.

Donor metrics and leaderboard, plus the population impact of an incident.
"""

from flask import current_app, g, jsonify
from flask_openapi3 import APIBlueprint, Tag
from pydantic import BaseModel, Field

from domain import authorization as perms
from middleware.auth import require_permission
from models.requests import DonorMetricsQuery
from services.hal import API_PREFIX
from utils.request import RequestParser

analytics_tag = Tag(name="Analytics", description="Donor performance and incident impact")
analytics_bp = APIBlueprint(
    'analytics',
    __name__,
    url_prefix=API_PREFIX,
    abp_tags=[analytics_tag]
)


class IncidentPath(BaseModel):
    incident_id: str = Field(..., description="Incident ID")


def _persist_ranks() -> bool:
    # Only rank maintainers write ranks back; everyone else gets a read-only pass
    return g.user_context.has_permission(perms.DONOR_RANK)


@analytics_bp.get('/donors/metrics')
@require_permission(perms.ANALYTICS_READ)
def donor_metrics():
    """
    Donor scorecards ranked by the requested key.
    
    Sorting by the overall score also refreshes the stored leaderboard ranks
    when the caller holds ``donor:rank``.
    """
    query = RequestParser.parse_query(DonorMetricsQuery)
    result = current_app.donor_scoring_service.donor_metrics(
        donor_id=query.donor_id,
        timeframe=query.timeframe,
        sort_by=query.sort_by,
        limit=query.limit,
        persist_ranks=_persist_ranks()
    )
    return jsonify(current_app.hal_formatter.format_resource(result, f"{API_PREFIX}/donors/metrics"))


@analytics_bp.get('/donors/leaderboard')
@require_permission(perms.ANALYTICS_READ)
def donor_leaderboard():
    """Top donors by overall score."""
    query = RequestParser.parse_query(DonorMetricsQuery)
    result = current_app.donor_scoring_service.leaderboard(
        timeframe=query.timeframe,
        limit=query.limit,
        persist_ranks=_persist_ranks()
    )
    return jsonify(current_app.hal_formatter.format_resource(result, f"{API_PREFIX}/donors/leaderboard"))


@analytics_bp.get('/incidents/<incident_id>/impact')
@require_permission(perms.ANALYTICS_READ)
def incident_impact(path: IncidentPath):
    """Population impact aggregated over an incident's assessments."""
    impact = current_app.impact_service.population_impact(path.incident_id)
    links = current_app.hal_formatter.builder.affordance_builder.build_incident_affordances(path.incident_id)
    return jsonify(current_app.hal_formatter.builder.build_resource_response(impact.to_dict(), links))
