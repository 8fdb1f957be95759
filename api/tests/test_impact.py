# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for population impact aggregation.
"""

import pytest

from domain.impact import calculate_impact, parse_quantity, calculate_epicenter
from middleware.error_handler import NotFoundException
from models.entities import SubmittedRecord


def assessment(data=None, latitude=None, longitude=None, **overrides):
    values = {
        "kind": "assessment",
        "type": "POPULATION",
        "entity_id": "entity-1",
        "incident_id": "incident-1",
        "assessor_id": "assessor-1",
        "data": data or {},
        "latitude": latitude,
        "longitude": longitude
    }
    values.update(overrides)
    return SubmittedRecord(**values)


class TestParseQuantity:
    """Test lenient parsing of reported figures."""
    
    @pytest.mark.parametrize("value,expected", [
        (12, 12.0),
        (2.5, 2.5),
        ("100 hectares", 100.0),
        ("1,200 people", 1200.0),
        ("  7", 7.0),
        ("about 30", 0.0),
        ("", 0.0),
        (None, 0.0),
        (True, 0.0),
        (-4, 0.0),
        ({"count": 3}, 0.0)
    ])
    def test_parse_quantity(self, value, expected):
        assert parse_quantity(value) == expected


class TestCalculateImpact:
    """Test aggregation over linked assessments."""
    
    def test_sums_figures_and_locates_epicenter(self):
        assessments = [
            assessment({"livesLost": 1}, 6, 3),
            assessment({"livesLost": 2}, 7, 4),
            assessment({"livesLost": 3}, 5, 2)
        ]
        
        impact = calculate_impact("incident-1", assessments)
        
        assert impact.lives_lost == 6
        assert impact.assessment_count == 3
        assert impact.epicenter.latitude == pytest.approx(6)
        assert impact.epicenter.longitude == pytest.approx(3)
    
    def test_no_assessments_is_zero_snapshot(self):
        impact = calculate_impact("incident-1", [])
        
        assert impact.assessment_count == 0
        assert impact.lives_lost == 0
        assert impact.agricultural_land_affected == 0.0
        assert impact.epicenter is None
        assert impact.latest_assessment_date is None
    
    def test_alternate_field_names_and_text_values(self):
        assessments = [
            assessment({"numberDisplaced": "1,000 people", "estimatedAgriculturalLandsAffected": "12.5 ha"}),
            assessment({"displaced": 250, "agriculturalLandAffected": 2})
        ]
        
        impact = calculate_impact("incident-1", assessments)
        
        assert impact.displaced == 1250
        assert impact.agricultural_land_affected == pytest.approx(14.5)
    
    def test_records_without_coordinates_are_ignored_for_epicenter(self):
        assessments = [assessment(latitude=10, longitude=20), assessment()]
        
        epicenter = calculate_epicenter(assessments)
        
        assert (epicenter.latitude, epicenter.longitude) == (10, 20)
        assert calculate_epicenter([assessment()]) is None
    
    def test_to_dict_is_serializable(self):
        impact = calculate_impact("incident-1", [assessment({"injured": 4}, 1, 1)])
        
        data = impact.to_dict()
        
        assert data["injured"] == 4
        assert data["epicenter"] == {"latitude": 1, "longitude": 1}
        assert isinstance(data["latest_assessment_date"], str)


class TestImpactService:
    """Test impact snapshots read from the store."""
    
    def test_population_impact(self, impact_service, incident, entity, make_record):
        make_record(entity.id, incident_id=incident.id, data={"livesLost": 2}, latitude=6, longitude=3)
        make_record(entity.id, incident_id=incident.id, data={"livesLost": 5}, status="REJECTED",
                    rejection_reason="OTHER", latitude=8, longitude=5)
        make_record(entity.id, incident_id=incident.id, kind="response", data={"livesLost": 100})
        make_record(entity.id, incident_id="other-incident", data={"livesLost": 100})
        
        impact = impact_service.population_impact(incident.id)
        
        assert impact.assessment_count == 2
        assert impact.lives_lost == 7
        assert (impact.epicenter.latitude, impact.epicenter.longitude) == (7, 4)
    
    def test_unknown_incident(self, impact_service):
        with pytest.raises(NotFoundException):
            impact_service.population_impact("missing")
    
    def test_repeated_reads_are_identical(self, impact_service, incident, entity, make_record):
        make_record(entity.id, incident_id=incident.id, data={"livesLost": 3, "displaced": "40 families"},
                    latitude=6.5, longitude=3.2)
        make_record(entity.id, incident_id=incident.id, data={"injured": 12, "housesAffected": 9})
        
        first = impact_service.population_impact(incident.id)
        second = impact_service.population_impact(incident.id)
        
        assert first == second
        assert first.to_dict() == second.to_dict()
    
    def test_incident_without_assessments(self, impact_service, incident, entity, make_record):
        make_record(entity.id, incident_id="other-incident", data={"livesLost": 100})
        
        impact = impact_service.population_impact(incident.id)
        
        assert impact.incident_id == incident.id
        assert impact.assessment_count == 0
        assert impact.lives_lost == 0
        assert impact.displaced == 0
        assert impact.agricultural_land_affected == 0
        assert impact.epicenter is None
        assert impact.latest_assessment_date is None
