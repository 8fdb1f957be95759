# SPDX-License-Identifier: Apache-2.0

"""
Population impact aggregation for incidents.

Pure functions that sum the impact figures of every assessment linked to an
incident and locate its epicenter. Field reports are free text, so each
figure is parsed leniently: the leading numeric token counts and anything
unreadable counts as zero.
"""

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from dataclasses import dataclass, asdict

from models.entities import SubmittedRecord

_LEADING_NUMBER = re.compile(r"^\s*(\d[\d,]*(?:\.\d+)?|\.\d+)")

# Output figure -> payload keys accepted for it, first match wins
IMPACT_FIELDS = {
    "lives_lost": ("livesLost", "numberLivesLost", "lives_lost"),
    "injured": ("injured", "numberInjured"),
    "displaced": ("displaced", "numberDisplaced"),
    "houses_affected": ("housesAffected", "numberHousesAffected", "houses_affected"),
    "schools_affected": ("schoolsAffected", "numberSchoolsAffected", "schools_affected"),
    "medical_facilities_affected": (
        "medicalFacilitiesAffected", "numberMedicalFacilitiesAffected", "medical_facilities_affected"
    ),
    "agricultural_land_affected": (
        "agriculturalLandAffected", "estimatedAgriculturalLandsAffected", "agricultural_land_affected"
    ),
}

# Figures that are head/building counts rather than measurements
COUNT_FIELDS = tuple(name for name in IMPACT_FIELDS if name != "agricultural_land_affected")


@dataclass
class Epicenter:
    latitude: float
    longitude: float


@dataclass
class PopulationImpact:
    """Impact snapshot of one incident."""
    incident_id: str
    lives_lost: int = 0
    injured: int = 0
    displaced: int = 0
    houses_affected: int = 0
    schools_affected: int = 0
    medical_facilities_affected: int = 0
    agricultural_land_affected: float = 0.0
    epicenter: Optional[Epicenter] = None
    assessment_count: int = 0
    latest_assessment_date: Optional[datetime] = None
    
    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        if self.latest_assessment_date is not None:
            result["latest_assessment_date"] = self.latest_assessment_date.isoformat()
        return result


def parse_quantity(value: Any) -> float:
    """
    Parse a reported quantity.
    
    Numbers pass through; strings such as "100 hectares" or "1,200 people"
    yield their leading number. Missing, negative or unreadable values are 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else 0.0
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if match:
            return float(match.group(1).replace(",", ""))
    return 0.0


def extract_figure(data: Dict[str, Any], field_name: str) -> float:
    """Read one impact figure from an assessment payload."""
    for key in IMPACT_FIELDS[field_name]:
        if key in data and data[key] is not None:
            return parse_quantity(data[key])
    return 0.0


def calculate_epicenter(assessments: Iterable[SubmittedRecord]) -> Optional[Epicenter]:
    """Mean coordinate of the assessments that carry one."""
    points = [a.coordinates for a in assessments if a.coordinates is not None]
    if not points:
        return None
    return Epicenter(
        latitude=sum(lat for lat, _ in points) / len(points),
        longitude=sum(lng for _, lng in points) / len(points)
    )


def calculate_impact(incident_id: str, assessments: List[SubmittedRecord]) -> PopulationImpact:
    """
    Aggregate the impact of an incident from its linked assessments.
    
    Args:
        incident_id: Incident identifier
        assessments: Every assessment linked to the incident
        
    Returns:
        PopulationImpact with summed figures, epicenter and count
    """
    impact = PopulationImpact(incident_id=incident_id)
    if not assessments:
        return impact
    
    for field_name in IMPACT_FIELDS:
        total = sum(extract_figure(a.data or {}, field_name) for a in assessments)
        if field_name in COUNT_FIELDS:
            total = int(total)
        setattr(impact, field_name, total)
    
    impact.epicenter = calculate_epicenter(assessments)
    impact.assessment_count = len(assessments)
    impact.latest_assessment_date = max(a.created_at for a in assessments)
    return impact
