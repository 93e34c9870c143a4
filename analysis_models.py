"""
Property Analysis Data Model
Structured record rendered by the executive summary, appraisal,
feasibility and planning panels
"""

import json
import re
from dataclasses import dataclass, field, fields, is_dataclass, asdict
from typing import Any, Dict, List, get_type_hints

# Permitted values for rating / impact / feasibility
LEVELS = ("High", "Medium", "Low")

# Attribute names that cannot be used verbatim in Python
_KEY_OVERRIDES = {
    "from_use": "from",
    "to_use": "to",
}


# ============================================================================
# EXECUTIVE SUMMARY
# ============================================================================

@dataclass
class ExecutiveSummary:
    current_use_class: str
    development_potential: str
    planning_opportunities: List[str]
    planning_constraints: List[str]
    recommended_action: str
    current_valuation: str
    refurbishment_costs: str
    gdv: str
    profit_margin: str
    roi: str
    investment_strategy: str
    rationale: str
    property_image: str = ""


# ============================================================================
# PROPERTY APPRAISAL
# ============================================================================

@dataclass
class UseClass:
    current: str
    source: str
    verification: str


@dataclass
class RefurbishmentRates:
    light: str
    conversion: str
    new_build: str
    hmo_conversion: str


@dataclass
class Valuation:
    market_value: str
    value_uplift_potential: str
    refurbishment_costs: RefurbishmentRates


@dataclass
class Comparable:
    address: str
    price: str
    date: str
    property_type: str
    size: str
    rating: str
    reason: str
    link: str


@dataclass
class PropertyAppraisal:
    use_class: UseClass
    valuation: Valuation
    comparables: List[Comparable]


# ============================================================================
# FEASIBILITY STUDY
# ============================================================================

@dataclass
class ScenarioCosts:
    acquisition: str
    refurbishment: str
    financing: str
    selling: str
    total: str


@dataclass
class Risk:
    factor: str
    impact: str
    mitigation: str


@dataclass
class Scenario:
    name: str
    description: str
    costs: ScenarioCosts
    gdv: str
    profit: str
    profit_percentage: str
    max_acquisition_price: str
    timeline: str
    risks: List[Risk] = field(default_factory=list)


@dataclass
class Roi:
    expected: str
    risk_adjusted: str
    holding_period: str


@dataclass
class FeasibilityStudy:
    scenarios: List[Scenario]
    roi: Roi


# ============================================================================
# PLANNING OPPORTUNITIES
# ============================================================================

@dataclass
class PermittedDevelopment:
    available: List[str]
    restricted: List[str]
    notes: str


@dataclass
class LocalAuthority:
    restrictions: List[str]
    policies: List[str]
    upcoming: str


@dataclass
class DevelopmentPotential:
    type: str
    feasibility: str
    notes: str


@dataclass
class ChangeOfUse:
    from_use: str
    to_use: str
    feasibility: str
    notes: str


@dataclass
class Potentials:
    extensions: List[DevelopmentPotential]
    conversions: List[DevelopmentPotential]
    change_of_use: List[ChangeOfUse]


@dataclass
class PlanningOpportunities:
    permitted_development: PermittedDevelopment
    local_authority: LocalAuthority
    potentials: Potentials


# ============================================================================
# ROOT RECORD
# ============================================================================

@dataclass
class StructuredAnalysis:
    executive_summary: ExecutiveSummary
    property_appraisal: PropertyAppraisal
    feasibility_study: FeasibilityStudy
    planning_opportunities: PlanningOpportunities

    def to_dict(self) -> Dict[str, Any]:
        """Plain camelCase dict in the layout the UI panels consume"""
        return _camel_keys(asdict(self))

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StructuredAnalysis":
        """
        Rebuild a record from the camelCase layout produced by to_dict()

        Raises:
            KeyError / TypeError when a required key is missing or malformed
        """
        return _from_plain(cls, data)


def export_filename(address: str) -> str:
    """File name used when an analysis is downloaded as JSON"""
    slug = re.sub(r"\s+", "-", (address or "").strip()).lower() or "property"
    return f"{slug}-analysis.json"


# ============================================================================
# KEY CONVERSION HELPERS
# ============================================================================

def _camel(name: str) -> str:
    if name in _KEY_OVERRIDES:
        return _KEY_OVERRIDES[name]
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _camel_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(k): _camel_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camel_keys(v) for v in value]
    return value


def _from_plain(cls, data: Dict[str, Any]):
    hints = get_type_hints(cls)
    kwargs = {}
    for f in fields(cls):
        key = _camel(f.name)
        if key not in data:
            if f.name == "property_image":
                continue
            raise KeyError(f"Missing key '{key}' for {cls.__name__}")
        kwargs[f.name] = _coerce(hints[f.name], data[key])
    return cls(**kwargs)


def _coerce(hint, value):
    if is_dataclass(hint):
        return _from_plain(hint, value)
    item_type = getattr(hint, "__args__", None)
    if item_type and isinstance(value, list):
        (inner,) = item_type
        return [_coerce(inner, v) for v in value]
    return value
