"""
Default Property Analysis
Fully populated analysis used when a completion is missing, unparseable,
or no provider is configured, and as the per-field default source
"""

import re
from typing import List

from analysis_models import (
    ChangeOfUse,
    Comparable,
    DevelopmentPotential,
    ExecutiveSummary,
    FeasibilityStudy,
    LocalAuthority,
    PermittedDevelopment,
    PlanningOpportunities,
    Potentials,
    PropertyAppraisal,
    RefurbishmentRates,
    Risk,
    Roi,
    Scenario,
    ScenarioCosts,
    StructuredAnalysis,
    UseClass,
    Valuation,
)

DEFAULT_USE_CLASS = "C3 Residential"
DEFAULT_DEVELOPMENT_POTENTIAL = "High"
DEFAULT_RECOMMENDED_ACTION = (
    "Refurbish and extend to create additional accommodation, then sell at premium"
)
DEFAULT_INVESTMENT_STRATEGY = "Refurbish & Sell"
DEFAULT_PLANNING_OPPORTUNITIES = ["Loft Conversion", "Rear Extension", "Basement Development"]
DEFAULT_PLANNING_CONSTRAINTS = ["Conservation Area", "Tree Preservation Order"]
DEFAULT_PROPERTY_IMAGE = (
    "https://images.unsplash.com/photo-1518780664697-55e3ad937233"
    "?w=800&auto=format&fit=crop&q=60"
)
DEFAULT_COMPARABLE_LINK = "https://www.rightmove.co.uk"

LIGHT_REFURBISHMENT = "Light Refurbishment & Sell"
EXTEND_AND_CONVERT = "Extend & Convert"

# Risk category per default factor, used when a risk narrative overrides mitigation
RISK_CATEGORIES = {
    "Market Downturn": "market",
    "Cost Overruns": "construction",
    "Planning Permission Delays": "planning",
    "Construction Delays": "construction",
    "Finance Costs Increase": "finance",
}

# Factor appended when a narrative category has no default risk in a scenario
CATEGORY_FACTORS = {
    "market": "Market Downturn",
    "planning": "Planning Permission Delays",
    "construction": "Construction Delays",
    "finance": "Finance Costs Increase",
}


def _street_from_address(address: str) -> str:
    """'10 Test Street, London' -> 'Test Street'"""
    first_part = (address or "").split(",")[0].strip()
    street = re.sub(r"^(?:flat\s+\w+\s+)?\d+[a-z]?\s+", "", first_part, flags=re.IGNORECASE).strip()
    return street or "Sample Street"


def default_risks(scenario_name: str) -> List[Risk]:
    if scenario_name == EXTEND_AND_CONVERT:
        return [
            Risk(
                factor="Planning Permission Delays",
                impact="High",
                mitigation="Pre-application consultation; engage planning consultant",
            ),
            Risk(
                factor="Construction Delays",
                impact="Medium",
                mitigation="Detailed project timeline; penalty clauses in contracts",
            ),
        ]
    return [
        Risk(
            factor="Market Downturn",
            impact="Medium",
            mitigation="Ensure contingency buffer in budget; focus on timeless, quality finishes",
        ),
        Risk(
            factor="Cost Overruns",
            impact="Low",
            mitigation="Fixed-price contracts with reliable contractors; detailed scope of work",
        ),
    ]


def default_scenarios() -> List[Scenario]:
    return [
        Scenario(
            name=LIGHT_REFURBISHMENT,
            description=(
                "Light to moderate refurbishment focusing on modernizing the kitchen, bathrooms, "
                "and decorative finishes without structural changes."
            ),
            costs=ScenarioCosts(
                acquisition="£675,000",
                refurbishment="£75,000",
                financing="£21,000",
                selling="£14,250",
                total="£785,250",
            ),
            gdv="£830,000",
            profit="£44,750",
            profit_percentage="5.7%",
            max_acquisition_price="£630,000",
            timeline="4-6 months",
            risks=default_risks(LIGHT_REFURBISHMENT),
        ),
        Scenario(
            name=EXTEND_AND_CONVERT,
            description=(
                "Comprehensive redevelopment including loft conversion, rear extension, and "
                "reconfiguration to create a 5-bedroom family home."
            ),
            costs=ScenarioCosts(
                acquisition="£675,000",
                refurbishment="£200,000",
                financing="£42,000",
                selling="£19,000",
                total="£936,000",
            ),
            gdv="£1,200,000",
            profit="£264,000",
            profit_percentage="28.2%",
            max_acquisition_price="£700,000",
            timeline="10-12 months",
            risks=default_risks(EXTEND_AND_CONVERT),
        ),
    ]


def default_comparables(address: str = "") -> List[Comparable]:
    street = _street_from_address(address)
    return [
        Comparable(
            address=f"12 {street}",
            price="£720,000",
            date="Mar 2023",
            property_type="Semi-detached, 3 bedroom",
            size="1,450 sq ft",
            rating="High",
            reason="Very similar property on same street, recently renovated",
            link=DEFAULT_COMPARABLE_LINK,
        ),
        Comparable(
            address="24 Example Road",
            price="£650,000",
            date="Jan 2023",
            property_type="Semi-detached, 3 bedroom",
            size="1,350 sq ft",
            rating="Medium",
            reason="Similar property but requires modernization",
            link=DEFAULT_COMPARABLE_LINK,
        ),
        Comparable(
            address="8 Property Lane",
            price="£850,000",
            date="Apr 2023",
            property_type="Semi-detached, 4 bedroom",
            size="1,800 sq ft",
            rating="High",
            reason="Extended property showing post-development value",
            link=DEFAULT_COMPARABLE_LINK,
        ),
    ]


def default_potentials() -> Potentials:
    return Potentials(
        extensions=[
            DevelopmentPotential(
                type="Rear Extension",
                feasibility="High",
                notes="Up to 4m single-story extension likely to be approved under permitted development rights.",
            ),
            DevelopmentPotential(
                type="Loft Conversion",
                feasibility="High",
                notes="Rear dormer and roof lights would add approximately 400 sq ft of space.",
            ),
            DevelopmentPotential(
                type="Basement Development",
                feasibility="Medium",
                notes=(
                    "Would require full planning permission with potential challenges, "
                    "but precedent exists in neighboring properties."
                ),
            ),
        ],
        conversions=[
            DevelopmentPotential(
                type="Garage Conversion",
                feasibility="High",
                notes="Integral garage could be converted to habitable space under permitted development.",
            ),
            DevelopmentPotential(
                type="Outbuilding Conversion",
                feasibility="Medium",
                notes="Existing garden structure could be upgraded to home office/gym.",
            ),
        ],
        change_of_use=[
            ChangeOfUse(
                from_use="Single Family Home",
                to_use="HMO",
                feasibility="Low",
                notes=(
                    "Area has Article 4 Direction requiring planning permission for HMOs "
                    "with limited approval precedent."
                ),
            ),
            ChangeOfUse(
                from_use="Residential",
                to_use="Mixed-Use (Residential with Home Office)",
                feasibility="High",
                notes="Acceptable under current planning policy with minimal requirements.",
            ),
        ],
    )


def default_analysis(address: str = "") -> StructuredAnalysis:
    """
    Build a fresh, internally consistent analysis

    Args:
        address: Requested property address; only the first comparable's
            street is derived from it

    Returns:
        New StructuredAnalysis; callers may mutate it freely
    """
    executive_summary = ExecutiveSummary(
        current_use_class=DEFAULT_USE_CLASS,
        development_potential=DEFAULT_DEVELOPMENT_POTENTIAL,
        planning_opportunities=list(DEFAULT_PLANNING_OPPORTUNITIES),
        planning_constraints=list(DEFAULT_PLANNING_CONSTRAINTS),
        recommended_action=DEFAULT_RECOMMENDED_ACTION,
        current_valuation="£675,000",
        refurbishment_costs="£120,000",
        gdv="£950,000",
        profit_margin="27.4%",
        roi="155%",
        investment_strategy=DEFAULT_INVESTMENT_STRATEGY,
        rationale=(
            "The property presents an excellent opportunity for value enhancement through strategic "
            "refurbishment and permitted development. The current configuration underutilizes the "
            "potential floor space, and market comparables indicate strong demand for larger family "
            "homes in this area. With planning likely to be approved and construction costs currently "
            "stable, this project represents an excellent short-term investment opportunity."
        ),
        property_image=DEFAULT_PROPERTY_IMAGE,
    )

    property_appraisal = PropertyAppraisal(
        use_class=UseClass(
            current="C3 Residential (Single Family Dwelling)",
            source="Land Registry & Local Planning Authority Records",
            verification="Confirmed through planning portal reference P/2020/1234",
        ),
        valuation=Valuation(
            market_value="£675,000",
            value_uplift_potential="£275,000 (41% increase post-development)",
            refurbishment_costs=RefurbishmentRates(
                light="£60-75 per sq ft",
                conversion="£180 per sq ft",
                new_build="£225 per sq ft",
                hmo_conversion="£30,000 per room",
            ),
        ),
        comparables=default_comparables(address),
    )

    feasibility_study = FeasibilityStudy(
        scenarios=default_scenarios(),
        roi=Roi(expected="28.2%", risk_adjusted="23.5%", holding_period="12 months"),
    )

    planning_opportunities = PlanningOpportunities(
        permitted_development=PermittedDevelopment(
            available=[
                "Single-story rear extension",
                "Loft conversion with rear dormer",
                "Outbuilding conversion",
            ],
            restricted=["Side extensions", "Front extensions", "Additional floors"],
            notes=(
                "Property is in a conservation area which restricts some permitted development rights, "
                "particularly affecting the front elevation and roof visibility from the street."
            ),
        ),
        local_authority=LocalAuthority(
            restrictions=[
                "Conservation Area designation limits external alterations visible from the street",
                "Tree Preservation Order on mature oak tree in rear garden",
                "Article 4 Direction removing some permitted development rights",
            ],
            policies=[
                "Policy H4 supports sensitive extensions to existing dwellings",
                "Policy D2 requires high-quality design in conservation areas",
                "Policy S7 promotes sustainable development principles",
            ],
            upcoming=(
                "The local plan is under review with proposed changes to basement development "
                "policy expected within 6 months."
            ),
        ),
        potentials=default_potentials(),
    )

    return StructuredAnalysis(
        executive_summary=executive_summary,
        property_appraisal=property_appraisal,
        feasibility_study=feasibility_study,
        planning_opportunities=planning_opportunities,
    )
