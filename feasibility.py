"""
Feasibility Scenario Reconciler
Assembles the two fixed investment scenarios from a report, deriving
totals, profit and profit-on-cost from whatever figures are present
"""

import re
import logging
from typing import Dict, List, Optional, Tuple

from analysis_models import FeasibilityStudy, Risk, Roi, Scenario, ScenarioCosts
from fallback_data import (
    CATEGORY_FACTORS,
    EXTEND_AND_CONVERT,
    LIGHT_REFURBISHMENT,
    RISK_CATEGORIES,
    default_analysis,
)
from report_extraction_engine import (
    HEADING_MATCHERS,
    Extraction,
    extract_currency,
    extract_field,
    extract_level,
    extract_paragraph,
    extract_percentage,
    extract_section,
    format_currency,
    format_percentage,
    locate_label,
    parse_currency,
    parse_percentage,
)

logger = logging.getLogger(__name__)

# Share of expected ROI kept after allowing for scenario risk
RISK_ADJUSTMENT_FACTOR = 0.833
MAX_MITIGATION_LENGTH = 200
MAX_TIMELINE_LENGTH = 40
# Difference (in pounds) tolerated between a stated total and the component sum
TOTAL_TOLERANCE = 1.0

# ============================================================================
# LABELS
# ============================================================================

FEASIBILITY_LABELS = ("Feasibility Study", "Feasibility Analysis")
FEASIBILITY_END_LABELS = ("Planning Opportunities", "Planning Analysis")

SCENARIO_LABELS = {
    LIGHT_REFURBISHMENT: (
        "Scenario 1", "Option 1", "Light Refurbishment & Sell", "Light Refurbishment and Sell",
        "Buy, Refurbish, and Sell", "Buy, Refurbish and Sell",
    ),
    EXTEND_AND_CONVERT: (
        "Scenario 2", "Option 2", "Extend & Convert", "Extend and Convert",
        "Buy, Extend, and Convert", "Buy, Extend and Convert",
    ),
}

COST_LABELS = {
    "acquisition": ("Acquisition Cost", "Acquisition Price", "Purchase Price", "Acquisition"),
    "refurbishment": (
        "Refurbishment Cost", "Refurbishment Budget", "Build Cost", "Construction Cost",
        "Development Cost", "Refurbishment",
    ),
    "financing": ("Financing Cost", "Finance Cost", "Financing", "Finance"),
    "selling": ("Selling Cost", "Sales Cost", "Disposal Cost", "Selling", "Agent Fees"),
}
TOTAL_LABELS = ("Total Cost", "Total Project Cost", "Total Investment", "Total")
GDV_LABELS = ("Gross Development Value", "GDV", "End Value", "Resale Value")
PROFIT_LABELS = ("Net Profit", "Profit")
PROFIT_PERCENTAGE_LABELS = ("Profit on Cost", "Profit Margin", "Profit Percentage", "Return on Cost")
MAX_PRICE_LABELS = (
    "Maximum Acquisition Price", "Max Acquisition Price", "Max. Acquisition Price",
    "Maximum Purchase Price", "Max Purchase Price",
)
TIMELINE_LABELS = ("Timeline", "Timescale", "Project Duration", "Duration")
DESCRIPTION_LABELS = ("Description", "Overview", "Scope of Works", "Scope")

RISK_SECTION_LABELS = ("Risk Assessment", "Risk Analysis", "Key Risks", "Risks")
RISK_END_LABELS = ("Return on Investment", "ROI Summary", "Overall ROI", "Expected ROI")
RISK_NARRATIVE_LABELS = {
    "market": ("Market Risk", "Market Downturn"),
    "planning": ("Planning Risk", "Planning Permission Risk"),
    "construction": ("Construction Risk", "Build Risk", "Cost Overrun Risk"),
    "finance": ("Finance Risk", "Financing Risk", "Interest Rate Risk"),
}

ROI_LABELS = {
    "expected": ("Expected ROI", "Expected Return"),
    "risk_adjusted": ("Risk-Adjusted ROI", "Risk Adjusted ROI", "Risk-Adjusted Return", "Risk Adjusted Return"),
    "holding_period": ("Holding Period", "Hold Period", "Investment Period"),
}


# ============================================================================
# DERIVED VALUES
# ============================================================================

def reconcile_total(components: Dict[str, str], stated_total: str, default_total: str) -> str:
    """
    Total cost as the sum of the four components

    A stated total is only used when a component cannot be read as a number.
    """
    amounts = [parse_currency(value) for value in components.values()]
    if all(amount is not None for amount in amounts):
        computed = sum(amounts)
        stated = parse_currency(stated_total)
        if stated is not None and abs(stated - computed) > TOTAL_TOLERANCE:
            logger.debug(f"Stated total {stated_total} replaced by component sum {format_currency(computed)}")
        return format_currency(computed)
    return stated_total or default_total


def derive_profit(gdv: str, total: str, fallback_profit: str,
                  fallback_percentage: str) -> Tuple[str, str]:
    """
    Profit = GDV - total cost, profit percentage = profit / total cost

    Falls back to the literal strings when either operand is not numeric.
    """
    gdv_value = parse_currency(gdv)
    total_value = parse_currency(total)
    if gdv_value is None or total_value is None:
        return fallback_profit, fallback_percentage

    profit = gdv_value - total_value
    if total_value:
        percentage = format_percentage(profit / total_value)
    else:
        percentage = fallback_percentage
    return format_currency(profit), percentage


# ============================================================================
# RISKS
# ============================================================================

def _mitigation_text(narrative: str) -> str:
    match = re.search(r"\bmitigation\w*[ \t]*[:\-–][ \t]*(.+)", narrative, re.IGNORECASE)
    text = (match.group(1) if match else narrative).strip()
    if len(text) > MAX_MITIGATION_LENGTH:
        text = text[:MAX_MITIGATION_LENGTH - 3].rstrip() + "..."
    return text


def extract_risk_narratives(text: str) -> Dict[str, str]:
    """Market / planning / construction / finance narratives from the risk subsection"""
    risk_text = extract_section(text, RISK_SECTION_LABELS, RISK_END_LABELS)
    if not risk_text:
        return {}

    narratives = {}
    for category, labels in RISK_NARRATIVE_LABELS.items():
        narrative = extract_paragraph(risk_text, labels)
        if narrative:
            narratives[category] = narrative
    return narratives


def apply_risk_narratives(risks: List[Risk], narratives: Dict[str, str]) -> List[Risk]:
    """
    Override mitigation text of matching default risks, appending a risk
    for any category the scenario does not yet cover. Never removes a risk.
    """
    updated = [Risk(factor=r.factor, impact=r.impact, mitigation=r.mitigation) for r in risks]

    for category, narrative in narratives.items():
        mitigation = _mitigation_text(narrative)
        if not mitigation:
            continue

        matched = [risk for risk in updated if RISK_CATEGORIES.get(risk.factor) == category]
        for risk in matched:
            risk.mitigation = mitigation
        if not matched:
            updated.append(Risk(
                factor=CATEGORY_FACTORS[category],
                impact=extract_level(narrative),
                mitigation=mitigation,
            ))
    return updated


# ============================================================================
# SCENARIOS
# ============================================================================

def feasibility_text(text: str) -> str:
    """The feasibility section of a report, or the whole text when it has no such heading"""
    section = extract_section(text, FEASIBILITY_LABELS, FEASIBILITY_END_LABELS, matchers=HEADING_MATCHERS)
    return section or text


def _scenario_blocks(feasibility: str) -> Tuple[str, str]:
    second_start = locate_label(feasibility, SCENARIO_LABELS[EXTEND_AND_CONVERT])
    first = extract_section(feasibility, SCENARIO_LABELS[LIGHT_REFURBISHMENT], SCENARIO_LABELS[EXTEND_AND_CONVERT])
    if not first:
        first = feasibility[:second_start[0]] if second_start else feasibility

    second = extract_section(
        feasibility, SCENARIO_LABELS[EXTEND_AND_CONVERT], RISK_SECTION_LABELS[:3] + RISK_END_LABELS
    )
    return first, second


def build_scenario(block: str, default: Scenario) -> Scenario:
    """Extract one scenario, falling back field by field to the default"""
    components = {
        name: Extraction.of(extract_currency(block, labels)).or_else(getattr(default.costs, name))
        for name, labels in COST_LABELS.items()
    }
    total = reconcile_total(components, extract_currency(block, TOTAL_LABELS), default.costs.total)
    gdv = Extraction.of(extract_currency(block, GDV_LABELS)).or_else(default.gdv)

    profit, profit_percentage = derive_profit(
        gdv,
        total,
        Extraction.of(extract_currency(block, PROFIT_LABELS)).or_else(default.profit),
        Extraction.of(extract_percentage(block, PROFIT_PERCENTAGE_LABELS)).or_else(default.profit_percentage),
    )

    timeline = (
        Extraction.of(extract_field(block, TIMELINE_LABELS))
        .filter(lambda value: len(value) <= MAX_TIMELINE_LENGTH)
        .or_else(default.timeline)
    )

    return Scenario(
        name=default.name,
        description=Extraction.of(extract_field(block, DESCRIPTION_LABELS)).or_else(default.description),
        costs=ScenarioCosts(total=total, **components),
        gdv=gdv,
        profit=profit,
        profit_percentage=profit_percentage,
        max_acquisition_price=Extraction.of(extract_currency(block, MAX_PRICE_LABELS)).or_else(
            default.max_acquisition_price
        ),
        timeline=timeline,
        risks=[Risk(factor=r.factor, impact=r.impact, mitigation=r.mitigation) for r in default.risks],
    )


def build_roi(text: str, scenarios: List[Scenario], default: Roi) -> Roi:
    percentages = [p for p in (parse_percentage(s.profit_percentage) for s in scenarios) if p is not None]
    derived_expected = format_percentage(max(percentages)) if percentages else default.expected

    expected = Extraction.of(extract_percentage(text, ROI_LABELS["expected"])).or_else(derived_expected)

    expected_ratio = parse_percentage(expected)
    derived_adjusted = (
        format_percentage(expected_ratio * RISK_ADJUSTMENT_FACTOR)
        if expected_ratio is not None else default.risk_adjusted
    )
    risk_adjusted = Extraction.of(extract_percentage(text, ROI_LABELS["risk_adjusted"])).or_else(derived_adjusted)

    holding_period = (
        Extraction.of(extract_field(text, ROI_LABELS["holding_period"]))
        .filter(lambda value: len(value) <= MAX_TIMELINE_LENGTH)
        .or_else(default.holding_period)
    )
    return Roi(expected=expected, risk_adjusted=risk_adjusted, holding_period=holding_period)


def build_scenarios(full_text: str,
                    defaults: Optional[FeasibilityStudy] = None) -> Tuple[List[Scenario], Roi]:
    """
    Build exactly two scenarios (light refurbishment, extend & convert) and the ROI summary

    Args:
        full_text: Whole report text; the feasibility section is located inside it
        defaults: Default feasibility study supplying per-field fallbacks

    Returns:
        ([light refurbishment scenario, extend & convert scenario], roi)
    """
    defaults = defaults or default_analysis().feasibility_study
    text = feasibility_text(full_text or "")

    first_block, second_block = _scenario_blocks(text)
    scenarios = [
        build_scenario(first_block, defaults.scenarios[0]),
        build_scenario(second_block, defaults.scenarios[1]),
    ]

    narratives = extract_risk_narratives(text)
    if narratives:
        logger.debug(f"Risk narratives found for: {', '.join(sorted(narratives))}")
        for scenario in scenarios:
            scenario.risks = apply_risk_narratives(scenario.risks, narratives)

    return scenarios, build_roi(text, scenarios, defaults.roi)
