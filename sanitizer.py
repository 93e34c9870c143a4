"""
Post-Extraction Sanitizer
Independent repair rules applied once to an assembled analysis before it
is returned. Each rule works in place on a private copy of the record.
"""

import re
import copy
import logging
from typing import Any, List, Optional

from analysis_models import LEVELS, Scenario, StructuredAnalysis
from fallback_data import (
    DEFAULT_DEVELOPMENT_POTENTIAL,
    DEFAULT_INVESTMENT_STRATEGY,
    DEFAULT_PLANNING_CONSTRAINTS,
    DEFAULT_PLANNING_OPPORTUNITIES,
    DEFAULT_RECOMMENDED_ACTION,
    DEFAULT_USE_CLASS,
    default_analysis,
)
from feasibility import derive_profit, reconcile_total
from report_extraction_engine import (
    CURRENCY_SYMBOL,
    ensure_currency,
    extract_level,
    filter_list_items,
    format_currency,
    format_percentage,
    is_boilerplate,
    parse_currency,
    single_amount,
)

logger = logging.getLogger(__name__)

# Maximum length per short-label field of the executive summary
SHORT_FIELD_BUDGETS = {
    "current_use_class": 40,
    "development_potential": 50,
    "recommended_action": 150,
    "investment_strategy": 40,
}

SHORT_FIELD_DEFAULTS = {
    "current_use_class": DEFAULT_USE_CLASS,
    "development_potential": DEFAULT_DEVELOPMENT_POTENTIAL,
    "recommended_action": DEFAULT_RECOMMENDED_ACTION,
    "investment_strategy": DEFAULT_INVESTMENT_STRATEGY,
}

# A negative profit with more digits than this is treated as a parsing artefact
MAX_PLAUSIBLE_LOSS_DIGITS = 6

ELLIPSIS = "..."

_HEADING_LEAK = re.compile(r"^\s*(?:#|\*\*|__|={2,}|-{2,}|\d+\.\s|[A-Z][A-Za-z ]{2,40}:\s*$)")
_NEGATIVE_AMOUNT = re.compile(r"^\s*(?:-[ \t]*£|£[ \t]*-|-)")

_SCENARIO_CURRENCY_FIELDS = ("gdv", "profit", "max_acquisition_price")
_COST_FIELDS = ("acquisition", "refurbishment", "financing", "selling", "total")


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _currency_or_default(value: Any, default: str) -> str:
    prefixed = single_amount(ensure_currency(_text(value)))
    if prefixed and prefixed.startswith(CURRENCY_SYMBOL):
        return prefixed
    logger.debug(f"Currency value {value!r} replaced by default {default}")
    return default


# ============================================================================
# RULE 1: CURRENCY PREFIXING
# ============================================================================

def prefix_currency_fields(record: StructuredAnalysis, defaults: StructuredAnalysis) -> None:
    """Give every currency field a leading symbol, or its default when it has no amount"""
    summary, default_summary = record.executive_summary, defaults.executive_summary
    for name in ("current_valuation", "refurbishment_costs", "gdv"):
        setattr(summary, name, _currency_or_default(getattr(summary, name), getattr(default_summary, name)))

    valuation, default_valuation = record.property_appraisal.valuation, defaults.property_appraisal.valuation
    for name in ("market_value", "value_uplift_potential"):
        setattr(valuation, name, _currency_or_default(getattr(valuation, name), getattr(default_valuation, name)))

    rates, default_rates = valuation.refurbishment_costs, default_valuation.refurbishment_costs
    for name in ("light", "conversion", "new_build", "hmo_conversion"):
        setattr(rates, name, _currency_or_default(getattr(rates, name), getattr(default_rates, name)))

    comparables = []
    for comparable in record.property_appraisal.comparables:
        price = single_amount(ensure_currency(_text(comparable.price)))
        if price.startswith(CURRENCY_SYMBOL):
            comparable.price = price
            comparables.append(comparable)
    record.property_appraisal.comparables = comparables or copy.deepcopy(defaults.property_appraisal.comparables)

    for scenario, default in zip(record.feasibility_study.scenarios, defaults.feasibility_study.scenarios):
        _prefix_scenario(scenario, default)


def _prefix_scenario(scenario: Scenario, default: Scenario) -> None:
    replaced = False
    for name in _COST_FIELDS:
        value = getattr(scenario.costs, name)
        fixed = _currency_or_default(value, getattr(default.costs, name))
        replaced = replaced or fixed != ensure_currency(_text(value))
        setattr(scenario.costs, name, fixed)

    for name in _SCENARIO_CURRENCY_FIELDS:
        value = getattr(scenario, name)
        fixed = _currency_or_default(value, getattr(default, name))
        replaced = replaced or fixed != ensure_currency(_text(value))
        setattr(scenario, name, fixed)

    if replaced:
        # Defaults were mixed in, so totals and profit have to be derived again
        components = {name: getattr(scenario.costs, name) for name in _COST_FIELDS[:-1]}
        scenario.costs.total = reconcile_total(components, scenario.costs.total, default.costs.total)
        scenario.profit, scenario.profit_percentage = derive_profit(
            scenario.gdv, scenario.costs.total, scenario.profit, scenario.profit_percentage
        )


# ============================================================================
# RULE 2: IMPLAUSIBLE LOSS REPAIR
# ============================================================================

def is_implausible_loss(profit: str) -> bool:
    """Negative amount whose digit count exceeds MAX_PLAUSIBLE_LOSS_DIGITS"""
    if not _NEGATIVE_AMOUNT.match(profit or ""):
        return False
    return len(re.sub(r"\D", "", profit)) > MAX_PLAUSIBLE_LOSS_DIGITS


def repair_scenario_profit(scenario: Scenario) -> None:
    """Recompute profit = gdv - total for an implausible negative profit"""
    if not is_implausible_loss(scenario.profit):
        return

    gdv = parse_currency(scenario.gdv)
    total = parse_currency(scenario.costs.total)
    if gdv is None or total is None:
        return

    profit = gdv - total
    logger.debug(f"Profit {scenario.profit} for '{scenario.name}' recomputed as {format_currency(profit)}")
    scenario.profit = format_currency(profit)
    if total:
        scenario.profit_percentage = format_percentage(profit / total)


def repair_profits(record: StructuredAnalysis) -> None:
    for scenario in record.feasibility_study.scenarios:
        repair_scenario_profit(scenario)


# ============================================================================
# RULE 3: SHORT FIELD BUDGETS
# ============================================================================

def truncate(value: str, budget: int) -> str:
    return value[:budget - len(ELLIPSIS)].rstrip() + ELLIPSIS


def enforce_short_fields(record: StructuredAnalysis) -> None:
    """Oversized short labels fall back to their default; development potential is truncated instead"""
    summary = record.executive_summary
    for name, budget in SHORT_FIELD_BUDGETS.items():
        value = _text(getattr(summary, name)).strip()
        if not value:
            setattr(summary, name, SHORT_FIELD_DEFAULTS[name])
        elif len(value) > budget:
            if name == "development_potential":
                setattr(summary, name, truncate(value, budget))
            else:
                logger.debug(f"Oversized {name} ({len(value)} chars) replaced by default")
                setattr(summary, name, SHORT_FIELD_DEFAULTS[name])


# ============================================================================
# RULE 4: HEADING LEAK
# ============================================================================

def repair_heading_leak(record: StructuredAnalysis) -> None:
    """A recommended action that is a heading, or names one, falls back to the default"""
    summary = record.executive_summary
    if _HEADING_LEAK.match(summary.recommended_action) or is_boilerplate(summary.recommended_action):
        logger.debug(f"Recommended action looked like a heading: {summary.recommended_action!r}")
        summary.recommended_action = DEFAULT_RECOMMENDED_ACTION


# ============================================================================
# RULE 5: LIST BOILERPLATE
# ============================================================================

def _filtered_or_default(items: Any, default: List[str]) -> List[str]:
    cleaned = filter_list_items(items if isinstance(items, list) else [])
    return cleaned or list(default)


def filter_planning_lists(record: StructuredAnalysis) -> None:
    summary = record.executive_summary
    summary.planning_opportunities = _filtered_or_default(
        summary.planning_opportunities, DEFAULT_PLANNING_OPPORTUNITIES
    )
    summary.planning_constraints = _filtered_or_default(
        summary.planning_constraints, DEFAULT_PLANNING_CONSTRAINTS
    )


# ============================================================================
# RULE 6: LEVEL ENUMERATION
# ============================================================================

def _level(value: Any) -> str:
    text = _text(value)
    return text if text in LEVELS else extract_level(text)


def close_levels(record: StructuredAnalysis) -> None:
    """Force rating, impact and feasibility values onto High / Medium / Low"""
    for comparable in record.property_appraisal.comparables:
        comparable.rating = _level(comparable.rating)

    for scenario in record.feasibility_study.scenarios:
        for risk in scenario.risks:
            risk.impact = _level(risk.impact)

    potentials = record.planning_opportunities.potentials
    for entry in potentials.extensions + potentials.conversions + potentials.change_of_use:
        entry.feasibility = _level(entry.feasibility)


def sanitize(record: StructuredAnalysis, defaults: Optional[StructuredAnalysis] = None) -> StructuredAnalysis:
    """
    Apply every repair rule, in order, to a copy of the record

    Args:
        record: Freshly assembled analysis
        defaults: Default analysis used for per-field fallbacks

    Returns:
        Sanitized copy; the input record is left untouched
    """
    defaults = defaults or default_analysis()
    result = copy.deepcopy(record)

    prefix_currency_fields(result, defaults)
    repair_profits(result)
    enforce_short_fields(result)
    repair_heading_leak(result)
    filter_planning_lists(result)
    close_levels(result)
    return result
