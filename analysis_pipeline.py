"""
Property Analysis Pipeline
Turns a free-text property report into a fully populated StructuredAnalysis,
and runs the provider request / mock-mode flow around it
"""

import re
import sys
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from analysis_models import (
    ChangeOfUse,
    DevelopmentPotential,
    ExecutiveSummary,
    FeasibilityStudy,
    LocalAuthority,
    PermittedDevelopment,
    PlanningOpportunities,
    Potentials,
    PropertyAppraisal,
    RefurbishmentRates,
    StructuredAnalysis,
    UseClass,
    Valuation,
)
from comparables_parser import find_comparables_section, parse_comparables
from fallback_data import default_analysis
from feasibility import build_scenarios
import llm_provider
from report_extraction_engine import (
    HEADING_MATCHERS,
    LABEL_MATCHERS,
    Extraction,
    currency_phrase,
    extract_currency,
    extract_field,
    extract_level,
    extract_lines,
    extract_list,
    extract_paragraph,
    extract_percentage,
    extract_section,
    filter_list_items,
    locate_label,
    normalize,
    split_lines,
)
from sanitizer import sanitize
from settings import ApiConfig, configure_logging

logger = logging.getLogger(__name__)

# Sub-sections are only recognised by their label form, never by a loose mention
SUBSECTION_MATCHERS = LABEL_MATCHERS[:3]

MAX_POTENTIALS = 6
MAX_TYPE_LENGTH = 60

# ============================================================================
# SECTION & FIELD LABELS
# ============================================================================

SECTION_HEADINGS = (
    ("executive_summary", ("Executive Summary",)),
    ("property_appraisal", ("Property Appraisal", "Property Analysis")),
    ("feasibility_study", ("Feasibility Study", "Feasibility Analysis")),
    ("planning_opportunities", ("Planning Opportunities", "Planning Analysis")),
)

SUMMARY_LABELS = {
    "current_use_class": ("Current Use Class", "Use Class"),
    "development_potential": ("Development Potential",),
    "planning_opportunities": ("Planning Opportunities", "Opportunities"),
    "planning_constraints": ("Planning Constraints", "Constraints"),
    "recommended_action": ("Recommended Action", "Recommendation"),
    "current_valuation": ("Current Valuation", "Current Value", "Market Value"),
    "refurbishment_costs": ("Refurbishment Costs", "Refurbishment Budget"),
    "gdv": ("Gross Development Value", "GDV"),
    "profit_margin": ("Profit Margin", "Profit on Cost"),
    "roi": ("ROI", "Return on Investment"),
    "investment_strategy": ("Investment Strategy", "Strategy"),
    "rationale": ("Rationale", "Investment Rationale"),
}

APPRAISAL_LABELS = {
    "use_class": ("Current Use Class", "Use Class", "Current Use"),
    "source": ("Source", "Data Source"),
    "verification": ("Verification", "Verified"),
    "market_value": ("Market Value", "Current Market Value", "Estimated Value", "Valuation"),
    "value_uplift_potential": ("Value Uplift Potential", "Value Uplift", "Uplift Potential"),
    "light": ("Light Refurbishment",),
    "conversion": ("Conversion", "Conversions"),
    "new_build": ("New Build", "New-Build"),
    "hmo_conversion": ("HMO Conversion", "HMO"),
}

PERMITTED_DEVELOPMENT_LABELS = ("Permitted Development Rights", "Permitted Development")
LOCAL_AUTHORITY_LABELS = ("Local Authority Considerations", "Local Authority", "Local Planning Authority")
EXTENSION_LABELS = ("Extensions", "Extension Potential")
CONVERSION_LABELS = ("Conversions", "Conversion Potential")
CHANGE_OF_USE_LABELS = ("Change of Use", "Change-of-Use")

_TYPE_SPLIT = re.compile(r"[ \t]*(?::|[ \t]-[ \t]|[ \t]–[ \t]|\()[ \t]*")
_CHANGE_SPLIT = re.compile(r"[ \t]*(?::|[ \t]-[ \t]|[ \t]–[ \t])[ \t]*")
_CHANGE = re.compile(r"^(?:from[ \t]+)?(?P<from>.+?)[ \t]+(?:to|→|->)[ \t]+(?P<to>.+)$", re.IGNORECASE)
_LEVEL_PHRASE = re.compile(
    r"^[\W_]*(?:feasibility[\W_]*)?(?:high|medium|moderate|low|strong|good|limited|poor)\b"
    r"(?:[ \t]+feasibility)?[\s).:;,\-–]*",
    re.IGNORECASE,
)


@dataclass
class AnalysisOutcome:
    """Result of one property search"""

    success: bool
    data: Optional[StructuredAnalysis] = None
    error: Optional[str] = None
    mock: bool = False


# ============================================================================
# SECTION SPLITTING
# ============================================================================

def split_sections(text: str) -> Dict[str, str]:
    """
    Slice a report into its four top-level sections

    Headings are located in order, each search starting after the previous
    heading, so a field sharing a heading's name earlier in the report is
    not mistaken for it. Heading forms (numbered, or the label alone on its
    line) win over a "Label: value" field line of the same name. Sections
    that cannot be located map to "".
    """
    located = []
    pos = 0
    for key, labels in SECTION_HEADINGS:
        span = locate_label(text, labels, pos, HEADING_MATCHERS)
        if span:
            located.append((key, span))
            pos = span[1]

    sections = {key: "" for key, _ in SECTION_HEADINGS}
    for index, (key, span) in enumerate(located):
        end = located[index + 1][1][0] if index + 1 < len(located) else len(text)
        sections[key] = text[span[1]:end].strip()
    return sections


# ============================================================================
# SECTION BUILDERS
# ============================================================================

def build_executive_summary(section: str, defaults: ExecutiveSummary) -> ExecutiveSummary:
    def field(name):
        return Extraction.of(extract_field(section, SUMMARY_LABELS[name])).or_else(getattr(defaults, name))

    def currency(name):
        return Extraction.of(extract_currency(section, SUMMARY_LABELS[name])).or_else(getattr(defaults, name))

    def percentage(name):
        return Extraction.of(extract_percentage(section, SUMMARY_LABELS[name])).or_else(getattr(defaults, name))

    def items(name):
        return Extraction.of(extract_list(section, SUMMARY_LABELS[name])).or_else(list(getattr(defaults, name)))

    return ExecutiveSummary(
        current_use_class=field("current_use_class"),
        development_potential=field("development_potential"),
        planning_opportunities=items("planning_opportunities"),
        planning_constraints=items("planning_constraints"),
        recommended_action=field("recommended_action"),
        current_valuation=currency("current_valuation"),
        refurbishment_costs=currency("refurbishment_costs"),
        gdv=currency("gdv"),
        profit_margin=percentage("profit_margin"),
        roi=percentage("roi"),
        investment_strategy=field("investment_strategy"),
        rationale=Extraction.of(extract_paragraph(section, SUMMARY_LABELS["rationale"])).or_else(defaults.rationale),
        property_image=defaults.property_image,
    )


def build_property_appraisal(section: str, defaults: PropertyAppraisal) -> PropertyAppraisal:
    """Use class, valuation, refurbishment rates and comparables"""
    default_valuation = defaults.valuation
    default_rates = default_valuation.refurbishment_costs

    def field(name, default):
        return Extraction.of(extract_field(section, APPRAISAL_LABELS[name])).or_else(default)

    def rate(name):
        return (
            Extraction.of(extract_field(section, APPRAISAL_LABELS[name]))
            .map(currency_phrase)
            .or_else(getattr(default_rates, name))
        )

    use_class = UseClass(
        current=field("use_class", defaults.use_class.current),
        source=field("source", defaults.use_class.source),
        verification=field("verification", defaults.use_class.verification),
    )

    valuation = Valuation(
        market_value=Extraction.of(extract_currency(section, APPRAISAL_LABELS["market_value"])).or_else(
            default_valuation.market_value
        ),
        value_uplift_potential=(
            Extraction.of(extract_field(section, APPRAISAL_LABELS["value_uplift_potential"]))
            .map(currency_phrase)
            .or_else(default_valuation.value_uplift_potential)
        ),
        refurbishment_costs=RefurbishmentRates(
            light=rate("light"),
            conversion=rate("conversion"),
            new_build=rate("new_build"),
            hmo_conversion=rate("hmo_conversion"),
        ),
    )

    comparables_text = find_comparables_section(section) or section
    comparables = Extraction.of(parse_comparables(comparables_text)).or_else(defaults.comparables)

    return PropertyAppraisal(use_class=use_class, valuation=valuation, comparables=comparables)


def extract_items(text: str, labels) -> List[str]:
    """
    Items following a label: one per line for a bulleted block, or split
    on separators when the label is followed by a single inline list
    """
    lines = extract_lines(text, labels)
    if len(lines) == 1:
        return extract_list(text, labels)
    return filter_list_items(lines)


def _notes(rest: str) -> str:
    return _LEVEL_PHRASE.sub("", rest).strip()


def parse_potentials(text: str) -> List[DevelopmentPotential]:
    """One DevelopmentPotential per "Type: High feasibility. Notes" style line"""
    potentials = []
    for line in split_lines(text):
        parts = _TYPE_SPLIT.split(line, 1)
        kind = parts[0].strip(" .;")
        rest = parts[1] if len(parts) > 1 else ""
        if not kind or len(kind) > MAX_TYPE_LENGTH or not filter_list_items([kind]):
            continue
        potentials.append(DevelopmentPotential(
            type=kind,
            feasibility=extract_level(rest or line),
            notes=_notes(rest),
        ))
    return potentials[:MAX_POTENTIALS]


def parse_changes_of_use(text: str) -> List[ChangeOfUse]:
    """One ChangeOfUse per "From to To: Level feasibility. Notes" style line"""
    changes = []
    for line in split_lines(text):
        parts = _CHANGE_SPLIT.split(line, 1)
        change = _CHANGE.match(parts[0].strip())
        if not change:
            continue
        rest = parts[1] if len(parts) > 1 else ""
        changes.append(ChangeOfUse(
            from_use=change.group("from").strip(" ."),
            to_use=change.group("to").strip(" ."),
            feasibility=extract_level(rest or line),
            notes=_notes(rest),
        ))
    return changes[:MAX_POTENTIALS]


def build_planning_opportunities(section: str, defaults: PlanningOpportunities) -> PlanningOpportunities:
    potential_labels = EXTENSION_LABELS + CONVERSION_LABELS + CHANGE_OF_USE_LABELS

    permitted_text = extract_section(
        section, PERMITTED_DEVELOPMENT_LABELS, LOCAL_AUTHORITY_LABELS + potential_labels,
        matchers=SUBSECTION_MATCHERS,
    )
    authority_text = extract_section(
        section, LOCAL_AUTHORITY_LABELS, potential_labels, matchers=SUBSECTION_MATCHERS,
    )
    extensions_text = extract_section(
        section, EXTENSION_LABELS, CONVERSION_LABELS + CHANGE_OF_USE_LABELS, matchers=SUBSECTION_MATCHERS,
    )
    conversions_text = extract_section(
        section, CONVERSION_LABELS, CHANGE_OF_USE_LABELS + EXTENSION_LABELS, matchers=SUBSECTION_MATCHERS,
    )
    change_text = extract_section(
        section, CHANGE_OF_USE_LABELS, EXTENSION_LABELS + CONVERSION_LABELS, matchers=SUBSECTION_MATCHERS,
    )

    def lines(text, labels, default):
        return Extraction.of(extract_items(text, labels)).or_else(default)

    def paragraph(text, labels, default):
        return Extraction.of(extract_paragraph(text, labels)).or_else(default)

    pd_defaults = defaults.permitted_development
    la_defaults = defaults.local_authority
    potential_defaults = defaults.potentials

    return PlanningOpportunities(
        permitted_development=PermittedDevelopment(
            available=lines(permitted_text, ("Available", "Available Rights", "Permitted"), pd_defaults.available),
            restricted=lines(permitted_text, ("Restricted", "Not Permitted"), pd_defaults.restricted),
            notes=paragraph(permitted_text, ("Notes", "Note"), pd_defaults.notes),
        ),
        local_authority=LocalAuthority(
            restrictions=lines(authority_text, ("Restrictions", "Key Restrictions"), la_defaults.restrictions),
            policies=lines(authority_text, ("Policies", "Relevant Policies", "Local Policies"), la_defaults.policies),
            upcoming=paragraph(authority_text, ("Upcoming Changes", "Upcoming", "Future Changes"), la_defaults.upcoming),
        ),
        potentials=Potentials(
            extensions=Extraction.of(parse_potentials(extensions_text)).or_else(potential_defaults.extensions),
            conversions=Extraction.of(parse_potentials(conversions_text)).or_else(potential_defaults.conversions),
            change_of_use=Extraction.of(parse_changes_of_use(change_text)).or_else(potential_defaults.change_of_use),
        ),
    )


# ============================================================================
# ENTRY POINTS
# ============================================================================

def _assemble(text: str, defaults: StructuredAnalysis) -> StructuredAnalysis:
    sections = split_sections(text)
    if not any(sections.values()):
        # No headings at all: search the whole report for every field
        logger.debug("No section headings found, searching the full report")
        sections = {key: text for key in sections}

    scenarios, roi = build_scenarios(text, defaults.feasibility_study)

    return StructuredAnalysis(
        executive_summary=build_executive_summary(sections["executive_summary"], defaults.executive_summary),
        property_appraisal=build_property_appraisal(sections["property_appraisal"], defaults.property_appraisal),
        feasibility_study=FeasibilityStudy(scenarios=scenarios, roi=roi),
        planning_opportunities=build_planning_opportunities(
            sections["planning_opportunities"], defaults.planning_opportunities
        ),
    )


def analyze_report(raw_text: Optional[str], address: str = "") -> StructuredAnalysis:
    """
    Parse a completion into a shape-valid analysis

    Never raises: empty input or any parse failure yields the default
    analysis for the address.

    Args:
        raw_text: Completion text
        address: Requested address, used to vary the default record

    Returns:
        Sanitized StructuredAnalysis
    """
    defaults = default_analysis(address)
    if not raw_text or not raw_text.strip():
        logger.info(f"Empty completion for '{address}', using default analysis")
        return sanitize(default_analysis(address), defaults)

    try:
        record = _assemble(normalize(raw_text), default_analysis(address))
        return sanitize(record, defaults)
    except Exception as e:
        logger.warning(f"Could not parse completion for '{address}', using default analysis: {e}", exc_info=True)
        return sanitize(default_analysis(address), defaults)


def search_property(address: str, config: Optional[ApiConfig] = None,
                    complete: Optional[Callable[..., str]] = None) -> AnalysisOutcome:
    """
    Analyze a property address

    Without a credential (or with the real API switched off) the default
    analysis is returned as a mock result. Otherwise the provider is asked
    for a report, which is parsed into a StructuredAnalysis.

    Args:
        address: Property address
        config: Provider settings, read once for the whole call
        complete: Completion function; llm_provider.complete when omitted

    Returns:
        AnalysisOutcome; success is False only when the provider call failed
    """
    config = config or ApiConfig.from_env()
    logger.info(f"Starting analysis for '{address}'")

    if not config.use_real_api or not config.has_credential():
        logger.info("No provider credential configured, returning mock analysis")
        return AnalysisOutcome(success=True, data=analyze_report("", address), mock=True)

    complete = complete or llm_provider.complete

    try:
        text = complete(
            llm_provider.SYSTEM_PROMPT,
            llm_provider.build_user_prompt(address),
            config.get_active_model(),
            config.max_tokens,
            config,
        )
    except Exception as e:
        logger.error(f"Property analysis request failed: {e}")
        return AnalysisOutcome(success=False, error=str(e))

    return AnalysisOutcome(success=True, data=analyze_report(text, address))


if __name__ == "__main__":
    configure_logging()
    if len(sys.argv) > 1 and sys.argv[1].endswith(".txt"):
        with open(sys.argv[1], encoding="utf-8") as f:
            result = analyze_report(f.read(), " ".join(sys.argv[2:]))
        print(result.to_json())
    else:
        outcome = search_property(" ".join(sys.argv[1:]) or "10 Test Street, London")
        if outcome.success:
            print(outcome.data.to_json())
        else:
            print(f"❌ Analysis failed: {outcome.error}")
            sys.exit(1)
