"""
Tests for the property analysis pipeline: section splitting, record
assembly, fallbacks and the mock / provider search flow
"""

import unittest
import random
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from analysis_models import LEVELS, StructuredAnalysis
from analysis_pipeline import (
    AnalysisOutcome,
    analyze_report,
    parse_changes_of_use,
    parse_potentials,
    search_property,
    split_sections,
)
from fallback_data import EXTEND_AND_CONVERT, LIGHT_REFURBISHMENT, default_analysis, default_potentials
from llm_provider import SYSTEM_PROMPT, CompletionError
from report_extraction_engine import is_boilerplate, normalize, parse_currency
from settings import ApiConfig


SAMPLE_REPORT = """
Comprehensive Property Report: 10 Test Street, London

## 1. Executive Summary
**Current Use Class:** C3 Residential
**Development Potential:** High
Planning Opportunities: Loft conversion, Rear extension, Garage conversion
Planning Constraints: Conservation Area, Article 4 Direction
Recommended Action: Acquire below £650,000 and extend to add a fourth bedroom
Current Valuation: £680,000
Refurbishment Costs: £110,000
Gross Development Value: £940,000
Profit Margin: 24.5%
ROI: 140%
Investment Strategy: Extend & Sell
Rationale: Strong family demand in the area.
Extended homes nearby sell at a premium.

## 2. Property Appraisal
Use Class: C3 Residential (Single Family Dwelling)
Source: Land Registry
Verification: Planning portal search
Market Value: £680,000
Value Uplift Potential: £260,000 (38% increase)
Light Refurbishment: £55-70 per sq ft
Conversion: £175 per sq ft
New Build: £230 per sq ft
HMO Conversion: £28,000 per room

Comparable Analysis:
Recently Sold:
- 14 Test Street | £715,000 | Feb 2024 | Semi-detached, 3 bed | 1,400 sq ft | High
- 22 Oak Road | £640,000 | Nov 2023 | Terraced, 3 bed | 1,250 sq ft | Medium
Currently Listed:
- 5 Elm Avenue | £875,000 | Mar 2024 | Detached, 4 bed | 1,900 sq ft | Low

## 3. Feasibility Study

Scenario 1: Light Refurbishment & Sell
Acquisition Cost: £650,000
Refurbishment Cost: £70,000
Financing: £20,000
Selling Costs: £14,000
Total Cost: £754,000
Gross Development Value: £800,000
Profit: £46,000
Maximum Acquisition Price: £620,000
Timeline: 4-6 months

Scenario 2: Extend & Convert
Acquisition Cost: £650,000
Refurbishment Cost: £190,000
Financing: £40,000
Selling Costs: £18,000
Total Cost: £898,000
Gross Development Value: £1,150,000
Profit: £252,000
Maximum Acquisition Price: £690,000
Timeline: 10-12 months

Risk Assessment:
Market Risk: Medium. Mitigation: price conservatively and keep a 10% contingency.
Planning Risk: High. Mitigation: submit a pre-application enquiry.

Expected ROI: 28.1%
Risk-Adjusted ROI: 23.4%
Holding Period: 12 months

## 4. Planning Opportunities
Permitted Development:
Available: Single-storey rear extension, Loft conversion with rear dormer
Restricted: Side extensions
Notes: Conservation area limits roof alterations.
Local Authority:
Restrictions: Conservation Area
Policies: Policy H4 supports extensions
Upcoming Changes: Local plan review due next year.
Extensions:
- Rear Extension: High feasibility. Likely approved under permitted development.
Change of Use:
- Single Family Home to HMO: Low feasibility. Article 4 Direction applies.
"""

ODD_INPUTS = [
    "I'm sorry, I cannot provide a property analysis for that address.",
    "GDV: £££\nProfit: -£99,999,999\nTotal Cost: lots",
    "1. Executive Summary\n2. Property Appraisal\n3. Feasibility Study\n4. Planning Opportunities",
    "Recommended Action:\n## 2. Property Appraisal",
    "Planning Opportunities: Here is the list, As an AI language model, Summary",
    "Comparable Analysis:\nNo recent sales found.",
    "**" * 40,
    "Change of Use:\n- nothing to report",
    "Current Valuation: £675,000, slightly below asking\nAcquisition Cost: £675,000, including stamp duty",
    "Light Refurbishment: £60 - £75 per sq ft\nValue Uplift Potential: £275,000 (from £675,000 to £950,000)",
]

PROSE_REPORT = """
Current Valuation: £675,000, slightly below asking
Acquisition Cost: £675,000, including stamp duty
Light Refurbishment: £60 - £75 per sq ft
Value Uplift Potential: £275,000 (from £675,000 to £950,000)
HMO Conversion: £30,000 per room or £25,000 per studio
"""

FIELD_LINE_REPORT = """
1. Executive Summary
Planning Opportunities: Rear extension
Planning Constraints: Listed building
Recommended Action: Negotiate a reduction before exchange

4. Planning Opportunities
Extensions:
- Rear Extension: Medium feasibility. Listed building consent required.
"""


def _leaves(value, path="root"):
    """Yield (path, leaf) for every non-container value in a plain dict"""
    if isinstance(value, dict):
        for key, item in value.items():
            yield from _leaves(item, f"{path}.{key}")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield from _leaves(item, f"{path}[{index}]")
    else:
        yield path, value


class InvariantsMixin:
    """Shape checks every analysis must pass, whatever the input"""

    def assert_currency(self, value):
        self.assertTrue(value.startswith("£"), value)
        self.assertEqual(value.count("£"), 1, value)

    def assert_invariants(self, record: StructuredAnalysis):
        self.assertIsInstance(record, StructuredAnalysis)

        for path, leaf in _leaves(record.to_dict()):
            self.assertIsInstance(leaf, str, path)

        summary = record.executive_summary
        for value in (summary.current_valuation, summary.refurbishment_costs, summary.gdv):
            self.assert_currency(value)

        valuation = record.property_appraisal.valuation
        rates = valuation.refurbishment_costs
        for value in (valuation.market_value, valuation.value_uplift_potential,
                      rates.light, rates.conversion, rates.new_build, rates.hmo_conversion):
            self.assert_currency(value)

        self.assertTrue(record.property_appraisal.comparables)
        for comparable in record.property_appraisal.comparables:
            self.assert_currency(comparable.price)
            self.assertIn(comparable.rating, LEVELS)

        for items in (summary.planning_opportunities, summary.planning_constraints):
            self.assertTrue(items)
            for item in items:
                self.assertFalse(is_boilerplate(item), item)

        scenarios = record.feasibility_study.scenarios
        self.assertEqual([s.name for s in scenarios], [LIGHT_REFURBISHMENT, EXTEND_AND_CONVERT])
        for scenario in scenarios:
            costs = scenario.costs
            for value in (costs.acquisition, costs.refurbishment, costs.financing, costs.selling, costs.total,
                          scenario.gdv, scenario.profit, scenario.max_acquisition_price):
                self.assert_currency(value)
            for risk in scenario.risks:
                self.assertIn(risk.impact, LEVELS)

        potentials = record.planning_opportunities.potentials
        for entry in potentials.extensions + potentials.conversions + potentials.change_of_use:
            self.assertIn(entry.feasibility, LEVELS)


class TestSplitSections(unittest.TestCase):

    def test_four_sections(self):
        sections = split_sections(normalize(SAMPLE_REPORT))
        self.assertTrue(sections["executive_summary"].startswith("Current Use Class: C3 Residential"))
        self.assertTrue(sections["property_appraisal"].startswith("Use Class:"))
        self.assertTrue(sections["feasibility_study"].startswith("Scenario 1"))
        self.assertTrue(sections["planning_opportunities"].startswith("Permitted Development:"))
        self.assertNotIn("Property Appraisal", sections["executive_summary"])

    def test_missing_sections_are_empty(self):
        sections = split_sections("No headings in this text")
        self.assertEqual(set(sections.values()), {""})

    def test_field_line_does_not_open_a_section(self):
        sections = split_sections(normalize(FIELD_LINE_REPORT))
        self.assertIn("Planning Constraints: Listed building", sections["executive_summary"])
        self.assertIn("Recommended Action:", sections["executive_summary"])
        self.assertTrue(sections["planning_opportunities"].startswith("Extensions:"))

    def test_heading_alone_on_its_line(self):
        text = "Executive Summary\nGDV: £900,000\n\nPlanning Opportunities:\nExtensions:\n- Loft"
        sections = split_sections(text)
        self.assertEqual(sections["executive_summary"], "GDV: £900,000")
        self.assertTrue(sections["planning_opportunities"].startswith("Extensions:"))


class TestAnalyzeReport(InvariantsMixin, unittest.TestCase):
    """Full reports through extraction and sanitizing"""

    def setUp(self):
        self.maxDiff = None
        self.record = analyze_report(SAMPLE_REPORT, "10 Test Street, London")

    def test_executive_summary(self):
        summary = self.record.executive_summary
        self.assertEqual(summary.current_use_class, "C3 Residential")
        self.assertEqual(summary.development_potential, "High")
        self.assertEqual(summary.planning_opportunities, ["Loft conversion", "Rear extension", "Garage conversion"])
        self.assertEqual(summary.planning_constraints, ["Conservation Area", "Article 4 Direction"])
        self.assertEqual(summary.recommended_action, "Acquire below £650,000 and extend to add a fourth bedroom")
        self.assertEqual(summary.current_valuation, "£680,000")
        self.assertEqual(summary.refurbishment_costs, "£110,000")
        self.assertEqual(summary.gdv, "£940,000")
        self.assertEqual(summary.profit_margin, "24.5%")
        self.assertEqual(summary.roi, "140%")
        self.assertEqual(summary.investment_strategy, "Extend & Sell")
        self.assertEqual(
            summary.rationale, "Strong family demand in the area. Extended homes nearby sell at a premium."
        )

    def test_property_appraisal(self):
        appraisal = self.record.property_appraisal
        self.assertEqual(appraisal.use_class.current, "C3 Residential (Single Family Dwelling)")
        self.assertEqual(appraisal.use_class.source, "Land Registry")
        self.assertEqual(appraisal.use_class.verification, "Planning portal search")
        self.assertEqual(appraisal.valuation.market_value, "£680,000")
        self.assertEqual(appraisal.valuation.value_uplift_potential, "£260,000 (38% increase)")

        rates = appraisal.valuation.refurbishment_costs
        self.assertEqual(rates.light, "£55-70 per sq ft")
        self.assertEqual(rates.conversion, "£175 per sq ft")
        self.assertEqual(rates.new_build, "£230 per sq ft")
        self.assertEqual(rates.hmo_conversion, "£28,000 per room")

    def test_comparables(self):
        comparables = self.record.property_appraisal.comparables
        self.assertEqual([c.address for c in comparables], ["14 Test Street", "22 Oak Road", "5 Elm Avenue"])
        self.assertEqual([c.rating for c in comparables], ["High", "Medium", "Low"])
        self.assertEqual(comparables[2].property_type, "Detached, 4 bedroom")

    def test_feasibility(self):
        first, second = self.record.feasibility_study.scenarios
        self.assertEqual(first.costs.total, "£754,000")
        self.assertEqual(first.profit, "£46,000")
        self.assertEqual(first.profit_percentage, "6.1%")
        self.assertEqual(second.costs.total, "£898,000")
        self.assertEqual(second.profit, "£252,000")
        self.assertEqual(second.profit_percentage, "28.1%")
        self.assertEqual(second.risks[0].mitigation, "submit a pre-application enquiry.")

        roi = self.record.feasibility_study.roi
        self.assertEqual((roi.expected, roi.risk_adjusted, roi.holding_period), ("28.1%", "23.4%", "12 months"))

    def test_profit_consistency(self):
        for scenario in self.record.feasibility_study.scenarios:
            with self.subTest(scenario=scenario.name):
                self.assertEqual(
                    parse_currency(scenario.profit),
                    parse_currency(scenario.gdv) - parse_currency(scenario.costs.total),
                )

    def test_planning_opportunities(self):
        planning = self.record.planning_opportunities
        self.assertEqual(
            planning.permitted_development.available,
            ["Single-storey rear extension", "Loft conversion with rear dormer"],
        )
        self.assertEqual(planning.permitted_development.restricted, ["Side extensions"])
        self.assertEqual(planning.permitted_development.notes, "Conservation area limits roof alterations.")
        self.assertEqual(planning.local_authority.restrictions, ["Conservation Area"])
        self.assertEqual(planning.local_authority.policies, ["Policy H4 supports extensions"])
        self.assertEqual(planning.local_authority.upcoming, "Local plan review due next year.")

    def test_potentials(self):
        potentials = self.record.planning_opportunities.potentials
        self.assertEqual(len(potentials.extensions), 1)
        extension = potentials.extensions[0]
        self.assertEqual(
            (extension.type, extension.feasibility, extension.notes),
            ("Rear Extension", "High", "Likely approved under permitted development."),
        )

        change = potentials.change_of_use[0]
        self.assertEqual((change.from_use, change.to_use, change.feasibility), ("Single Family Home", "HMO", "Low"))
        self.assertEqual(change.notes, "Article 4 Direction applies.")

        # No conversions listed, so the defaults stand
        self.assertEqual(potentials.conversions, default_potentials().conversions)

    def test_sample_passes_invariants(self):
        self.assert_invariants(self.record)

    def test_empty_input_gives_default(self):
        expected = default_analysis("10 Test Street").to_dict()
        for raw in ("", "   \n\t ", None):
            with self.subTest(raw=raw):
                self.assertEqual(analyze_report(raw, "10 Test Street").to_dict(), expected)

    def test_default_first_comparable_follows_address(self):
        record = analyze_report("", "3 Mill Lane, Leeds")
        self.assertEqual(record.property_appraisal.comparables[0].address, "12 Mill Lane")

    def test_odd_inputs(self):
        for raw in ODD_INPUTS:
            with self.subTest(raw=raw):
                self.assert_invariants(analyze_report(raw, "10 Test Street"))

    def test_heading_as_recommended_action_is_replaced(self):
        record = analyze_report("Recommended Action:\n## 2. Property Appraisal")
        self.assertNotIn("Property Appraisal", record.executive_summary.recommended_action)

    def test_random_fragments(self):
        lines = [line for line in SAMPLE_REPORT.split("\n") if line.strip()]
        rng = random.Random(7)
        for _ in range(60):
            raw = "\n".join(rng.sample(lines, rng.randint(1, len(lines))))
            with self.subTest(raw=raw):
                self.assert_invariants(analyze_report(raw, "10 Test Street"))

    def test_field_line_named_like_a_heading(self):
        record = analyze_report(FIELD_LINE_REPORT, "10 Test Street")
        summary = record.executive_summary
        self.assertEqual(summary.planning_opportunities, ["Rear extension"])
        self.assertEqual(summary.planning_constraints, ["Listed building"])
        self.assertEqual(summary.recommended_action, "Negotiate a reduction before exchange")

        extensions = record.planning_opportunities.potentials.extensions
        self.assertEqual(
            [(e.type, e.feasibility) for e in extensions], [("Rear Extension", "Medium")]
        )
        self.assert_invariants(record)


class TestProseAroundAmounts(InvariantsMixin, unittest.TestCase):
    """Amounts followed by commentary, ranges and second figures"""

    def setUp(self):
        self.maxDiff = None
        self.record = analyze_report(PROSE_REPORT, "10 Test Street")

    def test_trailing_comma_is_not_part_of_the_amount(self):
        self.assertEqual(self.record.executive_summary.current_valuation, "£675,000")
        self.assertEqual(self.record.feasibility_study.scenarios[0].costs.acquisition, "£675,000")

    def test_one_currency_symbol_per_rate(self):
        valuation = self.record.property_appraisal.valuation
        self.assertEqual(valuation.refurbishment_costs.light, "£60-75 per sq ft")
        self.assertEqual(valuation.refurbishment_costs.hmo_conversion, "£30,000 per room")
        self.assertEqual(valuation.value_uplift_potential, "£275,000")

    def test_invariants(self):
        self.assert_invariants(self.record)


class TestPotentialParsers(unittest.TestCase):

    def test_parse_potentials(self):
        text = "- Loft Conversion (Medium feasibility): needs a dormer\n- Garage Conversion - Strong. Easy win"
        potentials = parse_potentials(text)
        self.assertEqual([p.type for p in potentials], ["Loft Conversion", "Garage Conversion"])
        self.assertEqual([p.feasibility for p in potentials], ["Medium", "High"])
        self.assertEqual(potentials[1].notes, "Easy win")

    def test_parse_changes_of_use(self):
        changes = parse_changes_of_use("From Office to Residential: Moderate. Prior approval route")
        self.assertEqual(len(changes), 1)
        self.assertEqual(changes[0].from_use, "Office")
        self.assertEqual(changes[0].to_use, "Residential")
        self.assertEqual(changes[0].feasibility, "Medium")
        self.assertEqual(changes[0].notes, "Prior approval route")

    def test_lines_without_a_change_are_skipped(self):
        self.assertEqual(parse_changes_of_use("Nothing much here"), [])


class TestSearchProperty(InvariantsMixin, unittest.TestCase):
    """Mock mode and provider flow"""

    def test_mock_mode_without_key(self):
        calls = []
        outcome = search_property("10 Test Street", ApiConfig(), complete=lambda *a: calls.append(a))
        self.assertIsInstance(outcome, AnalysisOutcome)
        self.assertTrue(outcome.success)
        self.assertTrue(outcome.mock)
        self.assertEqual(calls, [])
        self.assertEqual(outcome.data.to_dict(), default_analysis("10 Test Street").to_dict())

    def test_mock_mode_when_real_api_disabled(self):
        config = ApiConfig(api_key="sk-test", use_real_api=False)
        outcome = search_property("10 Test Street", config, complete=lambda *a: SAMPLE_REPORT)
        self.assertTrue(outcome.mock)

    def test_provider_completion_is_parsed(self):
        calls = []

        def complete(system_prompt, user_prompt, model, max_tokens, config):
            calls.append((system_prompt, user_prompt, model, max_tokens))
            return SAMPLE_REPORT

        config = ApiConfig().with_api_key("sk-test")
        outcome = search_property("10 Test Street, London", config, complete=complete)

        self.assertTrue(outcome.success)
        self.assertFalse(outcome.mock)
        self.assertEqual(outcome.data.executive_summary.current_valuation, "£680,000")
        self.assert_invariants(outcome.data)

        system_prompt, user_prompt, model, max_tokens = calls[0]
        self.assertEqual(system_prompt, SYSTEM_PROMPT)
        self.assertIn("10 Test Street, London", user_prompt)
        self.assertEqual(model, "gpt-4o")
        self.assertEqual(max_tokens, 1500)

    def test_provider_failure(self):
        def complete(*args):
            raise CompletionError("OpenAI API error: rate limited")

        outcome = search_property("10 Test Street", ApiConfig().with_api_key("sk-test"), complete=complete)
        self.assertFalse(outcome.success)
        self.assertIsNone(outcome.data)
        self.assertIn("rate limited", outcome.error)

    def test_unparseable_completion_still_succeeds(self):
        outcome = search_property(
            "10 Test Street", ApiConfig().with_api_key("sk-test"), complete=lambda *a: "Sorry, no idea."
        )
        self.assertTrue(outcome.success)
        self.assert_invariants(outcome.data)


def run_tests():
    """Run all tests and report results"""
    loader = unittest.TestLoader()
    suite = loader.loadTestsFromModule(sys.modules[__name__])
    runner = unittest.TextTestRunner(verbosity=2)
    return runner.run(suite).wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
