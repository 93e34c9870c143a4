"""
Comparable Sales Parser
Rebuilds comparable-sale records from the tabular or prose-tabular
comparables section of a property report
"""

import re
import logging
from typing import List, Optional, Tuple

from analysis_models import Comparable
from fallback_data import DEFAULT_COMPARABLE_LINK
from report_extraction_engine import extract_level, extract_section, find_amount, normalize

logger = logging.getLogger(__name__)

MAX_COMPARABLES = 6

STREET_TYPES = ("Street", "Road", "Avenue", "Lane", "Drive", "Place", "Court", "Way", "Square", "Mews")

SOLD_LABELS = ("Recently Sold", "Sold Comparables", "Sold Properties", "Sold Prices")
LISTED_LABELS = ("Currently Listed", "Listed Comparables", "Currently For Sale", "On the Market")

# Placeholders for sub-fields a line does not mention
PLACEHOLDERS = {
    "address": "Comparable property",
    "date": "Recent",
    "property_type": "Similar property",
    "size": "Comparable size",
    "rating": "Medium",
}

REASONS = {
    "sold": "Recently sold nearby property",
    "listed": "Currently listed nearby property",
    "": "Nearby comparable property",
}

_STREET = re.compile(r"\b(?:" + "|".join(STREET_TYPES) + r")\b")
_ADDRESS = re.compile(
    r"(?<![£\d,.])\b\d+[A-Za-z]?,?[ \t]+(?:[A-Z][\w'’.-]*[ \t]+){1,4}(?:" + "|".join(STREET_TYPES) + r")\b"
)
_LOOSE_ADDRESS = re.compile(r"^[\W_]*(\d+[A-Za-z]?(?![.)\d])[ \t]+(?:[A-Z][\w'’-]*[ \t]*){1,4})")
_MONTH_DATE = re.compile(
    r"\b(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?[ \t]+(?:19|20)\d{2}\b",
    re.IGNORECASE,
)
_YEAR = re.compile(r"(?<![£\d,.])\b(?:19|20)\d{2}\b(?![\d,])")
_SIZE = re.compile(
    r"\b(\d[\d,]*(?:\.\d+)?)[ \t]?(sq\.?[ \t]?ft|sqft|square[ \t]+feet|sq\.?[ \t]?m|m²|m2|square[ \t]+metres)(?![A-Za-z])",
    re.IGNORECASE,
)
_BEDROOMS = re.compile(r"\b(\d+)[ \t-]?(?:bed(?:room)?s?|br)\b", re.IGNORECASE)
_PROPERTY_KIND = re.compile(
    r"\b(semi-detached|semi[ \t]detached|end[- ]of[- ]terrace|mid[- ]terrace|detached|terraced|"
    r"flat|apartment|maisonette|bungalow|cottage|townhouse)\b",
    re.IGNORECASE,
)
_LABELLED_RATING = re.compile(r"\b(?:rating|relevance|similarity)[ \t:=-]*(high|medium|low)\b", re.IGNORECASE)
_BARE_RATING = re.compile(
    r"\b(high|medium|low)\b(?![-\w])(?![ \t]+(?:" + "|".join(STREET_TYPES) + r")\b)",
    re.IGNORECASE,
)
_REASON = re.compile(r"\b(?:reason|note|comment)s?[ \t]*[:\-][ \t]*(.+)$", re.IGNORECASE)
_URL = re.compile(r"https?://[^\s|)>\]]+")


class ComparablesParser:
    """Best-effort parser for a comparables section"""

    def __init__(self, max_records: int = MAX_COMPARABLES):
        self.max_records = max_records

    def parse(self, section_text: str) -> List[Comparable]:
        """
        Parse comparable records, trying sold / listed sub-sections first

        Returns:
            Parsed records, or an empty list when no line qualifies
        """
        if not section_text or not section_text.strip():
            return []

        records = []
        for text, source in self._candidate_sections(section_text):
            for line in text.split("\n"):
                if self._is_strict_candidate(line):
                    records.append(self._parse_line(line, source))

        if not records:
            # Looser pass across the entire section
            for line in section_text.split("\n"):
                if self._is_loose_candidate(line):
                    records.append(self._parse_line(line, ""))

        if not records:
            logger.debug("No comparable lines recognised")
        return records[:self.max_records]

    def _candidate_sections(self, section_text: str) -> List[Tuple[str, str]]:
        sold = extract_section(section_text, SOLD_LABELS, LISTED_LABELS)
        listed = extract_section(section_text, LISTED_LABELS)
        candidates = [(text, source) for text, source in ((sold, "sold"), (listed, "listed")) if text]
        return candidates or [(section_text, "")]

    def _is_strict_candidate(self, line: str) -> bool:
        return bool(find_amount(line)) and bool(_STREET.search(line))

    def _is_loose_candidate(self, line: str) -> bool:
        if not find_amount(line):
            return False
        return bool(_STREET.search(line) or _LOOSE_ADDRESS.match(line))

    def _parse_line(self, line: str, source: str) -> Comparable:
        line = normalize(line.replace("|", " ").replace("\t", "  "))

        return Comparable(
            address=self._address(line),
            price=find_amount(line),
            date=self._date(line),
            property_type=self._property_type(line),
            size=self._size(line),
            rating=self._rating(line),
            reason=self._reason(line, source),
            link=self._link(line),
        )

    def _address(self, line: str) -> str:
        match = _ADDRESS.search(line)
        if match:
            return re.sub(r"\s+", " ", match.group(0)).replace(" ,", ",").strip()
        loose = _LOOSE_ADDRESS.match(line)
        if loose:
            return loose.group(1).strip()
        return PLACEHOLDERS["address"]

    def _date(self, line: str) -> str:
        match = _MONTH_DATE.search(line)
        if match:
            return re.sub(r"\s+", " ", match.group(0)).strip()
        year = _YEAR.search(line)
        if year:
            return year.group(0)
        return PLACEHOLDERS["date"]

    def _size(self, line: str) -> str:
        match = _SIZE.search(line)
        if not match:
            return PLACEHOLDERS["size"]
        unit = match.group(2).lower()
        if "ft" in unit or "feet" in unit:
            return f"{match.group(1)} sq ft"
        return f"{match.group(1)} sq m"

    def _property_type(self, line: str) -> str:
        kind = _PROPERTY_KIND.search(line)
        bedrooms = _BEDROOMS.search(line)

        parts = []
        if kind:
            text = re.sub(r"[ \t]+", "-", kind.group(1))
            parts.append(text[0].upper() + text[1:].lower())
        if bedrooms:
            parts.append(f"{bedrooms.group(1)} bedroom")

        if not parts:
            return PLACEHOLDERS["property_type"]
        if not kind:
            return f"{parts[0]} property"
        return ", ".join(parts)

    def _rating(self, line: str) -> str:
        match = _LABELLED_RATING.search(line) or _BARE_RATING.search(line)
        if not match:
            return PLACEHOLDERS["rating"]
        return extract_level(match.group(1), PLACEHOLDERS["rating"])

    def _reason(self, line: str, source: str) -> str:
        match = _REASON.search(line)
        if match:
            reason = _URL.sub("", match.group(1)).strip(" -–;,.")
            if reason:
                return reason
        return REASONS.get(source, REASONS[""])

    def _link(self, line: str) -> str:
        match = _URL.search(line)
        return match.group(0).rstrip(".,;") if match else DEFAULT_COMPARABLE_LINK


def parse_comparables(section_text: str) -> List[Comparable]:
    """Parse comparables from a section; empty list when nothing qualifies"""
    return ComparablesParser().parse(section_text)


def find_comparables_section(appraisal_text: str) -> Optional[str]:
    """Locate the comparables part of the property appraisal section"""
    section = extract_section(
        appraisal_text,
        ("Comparable Analysis", "Comparable Sales", "Comparables", "Comparable Properties"),
        ("Feasibility Study", "Scenario 1"),
    )
    return section or None
