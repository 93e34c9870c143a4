"""
Report Extraction Engine
Normalization, section location and field / list / paragraph extraction
for free-text property reports returned by a language-model completion
"""

import re
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

Labels = Union[str, Sequence[str]]
Span = Tuple[int, int]

CURRENCY_SYMBOL = "£"

# Items at or above this length are prose, not list entries
MAX_LIST_ITEM_LENGTH = 100

# ============================================================================
# DENYLISTS
# ============================================================================

# Substrings that mark an item as narration rather than data
BOILERPLATE_DENYLIST = (
    "executive summary",
    "property appraisal",
    "feasibility study",
    "here is",
    "here's",
    "as an ai",
    "language model",
    "i cannot",
    "i can't",
    "please note",
    "this report",
    "the following",
    "based on the information",
    "for illustrative purposes",
    "not financial advice",
    "disclaimer",
)

# Whole items that are heading fragments or placeholders
HEADING_FRAGMENTS = {
    "planning opportunities",
    "planning constraints",
    "opportunities",
    "constraints",
    "key findings",
    "summary",
    "overview",
    "details",
    "none",
    "n/a",
    "tbc",
}

LEVEL_SYNONYMS = {
    "high": "High",
    "strong": "High",
    "good": "High",
    "medium": "Medium",
    "moderate": "Medium",
    "low": "Low",
    "limited": "Low",
    "poor": "Low",
}

# ============================================================================
# TEXT NORMALIZER
# ============================================================================

_EMPHASIS_PATTERNS = [
    re.compile(r"\*\*(.+?)\*\*"),
    re.compile(r"__(.+?)__"),
    re.compile(r"(?<![\w*])\*(?=\S)(.+?)(?<=\S)\*(?![\w*])"),
    re.compile(r"(?<![\w_])_(?=\S)(.+?)(?<=\S)_(?![\w_])"),
]
_HEADING_MARKER = re.compile(r"^[ \t]*#{1,6}[ \t]*", re.MULTILINE)
# Unpaired markers glued to a word, e.g. the leftover of "***a**"
_STRAY_MARKERS = [
    re.compile(r"^([ \t]*)[*_]+(?=[^\s*_])", re.MULTILINE),
    re.compile(r"(?<=[^\s*_])[*_]+([ \t]*)$", re.MULTILINE),
]


def normalize(text: Optional[str]) -> str:
    """
    Strip markdown emphasis pairs, unpaired markers, leading heading hashes
    and surrounding whitespace

    Every pass only removes characters, so iterating to a fixed point
    makes the result idempotent.
    """
    if not text:
        return ""

    previous = None
    result = str(text)
    while result != previous:
        previous = result
        for pattern in _EMPHASIS_PATTERNS:
            result = pattern.sub(r"\1", result)
        result = _HEADING_MARKER.sub("", result)
        for pattern in _STRAY_MARKERS:
            result = pattern.sub(r"\1", result)
        result = result.strip()
    return result


# ============================================================================
# CURRENCY & PERCENTAGE PARSING
# ============================================================================

_MULTIPLIERS = {
    "k": 1_000,
    "m": 1_000_000,
    "million": 1_000_000,
    "bn": 1_000_000_000,
    "billion": 1_000_000_000,
}

# A digit run with thousands separators; a trailing comma belongs to the prose
_NUMBER = r"(?:\d{1,3}(?:,\d{3})+(?!\d)|\d+)(?:\.\d+)?"

_AMOUNT = re.compile(
    r"(-)?[ \t]*£?[ \t]*(-)?[ \t]*(" + _NUMBER + r")[ \t]*(million|billion|bn|k|m)?\b",
    re.IGNORECASE,
)
_MONEY_TOKEN = re.compile(
    r"(?:-(?=£))?£[ \t]?-?" + _NUMBER + r"(?:[ \t]?(?:million|billion|bn|k|m)\b)?",
    re.IGNORECASE,
)
_BARE_NUMBER = re.compile(r"^-?" + _NUMBER + r"(?:[ \t]?(?:million|billion|bn|k|m)\b)?", re.IGNORECASE)
_PERCENT_TOKEN = re.compile(r"-?\d+(?:\.\d+)?[ \t]?%")


def parse_currency(value: Any) -> Optional[float]:
    """
    Parse the first monetary amount in a string

    Handles "£785,250", "£-44,750", "-£9,999,999", "£1.2m" and bare numbers.
    Returns None when no number is present.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    match = _AMOUNT.search(str(value))
    if not match:
        return None

    try:
        number = float(match.group(3).replace(",", ""))
    except ValueError:
        return None

    suffix = (match.group(4) or "").lower()
    number *= _MULTIPLIERS.get(suffix, 1)

    if match.group(1) or match.group(2):
        number = -number
    return number


def format_currency(amount: float) -> str:
    """Render a whole-pound amount with the symbol first, e.g. £44,750 or £-44,750"""
    rounded = int(round(amount))
    if rounded < 0:
        return f"{CURRENCY_SYMBOL}-{abs(rounded):,}"
    return f"{CURRENCY_SYMBOL}{rounded:,}"


def parse_percentage(value: Any) -> Optional[float]:
    """Parse "28.2%" into 0.282"""
    if not value:
        return None
    match = re.search(r"(-?\d+(?:\.\d+)?)[ \t]?%", str(value))
    if not match:
        return None
    return float(match.group(1)) / 100


def format_percentage(ratio: float) -> str:
    return f"{ratio * 100:.1f}%"


def ensure_currency(value: str) -> str:
    """
    Make sure a currency string carries the symbol once, ahead of the number

    Non-numeric text is returned unchanged.
    """
    if not value:
        return value

    text = value.strip()
    text = re.sub(r"^GBP[ \t]*", CURRENCY_SYMBOL, text, flags=re.IGNORECASE)
    text = re.sub(r"£(?:[ \t]*£)+", CURRENCY_SYMBOL, text)
    text = re.sub(r"^-[ \t]*£[ \t]*", CURRENCY_SYMBOL + "-", text)
    text = re.sub(r"^£[ \t]+", CURRENCY_SYMBOL, text)

    if text.startswith(CURRENCY_SYMBOL):
        return text
    if CURRENCY_SYMBOL not in text and _BARE_NUMBER.match(text):
        return CURRENCY_SYMBOL + text
    return text


def currency_phrase(value: str) -> str:
    """
    Reduce a free-text value to the part that starts at its first amount

    "approx. £60-75 per sq ft" -> "£60-75 per sq ft". Returns "" when no
    amount is present.
    """
    text = ensure_currency(normalize(value))
    if text.startswith(CURRENCY_SYMBOL):
        return single_amount(text)
    match = _MONEY_TOKEN.search(text)
    if match:
        return single_amount(ensure_currency(text[match.start():]))
    return ""


_AMOUNT_RANGE = re.compile(
    r"(£[ \t]?-?" + _NUMBER + r")[ \t]*(?:-|–|to)[ \t]*£[ \t]?(?=\d)",
    re.IGNORECASE,
)
_TRAILING_CONNECTIVE = re.compile(
    r"[\s,;:(–-]*(?:\b(?:or|and|to|from|vs|versus|between|up)\b[\s,;:(–-]*)*$",
    re.IGNORECASE,
)


def single_amount(text: str) -> str:
    """
    Reduce a currency phrase to one symbol

    "£60 - £75 per sq ft" -> "£60-75 per sq ft"; any later "£" amount is cut
    off along with an opening bracket or connective left dangling before it,
    so "£275,000 (from £675,000)" -> "£275,000".
    """
    if not text:
        return text

    text = _AMOUNT_RANGE.sub(r"\1-", text)
    second = text.find(CURRENCY_SYMBOL, 1)
    if second == -1:
        return text

    head = text[:second]
    if head.count("(") > head.count(")"):
        head = head[:head.rindex("(")]
    head = _TRAILING_CONNECTIVE.sub("", head).strip()
    if re.search(r"\d", head):
        return head
    return find_amount(text)


def _clean_money_token(token: str) -> str:
    return ensure_currency(re.sub(r"(?<=£)[ \t]+", "", token.strip()))


def find_amount(text: str) -> str:
    """First "£..." amount in free text, or "" """
    match = _MONEY_TOKEN.search(text or "")
    return _clean_money_token(match.group(0)) if match else ""


# ============================================================================
# LABEL MATCHING STRATEGIES
# ============================================================================

def _label_pattern(label: str) -> str:
    """Escape a label, letting its words be separated by any run of spaces"""
    return r"[ \t]+".join(re.escape(word) for word in label.split())


def _as_labels(labels: Labels) -> List[str]:
    if isinstance(labels, str):
        return [labels]
    return [label for label in labels if label]


class LabelMatcher(ABC):
    """One way of recognising a label in report text"""

    name = "base"

    @abstractmethod
    def pattern(self, label: str) -> "re.Pattern":
        ...

    def try_match(self, text: str, label: str, pos: int = 0) -> Optional[Span]:
        """Return the (start, end) span of the label token at or after pos"""
        match = self.pattern(label).search(text, pos)
        return match.span() if match else None


class ColonLabelMatcher(LabelMatcher):
    """Exact "Label:" form"""

    name = "colon"

    def pattern(self, label):
        return re.compile(rf"(?<!\w){_label_pattern(label)}[ \t]*:")


class NumberedLabelMatcher(LabelMatcher):
    """Numbered heading form, "2. Property Appraisal" """

    name = "numbered"

    def pattern(self, label):
        return re.compile(
            rf"^[ \t]*\d{{1,2}}[.)][ \t]*{_label_pattern(label)}(?!\w)[ \t]*:?",
            re.IGNORECASE | re.MULTILINE,
        )


class LineAnchoredMatcher(LabelMatcher):
    """Bare label at the start of a line"""

    name = "line"

    def pattern(self, label):
        return re.compile(
            rf"^[ \t]*[-*•>]*[ \t]*{_label_pattern(label)}(?!\w)[ \t]*:?",
            re.MULTILINE,
        )


class CaseInsensitiveMatcher(LabelMatcher):
    """Label anywhere, in any capitalisation"""

    name = "anywhere"

    def pattern(self, label):
        return re.compile(rf"(?<!\w){_label_pattern(label)}(?!\w)[ \t]*:?", re.IGNORECASE)


class HeadingLineMatcher(LabelMatcher):
    """Label alone on its line, optionally numbered or followed by a colon"""

    name = "heading"

    def pattern(self, label):
        return re.compile(
            rf"^[ \t]*(?:\d{{1,2}}[.)][ \t]*)?[-*•>]*[ \t]*{_label_pattern(label)}[ \t]*:?[ \t]*$",
            re.IGNORECASE | re.MULTILINE,
        )


# Strategies in order of increasing looseness
LABEL_MATCHERS: Tuple[LabelMatcher, ...] = (
    ColonLabelMatcher(),
    NumberedLabelMatcher(),
    LineAnchoredMatcher(),
    CaseInsensitiveMatcher(),
)

# Report headings: a "Label: value" field line is only accepted after every heading form fails
HEADING_MATCHERS: Tuple[LabelMatcher, ...] = (
    NumberedLabelMatcher(),
    HeadingLineMatcher(),
    ColonLabelMatcher(),
    CaseInsensitiveMatcher(),
)


def locate_label(text: str, labels: Labels, pos: int = 0,
                 matchers: Sequence[LabelMatcher] = LABEL_MATCHERS) -> Optional[Span]:
    """
    Find a label using the first strategy that recognises any of its aliases

    Within the winning strategy the earliest alias match is returned.
    """
    if not text:
        return None

    aliases = _as_labels(labels)
    for matcher in matchers:
        spans = [span for span in (matcher.try_match(text, alias, pos) for alias in aliases) if span]
        if spans:
            return min(spans)
    return None


def extract_section(text: str, start_label: Labels, end_label: Optional[Labels] = None,
                    pos: int = 0, matchers: Sequence[LabelMatcher] = LABEL_MATCHERS) -> str:
    """
    Return the text between a start label and the next end label

    Args:
        text: Full report text
        start_label: Label (or aliases) opening the section
        end_label: Label (or aliases) closing it; end of text when absent
        pos: Offset to start searching from
        matchers: Strategies to try, loosest last

    Returns:
        Trimmed section body, or "" when the start label is not found
    """
    start = locate_label(text, start_label, pos, matchers)
    if start is None:
        return ""

    end_offset = len(text)
    if end_label:
        end = locate_label(text, end_label, start[1], matchers)
        if end is not None:
            end_offset = end[0]

    return text[start[1]:end_offset].strip()


# ============================================================================
# FIELD / LIST / PARAGRAPH EXTRACTION
# ============================================================================

_FIELD_LEAD = r"(?:^[ \t>*•|#-]*(?:\d{1,2}[.)][ \t]*)?|(?<=[,;|])[ \t]*|(?<=\. ))"
_FIELD_TAIL = r"s?(?!\w)[ \t]*(?:\([^)\n]*\))?[ \t]*[:=|–-]?[ \t]*(?P<value>[^\n]*)"

# A "Something: ..." line opens a new field
_LABEL_LINE = re.compile(r"^[ \t]*[A-Z][A-Za-z0-9 /&()'’,-]{1,60}:(?:[ \t]|$)")
_BULLET = re.compile(r"^[ \t]*(?:[-–—*•●▪◦·>]+|\d{1,2}[.)]|\(\w{1,3}\))[ \t]*")
_LIST_SPLIT = re.compile(r",(?!\d)|(?<!\d),|[;\n•●▪◦·]|(?:^|(?<=\s))[-–—*]+(?=\s)", re.MULTILINE)
_NUMBERING = re.compile(r"^\s*(?:\d{1,2}[.)]|\(\w{1,3}\)|[a-z][.)](?=\s))\s*")
_DECORATIVE = re.compile(r"[\W\d_]+")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+(?=[A-Z£])")


def _field_pattern(label: str) -> "re.Pattern":
    return re.compile(_FIELD_LEAD + _label_pattern(label) + _FIELD_TAIL, re.IGNORECASE | re.MULTILINE)


def _iter_label_values(section_text: str, labels: Labels) -> Iterator[Tuple[str, int]]:
    """
    Yield (value, end offset) for every occurrence of every alias

    A label with nothing after it on its line takes the next non-empty line,
    unless that line opens another field.
    """
    if not section_text:
        return

    for label in _as_labels(labels):
        for match in _field_pattern(label).finditer(section_text):
            value = match.group("value").strip(" \t|")
            end = match.end()
            if not value:
                for line in section_text[end:].split("\n")[1:]:
                    if not line.strip():
                        continue
                    if not _LABEL_LINE.match(line):
                        value = _BULLET.sub("", line).strip(" \t|")
                    break
            yield value, end


def _first_sentence(value: str) -> str:
    sentence = _SENTENCE_END.split(normalize(value), 1)[0]
    return sentence.strip().rstrip(".").strip()


def extract_field(section_text: str, label: Labels, prefix: Optional[str] = None) -> str:
    """
    Return the first line / sentence following a label, or ""

    Args:
        section_text: Text of the section to search
        label: Field label or aliases, matched case-insensitively
        prefix: Optional prefix (e.g. the currency symbol) added to a bare number
    """
    for value, _ in _iter_label_values(section_text, label):
        value = _first_sentence(value)
        if not value:
            continue
        if prefix and not value.startswith(prefix) and re.match(r"-?\d", value):
            value = prefix + value
        return value
    return ""


def extract_currency(section_text: str, label: Labels) -> str:
    """Return the first amount following a label as "£675,000", or "" """
    for value, _ in _iter_label_values(section_text, label):
        token = _MONEY_TOKEN.search(value)
        if token:
            return _clean_money_token(token.group(0))
        text = normalize(value)
        bare = _BARE_NUMBER.match(text)
        if bare and not re.match(r"[\d.,]*[ \t]?%", text[bare.end():]):
            return format_currency(parse_currency(bare.group(0)))
    return ""


def extract_percentage(section_text: str, label: Labels) -> str:
    """Return the first percentage following a label, e.g. "27.4%" """
    for value, _ in _iter_label_values(section_text, label):
        token = _PERCENT_TOKEN.search(value)
        if token:
            return token.group(0).replace(" ", "")
    return ""


def _block_after(section_text: str, labels: Labels) -> str:
    """Lines following a label up to a blank line or the next field label"""
    for label in _as_labels(labels):
        for match in _field_pattern(label).finditer(section_text or ""):
            lines = [match.group("value")]
            for line in section_text[match.end():].split("\n")[1:]:
                if not line.strip():
                    if any(part.strip() for part in lines):
                        break
                    continue
                if _LABEL_LINE.match(line):
                    break
                lines.append(line)

            block = "\n".join(part for part in lines if part.strip())
            if block.strip():
                return block
    return ""


def is_boilerplate(item: str) -> bool:
    lowered = item.lower().strip()
    if lowered in HEADING_FRAGMENTS:
        return True
    return any(fragment in lowered for fragment in BOILERPLATE_DENYLIST)


def filter_list_items(items: Sequence[str]) -> List[str]:
    """
    Drop empty, decorative, oversized and boilerplate items

    Numbering prefixes and stray punctuation are removed from what remains.
    """
    cleaned = []
    for item in items:
        if not isinstance(item, str):
            continue
        item = normalize(_NUMBERING.sub("", item)).strip(" \t.;:*•-–—")
        if not item or _DECORATIVE.fullmatch(item):
            continue
        if len(item) >= MAX_LIST_ITEM_LENGTH:
            continue
        if is_boilerplate(item):
            continue
        if item not in cleaned:
            cleaned.append(item)
    return cleaned


def extract_list(section_text: str, label: Labels) -> List[str]:
    """Return the short items following a label; empty list when absent"""
    block = _block_after(section_text, label)
    if not block:
        return []
    return filter_list_items(_LIST_SPLIT.split(block))


def split_lines(text: str) -> List[str]:
    """Non-empty lines of a block with bullets and numbering stripped"""
    lines = (normalize(_BULLET.sub("", line)) for line in (text or "").split("\n"))
    return [line for line in lines if line]


def extract_lines(section_text: str, label: Labels) -> List[str]:
    """Return each line following a label with its bullet stripped"""
    return split_lines(_block_after(section_text, label))


def extract_paragraph(section_text: str, label: Labels) -> str:
    """Return the full multi-line block following a label, joined into one paragraph"""
    block = _block_after(section_text, label)
    if not block:
        return ""
    lines = [normalize(_BULLET.sub("", line)) for line in block.split("\n")]
    return re.sub(r"\s+", " ", " ".join(line for line in lines if line)).strip()


def extract_level(text: str, default: str = "Medium") -> str:
    """Map the first High / Medium / Low style word in text onto one of the three levels"""
    match = re.search(r"\b(" + "|".join(LEVEL_SYNONYMS) + r")\b", text or "", re.IGNORECASE)
    if match:
        return LEVEL_SYNONYMS[match.group(1).lower()]
    return default


# ============================================================================
# EXTRACTION RESULT
# ============================================================================

def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


@dataclass(frozen=True)
class Extraction:
    """
    Result of one extraction step: a value, or absent

    Empty strings and empty lists count as absent, so falling through to a
    default is a single or_else() call.
    """

    value: Any = None

    @classmethod
    def of(cls, value: Any) -> "Extraction":
        return cls(value if _is_present(value) else None)

    @classmethod
    def absent(cls) -> "Extraction":
        return cls(None)

    @property
    def is_present(self) -> bool:
        return self.value is not None

    def map(self, fn: Callable[[Any], Any]) -> "Extraction":
        if not self.is_present:
            return self
        return Extraction.of(fn(self.value))

    def filter(self, predicate: Callable[[Any], bool]) -> "Extraction":
        if self.is_present and predicate(self.value):
            return self
        return Extraction.absent()

    def or_else(self, default: Any) -> Any:
        return self.value if self.is_present else default
