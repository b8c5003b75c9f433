"""
Common enums used across the application.

They define the vocabulary of the system: source lifecycle, extraction
strategies, enrichment states and run status.
"""

import re
from enum import Enum
from typing import Annotated

from pydantic.functional_validators import BeforeValidator


# ══════════════════════════════════════════════════════════════════════════════
# ENUMS - Classification Types
# ══════════════════════════════════════════════════════════════════════════════

class SourceStatus(str, Enum):
    """Lifecycle of a scraped news source."""
    ACTIVE = "active"
    PAUSED = "paused"
    UNDER_REVIEW = "under_review"


class ExtractionStrategy(str, Enum):
    """Selector strategies for sites without usable structured data."""
    ANCHOR = "anchor"                    # anchor text + href (default)
    HEADING_LINK = "heading_link"        # links inside or wrapping h1-h4
    TITLE_ATTRIBUTE = "title_attribute"  # link title="" attribute


class EnrichmentState(str, Enum):
    """States of the per-article enrichment machine."""
    START = "start"
    FETCHED = "fetched"
    FETCH_FAILED = "fetch_failed"
    VERIFICATION = "verification"
    SALVAGE = "salvage"
    DONE = "done"
    DROPPED = "dropped"


class EnrichmentEvent(str, Enum):
    """Inputs that drive enrichment transitions."""
    CONTENT_OK = "content_ok"
    CONTENT_MISSING = "content_missing"
    ASSESSED = "assessed"
    ALTERNATE_FOUND = "alternate_found"
    ALTERNATES_EXHAUSTED = "alternates_exhausted"
    SALVAGED = "salvaged"
    SALVAGE_FAILED = "salvage_failed"


class RunStatus(str, Enum):
    STARTED = "started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ══════════════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ══════════════════════════════════════════════════════════════════════════════

def _coerce_to_str(v):
    """LLMs return null, numbers or {"text": ...} where a string is expected."""
    if v is None:
        return ""
    if isinstance(v, dict):
        for key in ("name", "text", "value", "summary"):
            if key in v and v[key]:
                return str(v[key])
        vals = [str(x) for x in v.values() if x and isinstance(x, (str, int, float))]
        return ", ".join(vals)
    if isinstance(v, list):
        return ", ".join(str(x) for x in v if x)
    return str(v)


LooseStr = Annotated[str, BeforeValidator(_coerce_to_str)]


_WEALTH_NUMBER = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:[.,]\d+)?")
_THOUSANDS_GROUPED = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?")
_BILLION_UNIT = re.compile(r"\s*(?:billion|bn|b)\b")


def parse_wealth_mm(v):
    """Wealth in millions from whatever the model wrote.

    The first number wins, so a range like "50-100" reads as 50. A decimal
    comma ("1,5") is accepted, thousands grouping ("1,200") is not split,
    and a billion unit right after the number is scaled to millions.
    Anything without a number is 0.
    """
    if v is None or v == "" or isinstance(v, bool):
        return 0.0
    if isinstance(v, (int, float)):
        return float(v)
    text = str(v).lower()
    match = _WEALTH_NUMBER.search(text)
    if not match:
        return 0.0
    number = match.group(0)
    if _THOUSANDS_GROUPED.fullmatch(number):
        number = number.replace(",", "")
    else:
        number = number.replace(",", ".")
    value = float(number)
    if _BILLION_UNIT.match(text[match.end():]):
        value *= 1000
    return value


WealthMM = Annotated[float, BeforeValidator(parse_wealth_mm)]
