"""Funding amount parsing and de-duplication helpers.

Amounts arrive as free text from articles and model extraction
(``"$2.1B"``, ``"more than $100 billion"``, ``"$500,000"``). Everything is
normalised to millions of USD so equivalent statements collide.
"""

import re
from typing import Iterable, Optional

from oqscore.core.numbers import format_number, round_half_up
from oqscore.models.datatypes import Article, FundingEvent, FundingSummary

# Bare numbers at or above this are raw dollars, below it already millions.
RAW_DOLLAR_THRESHOLD = 10_000

_MULTIPLIERS = {
    "k": 0.001,
    "thousand": 0.001,
    "m": 1.0,
    "million": 1.0,
    "b": 1_000.0,
    "billion": 1_000.0,
    "t": 1_000_000.0,
    "trillion": 1_000_000.0,
}

_AMOUNT_RE = re.compile(
    r"^\$?\s*(\d[\d,]*(?:\.\d+)?)\s*(thousand|million|billion|trillion|k|m|b|t)?$",
    re.IGNORECASE,
)

QUALIFIERS = [
    "up to", "more than", "at least", "approximately", "around",
    "about", "roughly", "nearly", "almost", "over",
]

_QUALIFIER_RE = re.compile(
    r"^(?:" + "|".join(re.escape(q) for q in QUALIFIERS) + r")\s+",
    re.IGNORECASE,
)


def parse_amount(raw: Optional[str]) -> float:
    """Parse a USD amount into millions; ``0`` when unparsable or non-USD.

    Examples:
        ``"$2.1B"`` → ``2100``; ``"$800K"`` → ``0.8``;
        ``"$500,000"`` → ``0.5``; ``"500"`` → ``500``; ``"€500M"`` → ``0``.
    """
    if not raw:
        return 0.0
    match = _AMOUNT_RE.match(raw.strip())
    if not match:
        return 0.0

    number = float(match.group(1).replace(",", ""))
    unit = (match.group(2) or "").lower()
    if unit:
        multiplier = _MULTIPLIERS[unit]
        # Divide for sub-million units so 800K is exactly 0.8
        return number / 1_000 if multiplier < 1 else number * multiplier
    if number >= RAW_DOLLAR_THRESHOLD:
        return number / 1_000_000
    return number


def strip_qualifiers(amount: str) -> str:
    """Remove leading hedges such as ``"up to"`` or ``"more than"``."""
    previous = None
    text = amount.strip()
    while previous != text:
        previous = text
        text = _QUALIFIER_RE.sub("", text).strip()
    return text


def funding_dedupe_key(company: str, amount: Optional[str]) -> str:
    """Return ``company|millions`` so equivalent funding statements collide.

    Falls back to the lowercased raw amount when it cannot be parsed.
    """
    name = (company or "").strip().lower()
    cleaned = strip_qualifiers(amount or "")
    value = parse_amount(cleaned)
    if value > 0:
        return f"{name}|{format_number(value)}"
    return f"{name}|{cleaned.lower()}"


def bucket_amount(value: float) -> float:
    """Tiered rounding so near-identical cross-source amounts coalesce.

    <10M → integer, 10–100M → nearest 5, 100M–1B → nearest 25,
    1B–10B → nearest 250, above → nearest 1000.
    """
    if value <= 0:
        return 0
    if value < 10:
        step = 1
    elif value < 100:
        step = 5
    elif value < 1_000:
        step = 25
    elif value < 10_000:
        step = 250
    else:
        step = 1_000
    return round_half_up(value / step) * step


def format_millions(value: float) -> str:
    """``2100 -> "$2.1B"``, ``500 -> "$500M"``, ``0 -> "$0"``."""
    if value >= 1_000:
        return f"${format_number(round_half_up(value / 1_000, 1))}B"
    if value > 0:
        return f"${format_number(round_half_up(value, 1))}M"
    return "$0"


# ── Extraction & summary ──────────────────────────────────────────────────────

_FUNDING_TITLE_RE = re.compile(
    r"^(?P<company>[A-Z][\w.&'\- ]{0,60}?)\s+"
    r"(?:raises|raised|secures|secured|closes|closed|lands|landed|bags)\s+"
    r"(?P<amount>(?:(?:" + "|".join(re.escape(q) for q in QUALIFIERS) + r")\s+)?"
    r"\$\s?\d[\d,]*(?:\.\d+)?\s*(?:thousand|million|billion|trillion|[kmbt])?)\b"
    r"(?:\s+(?:in\s+)?(?P<round>series\s+[a-z]\d?|pre-seed|seed|growth))?",
    re.IGNORECASE,
)


def extract_funding_event(article: Article) -> Optional[FundingEvent]:
    """Recognise ``"<Company> raises $<amount> [Series X]"`` headlines."""
    match = _FUNDING_TITLE_RE.match(article.title.strip())
    if not match:
        return None
    round_name = match.group("round")
    return FundingEvent(
        company=match.group("company").strip(),
        amount=match.group("amount").strip(),
        round=round_name.title() if round_name else None,
        source_url=article.url,
        date=(article.published_at or article.fetched_at or "")[:10] or None,
    )


def summarize_funding(events: Iterable[FundingEvent]) -> FundingSummary:
    """De-duplicate cross-source reports and total what remains.

    Two events are the same raise when the company matches and the amounts
    fall in the same :func:`bucket_amount` tier. Unparsable amounts dedupe
    on their raw text and add nothing to the total.
    """
    seen = set()
    total = 0.0
    count = 0
    top: Optional[FundingEvent] = None
    top_value = 0.0
    for event in events:
        value = parse_amount(strip_qualifiers(event.amount or ""))
        if value > 0:
            key = f"{event.company.strip().lower()}|{format_number(bucket_amount(value))}"
        else:
            key = funding_dedupe_key(event.company, event.amount)
        if key in seen:
            continue
        seen.add(key)
        count += 1
        total += value
        if value > top_value:
            top, top_value = event, value
    return FundingSummary(total_raised=format_millions(total), count=count, top_event=top)
