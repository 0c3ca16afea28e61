"""
Option and winner normalization.

Scraped option lists are noisy: the same outcome shows up under slightly
different labels, percentages go missing, and resolved binary markets often
report a generic YES/NO token instead of the outcome label. These helpers
turn that into a clean, capped option list and a displayable winner.
"""

import logging
import re
from typing import Optional

from auracle_bot.models import Option
from auracle_bot.utils import clamp

# Configure module logger
logger = logging.getLogger(__name__)

MAX_OPTIONS = 3

_CURRENT_PREFIX = re.compile(r"^\s*current\b[\s:\-]*", re.IGNORECASE)
_NOISE_TOKENS = re.compile(r"\b(probability|pool|implied)\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

# Generic binary-market tokens mapped to option positions
_POSITIONAL_TOKENS = (("YES", 0), ("NO", 1), ("DRAW", 2))


def clean_label(label: Optional[str]) -> str:
    """
    Strip scrape noise from an option label.

    Removes a leading "CURRENT" prefix and boilerplate words such as
    "PROBABILITY", "POOL" and "IMPLIED", then collapses whitespace.

    Args:
        label: Raw label text

    Returns:
        Cleaned label, empty string if nothing is left
    """
    if not label:
        return ""
    text = _CURRENT_PREFIX.sub("", str(label))
    text = _NOISE_TOKENS.sub(" ", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip(" \t-:|•")


def _to_pct(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(round(clamp(float(value), 0.0, 100.0)))
    except (TypeError, ValueError):
        return None


def normalize_options(options: Optional[list[Option]]) -> list[Option]:
    """
    Deduplicate, cap and complete an option list.

    Labels are compared case-insensitively after cleaning. The first label
    seen for an outcome is kept; a later non-null percentage fills in an
    earlier null one. At most three options survive. With exactly two
    options and one known percentage, the other is inferred as the
    complement. Nothing is inferred when neither percentage is known.

    Args:
        options: Raw options in extraction order

    Returns:
        New list of normalized options
    """
    merged: list[Option] = []
    index: dict[str, Option] = {}

    for option in options or []:
        label = clean_label(option.label)
        if not label:
            continue
        key = label.lower()
        pct = _to_pct(option.pct)

        existing = index.get(key)
        if existing is not None:
            if pct is not None:
                existing.pct = pct
            continue

        if len(merged) >= MAX_OPTIONS:
            continue

        entry = Option(label=label, pct=pct)
        index[key] = entry
        merged.append(entry)

    if len(merged) == 2:
        first, second = merged
        if first.pct is not None and second.pct is None:
            second.pct = _to_pct(100 - first.pct)
        elif second.pct is not None and first.pct is None:
            first.pct = _to_pct(100 - second.pct)

    return merged


def resolve_winner(raw: Optional[str], options: Optional[list[Option]]) -> Optional[str]:
    """
    Map a raw winner string to the display label of the winning option.

    Tries, in order: a known option label contained in the raw text (longest
    label first), the positional YES/NO/DRAW convention of binary markets,
    and the INVALID marker. Anything else is returned trimmed. Never raises.

    Args:
        raw: Winner text scraped from the page
        options: Known options of the market

    Returns:
        Winner label, or None when raw is empty
    """
    try:
        if raw is None:
            return None
        text = str(raw).strip()
        if not text:
            return None

        upper = text.upper()
        labels = [o.label.strip() for o in options or [] if o.label and o.label.strip()]

        for label in sorted(labels, key=len, reverse=True):
            if label.upper() in upper:
                return label

        for token, position in _POSITIONAL_TOKENS:
            if upper.startswith(token):
                if position < len(labels):
                    return labels[position]
                if position == 0 and not labels:
                    return "YES"
                return text

        if "INVALID" in upper:
            return "Invalid"

        return text
    except Exception as e:
        logger.warning(f"Could not map winner {raw!r}: {e}")
        return str(raw).strip() if raw else None
