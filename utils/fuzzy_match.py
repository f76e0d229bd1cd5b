"""
Fuzzy string matching for customer and item names.

Levenshtein and token-set similarity over accent-stripped text, plus
helpers for the 4-digit organization codes embedded in QuickBooks
display names ("0013 Acme", "0013-08 Acme Dept").
"""

import re
import unicodedata
from typing import Optional, Union
from rapidfuzz.distance import Levenshtein

ORG_NUMBER_PATTERN = re.compile(r"^(\d{4})")
SUB_CUSTOMER_PATTERN = re.compile(r"^(\d{4})-\d{2}")
ORG_PREFIX_PATTERN = re.compile(r"^\d{4}(-\d{2})?\s*")

_NON_WORD = re.compile(r"[^\w\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """
    Normalize a string for comparison.

    - "  Décor & Fils Inc. " → "decor fils inc"
    - "Café-Bistro" → "cafe bistro"

    Args:
        text: Raw name (may have accents, punctuation, mixed case)

    Returns:
        Lowercase ASCII-ish string with single spaces, or "" for empty input
    """
    if not text:
        return ""

    text = text.lower().strip()

    # NFD separates base chars from accents; drop the combining marks
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")

    stripped = _NON_WORD.sub(" ", stripped)
    return _WHITESPACE.sub(" ", stripped).strip()


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance (insert, delete, substitute all cost 1)."""
    return Levenshtein.distance(a or "", b or "")


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarity in [0, 1] from edit distance over normalized strings.

    Two empty strings are identical (1.0); one empty is 0.0.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    norm_a = normalize(a)
    norm_b = normalize(b)

    if norm_a == norm_b:
        return 1.0

    max_length = max(len(norm_a), len(norm_b))
    if max_length == 0:
        return 1.0

    return 1 - edit_distance(norm_a, norm_b) / max_length


def _tokens(text: Optional[str]) -> set[str]:
    return {token for token in normalize(text).split(" ") if token}


def token_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard index over normalized whitespace tokens."""
    tokens_a = _tokens(a)
    tokens_b = _tokens(b)

    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0

    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def combined_similarity(a: Optional[str], b: Optional[str]) -> float:
    """60% edit-distance similarity, 40% token similarity."""
    return string_similarity(a, b) * 0.6 + token_similarity(a, b) * 0.4


# ===================
# ORGANIZATION CODES
# ===================

def extract_org_number(display_name: Optional[str]) -> Optional[str]:
    """Leading 4-digit code: "0013 Acme Inc" → "0013"."""
    if not display_name:
        return None
    match = ORG_NUMBER_PATTERN.match(display_name)
    return match.group(1) if match else None


def is_sub_customer(display_name: Optional[str]) -> bool:
    """True for "NNNN-NN ..." display names."""
    return bool(display_name) and SUB_CUSTOMER_PATTERN.match(display_name) is not None


def extract_parent_org_number(display_name: Optional[str]) -> Optional[str]:
    """Parent code of a sub-customer: "0013-08 Dept" → "0013"."""
    if not display_name:
        return None
    match = SUB_CUSTOMER_PATTERN.match(display_name)
    return match.group(1) if match else None


def extract_name_from_display_name(display_name: Optional[str]) -> str:
    """Strip the code prefix: "0013-08 Acme" → "Acme"."""
    if not display_name:
        return ""
    return ORG_PREFIX_PATTERN.sub("", display_name, count=1).strip()


def pad_org_number(org_number: Union[str, int, None]) -> str:
    """Zero-pad to 4 digits: 42 → "0042". None → ""."""
    if org_number is None:
        return ""
    return str(org_number).strip().rjust(4, "0")
