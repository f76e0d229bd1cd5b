"""
Free-text address parser.

Ledger addresses are newline-delimited text:

    Acme Inc - Head office
    1234 rue Sainte-Catherine O
    Montréal, QC H3B 1A7
    Canada

parse_address_to_qb() turns that into a QuickBooks PhysicalAddress dict
(Line1..Line5, City, CountrySubDivisionCode, PostalCode, Country).
Best effort only: keys are omitted when nothing could be extracted.
"""

import re
from typing import Optional
import structlog

from utils.fuzzy_match import normalize

logger = structlog.get_logger(__name__)

CANADIAN_POSTAL_CODE = re.compile(r"\b([A-Za-z]\d[A-Za-z])[\s-]?(\d[A-Za-z]\d)\b")
# ZIP only at the end of a line, after a state ("Burlington, VT 05401")
US_ZIP_CODE = re.compile(r"\b(\d{5})(?:-\d{4})?\s*$")

# Whole-line country tokens (normalized)
COUNTRY_LINES = {
    "canada": "Canada",
    "ca": "Canada",
    "can": "Canada",
    "usa": "USA",
    "us": "USA",
    "u s a": "USA",
    "united states": "USA",
    "united states of america": "USA",
    "etats unis": "USA",
}

# Trailing country on the city line ("Montréal, QC H3B 1A7, Canada")
TRAILING_COUNTRY = re.compile(
    r"[,\s]+(canada|usa|united states|[ée]tats-unis)\.?\s*$",
    re.IGNORECASE
)

PROVINCES = {
    # Canada
    "QC": ("qc", "que", "quebec", "province de quebec"),
    "ON": ("on", "ont", "ontario"),
    "NB": ("nb", "new brunswick", "nouveau brunswick"),
    "NS": ("ns", "nova scotia", "nouvelle ecosse"),
    "PE": ("pe", "pei", "prince edward island", "ile du prince edouard"),
    "NL": ("nl", "newfoundland", "newfoundland and labrador", "terre neuve et labrador"),
    "MB": ("mb", "manitoba"),
    "SK": ("sk", "saskatchewan"),
    "AB": ("ab", "alberta"),
    "BC": ("bc", "british columbia", "colombie britannique"),
    "YT": ("yt", "yukon"),
    "NT": ("nt", "northwest territories", "territoires du nord ouest"),
    "NU": ("nu", "nunavut"),
    # US states seen on cross-border customers
    "NY": ("ny", "new york"),
    "VT": ("vt", "vermont"),
    "NH": ("nh", "new hampshire"),
    "ME": ("me", "maine"),
    "MA": ("ma", "massachusetts"),
    "FL": ("fl", "florida"),
    "CA": ("california",),
}

CANADIAN_PROVINCES = {"QC", "ON", "NB", "NS", "PE", "NL", "MB", "SK", "AB", "BC", "YT", "NT", "NU"}

_ALIAS_TO_CODE = {alias: code for code, aliases in PROVINCES.items() for alias in aliases}
_MAX_ALIAS_TOKENS = max(len(alias.split(" ")) for alias in _ALIAS_TO_CODE)
_CITY_TOKENS = re.compile(r"[^,\s()]+")


def _strip_country(lines: list[str]) -> tuple[list[str], Optional[str]]:
    if not lines:
        return lines, None

    last = normalize(lines[-1])
    if last in COUNTRY_LINES:
        return lines[:-1], COUNTRY_LINES[last]

    match = TRAILING_COUNTRY.search(lines[-1])
    if match:
        country = COUNTRY_LINES.get(normalize(match.group(1)), "Canada")
        return lines[:-1] + [lines[-1][:match.start()].strip()], country

    return lines, None


def _split_city_province(text: str) -> tuple[Optional[str], Optional[str]]:
    """
    Split "Montréal, QC" / "Laval (Québec)" / "Ottawa Ontario" into
    (city, province code). Longest province alias wins.
    """
    tokens = _CITY_TOKENS.findall(text)
    if not tokens:
        return None, None

    for size in range(min(_MAX_ALIAS_TOKENS, len(tokens)), 0, -1):
        candidate = normalize(" ".join(tokens[-size:]))
        code = _ALIAS_TO_CODE.get(candidate)
        # A lone city word must not be read as a province ("Maine" ok, "ON" needs a city)
        if code and (size < len(tokens) or len(candidate) > 3):
            city = " ".join(tokens[:-size]).strip(" ,") or None
            return city, code

    return text.strip(" ,") or None, None


def _find_postal_code(line: str) -> Optional[tuple[re.Match, str]]:
    """
    Postal code on a city line, with its match.

    A trailing 5-digit number only counts as a ZIP when a state precedes
    it; street lines often start with a 5-digit civic number.
    """
    match = CANADIAN_POSTAL_CODE.search(line)
    if match:
        return match, f"{match.group(1)} {match.group(2)}".upper()

    match = US_ZIP_CODE.search(line)
    if match:
        _, state = _split_city_province(line[:match.start()])
        if state and state not in CANADIAN_PROVINCES:
            return match, match.group(0).strip()

    return None


def _parse_locality(line: str, address: dict) -> bool:
    """
    Fill City/CountrySubDivisionCode/PostalCode from a city line.

    Returns:
        True if a postal code was found
    """
    found = _find_postal_code(line)
    if found:
        match, postal_code = found
        address["PostalCode"] = postal_code
        before = line[:match.start()]
    else:
        before = line

    city, province = _split_city_province(before)

    if city:
        address["City"] = city
    if province:
        address["CountrySubDivisionCode"] = province

    return found is not None


def parse_address_to_qb(text: Optional[str]) -> dict:
    """
    Parse a free-text ledger address into a QuickBooks address dict.

    Args:
        text: Newline-delimited address (name, street, city line[, country])

    Returns:
        Dict with any of Line1..Line5, City, CountrySubDivisionCode,
        PostalCode, Country. Empty dict for empty input.
    """
    if not text:
        return {}

    lines = [line.strip() for line in text.replace("\r", "").split("\n") if line.strip()]
    lines, country = _strip_country(lines)
    lines = [line for line in lines if line]

    address: dict = {}

    if len(lines) >= 3:
        for index, line in enumerate(lines[:-1][:5], start=1):
            address[f"Line{index}"] = line
        _parse_locality(lines[-1], address)

    elif len(lines) == 2:
        address["Line1"] = lines[0]
        # Degraded: line 2 is either the city line or a street line
        if _find_postal_code(lines[1]):
            _parse_locality(lines[1], address)
        else:
            address["Line2"] = lines[1]

    elif len(lines) == 1:
        address["Line1"] = lines[0]

    if country:
        address["Country"] = country
    elif address.get("CountrySubDivisionCode") in CANADIAN_PROVINCES and "PostalCode" in address:
        address["Country"] = "Canada"

    logger.debug("address_parsed", lines=len(lines), fields=sorted(address.keys()))
    return address
