from __future__ import annotations

import re
from typing import List, Optional, Tuple


ALL_UNITS_MARKER = " (All Units)"

# Long forms first; each maps to its canonical abbreviation.
STREET_SUFFIXES: Tuple[Tuple[str, str], ...] = (
    ("street", "St"),
    ("str", "St"),
    ("st", "St"),
    ("boulevard", "Blvd"),
    ("blvd", "Blvd"),
    ("blv", "Blvd"),
    ("avenue", "Ave"),
    ("aven", "Ave"),
    ("ave", "Ave"),
    ("av", "Ave"),
    ("road", "Rd"),
    ("rd", "Rd"),
    ("drive", "Dr"),
    ("drv", "Dr"),
    ("dr", "Dr"),
    ("court", "Ct"),
    ("ct", "Ct"),
    ("place", "Pl"),
    ("pl", "Pl"),
    ("lane", "Ln"),
    ("ln", "Ln"),
    ("parkway", "Pkwy"),
    ("pkwy", "Pkwy"),
    ("pky", "Pkwy"),
    ("highway", "Hwy"),
    ("hwy", "Hwy"),
    ("circle", "Cir"),
    ("cir", "Cir"),
    ("square", "Sq"),
    ("sq", "Sq"),
    ("terrace", "Ter"),
    ("ter", "Ter"),
    ("trail", "Trl"),
    ("trl", "Trl"),
    ("way", "Way"),
    ("extension", "Ext"),
    ("ext", "Ext"),
)

DIRECTIONALS: Tuple[Tuple[str, str], ...] = (
    ("northeast", "NE"),
    ("northwest", "NW"),
    ("southeast", "SE"),
    ("southwest", "SW"),
    ("north", "N"),
    ("south", "S"),
    ("east", "E"),
    ("west", "W"),
)

# Spelled-out forms generated for a canonical suffix.
SUFFIX_VARIANTS = {
    "st": ("Street", "St", "St."),
    "blvd": ("Boulevard", "Blvd", "Blv"),
    "ave": ("Avenue", "Ave", "Av"),
    "rd": ("Road", "Rd"),
    "dr": ("Drive", "Dr"),
    "ln": ("Lane", "Ln"),
    "ct": ("Court", "Ct"),
    "pl": ("Place", "Pl"),
    "pkwy": ("Parkway", "Pkwy"),
    "ter": ("Terrace", "Ter"),
}

_SUFFIX_PATTERNS = [
    (re.compile(r"\b" + re.escape(long) + r"\b", re.IGNORECASE), short) for long, short in STREET_SUFFIXES
]
_DIRECTION_PATTERNS = [
    (re.compile(r"\b" + re.escape(long) + r"\b", re.IGNORECASE), short) for long, short in DIRECTIONALS
]
_DIRECTION_WORDS = {short.lower(): long.capitalize() for long, short in DIRECTIONALS}
_CANONICAL_SUFFIX_RE = re.compile(
    r"\b(St|Blvd|Ave|Rd|Dr|Ct|Pl|Ln|Pkwy|Hwy|Cir|Sq|Ter|Trl|Way|Ext)$", re.IGNORECASE
)
_PUNCT_RE = re.compile(r"[.,;:#'\"]")
_SPACE_RE = re.compile(r"\s+")
_ADDRESS_RE = re.compile(r"^(\d+)\s+(.+)$")


def _ucwords(value: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in value.split(" "))


def _spell_directionals(value: str) -> str:
    return " ".join(_DIRECTION_WORDS.get(w.lower(), w) for w in value.split(" "))


def normalize_street_name(street_name: Optional[str]) -> str:
    """Canonical display form, e.g. ``"north main street"`` -> ``"N Main St"``."""

    if not street_name:
        return ""
    normalized = str(street_name).strip().lower()
    normalized = _PUNCT_RE.sub("", normalized)
    normalized = _SPACE_RE.sub(" ", normalized).strip()
    for pattern, short in _SUFFIX_PATTERNS:
        normalized = pattern.sub(short, normalized)
    for pattern, short in _DIRECTION_PATTERNS:
        normalized = pattern.sub(short, normalized)
    return _ucwords(normalized)


def street_name_variations(street_name: str) -> List[str]:
    """Substrings to match against a stored street name.

    Includes the input as typed and its normalized form. Abbreviated
    directionals are also tried spelled out, and a known suffix is tried
    in each of its spellings.
    """

    original = str(street_name or "").strip()
    normalized = normalize_street_name(original)
    spelled = _spell_directionals(normalized)
    variations = [original, normalized, spelled]

    m = _CANONICAL_SUFFIX_RE.search(normalized)
    if m:
        suffix = m.group(1)
        base = normalized[: -len(suffix)].strip()
        if base:
            for prefix in (base, _spell_directionals(base)):
                for variant in SUFFIX_VARIANTS.get(suffix.lower(), ()):
                    variations.append(f"{prefix} {variant}")

    out: List[str] = []
    for v in variations:
        if v and v not in out:
            out.append(v)
    return out


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def street_name_sql(street_name: str, column: str) -> Tuple[str, List[str]]:
    """OR-group of ``LIKE`` tests over every variation of ``street_name``."""

    variations = street_name_variations(street_name)
    parts = [f"{column} LIKE ? ESCAPE '\\'" for _ in variations]
    params = [f"%{escape_like(v)}%" for v in variations]
    return "(" + " OR ".join(parts) + ")", params


def parse_street_address(value: str) -> Optional[Tuple[str, str]]:
    """Split ``"12 Main St (All Units)"`` into ``("12", "Main St")``."""

    cleaned = str(value or "").replace(ALL_UNITS_MARKER, "").strip()
    m = _ADDRESS_RE.match(cleaned)
    if not m:
        return None
    return m.group(1), m.group(2).strip()


def looks_like_street_address(term: str) -> bool:
    return bool(re.match(r"^\d+\s+", str(term or "").strip()))
