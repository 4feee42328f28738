"""
Line-level classification for free-form itinerary text.

Every raw line is one of: a day header, meta/noise (boilerplate, notes,
transport legs), a line carrying one or more place candidates, or blank.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from app.core.schemas import ParsedPlace

# Pictographs, dingbats, flags (regional indicators), keycaps, ZWJ and tags
EMOJI_REGEX = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\u2600-\u27bf"
    "\u2300-\u23ff"
    "\u2b00-\u2bff"
    "\u2190-\u21ff"
    "\u25a0-\u25ff"
    "\u2934\u2935\u3030\u303d\u3297\u3299"
    "\u00a9\u00ae\u203c\u2049\u2122\u2139\u24c2"
    "\u200d\u20e3"
    "\U000E0020-\U000E007F"
    "]"
)
VARIATION_SELECTOR_REGEX = re.compile("[\ufe0e\ufe0f]")
LEADING_MARKERS_REGEX = re.compile(r"^[•\-*]+\s*")
TRAILING_ASTERISK_REGEX = re.compile(r"\s*\*+$")
TRAILING_LABEL_PUNCT_REGEX = re.compile(r"[:\-]+\s*$")
WHITESPACE_REGEX = re.compile(r"\s+")

DAY_HEADER_REGEX = re.compile(
    r"^\s*((?:day\s*\d+)\b.*|\d{1,2}/\d{1,2}(?:/\d{2,4})?\b.*)$",
    re.IGNORECASE,
)
# "Day 1: Louvre, Eiffel Tower"; clock colons ("Day 1 9:00 start") do not split
HEADER_TAIL_REGEX = re.compile(r"\s*(?:(?<!\d):|:(?!\d))\s*")
DATE_TOKEN_REGEX =re.compile(r"\b(\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b")
DATE_RANGE_REGEX = re.compile(r"\b\d{1,2}/\d{1,2}(?:\s*[-–]\s*\d{1,2}/\d{1,2})?\b")
TRIP_WORD_REGEX = re.compile(r"\btrip\b", re.IGNORECASE)

TIME_PREFIX_REGEX = re.compile(
    r"^\s*(\d{1,2}[:.]\d{2}(?:\s*(?:am|pm)\b)?|\d{1,2}\s*(?:am|pm)\b)\s*",
    re.IGNORECASE,
)
TRAILING_TIME_REGEX = re.compile(
    r"\s*[.,–\-]?\s*(?<!\d)\d{1,2}(?:[:.]\d{2})?\s*(?:am|pm)\b\s*$",
    re.IGNORECASE,
)

# Commas split places unless they sit between digits ("1,000 Steps")
PLACE_SEPARATOR_REGEX = re.compile(r"\s*(?:(?<!\d),|,(?!\d)|，)\s*")

META_LINE_PATTERNS = [
    re.compile(r"^\s*places from my itinerary\b", re.IGNORECASE),
    re.compile(r"^\s*i(?:'|’)m planning a trip to\b", re.IGNORECASE),
    re.compile(r"^\s*i am planning a trip to\b", re.IGNORECASE),
]

NOTE_LINE_REGEX = re.compile(
    r"^\s*(notes?|reminder|todo|itinerary|schedule|tips?)\b", re.IGNORECASE
)
EXCLUDED_PATTERNS = [
    NOTE_LINE_REGEX,
    re.compile(
        r"\b(arrive|depart|departure|check[- ]?in|check[- ]?out|flight|train|bus|"
        r"transfer|layover|drive|taxi|uber)\b",
        re.IGNORECASE,
    ),
]
TRAVEL_ONLY_REGEX = re.compile(
    r"\b(take|took|reached|reach|arrive|arrived|depart|departure|flight|train|bus|"
    r"van|taxi|uber|transfer|check[- ]?in|check[- ]?out)\b",
    re.IGNORECASE,
)
TRAVEL_PLACE_REGEX = re.compile(
    r"\b(?:reached|arrived(?:\s+at|\s+in)?|arrive(?:\s+at|\s+in)?|"
    r"check(?:ed)?\s*-?\s*in(?:\s+at)?|checking\s*in(?:\s+at)?|stay(?:ing)?\s+at)\s+(.+)",
    re.IGNORECASE,
)
LEADING_PREPOSITION_REGEX = re.compile(r"^(to|at|in)\s+", re.IGNORECASE)
ARRIVAL_WORD_REGEX = re.compile(r"\barriv(ed|e)?\b", re.IGNORECASE)


class LineKind(str, Enum):
    DAY_HEADER = "day_header"
    META_NOISE = "meta_noise"
    PLACE_CANDIDATE = "place_candidate"
    BLANK = "blank"


@dataclass
class ClassifiedLine:
    kind: LineKind
    label: str | None = None
    date: str | None = None
    places: list[ParsedPlace] = field(default_factory=list)


def strip_emoji(value: str) -> str:
    return VARIATION_SELECTOR_REGEX.sub("", EMOJI_REGEX.sub("", value))


def clean_line(value: str) -> str:
    """Drop emoji and bullet markers and collapse whitespace."""
    value = strip_emoji(value).strip()
    value = LEADING_MARKERS_REGEX.sub("", value)
    return WHITESPACE_REGEX.sub(" ", value).strip()


def normalize_header_candidate(value: str) -> str:
    value = clean_line(value)
    return TRAILING_ASTERISK_REGEX.sub("", value).strip()


def has_letters(value: str) -> bool:
    return any(ch.isalpha() for ch in value)


def is_meta_line(line: str) -> bool:
    if any(pattern.search(line) for pattern in META_LINE_PATTERNS):
        return True
    return bool(TRIP_WORD_REGEX.search(line) and DATE_RANGE_REGEX.search(line))


def is_excluded_line(line: str) -> bool:
    return any(pattern.search(line) for pattern in EXCLUDED_PATTERNS)


def is_travel_only_line(line: str) -> bool:
    return bool(TRAVEL_ONLY_REGEX.search(line))


def strip_trailing_time(value: str) -> str:
    """Remove trailing clock tokens such as 'Maribu晚餐 6pm' -> 'Maribu晚餐'."""
    result = value.strip()
    previous = None
    while result and result != previous:
        previous = result
        result = TRAILING_TIME_REGEX.sub("", result).strip()
    return result


def _time_token_is_part_of_name(rest: str) -> bool:
    # "7AM Cafe" and "11:11 Coffee": a short capitalized remainder means the
    # clock token belongs to the name. "9am coffee" does not qualify.
    trimmed = rest.strip()
    if not trimmed:
        return False
    if len(trimmed.split()) > 2:
        return False
    return bool(re.search(r"[A-Z]", trimmed))


def split_time_prefix(value: str) -> tuple[str | None, str]:
    """Split a leading clock token off a place line.

    Returns (time_text, rest). time_text is None when nothing was split.
    """
    match = TIME_PREFIX_REGEX.match(value)
    if not match:
        return None, value
    rest = value[match.end():]
    if _time_token_is_part_of_name(rest):
        return None, value
    return match.group(1), rest


def extract_place_from_travel_line(line: str) -> str | None:
    """'12pm reached Neo Grand Hatyai' -> 'Neo Grand Hatyai'."""
    match = TRAVEL_PLACE_REGEX.search(line)
    if not match:
        return None

    candidate = LEADING_PREPOSITION_REGEX.sub("", clean_line(match.group(1)))
    normalized = strip_trailing_time(candidate)
    if not normalized or not has_letters(normalized):
        return None
    if is_excluded_line(normalized) or is_meta_line(normalized):
        return None
    if len(normalized.split()) <= 1 and ARRIVAL_WORD_REGEX.search(line):
        return None
    return normalized


def parse_place_segment(segment: str) -> ParsedPlace | None:
    """Turn one comma-free chunk of a line into a place, or None if it is noise."""
    cleaned = clean_line(segment)
    if not cleaned:
        return None

    time_text, rest = split_time_prefix(cleaned)
    rest = rest.strip()
    if not rest or not has_letters(rest):
        return None
    if is_meta_line(rest):
        return None

    travel_place = extract_place_from_travel_line(rest)
    if travel_place:
        return ParsedPlace(name=travel_place, time_text=time_text)

    if is_travel_only_line(rest) or is_excluded_line(rest):
        return None

    name = strip_trailing_time(rest)
    if not name or not has_letters(name):
        return None
    return ParsedPlace(name=name, time_text=time_text)


def split_place_segments(line: str) -> list[str]:
    return [part for part in PLACE_SEPARATOR_REGEX.split(line) if part.strip()]


def match_day_header(line: str) -> tuple[str, str | None] | None:
    """Return (label, date) when the line is a day header."""
    candidate = normalize_header_candidate(line)
    match = DAY_HEADER_REGEX.match(candidate)
    if not match:
        return None
    label = TRAILING_LABEL_PUNCT_REGEX.sub("", match.group(1)).strip()
    date_match = DATE_TOKEN_REGEX.search(label)
    return label or "Day 1", date_match.group(1) if date_match else None


def split_header_tail(label: str) -> tuple[str, str | None]:
    """'Day 1: Louvre, Orsay' -> ('Day 1', 'Louvre, Orsay'); other labels pass through."""
    parts = HEADER_TAIL_REGEX.split(label, maxsplit=1)
    if len(parts) < 2 or not parts[0].strip() or not parts[1].strip():
        return label, None
    return parts[0].strip(), parts[1].strip()


def _parse_places(line: str) -> list[ParsedPlace]:
    return [
        place
        for place in (parse_place_segment(segment) for segment in split_place_segments(line))
        if place is not None
    ]


def classify_line(line: str) -> ClassifiedLine:
    if not line.strip():
        return ClassifiedLine(LineKind.BLANK)

    header = match_day_header(line)
    if header:
        label, date = header
        label, tail = split_header_tail(label)
        places = _parse_places(tail) if tail else []
        return ClassifiedLine(LineKind.DAY_HEADER, label=label, date=date, places=places)

    cleaned = clean_line(line)
    if not cleaned or is_meta_line(cleaned) or NOTE_LINE_REGEX.search(cleaned):
        return ClassifiedLine(LineKind.META_NOISE)

    places = _parse_places(cleaned)
    if not places:
        return ClassifiedLine(LineKind.META_NOISE)
    return ClassifiedLine(LineKind.PLACE_CANDIDATE, places=places)
