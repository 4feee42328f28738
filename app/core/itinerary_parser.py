"""
Turn messy itinerary text into ordered day groups of place candidates.
"""

import logging
import re

from app.core.line_classifier import (
    LineKind,
    classify_line,
    parse_place_segment,
    split_place_segments,
)
from app.core.schemas import DayGroup, ParsedPlace, ParseResult

logger = logging.getLogger(__name__)

NO_PLACES_FOUND = "NO_PLACES_FOUND"
PREVIEW_PLACES_PER_DAY = 3

# "2 days in klcc, trx, midvalley" / "3 day trip to Tokyo: Shibuya, Asakusa"
# A bare "days in" only counts at the start of the text; mid-sentence needs a number.
DURATION_LIST_REGEX = re.compile(
    r"(?:^\s*(?:(?P<count>\d{1,2})\s*-?\s*)?|\b(?P<inline_count>\d{1,2})\s*-?\s*)"
    r"days?\s+(?:trip\s+)?(?:in|to|at|around|across|for)\s+(?P<tail>.+)$",
    re.IGNORECASE,
)
# "Tokyo: Shibuya, ..." ; a colon between digits ("11:11 Coffee") is not a prefix
DESTINATION_PREFIX_REGEX = re.compile(r"^[^,]*?(?:(?<!\d):|:(?!\d))\s*")


def distribute_evenly(places: list[ParsedPlace], num_days: int) -> list[DayGroup]:
    """Split places into num_days contiguous chunks, front-loading the remainder.

    Global order is kept: day 1 gets the first chunk, and the first
    len(places) % num_days days get one extra place each.
    """
    base, extra = divmod(len(places), num_days)
    groups: list[DayGroup] = []
    index = 0
    for day_idx in range(num_days):
        size = base + (1 if day_idx < extra else 0)
        groups.append(DayGroup(label=f"Day {day_idx + 1}", places=places[index : index + size]))
        index += size
    return groups


def _parse_duration_list(raw_text: str, duration_hint: int | None) -> list[DayGroup] | None:
    stripped = raw_text.strip()
    if len(stripped.splitlines()) != 1:
        return None

    match = DURATION_LIST_REGEX.search(stripped)
    if not match:
        return None

    tail = DESTINATION_PREFIX_REGEX.sub("", match.group("tail"), count=1)
    segments = split_place_segments(tail)
    if len(segments) < 2:
        return None

    places = [place for place in (parse_place_segment(s) for s in segments) if place is not None]
    count = match.group("count") or match.group("inline_count")
    num_days = int(count) if count else (duration_hint or 1)
    num_days = max(num_days, 1)

    logger.debug(f"Distributing {len(places)} places across {num_days} day(s)")
    return distribute_evenly(places, num_days)


def _walk_lines(raw_text: str) -> list[DayGroup]:
    days: list[DayGroup] = []
    # Implicit "Day 1"; kept only if places arrive before the first header
    current = DayGroup(label="Day 1")
    saw_header = False

    for raw_line in raw_text.splitlines():
        classified = classify_line(raw_line)
        if classified.kind == LineKind.DAY_HEADER:
            if saw_header or current.places:
                days.append(current)
            current = DayGroup(label=classified.label, date=classified.date, places=list(classified.places))
            saw_header = True
        elif classified.kind == LineKind.PLACE_CANDIDATE:
            current.places.extend(classified.places)

    days.append(current)
    return days


def build_cleaned_request(days: list[DayGroup]) -> str:
    lines = [
        f"{day.label}: {', '.join(place.name for place in day.places)}"
        for day in days
        if day.places
    ]
    return "\n".join(lines)


def build_preview_text(days: list[DayGroup], per_day: int = PREVIEW_PLACES_PER_DAY) -> str:
    lines = []
    for day in days:
        if not day.places:
            lines.append(f"{day.label}: (no places yet)")
            continue
        shown = ", ".join(place.name for place in day.places[:per_day])
        hidden = len(day.places) - per_day
        suffix = f" (+{hidden} more)" if hidden > 0 else ""
        lines.append(f"{day.label}: {shown}{suffix}")
    return "\n".join(lines)


def parse_itinerary_text(
    raw_text: str,
    destination_hint: str | None = None,
    duration_hint: int | None = None,
) -> ParseResult:
    """
    Parse raw itinerary text into day groups.

    Args:
        raw_text: Free-form text typed by a user or produced by OCR
        destination_hint: Caller-supplied destination, passed through untouched
        duration_hint: Trip length in days, used for single-line
            "N days in X, Y, Z" lists that carry no number of their own

    Returns:
        ParseResult with days in document order
    """
    days = _parse_duration_list(raw_text, duration_hint) or _walk_lines(raw_text)

    warnings: list[str] = []
    if all(not day.places for day in days):
        warnings.append(NO_PLACES_FOUND)

    return ParseResult(
        cleaned_request=build_cleaned_request(days),
        preview_text=build_preview_text(days),
        destination=destination_hint,
        days=days,
        warnings=warnings,
    )
