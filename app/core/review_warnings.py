"""
Post-parse review heuristics for user-submitted itinerary text.
"""

import re

from app.core.schemas import DayGroup

DUPLICATE_PLACE_NAMES = "DUPLICATE_PLACE_NAMES"
AMBIGUOUS_TEXT_DETECTED = "AMBIGUOUS_TEXT_DETECTED"

AMBIGUOUS_TEXT_REGEX = re.compile(r"\?|\b(tbd|unknown|maybe)\b", re.IGNORECASE)


def normalize_place_name(value: str) -> str:
    return " ".join(value.strip().lower().split())


def has_duplicate_places(days: list[DayGroup]) -> bool:
    seen: set[str] = set()
    for day in days:
        for place in day.places:
            normalized = normalize_place_name(place.name)
            if not normalized:
                continue
            if normalized in seen:
                return True
            seen.add(normalized)
    return False


def merge_warnings(*warning_lists: list[str]) -> list[str]:
    """Concatenate warning lists, keeping the first occurrence of each code."""
    merged: list[str] = []
    for warnings in warning_lists:
        for warning in warnings:
            if warning not in merged:
                merged.append(warning)
    return merged


def detect_warnings(raw_text: str, days: list[DayGroup]) -> list[str]:
    warnings: list[str] = []
    if has_duplicate_places(days):
        warnings.append(DUPLICATE_PLACE_NAMES)
    if AMBIGUOUS_TEXT_REGEX.search(raw_text):
        warnings.append(AMBIGUOUS_TEXT_DETECTED)
    return merge_warnings(warnings)
