"""
AI-assisted place extraction from free-form itinerary text.

The model proposes place names; the parser supplies day structure; the
resolver turns names into coordinates. Resolved display names replace the
user's shorthand in the day groups.

Links and images only yield the model's list of named places; nothing is
resolved for them here.
"""

import logging
import re
from collections import Counter
from typing import Any

from app.core.gemini_json import JsonRecoveryError, parse_model_json
from app.core.itinerary_parser import (
    NO_PLACES_FOUND,
    build_cleaned_request,
    build_preview_text,
    parse_itinerary_text,
)
from app.core.llm_provider import LLMProvider, LLMProviderError, get_vision_provider
from app.core.place_resolver import PlaceResolver, get_place_resolver
from app.core.places_service import PlaceSearchProviderError
from app.core.review_warnings import normalize_place_name
from app.core.schemas import (
    DayGroup,
    ExtractedPlace,
    ExtractedPlacesResult,
    ExtractPlacesResult,
    PlaceCandidate,
)
from app.core.screenshot_ocr import decode_image_data

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """You are a travel assistant that extracts place names and destinations from messy itinerary text.

Extract:
1. Place names (restaurants, attractions, hotels, shops, temples, etc.)
2. Category (food, culture, nature, shop, night, photo, accommodation, transport)
3. A brief description if context is available
4. A concise destination label if the city or region is obvious

Respond with a valid JSON object in this exact format:
{
  "places": [
    {"name": "Place name in English", "category": "food", "description": "Brief description"}
  ],
  "summary": "Brief summary of what was found",
  "destination": "City or region name if clear"
}"""


def _build_user_prompt(text: str, destination: str | None) -> str:
    lines = [f"Extract travel places from this itinerary text:\n\n{text}\n"]
    if destination:
        lines.append(f"The user is planning a trip to {destination}.")
    lines.append("Focus on specific named locations and ignore dates/times unless they clarify the place.")
    lines.append("Respond ONLY with valid JSON, no markdown or extra text.")
    return "\n".join(lines)


def _ask_model(text: str, destination: str | None, provider: LLMProvider) -> dict[str, Any]:
    """Model output as a dict; an unrecoverable response is treated as empty."""
    raw = provider.chat(
        [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {"role": "user", "content": _build_user_prompt(text, destination)},
        ],
        temperature=0.7,
    )
    try:
        parsed = parse_model_json(raw)
    except JsonRecoveryError as e:
        logger.warning(f"Could not parse extraction response: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _model_place_names(result: dict[str, Any]) -> list[str]:
    names: list[str] = []
    seen: set[str] = set()
    places = result.get("places")
    for place in places if isinstance(places, list) else []:
        name = place.get("name") if isinstance(place, dict) else None
        if not isinstance(name, str) or not name.strip():
            continue
        key = normalize_place_name(name)
        if key not in seen:
            seen.add(key)
            names.append(name.strip())
    return names


def _parsed_place_names(days: list[DayGroup]) -> list[str]:
    names: list[str] = []
    seen: set[str] = set()
    for day in days:
        for place in day.places:
            key = normalize_place_name(place.name)
            if key not in seen:
                seen.add(key)
                names.append(place.name)
    return names


def _most_common_city(candidates: list[PlaceCandidate]) -> str | None:
    cities = Counter(
        c.address_components.city
        for c in candidates
        if c.resolved and c.address_components and c.address_components.city
    )
    if not cities:
        return None
    return cities.most_common(1)[0][0]


def extract_places_from_text(
    text: str,
    destination: str | None = None,
    duration_days: int | None = None,
    resolver: PlaceResolver | None = None,
    provider: LLMProvider | None = None,
) -> ExtractPlacesResult:
    """
    Extract, structure and resolve the places mentioned in itinerary text.

    Raises:
        LLMProviderError: the model call failed (rate limited or unavailable)
        PlaceSearchProviderError: the places provider rate-limited us
    """
    resolver = resolver or get_place_resolver()
    warnings: list[str] = []

    model_result: dict[str, Any] = {}
    try:
        provider = provider or LLMProvider()
    except LLMProviderError as e:
        logger.warning(f"Place extraction model unavailable, using parsed places only: {e}")
        warnings.append(str(e))
        provider = None
    if provider is not None:
        model_result = _ask_model(text, destination, provider)

    parsed = parse_itinerary_text(text, destination, duration_days)
    names = _model_place_names(model_result) or _parsed_place_names(parsed.days)
    logger.info(f"Resolving {len(names)} extracted places")

    candidates: list[PlaceCandidate] = []
    failed = 0
    for name in names:
        try:
            candidates.append(resolver.resolve(name, destination))
        except PlaceSearchProviderError as e:
            if e.rate_limited:
                raise
            logger.warning(f"Could not resolve '{name}': {e}")
            failed += 1
            candidates.append(PlaceCandidate.unresolved(name))
    if failed:
        warnings.append(f"{failed} place(s) failed to resolve")

    display_names = {
        normalize_place_name(c.name): c.display_name
        for c in candidates
        if c.resolved and c.display_name
    }
    days = [
        day.model_copy(
            update={
                "places": [
                    place.model_copy(
                        update={"name": display_names.get(normalize_place_name(place.name), place.name)}
                    )
                    for place in day.places
                ]
            }
        )
        for day in parsed.days
    ]

    model_destination = model_result.get("destination")
    if not isinstance(model_destination, str) or not model_destination.strip():
        model_destination = None
    resolved_destination = destination or model_destination or _most_common_city(candidates)

    summary = model_result.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = f"Found {len(candidates)} places"

    return ExtractPlacesResult(
        cleaned_request=build_cleaned_request(days),
        preview_text=build_preview_text(days),
        destination=resolved_destination.strip() if resolved_destination else None,
        days=days,
        warnings=[w for w in parsed.warnings if w != NO_PLACES_FOUND or not candidates] + warnings,
        places=candidates,
        summary=summary,
    )


# =============================================================================
# URL and image sources
# =============================================================================

SOURCE_TYPES = [
    (("youtube.com", "youtu.be"), "YouTube video"),
    (("instagram.com",), "Instagram post"),
    (("tiktok.com",), "TikTok video"),
    (("xiaohongshu.com", "xhslink.com"), "RedNote/Xiaohongshu post"),
]

URL_SYSTEM_PROMPT = """You are a travel assistant that extracts place names and travel information from URLs.

Given a link to travel content (videos, social posts, blog articles), extract:
1. Place names mentioned (restaurants, attractions, hotels, shops, temples, etc.)
2. Local names if available
3. Category for each place (food, culture, nature, shop, night, photo, accommodation, transport)
4. A brief description based on context
5. Any tips or recommendations

For social media links, infer the featured places from the URL structure and the platform.

Respond with a valid JSON object in this exact format:
{
  "places": [
    {
      "name": "Place name in English",
      "nameLocal": "Local name if known",
      "category": "food",
      "description": "Brief description",
      "tips": ["tip"]
    }
  ],
  "summary": "Brief summary of findings",
  "sourceType": "Type of content"
}"""

IMAGE_SYSTEM_PROMPT = """You are a travel data extractor analyzing a travel itinerary screenshot.

Use both what you see and what you read:
- Recognize landmarks visible in photos by their features.
- Read all text, noting whether it is a header or category ("KL travel", "must go")
  or the name of a specific place.
- Confirm a location when a text label and a photo agree.

Do NOT extract category headers, UI elements ("Home", "Share", "Save"), usernames
("@name"), descriptions ("unique architecture", "best to avoid"), sentiment words
("yes", "no", "maybe") or instructions ("tap here").

Only extract proper nouns naming a specific place that is visible in a photo or
would appear on Google Maps.

Return JSON:
{
  "validated_locations": [
    {"name": "Exact place name", "visually_confirmed": true, "reasoning": "why this is a location", "confidence": "high"}
  ],
  "filtered_out": [
    {"text": "rejected text", "reason": "why it was filtered"}
  ]
}"""

IMAGE_GENERATION_CONFIG = {
    "temperature": 0.2,
    "top_k": 20,
    "top_p": 0.8,
    "max_output_tokens": 2048,
    "response_mime_type": "application/json",
}

# Names the vision model still returns now and then despite the prompt
NON_PLACE_NAME_PATTERNS = [
    re.compile(r"^(yes|no|maybe)$", re.IGNORECASE),
    re.compile(r"^@"),
    re.compile(r"^(must go|don't go|don't|avoid|visit)$", re.IGNORECASE),
    re.compile(r"^(kl travel|travel|itinerary|tips)$", re.IGNORECASE),
    re.compile(r"^(good|bad|best|worst)$", re.IGNORECASE),
    re.compile(r"^(unique architecture|intricate details|best to avoid|disturbing|residents)$", re.IGNORECASE),
    re.compile(r"^urban village$", re.IGNORECASE),
]

PARSE_FAILED = "Failed to parse AI response"
NO_RESPONSE = "Failed to extract places from image"


def detect_source_type(url: str) -> str:
    lowered = url.lower()
    for hosts, source_type in SOURCE_TYPES:
        if any(host in lowered for host in hosts):
            return source_type
    return "website"


def _text_field(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _coerce_places(raw_places: Any) -> list[ExtractedPlace]:
    places: list[ExtractedPlace] = []
    for item in raw_places if isinstance(raw_places, list) else []:
        if not isinstance(item, dict) or not _text_field(item.get("name")):
            continue
        tips = item.get("tips")
        places.append(
            ExtractedPlace(
                name=_text_field(item["name"]),
                name_local=_text_field(item.get("nameLocal")),
                category=_text_field(item.get("category")) or "attraction",
                description=_text_field(item.get("description")),
                tips=[t for t in tips if isinstance(t, str)] if isinstance(tips, list) else [],
            )
        )
    return places


def extract_places_from_url(
    url: str,
    destination: str | None = None,
    provider: LLMProvider | None = None,
) -> ExtractedPlacesResult:
    """
    Ask the model which places a travel link features.

    Raises:
        LLMProviderError: the model is not configured or the call failed
    """
    provider = provider or LLMProvider()
    source_type = detect_source_type(url)
    logger.info(f"Extracting places from {source_type}: {url}")

    user_prompt = [f"Analyze this {source_type} URL and extract travel places and recommendations: {url}"]
    if destination:
        user_prompt.append(f"The user is planning a trip to {destination}.")
    user_prompt.append(
        "Focus on specific, named locations a traveler could visit. "
        "Respond ONLY with valid JSON, no markdown or extra text."
    )
    raw = provider.chat(
        [
            {"role": "system", "content": URL_SYSTEM_PROMPT},
            {"role": "user", "content": "\n\n".join(user_prompt)},
        ],
        temperature=0.7,
    )

    try:
        parsed = parse_model_json(raw)
    except JsonRecoveryError as e:
        logger.warning(f"Could not parse URL extraction response: {e}")
        return ExtractedPlacesResult(source_type=source_type, warnings=[PARSE_FAILED])
    parsed = parsed if isinstance(parsed, dict) else {}

    places = _coerce_places(parsed.get("places"))
    return ExtractedPlacesResult(
        places=places,
        summary=_text_field(parsed.get("summary")) or f"Found {len(places)} places from {source_type}",
        source_type=_text_field(parsed.get("sourceType")) or source_type,
    )


def image_mime_type(image: str) -> str:
    for mime_type in ("image/png", "image/webp"):
        if image.startswith(f"data:{mime_type}"):
            return mime_type
    return "image/jpeg"


def _is_place_name(location: dict[str, Any]) -> bool:
    name = _text_field(location.get("name"))
    if not name:
        return False
    if any(pattern.search(name) for pattern in NON_PLACE_NAME_PATTERNS):
        logger.debug(f"Filtered '{name}': not a place name")
        return False
    if not location.get("visually_confirmed") and location.get("confidence") == "low":
        logger.debug(f"Filtered '{name}': low confidence without visual confirmation")
        return False
    if len(name) < 2 or name.isdigit():
        return False
    return True


def extract_places_from_image(
    image: str,
    destination: str | None = None,
    provider: LLMProvider | None = None,
) -> ExtractedPlacesResult:
    """
    Find the specific places shown or named in one itinerary image.

    Raises:
        binascii.Error: image is not valid base64
        LLMProviderError: the model is not configured or the call failed
    """
    data = decode_image_data(image)
    provider = provider or get_vision_provider()

    prompt = IMAGE_SYSTEM_PROMPT
    if destination:
        prompt += f"\n\nDestination context: {destination}"
    prompt += "\n\nRespond with valid JSON only, no markdown."

    raw = provider.generate_with_image(prompt, image_mime_type(image), data, IMAGE_GENERATION_CONFIG)
    if not raw.strip():
        return ExtractedPlacesResult(warnings=[NO_RESPONSE])

    try:
        parsed = parse_model_json(raw)
    except JsonRecoveryError as e:
        logger.warning(f"Could not parse image extraction response: {e}")
        return ExtractedPlacesResult(warnings=[PARSE_FAILED])
    parsed = parsed if isinstance(parsed, dict) else {}

    filtered_out = parsed.get("filtered_out")
    if isinstance(filtered_out, list) and filtered_out:
        logger.debug(f"Model filtered {len(filtered_out)} text fragments")

    locations = parsed.get("validated_locations")
    places = [
        ExtractedPlace(name=location["name"].strip(), description=_text_field(location.get("reasoning")))
        for location in (locations if isinstance(locations, list) else [])
        if isinstance(location, dict) and _is_place_name(location)
    ]
    logger.info(f"Extracted {len(places)} places from image")
    return ExtractedPlacesResult(places=places, summary=f"Found {len(places)} validated locations")
