"""
Adapters that map each provider's response shape onto PlaceCandidate, plus
the destination-matching heuristic used to pick between candidates.

Shapes handled:
    * Places Text Search / Details (legacy, snake_case, geometry.location)
    * Places API v1 searchText (camelCase, displayName.text, location.latitude)
    * Google Geocoding (formatted_address, address_components)
    * Nominatim (display_name, string lat/lon, address dict)
"""

import math
from typing import Any, Literal
from urllib.parse import quote

from app.core.schemas import AddressComponents, PlaceCandidate

Confidence = Literal["high", "medium", "low"]


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _record(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _normalize(value: str) -> str:
    return value.lower().strip()


def _haystacks(result: dict[str, Any]) -> list[str]:
    values: list[str] = []
    for key in ("display_name", "name", "formatted_address", "formattedAddress"):
        text = _text(result.get(key))
        if text:
            values.append(_normalize(text))

    display = _record(result.get("displayName"))
    if _text(display.get("text")):
        values.append(_normalize(display["text"]))

    for value in _record(result.get("address")).values():
        if _text(value):
            values.append(_normalize(value))

    components = result.get("address_components")
    for component in components if isinstance(components, list) else []:
        record = _record(component)
        for key in ("long_name", "short_name"):
            text = _text(record.get(key))
            if text:
                values.append(_normalize(text))
    return values


def matches_destination(
    result: dict[str, Any], destination: str, mode: Literal["all", "any"] = "all"
) -> bool:
    """Case-insensitive substring match of the comma-separated destination parts."""
    parts = [_normalize(part) for part in destination.split(",") if part.strip()]
    if not parts:
        return True
    haystacks = _haystacks(_record(result))
    check = any if mode == "any" else all
    return check(any(part in value for value in haystacks) for part in parts)


def select_best_match(
    results: list[Any], destination: str | None = None
) -> tuple[dict[str, Any] | None, bool]:
    """
    Pick the candidate to use from a provider's ordered result list.

    Returns (match, destination_matched). With a destination, the first
    result matching every destination part wins, then the first matching
    any part; otherwise the provider's first result is used.
    """
    records = [r for r in results if isinstance(r, dict)]
    if not records:
        return None, False
    if destination and destination.strip():
        for mode in ("all", "any"):
            for record in records:
                if matches_destination(record, destination, mode):
                    return record, True
    return records[0], False


def assign_confidence(result_count: int, matched: bool) -> Confidence:
    """high for a single result or a destination match, medium otherwise."""
    if matched or result_count == 1:
        return "high"
    return "medium"


def extract_google_components(components: Any) -> AddressComponents | None:
    if not isinstance(components, list):
        return None

    city = region = country = None
    for component in components:
        record = _record(component)
        types = record.get("types") if isinstance(record.get("types"), list) else []
        long_name = _text(record.get("long_name"))
        if not long_name:
            continue
        if "locality" in types or "postal_town" in types:
            city = long_name
        if "administrative_area_level_1" in types:
            region = long_name
        if "country" in types:
            country = long_name

    if not (city or region or country):
        return None
    return AddressComponents(city=city, region=region, country=country)


def extract_nominatim_components(address: Any) -> AddressComponents | None:
    record = _record(address)
    city = _text(record.get("city")) or _text(record.get("town")) or _text(record.get("village"))
    region = _text(record.get("state"))
    country = _text(record.get("country"))
    if not (city or region or country):
        return None
    return AddressComponents(city=city, region=region, country=country)


def google_maps_search_uri(name: str, place_id: str) -> str:
    return (
        "https://www.google.com/maps/search/?api=1"
        f"&query={quote(name)}&query_place_id={quote(place_id)}"
    )


def _coords(location: Any, lat_key: str, lng_key: str) -> tuple[float | None, float | None]:
    record = _record(location)
    return _number(record.get(lat_key)), _number(record.get(lng_key))


def from_places_text_result(
    query: str,
    match: dict[str, Any],
    details: dict[str, Any] | None,
    *,
    confidence: Confidence,
    best_guess: bool,
) -> PlaceCandidate | None:
    """Legacy Places Text Search hit, optionally enriched by Place Details."""
    details = _record(details)
    geometry = _record(details.get("geometry") or match.get("geometry"))
    lat, lng = _coords(geometry.get("location"), "lat", "lng")
    if lat is None or lng is None:
        return None

    components = details.get("address_components")
    if not isinstance(components, list):
        components = match.get("address_components")

    return PlaceCandidate(
        name=query,
        resolved=True,
        display_name=_text(details.get("name")) or _text(match.get("name")) or query,
        place_id=_text(match.get("place_id")),
        formatted_address=_text(details.get("formatted_address")) or _text(match.get("formatted_address")),
        address_components=extract_google_components(components),
        lat=lat,
        lng=lng,
        best_guess=best_guess,
        confidence=confidence,
        source="places",
        categories=[t for t in match.get("types") or [] if isinstance(t, str)],
    )


def from_places_v1_place(query: str, place: dict[str, Any]) -> PlaceCandidate | None:
    """Places API v1 `places[]` entry from places:searchText."""
    display = place.get("displayName")
    display_name = _text(_record(display).get("text")) or _text(display) or _text(place.get("name")) or query
    lat, lng = _coords(place.get("location"), "latitude", "longitude")
    if lat is None or lng is None:
        return None

    return PlaceCandidate(
        name=query,
        resolved=True,
        display_name=display_name,
        place_id=_text(place.get("id")),
        formatted_address=_text(place.get("formattedAddress")),
        address_components=None,
        lat=lat,
        lng=lng,
        best_guess=False,
        confidence="high",
        source="places",
        categories=[t for t in place.get("types") or [] if isinstance(t, str)],
        maps_uri=_text(place.get("googleMapsUri")),
    )


def from_geocoding_result(
    query: str, match: dict[str, Any], *, confidence: Confidence, best_guess: bool
) -> PlaceCandidate | None:
    """Google Geocoding API result."""
    lat, lng = _coords(_record(match.get("geometry")).get("location"), "lat", "lng")
    if lat is None or lng is None:
        return None

    formatted_address = _text(match.get("formatted_address"))
    place_id = _text(match.get("place_id"))
    return PlaceCandidate(
        name=query,
        resolved=True,
        display_name=formatted_address or query,
        place_id=place_id,
        formatted_address=formatted_address,
        address_components=extract_google_components(match.get("address_components")),
        lat=lat,
        lng=lng,
        best_guess=best_guess,
        confidence=confidence,
        source="geocoding",
        maps_uri=google_maps_search_uri(formatted_address or query, place_id) if place_id else None,
    )


def from_nominatim_result(
    query: str, match: dict[str, Any], *, confidence: Confidence, best_guess: bool
) -> PlaceCandidate | None:
    """Nominatim jsonv2 search result."""
    lat, lng = _number(match.get("lat")), _number(match.get("lon"))
    if lat is None or lng is None:
        return None

    display_name = _text(match.get("display_name"))
    return PlaceCandidate(
        name=query,
        resolved=True,
        display_name=display_name or query,
        place_id=None,
        formatted_address=display_name,
        address_components=extract_nominatim_components(match.get("address")),
        lat=lat,
        lng=lng,
        best_guess=best_guess,
        confidence=confidence,
        source="geocoding",
    )
