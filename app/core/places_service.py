"""
HTTP clients for Google Places, Google Geocoding and OpenStreetMap Nominatim.

Methods return raw provider records; mapping onto PlaceCandidate happens in
place_normalizer. Provider failures raise PlaceSearchProviderError with the
status a request handler should answer with (429 rate limited, 502 otherwise).
"""

import logging
import threading
from typing import Any

import requests

from app.core.settings import (
    Settings,
    get_geocoding_api_key,
    get_places_api_key,
    get_settings,
)
from app.core.throttling import OperationCancelled

logger = logging.getLogger(__name__)

PLACES_API_BASE = "https://maps.googleapis.com/maps/api/place"
PLACES_V1_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"

PLACES_V1_FIELD_MASK = ",".join(
    [
        "places.id",
        "places.name",
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.types",
        "places.googleMapsUri",
    ]
)

# Google answers 200 with these statuses when the key is throttled or refused
_RATE_LIMITED_STATUSES = {"OVER_QUERY_LIMIT", "RESOURCE_EXHAUSTED"}
_EMPTY_STATUSES = {"OK", "ZERO_RESULTS"}


class PlaceSearchProviderError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class ClientRateLimitedError(PlaceSearchProviderError):
    """The local per-client throttle rejected the request before any provider call."""

    def __init__(self, message: str = "Too many requests. Please retry shortly."):
        super().__init__(429, message)


class PlacesService:
    """Thin wrapper over the place and geocoding providers."""

    def __init__(self, session: requests.Session | None = None, settings: Settings | None = None):
        self.session = session or requests.Session()
        self.settings = settings or get_settings()

    def _request(
        self,
        provider: str,
        method: str,
        url: str,
        cancel_event: threading.Event | None = None,
        **kwargs: Any,
    ) -> Any:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled()

        kwargs.setdefault("timeout", self.settings.provider_timeout_seconds)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning(f"{provider} request failed: {e}")
            raise PlaceSearchProviderError(502, f"{provider} unavailable") from e

        # Anything that arrived after cancellation is discarded
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled()

        if response.status_code == 429:
            raise PlaceSearchProviderError(429, f"Rate limited by {provider}")
        if not response.ok:
            logger.warning(f"{provider} error: {response.status_code} {response.text[:200]}")
            raise PlaceSearchProviderError(502, f"{provider} unavailable")

        try:
            return response.json()
        except ValueError:
            logger.warning(f"{provider} returned a non-JSON body")
            return {}

    @staticmethod
    def _check_google_status(provider: str, data: dict[str, Any]) -> None:
        status = data.get("status")
        if not isinstance(status, str) or status in _EMPTY_STATUSES:
            return
        if status in _RATE_LIMITED_STATUSES:
            raise PlaceSearchProviderError(429, f"Rate limited by {provider}")
        logger.warning(f"{provider} status: {status} {data.get('error_message', '')}")
        raise PlaceSearchProviderError(502, f"{provider} unavailable")

    def text_search(
        self, query: str, cancel_event: threading.Event | None = None
    ) -> list[dict[str, Any]] | None:
        """Places Text Search (legacy). None when no Places key is configured."""
        api_key = get_places_api_key()
        if not api_key:
            return None

        data = self._request(
            "places provider",
            "GET",
            f"{PLACES_API_BASE}/textsearch/json",
            cancel_event,
            params={"query": query, "key": api_key, "language": "en"},
        )
        if not isinstance(data, dict):
            return []
        self._check_google_status("places provider", data)
        results = data.get("results")
        return [r for r in results if isinstance(r, dict)] if isinstance(results, list) else []

    def place_details(
        self, place_id: str, cancel_event: threading.Event | None = None
    ) -> dict[str, Any] | None:
        """Place Details for enrichment. Failures are logged and yield None."""
        api_key = get_places_api_key()
        if not api_key:
            return None

        try:
            data = self._request(
                "place details",
                "GET",
                f"{PLACES_API_BASE}/details/json",
                cancel_event,
                params={
                    "place_id": place_id,
                    "fields": "address_component,formatted_address,name,geometry",
                    "key": api_key,
                    "language": "en",
                },
            )
        except PlaceSearchProviderError as e:
            logger.info(f"Place details skipped for {place_id}: {e}")
            return None

        result = data.get("result") if isinstance(data, dict) else None
        return result if isinstance(result, dict) else None

    def search_text_v1(
        self,
        query: str,
        destination: str | None = None,
        limit: int = 5,
        cancel_event: threading.Event | None = None,
    ) -> list[dict[str, Any]]:
        """Places API v1 searchText. Empty when no Places key is configured."""
        api_key = get_places_api_key()
        if not api_key:
            return []

        data = self._request(
            "places provider",
            "POST",
            PLACES_V1_SEARCH_URL,
            cancel_event,
            headers={
                "Content-Type": "application/json",
                "X-Goog-Api-Key": api_key,
                "X-Goog-FieldMask": PLACES_V1_FIELD_MASK,
            },
            json={
                "textQuery": f"{query}, {destination}" if destination else query,
                "languageCode": "en",
                "pageSize": min(max(1, limit), 10),
            },
        )
        places = data.get("places") if isinstance(data, dict) else None
        return [p for p in places if isinstance(p, dict)] if isinstance(places, list) else []

    def geocode(
        self, query: str, cancel_event: threading.Event | None = None
    ) -> list[dict[str, Any]] | None:
        """Google Geocoding. None when no Geocoding key is configured."""
        api_key = get_geocoding_api_key()
        if not api_key:
            return None

        data = self._request(
            "geocoding provider",
            "GET",
            GEOCODE_URL,
            cancel_event,
            params={"address": query, "key": api_key, "language": "en"},
        )
        if not isinstance(data, dict):
            return []
        self._check_google_status("geocoding provider", data)
        results = data.get("results")
        return [r for r in results if isinstance(r, dict)] if isinstance(results, list) else []

    def nominatim_search(
        self, query: str, cancel_event: threading.Event | None = None
    ) -> list[dict[str, Any]]:
        data = self._request(
            "nominatim",
            "GET",
            NOMINATIM_SEARCH_URL,
            cancel_event,
            params={"format": "jsonv2", "addressdetails": 1, "limit": 5, "q": query},
            headers={
                "User-Agent": self.settings.nominatim_user_agent,
                "Accept-Language": "en",
            },
        )
        return [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []
