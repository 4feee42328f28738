"""
Resolve place-candidate names to coordinates.

Fallback order: Places Text Search -> Google Geocoding -> Nominatim. The
geocoding stage is cached and spaced by a MinIntervalThrottle; the Places
stage is not throttled. Batches run sequentially.
"""

import logging
import threading
from functools import lru_cache

from app.core.place_normalizer import (
    assign_confidence,
    from_geocoding_result,
    from_nominatim_result,
    from_places_text_result,
    from_places_v1_place,
    select_best_match,
)
from app.core.places_service import (
    ClientRateLimitedError,
    PlaceSearchProviderError,
    PlacesService,
)
from app.core.schemas import (
    Coordinates,
    PlaceCandidate,
    ResolvePlaceItem,
    ResolvePlacesResult,
    batch_status,
)
from app.core.settings import Settings, get_settings
from app.core.throttling import (
    ClientRateLimiter,
    GeocodeCache,
    MinIntervalThrottle,
    OperationCancelled,
)

logger = logging.getLogger(__name__)


def _with_destination(query: str, destination: str | None) -> str:
    return f"{query}, {destination}" if destination else query


class PlaceResolver:
    """Place resolution with injected provider client, cache and throttles."""

    def __init__(
        self,
        service: PlacesService | None = None,
        cache: GeocodeCache | None = None,
        geocode_throttle: MinIntervalThrottle | None = None,
        search_limiter: ClientRateLimiter | None = None,
        geocode_limiter: ClientRateLimiter | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.service = service or PlacesService(settings=settings)
        self.cache = cache or GeocodeCache(
            settings.geocode_cache_ttl_seconds, settings.geocode_cache_max_entries
        )
        self.geocode_throttle = geocode_throttle or MinIntervalThrottle(
            settings.geocode_min_interval_seconds
        )
        self.search_limiter = search_limiter or ClientRateLimiter(settings.search_rate_limit_seconds)
        self.geocode_limiter = geocode_limiter or ClientRateLimiter(settings.geocode_rate_limit_seconds)

    # ------------------------------------------------------------------
    # Provider stages
    # ------------------------------------------------------------------

    def _resolve_with_places(
        self, query: str, destination: str | None, cancel_event: threading.Event | None
    ) -> PlaceCandidate | None:
        results = self.service.text_search(_with_destination(query, destination), cancel_event)
        if not results:
            return None

        match, matched = select_best_match(results, destination)
        if match is None:
            return None

        place_id = match.get("place_id")
        details = (
            self.service.place_details(place_id, cancel_event) if isinstance(place_id, str) else None
        )
        return from_places_text_result(
            query,
            match,
            details,
            confidence=assign_confidence(len(results), matched),
            best_guess=not matched,
        )

    def _geocode_uncached(
        self, query: str, destination: str | None, cancel_event: threading.Event | None
    ) -> PlaceCandidate | None:
        search_query = _with_destination(query, destination)

        try:
            google_results = self.service.geocode(search_query, cancel_event)
        except PlaceSearchProviderError as e:
            logger.warning(f"Google geocoding failed for '{search_query}', trying Nominatim: {e}")
            google_results = None

        if google_results:
            match, matched = select_best_match(google_results, destination)
            candidate = match and from_geocoding_result(
                query,
                match,
                confidence=assign_confidence(len(google_results), matched),
                best_guess=not matched,
            )
            if candidate:
                return candidate

        results = self.service.nominatim_search(search_query, cancel_event)
        match, matched = select_best_match(results, destination)
        if match is None:
            return None
        return from_nominatim_result(
            query,
            match,
            confidence=assign_confidence(len(results), matched),
            best_guess=not matched,
        )

    def _resolve_with_geocoding(
        self, query: str, destination: str | None, cancel_event: threading.Event | None
    ) -> PlaceCandidate | None:
        key = GeocodeCache.make_key(query, destination)
        hit, cached = self.cache.get(key)
        if hit:
            return cached.model_copy(update={"name": query}) if cached else None

        with self.geocode_throttle.slot(cancel_event):
            candidate = self._geocode_uncached(query, destination, cancel_event)
        self.cache.set(key, candidate)
        return candidate

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def resolve(
        self,
        name: str,
        destination_hint: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PlaceCandidate:
        """
        Resolve one place name.

        Returns an unresolved candidate when no provider yields coordinates or
        the cancel event fires. Raises PlaceSearchProviderError when the
        places provider rate-limits us or the final fallback is unavailable.
        """
        query = name.strip()
        destination = destination_hint.strip() if destination_hint and destination_hint.strip() else None
        if not query:
            return PlaceCandidate.unresolved(name)

        try:
            try:
                candidate = self._resolve_with_places(query, destination, cancel_event)
            except PlaceSearchProviderError as e:
                if e.rate_limited:
                    raise
                logger.warning(f"Places lookup failed for '{query}', falling back to geocoding: {e}")
                candidate = None

            if candidate is None:
                candidate = self._resolve_with_geocoding(query, destination, cancel_event)
        except OperationCancelled:
            logger.debug(f"Resolution of '{query}' cancelled")
            return PlaceCandidate.unresolved(query)

        return candidate or PlaceCandidate.unresolved(query)

    def search(
        self,
        query: str,
        destination_context: str | None = None,
        limit: int = 5,
        client_address: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[PlaceCandidate]:
        """Search-as-you-type candidates, throttled per client address."""
        if not self.search_limiter.allow(client_address):
            raise ClientRateLimitedError()

        limit = min(max(1, limit), 10)
        try:
            places = self.service.search_text_v1(query, destination_context, limit, cancel_event)
            candidates = [c for c in (from_places_v1_place(query, p) for p in places) if c]
            if candidates:
                return candidates[:limit]

            fallback = self._resolve_with_geocoding(query, destination_context, cancel_event)
        except OperationCancelled:
            return []
        return [fallback] if fallback else []

    def resolve_many(
        self,
        places: list[ResolvePlaceItem],
        destination_context: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ResolvePlacesResult:
        """Resolve places one at a time; provider failures are recorded per item."""
        resolved: list[PlaceCandidate] = []
        failed = 0
        cancelled = False

        for item in places:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

            name = item.name.strip()
            if not name:
                resolved.append(PlaceCandidate.unresolved(item.name))
                continue

            try:
                candidate = self.resolve(name, item.hint or destination_context, cancel_event)
            except PlaceSearchProviderError as e:
                logger.warning(f"Failed to resolve '{name}': {e}")
                failed += 1
                resolved.append(PlaceCandidate.unresolved(name))
                continue

            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            resolved.append(candidate)

        warnings = [f"{failed} place(s) failed to resolve"] if failed else []
        return ResolvePlacesResult(
            status=batch_status(len(resolved) - failed, failed),
            places=resolved,
            resolved_count=sum(1 for p in resolved if p.resolved),
            failed_count=failed,
            cancelled=cancelled,
            warnings=warnings,
        )

    def geocode(
        self,
        query: str,
        destination: str | None = None,
        client_address: str | None = None,
    ) -> Coordinates | None:
        """Coordinates only; cache hits skip the per-client throttle."""
        hit, cached = self.cache.get(GeocodeCache.make_key(query, destination))
        if hit:
            return Coordinates(lat=cached.lat, lng=cached.lng) if cached else None

        if not self.geocode_limiter.allow(client_address):
            raise ClientRateLimitedError("Too many requests. Please wait a moment.")

        candidate = self._resolve_with_geocoding(query, destination, None)
        if candidate is None:
            return None
        return Coordinates(lat=candidate.lat, lng=candidate.lng)


@lru_cache
def get_place_resolver() -> PlaceResolver:
    return PlaceResolver()
