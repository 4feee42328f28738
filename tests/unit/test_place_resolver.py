import threading

import pytest
from conftest import FakeResponse, nominatim_result, places_text_result

from app.core.places_service import ClientRateLimitedError, PlaceSearchProviderError
from app.core.schemas import ResolvePlaceItem

CENTRAL_PARK_RESULTS = [
    nominatim_result(
        "Central Park, Sydney, New South Wales, Australia",
        "-33.8863",
        "151.1962",
        city="Sydney",
        state="New South Wales",
        country="Australia",
    ),
    nominatim_result(
        "Central Park, Manhattan, New York County, New York, United States",
        "40.7826",
        "-73.9656",
        city="New York",
        state="New York",
        country="United States",
    ),
]

KLCC_DETAILS = {
    "result": {
        "name": "Kuala Lumpur City Centre (KLCC)",
        "formatted_address": "Kuala Lumpur, Malaysia",
        "address_components": [
            {"long_name": "Kuala Lumpur", "types": ["locality"]},
            {"long_name": "Malaysia", "types": ["country"]},
        ],
        "geometry": {"location": {"lat": 3.1579, "lng": 101.7123}},
    }
}


def test_resolves_with_places_and_details(resolver, session, places_key):
    session.add(
        "textsearch",
        FakeResponse(
            {
                "status": "OK",
                "results": [places_text_result("Kuala Lumpur City Centre (KLCC)", 3.1579, 101.7123, place_id="place-klcc")],
            }
        ),
    )
    session.add("details", FakeResponse(KLCC_DETAILS))

    candidate = resolver.resolve("klcc")

    assert candidate.resolved
    assert candidate.name == "klcc"
    assert candidate.display_name == "Kuala Lumpur City Centre (KLCC)"
    assert candidate.source == "places"
    assert candidate.confidence == "high"
    assert candidate.address_components.city == "Kuala Lumpur"
    assert session.calls_to("textsearch")[0]["params"]["query"] == "klcc"


def test_falls_back_to_nominatim_and_prefers_destination_match(resolver, session, no_google_keys):
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS))

    candidate = resolver.resolve("Central Park", "New York")

    assert candidate.resolved
    assert candidate.source == "geocoding"
    assert candidate.lat == pytest.approx(40.7826)
    assert candidate.address_components.city == "New York"
    assert candidate.confidence == "high"
    assert not candidate.best_guess

    call = session.calls_to("nominatim")[0]
    assert call["params"]["q"] == "Central Park, New York"
    assert call["params"]["format"] == "jsonv2"
    assert call["headers"]["User-Agent"]


def test_unmatched_destination_is_medium_confidence_best_guess(resolver, session, no_google_keys):
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS))

    candidate = resolver.resolve("Central Park", "Tokyo")

    assert candidate.resolved
    assert candidate.best_guess
    assert candidate.confidence == "medium"
    assert "Sydney" in candidate.display_name


def test_places_outage_falls_through_to_geocoding(resolver, session, places_key):
    session.add("textsearch", FakeResponse({"error": "boom"}, status_code=500))
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS[1:]))

    candidate = resolver.resolve("Central Park")

    assert candidate.resolved
    assert candidate.source == "geocoding"


def test_places_rate_limit_is_raised(resolver, session, places_key):
    session.add("textsearch", FakeResponse(None, status_code=429, text="quota"))

    with pytest.raises(PlaceSearchProviderError) as exc:
        resolver.resolve("Central Park")
    assert exc.value.status_code == 429
    assert not session.calls_to("nominatim")


def test_google_over_query_limit_status_maps_to_429(resolver, session, places_key):
    session.add("textsearch", FakeResponse({"status": "OVER_QUERY_LIMIT", "results": []}))

    with pytest.raises(PlaceSearchProviderError) as exc:
        resolver.resolve("Central Park")
    assert exc.value.rate_limited


def test_nominatim_unreachable_is_502(resolver, session, no_google_keys, connection_error):
    session.add("nominatim", connection_error)

    with pytest.raises(PlaceSearchProviderError) as exc:
        resolver.resolve("Central Park")
    assert exc.value.status_code == 502


def test_no_results_yields_unresolved_candidate(resolver, session, no_google_keys):
    session.add("nominatim", FakeResponse([]))

    candidate = resolver.resolve("Qwzxv Place")

    assert not candidate.resolved
    assert candidate.source == "none"
    assert candidate.lat is None
    assert candidate.confidence is None


def test_geocoding_results_are_cached(resolver, session, no_google_keys):
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS))

    first = resolver.resolve("Central Park", "New York")
    second = resolver.resolve("central park", "new york")

    assert len(session.calls_to("nominatim")) == 1
    assert second.lat == first.lat
    assert second.name == "central park"


def test_cancelled_before_start_makes_no_calls(resolver, session, no_google_keys):
    cancel = threading.Event()
    cancel.set()

    candidate = resolver.resolve("Central Park", cancel_event=cancel)

    assert not candidate.resolved
    assert session.calls == []


def test_search_throttle_rejects_before_provider_call(resolver, session, places_key):
    place = {
        "id": "cp",
        "displayName": {"text": "Central Park"},
        "formattedAddress": "New York, NY, USA",
        "location": {"latitude": 40.7826, "longitude": -73.9656},
    }
    session.add("searchText", FakeResponse({"places": [place, {"id": "no-coords"}]}))

    results = resolver.search("central park", "New York", limit=5, client_address="203.0.113.7")
    assert [r.display_name for r in results] == ["Central Park"]

    with pytest.raises(ClientRateLimitedError) as exc:
        resolver.search("central park", "New York", client_address="203.0.113.7")
    assert exc.value.status_code == 429
    assert len(session.calls) == 1

    request = session.calls[0]
    assert request["method"] == "POST"
    assert request["json"]["textQuery"] == "central park, New York"
    assert "places.location" in request["headers"]["X-Goog-FieldMask"]


def test_search_falls_back_to_geocoding(resolver, session, no_google_keys):
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS))

    results = resolver.search("Central Park", "New York", client_address="198.51.100.1")

    assert len(results) == 1
    assert results[0].source == "geocoding"


def test_resolve_many_records_per_item_failures(resolver, session, no_google_keys, connection_error):
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS), connection_error, FakeResponse([]))

    result = resolver.resolve_many(
        [
            ResolvePlaceItem(name="Central Park"),
            ResolvePlaceItem(name="Belem Tower", hint="Lisbon"),
            ResolvePlaceItem(name="   "),
            ResolvePlaceItem(name="Qwzxv"),
        ],
        destination_context="New York",
    )

    assert result.status == "partial"
    assert result.failed_count == 1
    assert result.resolved_count == 1
    assert [p.resolved for p in result.places] == [True, False, False, False]
    assert not result.cancelled
    assert session.calls_to("nominatim")[1]["params"]["q"] == "Belem Tower, Lisbon"


def test_resolve_many_stops_when_cancelled(resolver, session, no_google_keys):
    cancel = threading.Event()
    cancel.set()

    result = resolver.resolve_many([ResolvePlaceItem(name="Central Park")], cancel_event=cancel)

    assert result.cancelled
    assert result.places == []
    assert session.calls == []


def test_geocode_cache_hit_skips_client_throttle(resolver, session, no_google_keys):
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS))

    first = resolver.geocode("Central Park", "New York", client_address="192.0.2.1")
    second = resolver.geocode("Central Park", "New York", client_address="192.0.2.1")

    assert first == second
    assert first.lat == pytest.approx(40.7826)

    with pytest.raises(ClientRateLimitedError):
        resolver.geocode("Belem Tower", "Lisbon", client_address="192.0.2.1")


def test_places_zero_results_falls_through_to_geocoding(resolver, session, places_key):
    session.add("textsearch", FakeResponse({"status": "ZERO_RESULTS", "results": []}))
    session.add("nominatim", FakeResponse(CENTRAL_PARK_RESULTS[1:]))

    candidate = resolver.resolve("Central Park")

    assert candidate.resolved
    assert candidate.source == "geocoding"
    assert candidate.confidence == "high"


def test_resolves_with_google_geocoding(resolver, session, no_google_keys, monkeypatch):
    monkeypatch.setenv("GOOGLE_GEOCODING_API_KEY", "test-geocoding-key")
    session.add(
        "geocode/json",
        FakeResponse(
            {
                "status": "OK",
                "results": [
                    {
                        "formatted_address": "Belém Tower, Av. Brasília, 1400-038 Lisboa, Portugal",
                        "place_id": "geo-belem",
                        "geometry": {"location": {"lat": 38.6916, "lng": -9.216}},
                        "address_components": [
                            {"long_name": "Lisboa", "types": ["locality", "political"]},
                            {"long_name": "Portugal", "types": ["country", "political"]},
                        ],
                    }
                ],
            }
        ),
    )

    candidate = resolver.resolve("Belem Tower", "Lisboa")

    assert candidate.resolved
    assert candidate.source == "geocoding"
    assert candidate.place_id == "geo-belem"
    assert candidate.address_components.city == "Lisboa"
    assert candidate.maps_uri.endswith("query_place_id=geo-belem")
    assert session.calls_to("geocode/json")[0]["params"]["address"] == "Belem Tower, Lisboa"
    assert not session.calls_to("nominatim")
