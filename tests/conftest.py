import json
from typing import Any

import pytest
import requests

from app.core.place_resolver import PlaceResolver
from app.core.places_service import PlacesService
from app.core.settings import Settings
from app.core.throttling import ClientRateLimiter, GeocodeCache, MinIntervalThrottle

MULTI_DAY_SAMPLE = """DAY 1 6/8 WED
7:30 AM flight into Lisbon
Breakfast: Pastel de Belem
Alfama walk

DAY 2 - Thu
Time Out Market lunch
LX Factory
Notes: bring comfy shoes"""

MIXED_HEADER_SAMPLE = """Day 1
9am coffee
Sintra Palace

DAY 2 - Tue
Belem Tower"""

NO_HEADER_SAMPLE = """Arrive in Lisbon
Pastel de Belem
Alfama walk"""

HEADERS_ONLY_SAMPLE = """DAY 1

DAY 2"""

COMMA_SEPARATED_SAMPLE = (
    "12pm reached Neo Grand Hatyai, Krua Pa Yad 叫菜吃饭, thefellows.hdy café, "
    "Mookata Paeyim晚餐 5pm, Greeway Night Market 逛夜市 6pm"
)

HATYAI_SAMPLE = """I'm planning a trip to \U0001F1F9\U0001F1ED HATYAI TRIP 6/8-8/8.

Places from my itinerary:
- \U0001F1F9\U0001F1ED HATYAI TRIP 6/8-8/8
- DAY 1 6/8 WED*
- 9am take van >> 11.30am reached
- 12pm reached Neo Grand Hatyai ️
- Krua Pa Yad 叫菜吃饭
- thefellows.hdy café ️
- Mookata Paeyim晚餐 5pm
- Greeway Night Market 逛夜市 6pm
- DAY 2 7/8 THURS*
- Choo Ja Roean Boat Noodle 早餐 9am
- Kim Yong Market 逛逛
- 东方燕窝 ️
- Porkleg Tuateaw @Samchai
- Central Festival Hatyai 2pm
- Maribu晚餐 6pm
- Lee Garden Night Market ️
- Lee Garden 按摩
- Pa Ad Fresh Milk 宵夜
- DAY3 8/8 FRI*
- Kuay Jab Jae Khwan
- Lee Garden附近走走
- 最大的7-11
- Baan Khun Bhu
- Hood Hatyai café ️
- 古早味炭烧鸡蛋糕"""


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: str | None = None):
        self.payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self.payload is None:
            raise ValueError("no JSON body")
        return self.payload


class FakeSession:
    """Stands in for requests.Session; responses are queued per URL fragment."""

    def __init__(self):
        self.routes: list[tuple[str, list[Any]]] = []
        self.calls: list[dict[str, Any]] = []

    def add(self, url_fragment: str, *responses: Any) -> "FakeSession":
        self.routes.append((url_fragment, list(responses)))
        return self

    def calls_to(self, url_fragment: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if url_fragment in call["url"]]

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        for fragment, queue in self.routes:
            if fragment in url and queue:
                response = queue.pop(0)
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected request: {method} {url}")


def places_text_result(name: str, lat: float, lng: float, **extra: Any) -> dict[str, Any]:
    return {"name": name, "geometry": {"location": {"lat": lat, "lng": lng}}, **extra}


def nominatim_result(display_name: str, lat: str, lon: str, **address: str) -> dict[str, Any]:
    return {"display_name": display_name, "lat": lat, "lon": lon, "address": address}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        provider_timeout_seconds=5,
        geocode_min_interval_seconds=0,
        search_rate_limit_seconds=0.3,
        geocode_rate_limit_seconds=1.1,
        geocode_cache_ttl_seconds=3600,
        geocode_cache_max_entries=100,
    )


@pytest.fixture
def no_google_keys(monkeypatch):
    for key in (
        "GOOGLE_API_KEY",
        "GOOGLE_PLACES_API_KEY",
        "GOOGLE_GEOCODING_API_KEY",
        "GOOGLE_API_KEY_TEXT_EXTRACT",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def places_key(monkeypatch, no_google_keys):
    monkeypatch.setenv("GOOGLE_PLACES_API_KEY", "test-places-key")


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def resolver(session, settings) -> PlaceResolver:
    return PlaceResolver(
        service=PlacesService(session=session, settings=settings),
        cache=GeocodeCache(settings.geocode_cache_ttl_seconds, settings.geocode_cache_max_entries),
        geocode_throttle=MinIntervalThrottle(0),
        search_limiter=ClientRateLimiter(settings.search_rate_limit_seconds),
        geocode_limiter=ClientRateLimiter(settings.geocode_rate_limit_seconds),
        settings=settings,
    )


@pytest.fixture
def connection_error() -> requests.exceptions.ConnectionError:
    return requests.exceptions.ConnectionError("connection refused")
