import binascii
import json

import pytest
from conftest import FakeResponse, places_text_result

from app.core.llm_provider import LLMProviderError
from app.core.place_extractor import (
    PARSE_FAILED,
    detect_source_type,
    extract_places_from_image,
    extract_places_from_text,
    extract_places_from_url,
    image_mime_type,
)


class FakeProvider:
    def __init__(self, reply: str | Exception):
        self.reply = reply
        self.messages = []

    def chat(self, messages, temperature=0.2):
        self.messages.append(messages)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    def generate_with_image(self, prompt, mime_type, data, generation_config=None):
        self.messages.append({"prompt": prompt, "mime_type": mime_type, "data": data})
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def kl_place(name: str, place_id: str, lat: float, lng: float):
    search = FakeResponse(
        {"status": "OK", "results": [places_text_result(name, lat, lng, place_id=place_id)]}
    )
    details = FakeResponse(
        {
            "result": {
                "name": name,
                "formatted_address": "Kuala Lumpur, Malaysia",
                "address_components": [
                    {"long_name": "Kuala Lumpur", "types": ["locality"]},
                    {"long_name": "Malaysia", "types": ["country"]},
                ],
                "geometry": {"location": {"lat": lat, "lng": lng}},
            }
        }
    )
    return search, details


def test_normalizes_places_and_infers_destination(resolver, session, places_key):
    provider = FakeProvider(
        json.dumps(
            {
                "places": [
                    {"name": "klcc", "category": "attraction"},
                    {"name": "trx", "category": "shop"},
                    {"name": "midvalley", "category": "shop"},
                ],
                "summary": "Found 3 places",
                "destination": "",
            }
        )
    )
    klcc = kl_place("Kuala Lumpur City Centre (KLCC)", "place-klcc", 3.1579, 101.7123)
    trx = kl_place("Tun Razak Exchange (TRX)", "place-trx", 3.1402, 101.728)
    midvalley = kl_place("Mid Valley Megamall", "place-midvalley", 3.1178, 101.676)
    session.add("textsearch", klcc[0], trx[0], midvalley[0])
    session.add("details", klcc[1], trx[1], midvalley[1])

    result = extract_places_from_text(
        "2 days in klcc, trx, midvalley", duration_days=2, resolver=resolver, provider=provider
    )

    assert result.destination == "Kuala Lumpur"
    assert "Kuala Lumpur City Centre (KLCC)" in result.cleaned_request
    assert "Tun Razak Exchange (TRX)" in result.cleaned_request
    assert "Mid Valley Megamall" in result.cleaned_request
    assert result.days[0].places[0].name == "Kuala Lumpur City Centre (KLCC)"
    assert [day.label for day in result.days] == ["Day 1", "Day 2"]
    assert result.summary == "Found 3 places"
    assert all(place.resolved for place in result.places)


def test_model_destination_is_used_when_present(resolver, session, no_google_keys):
    provider = FakeProvider(
        json.dumps({"places": [{"name": "Shibuya Crossing"}], "summary": "Found 1 place", "destination": "Tokyo"})
    )
    session.add(
        "nominatim",
        FakeResponse(
            [{"display_name": "Shibuya Crossing, Shibuya, Tokyo, Japan", "lat": "35.6595", "lon": "139.7005"}]
        ),
    )

    result = extract_places_from_text("Day 1\nShibuya Crossing", duration_days=1, resolver=resolver, provider=provider)

    assert result.destination == "Tokyo"
    assert [day.label for day in result.days] == ["Day 1"]
    assert result.days[0].places[0].name == "Shibuya Crossing, Shibuya, Tokyo, Japan"


def test_unparseable_model_output_falls_back_to_parsed_places(resolver, session, no_google_keys):
    provider = FakeProvider("I could not find anything useful")
    session.add("nominatim", FakeResponse([]), FakeResponse([]))

    result = extract_places_from_text("Day 1\nSintra Palace\nBelem Tower", resolver=resolver, provider=provider)

    assert [p.name for p in result.places] == ["Sintra Palace", "Belem Tower"]
    assert not any(p.resolved for p in result.places)
    assert result.days[0].places[1].name == "Belem Tower"
    assert result.summary == "Found 2 places"


def test_model_rate_limit_propagates(resolver, places_key):
    provider = FakeProvider(LLMProviderError("quota", status_code=429))

    with pytest.raises(LLMProviderError) as exc:
        extract_places_from_text("Day 1\nSintra Palace", resolver=resolver, provider=provider)
    assert exc.value.rate_limited


@pytest.mark.parametrize(
    "url,source_type",
    [
        ("https://www.youtube.com/watch?v=abc", "YouTube video"),
        ("https://youtu.be/abc", "YouTube video"),
        ("https://www.instagram.com/p/xyz/", "Instagram post"),
        ("https://www.tiktok.com/@user/video/1", "TikTok video"),
        ("http://xhslink.com/a/b", "RedNote/Xiaohongshu post"),
        ("https://blog.example.com/kyoto-3-days", "website"),
    ],
)
def test_detect_source_type(url, source_type):
    assert detect_source_type(url) == source_type


def test_url_extraction_returns_model_places():
    provider = FakeProvider(
        json.dumps(
            {
                "places": [
                    {"name": "Fushimi Inari Taisha", "nameLocal": "伏見稲荷大社", "category": "culture", "tips": ["Go early", 3]},
                    {"name": "  "},
                    {"name": "Nishiki Market"},
                ],
                "summary": "",
            }
        )
    )

    result = extract_places_from_url("https://youtu.be/kyoto", destination="Kyoto", provider=provider)

    assert [p.name for p in result.places] == ["Fushimi Inari Taisha", "Nishiki Market"]
    assert result.places[0].name_local == "伏見稲荷大社"
    assert result.places[0].tips == ["Go early"]
    assert result.places[1].category == "attraction"
    assert result.source_type == "YouTube video"
    assert result.summary == "Found 2 places from YouTube video"
    user_prompt = provider.messages[0][1]["content"]
    assert "https://youtu.be/kyoto" in user_prompt
    assert "planning a trip to Kyoto" in user_prompt


def test_url_extraction_with_unparseable_reply_is_empty():
    result = extract_places_from_url("https://example.com/trip", provider=FakeProvider("no idea"))

    assert result.places == []
    assert result.source_type == "website"
    assert result.warnings == [PARSE_FAILED]


def test_image_extraction_filters_non_place_names():
    provider = FakeProvider(
        json.dumps(
            {
                "validated_locations": [
                    {"name": "Masjid Putra", "visually_confirmed": True, "reasoning": "pink dome", "confidence": "high"},
                    {"name": "must go", "visually_confirmed": False, "confidence": "medium"},
                    {"name": "@kltraveller", "visually_confirmed": False, "confidence": "high"},
                    {"name": "Batu Caves", "visually_confirmed": False, "confidence": "low"},
                    {"name": "42", "visually_confirmed": True, "confidence": "high"},
                    {"name": "Petronas Twin Towers", "visually_confirmed": False, "confidence": "medium"},
                ],
                "filtered_out": [{"text": "KL travel", "reason": "category header"}],
            }
        )
    )

    result = extract_places_from_image("data:image/png;base64,aGVsbG8=", destination="Kuala Lumpur", provider=provider)

    assert [p.name for p in result.places] == ["Masjid Putra", "Petronas Twin Towers"]
    assert result.places[0].description == "pink dome"
    assert result.summary == "Found 2 validated locations"
    call = provider.messages[0]
    assert call["mime_type"] == "image/png"
    assert call["data"] == b"hello"
    assert "Destination context: Kuala Lumpur" in call["prompt"]


def test_image_extraction_with_empty_reply_reports_warning():
    result = extract_places_from_image("aGVsbG8=", provider=FakeProvider(""))

    assert result.places == []
    assert result.warnings == ["Failed to extract places from image"]


def test_image_extraction_rejects_bad_base64():
    with pytest.raises(binascii.Error):
        extract_places_from_image("not base64!", provider=FakeProvider("{}"))


def test_image_mime_type():
    assert image_mime_type("data:image/png;base64,xx") == "image/png"
    assert image_mime_type("data:image/webp;base64,xx") == "image/webp"
    assert image_mime_type("/9j/4AAQ") == "image/jpeg"
