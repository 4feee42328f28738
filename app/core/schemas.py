import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models serialize camelCase but also accept snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _strip_required(value: str, field_name: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} is required")
    return value


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _positive_days(value: float | int | None) -> int | None:
    if value is None:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(math.floor(value))


# =============================================================================
# Parsed itinerary
# =============================================================================


class ParsedPlace(CamelModel):
    name: str
    source: Literal["user"] = "user"
    notes: str | None = None
    time_text: str | None = Field(None, description="Leading clock token, e.g. '9am'")


class DayGroup(CamelModel):
    label: str = Field(..., description="Cleaned header text or synthesized 'Day N'")
    date: str | None = Field(None, description="D/D date token found in the header")
    places: list[ParsedPlace] = Field(default_factory=list)


class ParseResult(CamelModel):
    cleaned_request: str
    preview_text: str
    destination: str | None = None
    days: list[DayGroup] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# Place resolution
# =============================================================================


class AddressComponents(CamelModel):
    city: str | None = None
    region: str | None = None
    country: str | None = None


class PlaceCandidate(CamelModel):
    name: str
    resolved: bool = False
    display_name: str | None = None
    place_id: str | None = None
    formatted_address: str | None = None
    address_components: AddressComponents | None = None
    lat: float | None = None
    lng: float | None = None
    best_guess: bool = False
    confidence: Literal["high", "medium", "low"] | None = None
    source: Literal["places", "geocoding", "none"] = "none"
    categories: list[str] = Field(default_factory=list)
    maps_uri: str | None = None

    @model_validator(mode="after")
    def _check_geo_fields(self) -> "PlaceCandidate":
        if self.resolved:
            if self.lat is None or self.lng is None:
                raise ValueError("resolved candidates need lat and lng")
            if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
                raise ValueError("lat and lng must be finite")
        else:
            geo = (
                self.place_id,
                self.formatted_address,
                self.address_components,
                self.lat,
                self.lng,
                self.confidence,
            )
            if any(value is not None for value in geo):
                raise ValueError("unresolved candidates cannot carry geo fields")
        return self

    @classmethod
    def unresolved(cls, name: str) -> "PlaceCandidate":
        return cls(name=name, resolved=False, source="none")


class ResolvePlaceItem(CamelModel):
    name: str = ""
    hint: str | None = None


class ResolvePlacesRequest(CamelModel):
    places: list[ResolvePlaceItem] = Field(default_factory=list)
    destination_context: str | None = None


class ResolvePlacesResult(CamelModel):
    status: Literal["ready", "partial", "failed"]
    places: list[PlaceCandidate] = Field(default_factory=list)
    resolved_count: int = 0
    failed_count: int = 0
    cancelled: bool = False
    warnings: list[str] = Field(default_factory=list)


class PlaceSearchRequest(CamelModel):
    query: str
    destination_context: str | None = None
    limit: int = 5

    @field_validator("query")
    @classmethod
    def _query_required(cls, value: str) -> str:
        return _strip_required(value, "query")

    @field_validator("destination_context")
    @classmethod
    def _strip_destination(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value):
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return 5
        if not math.isfinite(numeric):
            return 5
        return int(min(max(numeric, 1), 10))


class PlaceSearchResponse(CamelModel):
    query: str
    results: list[PlaceCandidate] = Field(default_factory=list)
    warnings: list[str] | None = None


class GeocodeRequest(CamelModel):
    query: str
    destination: str | None = None

    @field_validator("query")
    @classmethod
    def _query_required(cls, value: str) -> str:
        return _strip_required(value, "query")


class Coordinates(CamelModel):
    lat: float
    lng: float


class GeocodeResponse(CamelModel):
    coordinates: Coordinates | None = None
    success: bool = False


# =============================================================================
# Request payloads for text / screenshot import
# =============================================================================


class ParseTextRequest(CamelModel):
    raw_text: str
    destination_hint: str | None = None
    duration_days: float | None = None

    @field_validator("raw_text")
    @classmethod
    def _text_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("raw_text is required")
        return value

    @field_validator("duration_days")
    @classmethod
    def _days(cls, value):
        return _positive_days(value)


class ExtractPlacesRequest(CamelModel):
    text: str
    destination: str | None = None
    duration_days: float | None = None

    @field_validator("text")
    @classmethod
    def _text_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text is required")
        return value

    @field_validator("destination")
    @classmethod
    def _strip_destination(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("duration_days")
    @classmethod
    def _days(cls, value):
        return _positive_days(value)


class ExtractPlacesResult(ParseResult):
    places: list[PlaceCandidate] = Field(default_factory=list)
    summary: str = ""


class ExtractedPlace(CamelModel):
    """A place named by the model from a URL or image; not resolved to coordinates."""

    name: str
    name_local: str | None = None
    category: str = "attraction"
    description: str | None = None
    tips: list[str] = Field(default_factory=list)


class ExtractedPlacesResult(CamelModel):
    places: list[ExtractedPlace] = Field(default_factory=list)
    summary: str = ""
    source_type: str | None = None
    warnings: list[str] = Field(default_factory=list)


class UrlExtractPlacesRequest(CamelModel):
    url: str
    destination: str | None = None

    @field_validator("url")
    @classmethod
    def _url_required(cls, value: str) -> str:
        return _strip_required(value, "url")

    @field_validator("destination")
    @classmethod
    def _strip_destination(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class ImageExtractPlacesRequest(CamelModel):
    image: str = Field(..., description="Base64 image data, optionally as a data: URL")
    destination: str | None = None

    @field_validator("image")
    @classmethod
    def _image_required(cls, value: str) -> str:
        return _strip_required(value, "image")

    @field_validator("destination")
    @classmethod
    def _strip_destination(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class ScreenshotImage(CamelModel):
    filename: str
    mime_type: Literal["image/jpeg", "image/png", "image/webp"]
    base64_data: str

    @field_validator("filename", "base64_data")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        return _strip_required(value, info.field_name)


class ScreenshotExtractRequest(CamelModel):
    destination: str | None = None
    images: list[ScreenshotImage] = Field(..., min_length=1, max_length=10)

    @field_validator("destination")
    @classmethod
    def _strip_destination(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class ScreenshotItemResult(CamelModel):
    filename: str
    status: Literal["processed", "failed"]
    extracted_text: str | None = None
    error: str | None = None


class ScreenshotBatchResult(CamelModel):
    batch_id: str
    status: Literal["ready", "partial", "failed"]
    processed_count: int = 0
    failed_count: int = 0
    items: list[ScreenshotItemResult] = Field(default_factory=list)
    merged_text: str = ""
    warnings: list[str] = Field(default_factory=list)


class ScreenshotSubmitRequest(CamelModel):
    batch_id: str
    text: str
    destination: str | None = None
    duration_days: float | None = None

    @field_validator("batch_id", "text")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        return _strip_required(value, info.field_name)

    @field_validator("duration_days")
    @classmethod
    def _days(cls, value):
        return _positive_days(value)


def batch_status(succeeded: int, failed: int) -> Literal["ready", "partial", "failed"]:
    """Overall status for a multi-item operation."""
    if failed == 0:
        return "ready"
    if succeeded == 0:
        return "failed"
    return "partial"
