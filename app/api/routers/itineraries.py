import binascii
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.core.itinerary_parser import parse_itinerary_text
from app.core.llm_provider import LLMProviderError
from app.core.place_extractor import (
    extract_places_from_image,
    extract_places_from_text,
    extract_places_from_url,
)
from app.core.place_resolver import PlaceResolver, get_place_resolver
from app.core.places_service import PlaceSearchProviderError
from app.core.review_warnings import detect_warnings, merge_warnings
from app.core.schemas import (
    ExtractedPlacesResult,
    ExtractPlacesRequest,
    ExtractPlacesResult,
    ImageExtractPlacesRequest,
    ParseResult,
    ParseTextRequest,
    ScreenshotBatchResult,
    ScreenshotExtractRequest,
    ScreenshotSubmitRequest,
    UrlExtractPlacesRequest,
)
from app.core.screenshot_ocr import extract_screenshot_batch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/itineraries", tags=["itineraries"])


def _analysis_failed(e: LLMProviderError, detail: str) -> HTTPException:
    if e.rate_limited:
        return HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")
    return HTTPException(status_code=502, detail=detail)


@router.post("/parse-text", response_model=ParseResult)
def parse_text(payload: ParseTextRequest) -> ParseResult:
    """Structure pasted itinerary text into day groups."""
    return parse_itinerary_text(
        payload.raw_text,
        destination_hint=payload.destination_hint,
        duration_hint=payload.duration_days,
    )


@router.post("/screenshots/extract", response_model=ScreenshotBatchResult)
def extract_screenshots(payload: ScreenshotExtractRequest) -> ScreenshotBatchResult:
    """
    OCR a batch of itinerary screenshots.

    Per-image failures are reported on the items; the batch itself only
    fails validation (400) for malformed payloads.
    """
    result = extract_screenshot_batch(payload.images)
    logger.info(
        f"Screenshot batch {result.batch_id}: {result.processed_count} processed, "
        f"{result.failed_count} failed"
    )
    return result


@router.post("/screenshots/submit", response_model=ParseResult)
def submit_screenshots(payload: ScreenshotSubmitRequest) -> ParseResult:
    """Parse reviewed OCR text and attach review warnings."""
    result = parse_itinerary_text(
        payload.text,
        destination_hint=payload.destination,
        duration_hint=payload.duration_days,
    )
    review = detect_warnings(payload.text, result.days)
    return result.model_copy(update={"warnings": merge_warnings(result.warnings, review)})


@router.post("/extract-places", response_model=ExtractPlacesResult)
def extract_places(
    payload: ExtractPlacesRequest,
    resolver: PlaceResolver = Depends(get_place_resolver),
) -> ExtractPlacesResult:
    try:
        return extract_places_from_text(
            payload.text,
            destination=payload.destination,
            duration_days=payload.duration_days,
            resolver=resolver,
        )
    except LLMProviderError as e:
        raise _analysis_failed(e, "Failed to analyze itinerary text")
    except PlaceSearchProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/extract-places-from-url", response_model=ExtractedPlacesResult)
def extract_places_from_link(payload: UrlExtractPlacesRequest) -> ExtractedPlacesResult:
    """Places featured by a travel link (video, social post or article)."""
    try:
        return extract_places_from_url(payload.url, destination=payload.destination)
    except LLMProviderError as e:
        raise _analysis_failed(e, "Failed to analyze URL")


@router.post("/extract-places-from-image", response_model=ExtractedPlacesResult)
def extract_places_from_screenshot(payload: ImageExtractPlacesRequest) -> ExtractedPlacesResult:
    """Specific places shown or named in one itinerary image."""
    try:
        return extract_places_from_image(payload.image, destination=payload.destination)
    except binascii.Error:
        raise HTTPException(status_code=400, detail="Invalid image data")
    except LLMProviderError as e:
        raise _analysis_failed(e, "Failed to analyze image")
