"""
Screenshot text extraction through Gemini (google-generativeai).

Images are processed one at a time; a failure on one image is recorded on
its item and never aborts the batch.
"""

import base64
import binascii
import logging
import secrets
import threading
import time

from app.core.gemini_json import JsonRecoveryError, parse_model_json
from app.core.llm_provider import LLMProvider, LLMProviderError, get_vision_provider
from app.core.schemas import (
    ScreenshotBatchResult,
    ScreenshotImage,
    ScreenshotItemResult,
    batch_status,
)

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "You extract visible itinerary text from screenshots.\n"
    'Return JSON only in this format: {"text": "<extracted text>"}.\n'
    "Do not add markdown."
)

OCR_GENERATION_CONFIG = {
    "temperature": 0.2,
    "top_k": 20,
    "top_p": 0.8,
    "max_output_tokens": 2048,
    "response_mime_type": "application/json",
}

NOT_CONFIGURED = "AI service not configured"
NO_TEXT_DETECTED = "No text detected"
INVALID_IMAGE_DATA = "Invalid image data"


def decode_image_data(base64_data: str) -> bytes:
    """Decode base64 image bytes, accepting a data: URL prefix."""
    if base64_data.startswith("data:"):
        base64_data = base64_data.split(",", 1)[-1]
    return base64.b64decode(base64_data, validate=True)


def extract_text_from_image(provider: LLMProvider, image: ScreenshotImage) -> str | None:
    """Return the extracted text, or None when the model saw no text.

    Raises:
        binascii.Error: base64_data is not valid base64
        LLMProviderError: the model call failed
    """
    raw = provider.generate_with_image(
        OCR_PROMPT,
        image.mime_type,
        decode_image_data(image.base64_data),
        OCR_GENERATION_CONFIG,
    )
    if not raw.strip():
        return None

    try:
        parsed = parse_model_json(raw)
    except JsonRecoveryError:
        # Model ignored the JSON instruction; use what it wrote
        return raw.strip()

    text = parsed.get("text") if isinstance(parsed, dict) else None
    if isinstance(text, str) and text.strip():
        return text.strip()
    return None


def _provider_failure(e: LLMProviderError) -> str:
    if e.status_code:
        return f"Gemini request failed with status {e.status_code}"
    return str(e)


def new_batch_id() -> str:
    return f"ocr-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def extract_screenshot_batch(
    images: list[ScreenshotImage],
    provider: LLMProvider | None = None,
    cancel_event: threading.Event | None = None,
) -> ScreenshotBatchResult:
    unavailable = None
    if provider is None:
        try:
            provider = get_vision_provider()
        except LLMProviderError as e:
            logger.warning(f"Screenshot OCR unavailable: {e}")
            unavailable = str(e) or NOT_CONFIGURED

    items: list[ScreenshotItemResult] = []
    for image in images:
        if cancel_event is not None and cancel_event.is_set():
            break

        if provider is None:
            items.append(ScreenshotItemResult(filename=image.filename, status="failed", error=unavailable))
            continue

        try:
            text = extract_text_from_image(provider, image)
        except binascii.Error:
            items.append(ScreenshotItemResult(filename=image.filename, status="failed", error=INVALID_IMAGE_DATA))
            continue
        except LLMProviderError as e:
            logger.warning(f"OCR failed for {image.filename}: {e}")
            items.append(ScreenshotItemResult(filename=image.filename, status="failed", error=_provider_failure(e)))
            continue

        if cancel_event is not None and cancel_event.is_set():
            break

        if text is None:
            items.append(ScreenshotItemResult(filename=image.filename, status="failed", error=NO_TEXT_DETECTED))
        else:
            items.append(ScreenshotItemResult(filename=image.filename, status="processed", extracted_text=text))

    processed = [item for item in items if item.status == "processed"]
    failed_count = len(items) - len(processed)
    warnings = [f"{failed_count} image(s) failed OCR extraction"] if failed_count else []

    return ScreenshotBatchResult(
        batch_id=new_batch_id(),
        status=batch_status(len(processed), failed_count),
        processed_count=len(processed),
        failed_count=failed_count,
        items=items,
        merged_text="\n\n".join(item.extracted_text for item in processed if item.extracted_text),
        warnings=warnings,
    )
