from __future__ import annotations

import logging
from typing import Any

import aisuite as ai  # type: ignore

from app.core.settings import get_settings, get_text_extract_api_key, get_text_extract_model

try:
    import google.generativeai as genai  # type: ignore
    from google.api_core import exceptions as google_exceptions  # type: ignore
except Exception:
    genai = None  # optional
    google_exceptions = None

logger = logging.getLogger(__name__)


class LLMProviderError(RuntimeError):
    """Model call failed; `status_code` is the upstream HTTP status when known."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


def _status_of(exc: Exception) -> int | None:
    if google_exceptions is not None and isinstance(exc, google_exceptions.ResourceExhausted):
        return 429
    # google.api_core exceptions expose `.code`, httpx/openai-style ones `.status_code`
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _response_text(response: Any) -> str:
    # .text raises ValueError when the candidate was blocked or has no parts
    try:
        return response.text or ""
    except ValueError:
        return ""


class LLMProvider:
    def __init__(self, model: str | None = None) -> None:
        self.model = model or get_settings().aisuite_model
        self._client = None
        self._genai_model: Any | None = None

        # Route to google-generativeai if model starts with google-genai:
        if self.model.startswith("google-genai:"):
            if genai is None:
                raise LLMProviderError("google-generativeai is not installed")
            api_key = get_text_extract_api_key()
            if not api_key:
                raise LLMProviderError("AI service not configured")
            genai.configure(api_key=api_key)
            model_id = self.model.split(":", 1)[1]
            self._genai_model = genai.GenerativeModel(
                model_id,
                generation_config={"response_mime_type": "application/json"},
            )
        else:
            try:
                self._client = ai.Client()
            except Exception as exc:
                raise LLMProviderError("Failed to initialize aisuite client") from exc

    def _wrap(self, exc: Exception) -> LLMProviderError:
        status = _status_of(exc)
        logger.warning(f"LLM call to {self.model} failed ({status}): {exc}")
        return LLMProviderError(f"LLM call failed: {exc}", status)

    def chat(self, messages: list[dict[str, Any]], temperature: float = 0.2) -> str:
        """messages: list of dicts with keys role (system|user|assistant) and content (str)"""
        try:
            if self._genai_model is not None:
                prompt = "\n".join(
                    f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages
                )
                response = self._genai_model.generate_content(
                    prompt, generation_config={"temperature": temperature}
                )
                return _response_text(response)

            resp = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
            )
            return resp.choices[0].message.content or ""
        except Exception as exc:
            raise self._wrap(exc) from exc

    def generate_with_image(
        self,
        prompt: str,
        mime_type: str,
        data: bytes,
        generation_config: dict[str, Any] | None = None,
    ) -> str:
        """Prompt plus one inline image. Only google-genai models accept images."""
        if self._genai_model is None:
            raise LLMProviderError(f"{self.model} does not accept image input")
        try:
            response = self._genai_model.generate_content(
                [prompt, {"mime_type": mime_type, "data": data}],
                generation_config=generation_config,
            )
        except Exception as exc:
            raise self._wrap(exc) from exc
        return _response_text(response)

    async def chat_async(self, messages: list[dict[str, Any]], temperature: float = 0.2) -> str:
        """Runs the blocking chat call in a worker thread."""
        import asyncio

        return await asyncio.to_thread(self.chat, messages, temperature)


def get_vision_provider() -> LLMProvider:
    """Gemini model used for screenshots and images (GEMINI_TEXT_EXT_MODEL)."""
    return LLMProvider(f"google-genai:{get_text_extract_model()}")
