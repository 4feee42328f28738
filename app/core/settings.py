import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


class Settings(BaseModel):
    aisuite_model: str = os.getenv("AISUITE_MODEL", f"google-genai:{DEFAULT_GEMINI_MODEL}")
    nominatim_user_agent: str = os.getenv("NOMINATIM_USER_AGENT", "TravelBetterAI/1.0")
    provider_timeout_seconds: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))
    # Fair-use spacing between outbound geocoding calls
    geocode_min_interval_seconds: float = float(os.getenv("GEOCODE_MIN_INTERVAL_SECONDS", "1.1"))
    search_rate_limit_seconds: float = float(os.getenv("SEARCH_RATE_LIMIT_SECONDS", "0.3"))
    geocode_rate_limit_seconds: float = float(os.getenv("GEOCODE_RATE_LIMIT_SECONDS", "1.1"))
    geocode_cache_ttl_seconds: float = float(os.getenv("GEOCODE_CACHE_TTL_SECONDS", "3600"))
    geocode_cache_max_entries: int = int(os.getenv("GEOCODE_CACHE_MAX_ENTRIES", "1000"))


def get_settings() -> Settings:
    return Settings()


# Keys are read per call so a running process picks up rotated keys and
# tests can toggle them with monkeypatch.setenv.
def get_places_api_key() -> str:
    return os.getenv("GOOGLE_PLACES_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""


def get_geocoding_api_key() -> str:
    return os.getenv("GOOGLE_GEOCODING_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""


def get_text_extract_api_key() -> str:
    return os.getenv("GOOGLE_API_KEY_TEXT_EXTRACT") or os.getenv("GOOGLE_API_KEY") or ""


def get_gemini_model() -> str:
    return os.getenv("GEMINI_MODEL") or os.getenv("GOOGLE_GEMINI_MODEL") or DEFAULT_GEMINI_MODEL


def get_text_extract_model() -> str:
    return os.getenv("GEMINI_TEXT_EXT_MODEL") or get_gemini_model()


def get_trusted_proxies() -> set[str]:
    """Peers allowed to set X-Forwarded-For (TRUSTED_PROXIES, comma-separated)."""
    raw = os.getenv("TRUSTED_PROXIES", "")
    return {address.strip() for address in raw.split(",") if address.strip()}
