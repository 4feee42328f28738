import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routers.itineraries import router as itineraries_router
from app.api.routers.places import router as places_router
from app.core.settings import get_settings

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed payloads are a client error, reported as 400 with the pydantic details
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": errors})


def create_app() -> FastAPI:
    application = FastAPI(title="Itinerary Import Backend")

    # Frontend dev servers; production origins come from ALLOWED_ORIGINS
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
    prod_origins = os.getenv("ALLOWED_ORIGINS", "")
    if prod_origins:
        allowed_origins.extend(
            [origin.strip() for origin in prod_origins.split(",") if origin.strip()]
        )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    application.add_exception_handler(RequestValidationError, _validation_error_handler)

    _ = get_settings()

    application.include_router(itineraries_router)
    application.include_router(places_router)

    @application.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
