import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.core.place_resolver import PlaceResolver, get_place_resolver
from app.core.places_service import PlaceSearchProviderError
from app.core.schemas import (
    GeocodeRequest,
    GeocodeResponse,
    PlaceSearchRequest,
    PlaceSearchResponse,
    ResolvePlacesRequest,
    ResolvePlacesResult,
)
from app.core.settings import get_trusted_proxies

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/places", tags=["places"])


def _client_address(request: Request) -> str | None:
    """
    Address used for per-client throttling.

    X-Forwarded-For is only honored when the socket peer is a trusted proxy;
    the nearest hop not in TRUSTED_PROXIES is the client.
    """
    peer = request.client.host if request.client else None
    trusted = get_trusted_proxies()
    if peer is None or peer not in trusted:
        return peer

    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def _provider_error(e: PlaceSearchProviderError) -> HTTPException:
    if e.rate_limited:
        return HTTPException(status_code=429, detail=str(e))
    return HTTPException(status_code=502, detail="Place search provider unavailable")


@router.post("/search", response_model=PlaceSearchResponse)
def search_places(
    payload: PlaceSearchRequest,
    request: Request,
    resolver: PlaceResolver = Depends(get_place_resolver),
) -> PlaceSearchResponse:
    """Search-as-you-type candidates for one query."""
    try:
        results = resolver.search(
            payload.query,
            destination_context=payload.destination_context,
            limit=payload.limit,
            client_address=_client_address(request),
        )
    except PlaceSearchProviderError as e:
        raise _provider_error(e)

    warnings = None if results else [f"No matches found for '{payload.query}'"]
    return PlaceSearchResponse(query=payload.query, results=results, warnings=warnings)


@router.post("/resolve", response_model=ResolvePlacesResult)
def resolve_places(
    payload: ResolvePlacesRequest,
    resolver: PlaceResolver = Depends(get_place_resolver),
) -> ResolvePlacesResult:
    """Resolve a list of place names one at a time."""
    if not payload.places:
        raise HTTPException(status_code=400, detail="places is required")
    return resolver.resolve_many(payload.places, destination_context=payload.destination_context)


@router.post("/geocode", response_model=GeocodeResponse)
def geocode_place(
    payload: GeocodeRequest,
    request: Request,
    resolver: PlaceResolver = Depends(get_place_resolver),
) -> GeocodeResponse:
    try:
        coordinates = resolver.geocode(
            payload.query,
            destination=payload.destination,
            client_address=_client_address(request),
        )
    except PlaceSearchProviderError as e:
        raise _provider_error(e)
    return GeocodeResponse(coordinates=coordinates, success=coordinates is not None)
