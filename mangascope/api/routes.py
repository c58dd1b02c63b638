"""API routes for the manga scraping service."""

from urllib.parse import urlsplit

from fastapi import APIRouter, HTTPException, Query, status

from mangascope.config import settings
from mangascope.models.schemas import (
    ChapterPagesResponse,
    HealthResponse,
    ProviderInfo,
    SearchResult,
    SeriesDetail,
)
from mangascope.scrapers.errors import (
    ConfigurationError,
    UnsupportedOperationError,
    UnsupportedProviderError,
)
from mangascope.scrapers.factory import Provider, resolve_provider
from mangascope.services.scraper_service import ScraperService

router = APIRouter()

# Initialize scraper service at module level
scraper_service = ScraperService()


def _provider(value: str) -> Provider:
    try:
        return resolve_provider(value)
    except UnsupportedProviderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


def _validate_url(url: str) -> str:
    """Reject over-long URLs and schemes other than http(s)."""
    if len(url) > settings.MAX_URL_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"URL exceeds maximum length of {settings.MAX_URL_LENGTH}",
        )
    url_scheme = urlsplit(url).scheme
    if url_scheme not in settings.ALLOWED_SCHEMES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"URL scheme '{url_scheme}' not allowed. Allowed: {sorted(settings.ALLOWED_SCHEMES)}",
        )
    return url


def _unexpected(e: Exception) -> HTTPException:
    if isinstance(e, (UnsupportedOperationError, ConfigurationError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Unexpected error: {str(e)}",
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Health check endpoint.

    Returns:
        HealthResponse with service status and provider availability
    """
    return HealthResponse(
        status="healthy",
        version=settings.API_VERSION,
        providers=scraper_service.provider_status(),
    )


@router.get("/providers", response_model=list[ProviderInfo])
async def providers() -> list[ProviderInfo]:
    """List supported providers with their labels and default base URLs."""
    return scraper_service.providers()


@router.get("/search", response_model=SearchResult)
async def search(
    provider: str = Query(..., description="Provider id, e.g. AsuraScans"),
    q: str = Query("", description="Search term; empty lists everything"),
    page: int = Query(1, ge=1),
) -> SearchResult:
    """
    Search a provider catalogue.

    Returns:
        SearchResult; empty when the site could not be read

    Raises:
        HTTPException: 400 for unknown providers, 500 for unexpected errors
    """
    resolved = _provider(provider)
    try:
        return await scraper_service.search(resolved, q, page)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected(e) from e


@router.get("/series", response_model=SeriesDetail)
async def series(
    provider: str = Query(...),
    url: str = Query(..., description="Series detail page URL"),
) -> SeriesDetail:
    """Series metadata and chapter list."""
    resolved = _provider(provider)
    _validate_url(url)
    try:
        return await scraper_service.series(resolved, url)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected(e) from e


@router.get("/chapter", response_model=ChapterPagesResponse)
async def chapter(
    provider: str = Query(...),
    url: str = Query(..., description="Chapter reader URL"),
) -> ChapterPagesResponse:
    """
    Page images of one chapter in reading order.

    Raises:
        HTTPException: 404 when no images could be extracted
    """
    resolved = _provider(provider)
    _validate_url(url)
    try:
        pages = await scraper_service.chapter(resolved, url)
    except HTTPException:
        raise
    except Exception as e:
        raise _unexpected(e) from e

    if not pages:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No chapter images found for {url}",
        )
    return ChapterPagesResponse(provider=resolved.value, url=url, count=len(pages), pages=pages)
