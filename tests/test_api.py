"""Tests for the manga scraping API."""

import pytest
from fastapi.testclient import TestClient

from mangascope.api.routes import scraper_service
from mangascope.main import app
from mangascope.models.schemas import (
    ChapterPage,
    ChapterSummary,
    SearchedSeries,
    SearchResult,
    SeriesDetail,
)
from mangascope.scrapers.errors import ConfigurationError
from mangascope.scrapers.factory import Provider

client = TestClient(app)


@pytest.fixture
def calls(monkeypatch):
    """Replace the browser-backed service operations with canned results."""
    recorded = []

    async def search(provider, term, page_number=1):
        recorded.append(("search", provider, term, page_number))
        return SearchResult(
            current_page=page_number,
            has_next_page=True,
            results=[
                SearchedSeries(
                    id="https://asuracomic.net/series/solo-leveling-abc",
                    title="Solo Leveling",
                    image="https://gg.asuracomic.net/cover.webp",
                    header_for_image={"Referer": "https://asuracomic.net/"},
                )
            ],
        )

    async def series(provider, url):
        recorded.append(("series", provider, url))
        return SeriesDetail(
            id=url,
            title="Solo Leveling",
            chapters=[ChapterSummary(chapter_number="1", chapter_url=f"{url}/chapter/1")],
            updated_on="May 2nd 2024",
        )

    async def chapter(provider, url):
        recorded.append(("chapter", provider, url))
        if url.endswith("/empty"):
            return []
        if url.endswith("/broken"):
            raise RuntimeError("browser crashed")
        if url.endswith("/misconfigured"):
            raise ConfigurationError("Invalid configuration for MangaFire")
        return [
            ChapterPage(page_index=1, image_url="https://cdn.example/1.jpg", referer="https://asuracomic.net/"),
            ChapterPage(page_index=2, image_url="https://cdn.example/2.jpg", referer="https://asuracomic.net/"),
        ]

    monkeypatch.setattr(scraper_service, "search", search)
    monkeypatch.setattr(scraper_service, "series", series)
    monkeypatch.setattr(scraper_service, "chapter", chapter)
    return recorded


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_success(self):
        """Test that health check endpoint returns healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["providers"]["AsuraScans"] == "available"
        assert data["providers"]["Toonily"] == "experimental"
        assert set(data["providers"]) == {"AsuraScans", "Toonily", "MangaGG", "MangaFire"}

    def test_root_endpoint(self):
        """Test root endpoint returns info."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "message" in data
        assert "version" in data
        assert data["docs"] == "/docs"


class TestProvidersEndpoint:
    """Tests for provider metadata."""

    def test_lists_providers_in_camel_case(self):
        response = client.get("/providers")
        assert response.status_code == 200
        data = response.json()
        assert [item["id"] for item in data] == ["AsuraScans", "Toonily", "MangaGG", "MangaFire"]
        assert data[0]["baseUrl"] == "https://asuracomic.net/"
        assert data[1]["experimental"] is True


class TestSearchEndpoint:
    """Tests for the search endpoint."""

    def test_search_success(self, calls):
        response = client.get("/search", params={"provider": "asurascans", "q": "solo", "page": 2})
        assert response.status_code == 200
        data = response.json()
        assert data["currentPage"] == 2
        assert data["hasNextPage"] is True
        assert data["results"][0]["headerForImage"] == {"Referer": "https://asuracomic.net/"}
        assert calls == [("search", Provider.ASURA_SCANS, "solo", 2)]

    def test_search_unknown_provider(self, calls):
        response = client.get("/search", params={"provider": "Webtoons", "q": "solo"})
        assert response.status_code == 400
        assert "Unsupported provider" in response.json()["detail"]
        assert calls == []

    def test_search_missing_provider(self):
        response = client.get("/search", params={"q": "solo"})
        assert response.status_code == 422

    def test_search_page_below_one(self):
        response = client.get("/search", params={"provider": "Toonily", "page": 0})
        assert response.status_code == 422


class TestSeriesEndpoint:
    """Tests for the series endpoint."""

    def test_series_success(self, calls):
        url = "https://asuracomic.net/series/solo-leveling-abc"
        response = client.get("/series", params={"provider": "AsuraScans", "url": url})
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Solo Leveling"
        assert data["status"] == "Unknown"
        assert data["updatedOn"] == "May 2nd 2024"
        assert data["chapters"][0]["chapterUrl"] == f"{url}/chapter/1"

    def test_series_invalid_url_scheme(self, calls):
        response = client.get("/series", params={"provider": "AsuraScans", "url": "ftp://example.com"})
        assert response.status_code == 400
        assert "not allowed" in response.json()["detail"].lower()
        assert calls == []

    def test_series_url_too_long(self, calls):
        url = "https://example.com/" + "a" * 2100
        response = client.get("/series", params={"provider": "AsuraScans", "url": url})
        assert response.status_code == 400
        assert "maximum length" in response.json()["detail"]


class TestChapterEndpoint:
    """Tests for the chapter endpoint."""

    def test_chapter_success(self, calls):
        url = "https://asuracomic.net/series/solo-leveling-abc/chapter/1"
        response = client.get("/chapter", params={"provider": "AsuraScans", "url": url})
        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "AsuraScans"
        assert data["count"] == 2
        assert [page["pageIndex"] for page in data["pages"]] == [1, 2]
        assert data["pages"][0]["imageUrl"] == "https://cdn.example/1.jpg"

    def test_chapter_without_images(self, calls):
        response = client.get(
            "/chapter", params={"provider": "MangaFire", "url": "https://mangafire.to/read/empty"}
        )
        assert response.status_code == 404
        assert "No chapter images found" in response.json()["detail"]

    def test_chapter_unexpected_error(self, calls):
        response = client.get(
            "/chapter", params={"provider": "MangaFire", "url": "https://mangafire.to/read/broken"}
        )
        assert response.status_code == 500
        assert response.json()["detail"] == "Unexpected error: browser crashed"

    def test_chapter_configuration_error(self, calls):
        response = client.get(
            "/chapter",
            params={"provider": "MangaFire", "url": "https://mangafire.to/read/misconfigured"},
        )
        assert response.status_code == 400
