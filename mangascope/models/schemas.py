"""Pydantic models for scraper results and API responses."""

from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class SearchedSeries(BaseModel):
    """One series card found on a provider search page."""

    id: str = Field(..., description="Canonical detail-page URL")
    title: str
    alt_titles: list[str] = Field(default_factory=list)
    image: str = ""
    header_for_image: dict[str, str] = Field(
        default_factory=dict, description="Headers required to fetch the cover image"
    )
    status: str = ""
    chapters: str = Field("", description="Chapter count text as shown on the card")
    rating: str = ""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"


class SearchResult(BaseModel):
    """Paged search response."""

    current_page: int = 1
    has_next_page: bool = False
    results: list[SearchedSeries] = Field(default_factory=list)

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @classmethod
    def empty(cls, page_number: int) -> "SearchResult":
        return cls(current_page=page_number, has_next_page=False, results=[])


class ChapterSummary(BaseModel):
    """A chapter row on a series detail page."""

    chapter_number: str = Field("", description="May be fractional, e.g. '12.5'")
    chapter_title: str = ""
    chapter_url: str
    release_date: str = ""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SeriesDetail(BaseModel):
    """Full metadata for one series."""

    id: str
    title: str = ""
    alt_titles: list[str] = Field(default_factory=list)
    description: str = ""
    image: str = ""
    header_for_image: dict[str, str] = Field(default_factory=dict)
    status: str = "Unknown"
    rating: Optional[str] = None
    genres: list[str] = Field(default_factory=list)
    chapters: list[ChapterSummary] = Field(default_factory=list)
    followers: str = ""
    author: str = ""
    artist: str = ""
    serialization: str = ""
    updated_on: str = ""

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @field_validator("status")
    @classmethod
    def default_status(cls, value: str) -> str:
        return value.strip() or "Unknown"

    @field_validator("chapters")
    @classmethod
    def unique_chapter_urls(cls, chapters: list[ChapterSummary]) -> list[ChapterSummary]:
        """Drop repeated chapter URLs, keeping the first occurrence."""
        seen = set()
        unique = []
        for chapter in chapters:
            if chapter.chapter_url in seen:
                continue
            seen.add(chapter.chapter_url)
            unique.append(chapter)
        return unique


class ChapterPage(BaseModel):
    """One page image of a chapter, in reading order."""

    page_index: int = Field(..., ge=1, description="1-based, contiguous")
    image_url: str
    referer: str = ""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


def build_chapter_pages(
    discovered: Iterable[tuple[int, str]], referer: str
) -> list[ChapterPage]:
    """
    Build reading-ordered chapter pages.

    Pages may be discovered out of order (concurrent fetches, JSON payloads
    carrying their own page numbers). They are sorted by their discovered
    index, ties keeping discovery order, then renumbered 1..n.

    Args:
        discovered: (index, image URL) pairs
        referer: Referer header value required by the image host

    Returns:
        Ordered list of ChapterPage
    """
    ordered = sorted(enumerate(discovered), key=lambda item: (item[1][0], item[0]))
    return [
        ChapterPage(page_index=position, image_url=url, referer=referer)
        for position, (_, (_, url)) in enumerate(ordered, start=1)
    ]


class ProviderInfo(BaseModel):
    """Provider metadata exposed by the API."""

    id: str
    label: str
    base_url: str
    experimental: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ChapterPagesResponse(BaseModel):
    """Response model for the chapter endpoint."""

    provider: str
    url: str
    count: int
    pages: list[ChapterPage]

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    providers: dict[str, Literal["available", "experimental"]]
