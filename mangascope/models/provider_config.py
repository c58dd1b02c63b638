"""Provider configuration schemas.

Each provider gets one immutable, fully defaulted configuration object built
once by the scraper factory. Every selector has a default, so partial
overrides only need to name the fields they change.
"""

from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_snake

from mangascope.config import settings

LAZY_IMAGE_ATTRIBUTES = (
    "data-src",
    "data-lazy-src",
    "data-original",
    "data-orig-file",
    "data-full",
)


class StrictModel(BaseModel):
    """Frozen model rejecting unknown keys."""

    class Config:
        frozen = True
        extra = "forbid"


class HeadersConfig(StrictModel):
    referer: str = ""
    user_agent: str = settings.DEFAULT_USER_AGENT


class OutputConfig(StrictModel):
    """Naming conventions for the downstream image downloader."""

    directory: str = "man"
    file_extension: str = ".jpg"
    filename_padding: int = Field(3, ge=1)


class ProviderConfiguration(StrictModel):
    """Fields shared by every provider."""

    name: str
    base_url: str
    timeout: int = Field(60000, gt=0, description="Navigation timeout in milliseconds")
    retries: int = Field(3, ge=0)
    headers: HeadersConfig = Field(default_factory=HeadersConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("base_url")
    @classmethod
    def absolute_base_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an absolute http(s) URL")
        return value if value.endswith("/") else f"{value}/"

    @property
    def base_root(self) -> str:
        """Base URL without the trailing slash."""
        return self.base_url.rstrip("/")

    @property
    def referer(self) -> str:
        return self.headers.referer or self.base_url

    def wait_ms(self, cap: int, fraction: float = 1.0) -> int:
        """Sub-step wait derived from the navigation timeout, bounded by a cap."""
        return max(1, min(cap, int(self.timeout * fraction)))


# Madara-style providers (Toonily, MangaGG)


class MadaraSearchSelectors(StrictModel):
    result_container: str = ".page-item-detail, .c-tabs-item__content"
    link: str = ".post-title a"
    image: str = ".item-thumb img, img"
    title: str = ".post-title a, .post-title h3 a, h3 a, h4 a"
    rating: str = '[property="ratingValue"], #averagerate, .post-total-rating, .score, .rating'
    chapters: str = ".chapter, .post-total-chapter, .chapter-item, .latest-chapter"
    next_button: str = 'a.next, a.page-numbers.next, a[rel="next"], a.pagination-next'
    link_pattern: str = Field(
        "/manga/", description="Path fragment every series link contains"
    )


class MadaraDetailSelectors(StrictModel):
    title: str = "h1, .post-title h1, .manga-title h1"
    image: str = ".summary_image img, .summary_image a img"
    description: str = ".description-summary, .summary__content, .summary__content p"
    genres: str = '.genres-content a, .genres a, .tags-content a, .summary-content a[rel="tag"]'
    info_item: str = ".post-content_item, .summary-list li, .manga-info-row"
    info_label: str = ".summary-heading, .summary-label, .info-label"
    info_value: str = ".summary-content, .summary-value, .info-value"
    chapters: str = "li.wp-manga-chapter, .listing-chapters_wrap li, .chapter-list li"
    chapter_link: str = "a"
    chapter_date: str = ".chapter-release-date, .chapter-release, .chapter-time, .post-on"


class MadaraChapterSelectors(StrictModel):
    images: str = ".reading-content img, .wp-manga-chapter-img img, img"
    lazy_attributes: tuple[str, ...] = LAZY_IMAGE_ATTRIBUTES
    cdn_pattern: Optional[str] = Field(
        None, description="Regex for image hosts accepted by the raw HTML URL scan"
    )


class MadaraSelectors(StrictModel):
    search: MadaraSearchSelectors = Field(default_factory=MadaraSearchSelectors)
    detail: MadaraDetailSelectors = Field(default_factory=MadaraDetailSelectors)
    chapter: MadaraChapterSelectors = Field(default_factory=MadaraChapterSelectors)


class ToonilyConfig(ProviderConfiguration):
    name: Literal["Toonily"] = "Toonily"
    selectors: MadaraSelectors = Field(default_factory=MadaraSelectors)


class MangaGGConfig(ProviderConfiguration):
    name: Literal["MangaGG"] = "MangaGG"
    selectors: MadaraSelectors = Field(default_factory=MadaraSelectors)


# Asura Scans


class AsuraStructureSelectors(StrictModel):
    """Selectors walking the nested card markup of a search result."""

    first_div: str = "div"
    inner_div: str = "div"
    scope_div: str = ":scope > div"
    status_span: str = "span"
    image: str = "img"
    spans: str = "span"
    rating_text: str = "span.ml-1"


class AsuraPaginationSelectors(StrictModel):
    next_button_text: str = "Next"
    previous_button_text: str = "Previous"


class AsuraSearchSelectors(StrictModel):
    result_container: str = 'div a[href^="series/"]'
    next_button: str = "a"
    previous_button: str = "a"
    structure: AsuraStructureSelectors = Field(default_factory=AsuraStructureSelectors)
    pagination: AsuraPaginationSelectors = Field(default_factory=AsuraPaginationSelectors)


class AsuraDetailSelectors(StrictModel):
    title: str = (
        r"h3.hover\:text-themecolor.cursor-pointer.text-white.text-sm.shrink-0"
        r".w-\[calc\(100\%-120px\)\].truncate"
    )
    image: str = 'img[alt="poster"]'
    status: str = r"h3.text-sm.text-\[\#A2A2A2\]"
    rating: str = "span.ml-1.text-xs"
    followers: str = r"p.text-\[\#A2A2A2\].text-\[13px\]"
    genres: str = r".bg-\[\#343434\].text-white.hover\:text-themecolor"
    chapters: str = "div.pl-4.py-2.border.rounded-md"
    grid_elements: str = r".grid.grid-cols-1.md\:grid-cols-2 h3"
    synopsis_heading: str = "h3"
    chapter_link: str = "a"
    chapter_title: str = "h3"
    chapter_date: str = r"h3.text-xs.text-\[\#A2A2A2\]"


class AsuraChapterSelectors(StrictModel):
    images: str = "img.object-cover.mx-auto"
    lazy_attributes: tuple[str, ...] = LAZY_IMAGE_ATTRIBUTES
    cdn_pattern: Optional[str] = r"gg\.asuracomic\.net"


class AsuraSelectors(StrictModel):
    search: AsuraSearchSelectors = Field(default_factory=AsuraSearchSelectors)
    detail: AsuraDetailSelectors = Field(default_factory=AsuraDetailSelectors)
    chapter: AsuraChapterSelectors = Field(default_factory=AsuraChapterSelectors)


class AsuraScansConfig(ProviderConfiguration):
    name: Literal["AsuraScans"] = "AsuraScans"
    selectors: AsuraSelectors = Field(default_factory=AsuraSelectors)


# MangaFire


class MangaFireSearchSelectors(StrictModel):
    form: str = 'form[action="filter"]'
    keyword_input: str = 'input[name="keyword"]'
    result_container: str = ".unit"
    link: str = 'a[href^="/manga/"]'
    image: str = "a.poster img, img"
    title: str = ".info > a, .info a"
    rating: str = ".live-score, .rating, .score"
    chapters: str = '.content[data-name="chap"]'
    next_button: str = 'a[rel="next"], a.next'


class MangaFireDetailSelectors(StrictModel):
    title: str = 'h1[itemprop="name"], h1'
    image: str = '.poster img[itemprop="image"], .poster img'
    description: str = ".description"
    status: str = ".info p"
    rating: str = ".rating-box .live-score"
    meta_item: str = ".meta > div"
    meta_label: str = ".meta > div > span:first-child"
    meta_value: str = ".meta > div > span:last-child"
    genres: str = '.meta a[href^="/genre/"]'
    chapters: str = ".list-body ul.scroll-sm li.item"
    chapter_link: str = "a"
    chapter_title: str = "span"
    chapter_date: str = "span:nth-of-type(2)"


class MangaFireChapterSelectors(StrictModel):
    images: str = "img"
    lazy_attributes: tuple[str, ...] = ("data-url", "data-src", "data-original", "data-lazy-src")
    image_host_marker: str = "mfcdn"
    image_path_markers: tuple[str, ...] = ("/mf/", "/chapter_")
    blocked_hosts: tuple[str, ...] = (
        "platform.pubadx.one",
        "whos.amung.us",
        "platform-api.sharethis.com",
        "static.cloudflareinsights.com",
    )
    blocked_resource_types: tuple[str, ...] = ("image", "stylesheet", "font", "media")


class MangaFireSelectors(StrictModel):
    search: MangaFireSearchSelectors = Field(default_factory=MangaFireSearchSelectors)
    detail: MangaFireDetailSelectors = Field(default_factory=MangaFireDetailSelectors)
    chapter: MangaFireChapterSelectors = Field(default_factory=MangaFireChapterSelectors)


class MangaFireConfig(ProviderConfiguration):
    name: Literal["MangaFire"] = "MangaFire"
    selectors: MangaFireSelectors = Field(default_factory=MangaFireSelectors)


def snake_case_keys(value: Any) -> Any:
    """Recursively convert mapping keys to snake_case (camelCase input accepted)."""
    if isinstance(value, Mapping):
        return {to_snake(str(key)): snake_case_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [snake_case_keys(item) for item in value]
    return value


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """
    Merge override onto base, field by field.

    Nested mappings merge recursively; any other override value replaces the
    base value. None in the override means "not set" and keeps the base.

    Args:
        base: Default configuration values
        override: Partial caller-supplied values

    Returns:
        New merged dictionary; neither input is modified
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def build_config(
    schema: type[ProviderConfiguration],
    defaults: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]],
    name: str,
) -> ProviderConfiguration:
    """
    Build a validated configuration from defaults plus partial overrides.

    Args:
        schema: Provider configuration model
        defaults: Provider default values (snake_case keys)
        overrides: Caller overrides, camelCase or snake_case keys
        name: Provider identifier, always wins over any override

    Returns:
        Frozen configuration instance

    Raises:
        pydantic.ValidationError: If the merged structure fails validation
    """
    merged = deep_merge(snake_case_keys(defaults), snake_case_keys(overrides or {}))
    merged["name"] = name
    return schema.model_validate(merged)
