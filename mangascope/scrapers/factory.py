"""Scraper factory: provider id -> validated configuration -> scraper."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from mangascope.models.provider_config import (
    AsuraScansConfig,
    MangaFireConfig,
    MangaGGConfig,
    ProviderConfiguration,
    ToonilyConfig,
    build_config,
)
from mangascope.models.schemas import ProviderInfo
from mangascope.scrapers.asura import AsuraScansScraper
from mangascope.scrapers.base import BaseScraper
from mangascope.scrapers.cache import ResultCache
from mangascope.scrapers.defaults import (
    ASURA_DEFAULTS,
    MANGAFIRE_DEFAULTS,
    MANGAGG_DEFAULTS,
    TOONILY_DEFAULTS,
)
from mangascope.scrapers.errors import ConfigurationError, UnsupportedProviderError
from mangascope.scrapers.mangafire import MangaFireScraper
from mangascope.scrapers.mangagg import MangaGGScraper
from mangascope.scrapers.parsing import BlockDetector
from mangascope.scrapers.toonily import ToonilyScraper

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    ASURA_SCANS = "AsuraScans"
    TOONILY = "Toonily"
    MANGAGG = "MangaGG"
    MANGAFIRE = "MangaFire"


@dataclass(frozen=True)
class ProviderEntry:
    schema: type[ProviderConfiguration]
    scraper: type[BaseScraper]
    defaults: Mapping[str, Any]
    label: str
    experimental: bool = False

    @property
    def cache_namespace(self) -> str:
        return self.scraper.cache_namespace


REGISTRY: dict[Provider, ProviderEntry] = {
    Provider.ASURA_SCANS: ProviderEntry(
        AsuraScansConfig, AsuraScansScraper, ASURA_DEFAULTS, "Asura Scans"
    ),
    Provider.TOONILY: ProviderEntry(
        ToonilyConfig, ToonilyScraper, TOONILY_DEFAULTS, "Toonily", experimental=True
    ),
    Provider.MANGAGG: ProviderEntry(MangaGGConfig, MangaGGScraper, MANGAGG_DEFAULTS, "MangaGG"),
    Provider.MANGAFIRE: ProviderEntry(
        MangaFireConfig, MangaFireScraper, MANGAFIRE_DEFAULTS, "MangaFire"
    ),
}


def resolve_provider(provider: Union[Provider, str]) -> Provider:
    """
    Resolve a provider id, accepting the enum or its string value.

    Matching is case-insensitive so "asurascans" and "AsuraScans" agree.

    Raises:
        UnsupportedProviderError: If no provider has that id
    """
    if isinstance(provider, Provider):
        return provider
    lowered = str(provider).strip().lower()
    for candidate in Provider:
        if candidate.value.lower() == lowered:
            return candidate
    raise UnsupportedProviderError(f"Unsupported provider: {provider}")


class ScraperFactory:
    """Builds scrapers with a validated, immutable configuration."""

    @staticmethod
    def create_config(
        provider: Union[Provider, str], overrides: Optional[Mapping[str, Any]] = None
    ) -> ProviderConfiguration:
        """
        Merge overrides onto the provider defaults and validate the result.

        Args:
            provider: Provider id
            overrides: Partial configuration, camelCase or snake_case keys

        Returns:
            Frozen provider configuration

        Raises:
            UnsupportedProviderError: If the provider is unknown
            ConfigurationError: If the merged configuration is invalid
        """
        resolved = resolve_provider(provider)
        entry = REGISTRY[resolved]
        try:
            return build_config(entry.schema, entry.defaults, overrides, resolved.value)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration for {resolved.value}: {e}") from e

    @classmethod
    def create_scraper(
        cls,
        provider: Union[Provider, str],
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        cache: Optional[ResultCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        block_detector: Optional[BlockDetector] = None,
    ) -> BaseScraper:
        """
        Create a ready-to-use scraper.

        Args:
            provider: Provider id
            overrides: Partial configuration merged over the defaults
            cache: Result cache; defaults to the provider namespace
            client: Shared HTTP client for direct requests
            block_detector: Replacement challenge page detector

        Returns:
            Scraper instance for the provider

        Raises:
            UnsupportedProviderError: If the provider is unknown
            ConfigurationError: If validation fails; nothing is constructed
        """
        resolved = resolve_provider(provider)
        entry = REGISTRY[resolved]
        config = cls.create_config(resolved, overrides)
        logger.info(f"Creating {resolved.value} scraper for {config.base_url}")
        return entry.scraper(
            config,
            cache=cache or ResultCache(entry.cache_namespace),
            client=client,
            block_detector=block_detector,
        )

    @staticmethod
    def available_providers() -> list[str]:
        return [provider.value for provider in REGISTRY]

    @staticmethod
    def provider_metadata() -> list[ProviderInfo]:
        """Labels, default base URLs and experimental flags of every provider."""
        return [
            ProviderInfo(
                id=provider.value,
                label=entry.label,
                base_url=entry.defaults["base_url"],
                experimental=entry.experimental,
            )
            for provider, entry in REGISTRY.items()
        ]
