"""Default configuration values per provider.

Values are plain dictionaries merged under caller overrides by the factory.
Selector fields not listed here fall back to the schema defaults.
"""

from mangascope.config import settings

ASURA_DEFAULTS = {
    "name": "AsuraScans",
    "base_url": "https://asuracomic.net/",
    "timeout": 60000,
    "retries": 3,
    "headers": {
        "referer": "https://asuracomic.net/",
        "user_agent": settings.DEFAULT_USER_AGENT,
    },
    "output": {"directory": "man", "file_extension": ".webp", "filename_padding": 3},
}

TOONILY_DEFAULTS = {
    "name": "Toonily",
    "base_url": "https://toonily.com/",
    "timeout": 60000,
    "retries": 3,
    "headers": {
        "referer": "https://toonily.com/",
        "user_agent": settings.DEFAULT_USER_AGENT,
    },
    "selectors": {
        "search": {
            "result_container": (
                ".page-item-detail, .page-item-detail.manga, .manga-item, .post-content, "
                ".row.c-tabs-item, .c-tabs-item__content"
            ),
            "link": '.item-thumb a, .post-title a, a[href*="/serie/"]',
            "image": ".item-thumb img, img",
            "title": ".post-title a, .post-title h3 a, h3 a, h4 a, a",
            "chapters": ".chapter, .post-total-chapter, .chapter-item, .latest-chapter, .chapters",
            "link_pattern": "/serie/",
        },
        "detail": {
            "image": ".summary_image img, .summary_image a img",
        },
        "chapter": {
            "cdn_pattern": r"tnlycdn\.com|toonily\.com",
        },
    },
    "output": {"directory": "toonily", "file_extension": ".jpg", "filename_padding": 3},
}

MANGAGG_DEFAULTS = {
    "name": "MangaGG",
    "base_url": "https://mangagg.com/",
    "timeout": 60000,
    "retries": 3,
    "headers": {
        "referer": "https://mangagg.com/",
        "user_agent": settings.DEFAULT_USER_AGENT,
    },
    "selectors": {
        "search": {
            "result_container": (
                ".c-tabs-item__content, .page-item-detail, .page-item-detail.manga, "
                ".c-tabs-item__content .row"
            ),
            "link": 'a[href*="/comic/"]',
            "chapters": (
                ".latest-chap a, .latest-chapter a, .chapter a, .chapter-item a, .latest-chapter"
            ),
            "link_pattern": "/comic/",
        },
        "detail": {
            "image": ".summary_image img, .summary_image a img, .manga-thumbnail img",
            "description": ".summary__content, .summary__content p, .description-summary",
        },
    },
    "output": {"directory": "mangagg", "file_extension": ".jpg", "filename_padding": 3},
}

MANGAFIRE_DEFAULTS = {
    "name": "MangaFire",
    "base_url": "https://mangafire.to/",
    "timeout": 60000,
    "retries": 3,
    "headers": {
        "referer": "https://mangafire.to/",
        "user_agent": settings.DEFAULT_USER_AGENT,
    },
    "output": {"directory": "mangafire", "file_extension": ".jpg", "filename_padding": 3},
}
