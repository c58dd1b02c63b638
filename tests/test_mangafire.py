"""Tests for the MangaFire AJAX-capture scraper."""

import json
import logging

import pytest

from mangascope.models.schemas import SearchedSeries
from mangascope.scrapers.factory import ScraperFactory
from mangascope.scrapers.mangafire import (
    SUBMIT_SEARCH_JS,
    ReaderLocation,
    clean_chapter_title,
    extract_hid,
    find_chapter_id,
    rank_results,
    with_query_param,
)
from tests.conftest import (
    FakePage,
    FakeRequest,
    FakeResponse,
    Visit,
    assert_page_restored,
    mock_client,
)

READER_URL = "https://mangafire.to/read/one-piece.dkw/en/chapter-2"
LIST_URL = "https://mangafire.to/ajax/read/dkw/chapter/en?vrf=abc"
CHAPTER_ENDPOINT = "https://mangafire.to/ajax/read/chapter/555?vrf=tok"
SERIES_URL = "https://mangafire.to/manga/one-piece.dkw"

READER_HTML = '<html><body><div id="readerarea">Loading</div></body></html>'
IMAGES = [f"https://s.mfcdn.xyz/mf/a/{n}.jpg" for n in (1, 2, 3)]
CHAPTER_PAYLOAD = json.dumps(
    {"status": 200, "result": {"images": [[url, n, 0] for n, url in enumerate(IMAGES, start=1)]}}
)
LIST_PAYLOAD = json.dumps(
    {
        "status": 200,
        "result": (
            '<ul><li data-id="554" data-number="1"><a href="/read/one-piece.dkw/en/chapter-1">Chapter 1</a></li>'
            '<li data-id="555" data-number="2"><a href="/read/one-piece.dkw/en/chapter-2">Chapter 2</a></li></ul>'
        ),
    }
)

SEARCH_HTML = """
<html><body>
<div class="unit"><div class="inner">
  <a href="/manga/vagabond.v1" class="poster"><img src="https://static.mfcdn.xyz/p1.jpg" alt="Vagabond"></a>
  <div class="info"><a href="/manga/vagabond.v1">Vagabond</a>
  <span class="content" data-name="chap">Chap 50</span></div>
</div></div>
<div class="unit"><div class="inner">
  <a href="/manga/berserk.b2" class="poster"><img data-src="https://static.mfcdn.xyz/p2.jpg" alt="Berserk"></a>
  <div class="info"><a href="/manga/berserk.b2">Berserk</a></div>
</div></div>
</body></html>
"""

HOME_HTML = '<html><body><form action="filter"><input name="keyword"></form></body></html>'


def make_scraper(cache, client=None, **overrides):
    overrides.setdefault("timeout", 200)
    return ScraperFactory.create_scraper("MangaFire", overrides, cache=cache, client=client)


def strategy_messages(caplog):
    return [
        record.getMessage()
        for record in caplog.records
        if "Chapter strategy" in record.getMessage() and "landing-redirect" not in record.getMessage()
    ]


class TestChapterStrategies:
    """The ordered chapter strategy chain."""

    @pytest.mark.asyncio
    async def test_list_lookup_after_earlier_strategies_fail(self, cache, no_sleep, caplog):
        caplog.set_level(logging.INFO, logger="mangascope.scrapers.mangafire")
        list_response = FakeResponse(LIST_URL, body=LIST_PAYLOAD)
        page = FakePage(
            {
                READER_URL: [
                    Visit(READER_HTML, events=[list_response]),
                    Visit(READER_HTML, events=[list_response]),
                    Visit(READER_HTML, events=[FakeRequest(CHAPTER_ENDPOINT)]),
                ]
            }
        )
        client = mock_client({CHAPTER_ENDPOINT: CHAPTER_PAYLOAD})
        scraper = make_scraper(cache, client)

        pages = await scraper.get_chapter_pages(page, READER_URL)

        assert [(p.page_index, p.image_url) for p in pages] == list(enumerate(IMAGES, start=1))
        assert all(p.referer == "https://mangafire.to/" for p in pages)
        assert scraper.last_strategy == "list-lookup"
        assert strategy_messages(caplog) == [
            "[MangaFire] Chapter strategy direct-replay: started",
            "[MangaFire] Chapter strategy direct-replay: 0 images",
            "[MangaFire] Chapter strategy passive-capture: started",
            "[MangaFire] Chapter strategy passive-capture: 0 images",
            "[MangaFire] Chapter strategy dom-fallback: started",
            "[MangaFire] Chapter strategy dom-fallback: 0 images",
            "[MangaFire] Chapter strategy list-lookup: started",
            "[MangaFire] Chapter strategy list-lookup: 3 images",
        ]
        assert "[MangaFire] Chapter resolved by list-lookup (3 images)" in caplog.messages
        # two capture attempts plus one token capture; dom-fallback reused the loaded reader
        assert page.history.count(READER_URL) == 3
        assert_page_restored(page)
        assert cache.get(f"chapter-ajax:{READER_URL}") == CHAPTER_ENDPOINT

    @pytest.mark.asyncio
    async def test_direct_replay_uses_cached_endpoint_and_token(self, cache, no_sleep):
        list_response = FakeResponse(LIST_URL, body=LIST_PAYLOAD)
        page = FakePage(
            {
                READER_URL: [
                    Visit(READER_HTML, events=[list_response]),
                    Visit(READER_HTML, events=[list_response]),
                    Visit(READER_HTML, events=[FakeRequest(CHAPTER_ENDPOINT)]),
                ]
            }
        )
        client = mock_client({CHAPTER_ENDPOINT: CHAPTER_PAYLOAD})
        scraper = make_scraper(cache, client)
        await scraper.get_chapter_pages(page, READER_URL)

        cache.delete(f"chapter:{READER_URL}")
        second_page = FakePage()
        pages = await scraper.get_chapter_pages(second_page, READER_URL)

        assert len(pages) == 3
        assert scraper.last_strategy == "direct-replay"
        assert second_page.history == ["about:blank"]

    @pytest.mark.asyncio
    async def test_passive_capture_response(self, cache, no_sleep):
        page = FakePage(
            {
                READER_URL: Visit(
                    READER_HTML,
                    events=[
                        FakeRequest("https://whos.amung.us/widget.js", "script"),
                        FakeRequest(IMAGES[0], "image"),
                        FakeRequest(CHAPTER_ENDPOINT),
                        FakeResponse(CHAPTER_ENDPOINT, body=CHAPTER_PAYLOAD),
                    ],
                )
            }
        )
        client = mock_client({})
        scraper = make_scraper(cache, client)

        pages = await scraper.get_chapter_pages(page, READER_URL)

        assert [p.image_url for p in pages] == IMAGES
        assert scraper.last_strategy == "passive-capture"
        assert [route.outcome for route in page.routed] == ["aborted", "aborted", "continued"]
        assert client.requests == []
        assert scraper.tokens.get("/ajax/read/chapter/555") == "tok"
        assert_page_restored(page)

    @pytest.mark.asyncio
    async def test_captured_request_replayed_over_http(self, cache, no_sleep):
        page = FakePage({READER_URL: Visit(READER_HTML, events=[FakeRequest(CHAPTER_ENDPOINT)])})
        client = mock_client({CHAPTER_ENDPOINT: CHAPTER_PAYLOAD})
        scraper = make_scraper(cache, client)

        pages = await scraper.get_chapter_pages(page, READER_URL)

        assert len(pages) == 3
        assert scraper.last_strategy == "passive-capture"
        [request] = client.requests
        assert request.headers["X-Requested-With"] == "XMLHttpRequest"
        assert request.headers["Referer"] == READER_URL

    @pytest.mark.asyncio
    async def test_dom_fallback_reads_reader_images(self, cache, no_sleep):
        html = (
            "<html><body><img src='https://mangafire.to/assets/logo.png'>"
            + "".join(f"<img data-url='{url}'>" for url in IMAGES)
            + "</body></html>"
        )
        page = FakePage({READER_URL: Visit(html)})
        scraper = make_scraper(cache, mock_client({}))

        pages = await scraper.get_chapter_pages(page, READER_URL)

        assert [p.image_url for p in pages] == IMAGES
        assert scraper.last_strategy == "dom-fallback"

    @pytest.mark.asyncio
    async def test_landing_redirect_and_total_failure(self, cache, no_sleep, caplog):
        caplog.set_level(logging.INFO, logger="mangascope.scrapers.mangafire")
        page = FakePage(
            {READER_URL: Visit("<html><body>Welcome</body></html>", landing="https://mangafire.to/home")}
        )
        scraper = make_scraper(cache, mock_client({}))

        pages = await scraper.get_chapter_pages(page, READER_URL)

        assert pages == []
        assert scraper.last_strategy == ""
        assert any("Chapter strategy landing-redirect" in message for message in caplog.messages)
        assert_page_restored(page)
        assert cache.get(f"chapter:{READER_URL}") is None


class TestMangaFireSearch:
    """Search through the signed filter URL or the A-Z list."""

    @pytest.mark.asyncio
    async def test_filter_url_capture(self, cache):
        filter_url = "https://mangafire.to/filter?keyword=berserk&vrf=xyz"
        page = FakePage({"https://mangafire.to/home": Visit(HOME_HTML)})
        page.evaluate_handlers[SUBMIT_SEARCH_JS] = lambda arg: page.emit(
            FakeRequest(f"https://mangafire.to/filter?keyword={arg['value']}&vrf=xyz", "document")
        )
        client = mock_client({filter_url: SEARCH_HTML})
        scraper = make_scraper(cache, client)

        result = await scraper.search(page, "berserk")

        assert [item.title for item in result.results] == ["Berserk", "Vagabond"]
        berserk = result.results[0]
        assert berserk.id == "https://mangafire.to/manga/berserk.b2"
        assert berserk.image == "https://static.mfcdn.xyz/p2.jpg"
        assert berserk.header_for_image == {"Referer": "https://mangafire.to"}
        assert result.results[1].chapters == "Chap 50"
        assert result.has_next_page is False
        assert cache.get("filter-url:berserk") == filter_url
        assert_page_restored(page)

    @pytest.mark.asyncio
    async def test_az_list_fallback(self, cache):
        client = mock_client({"https://mangafire.to/az-list?keyword=berserk": SEARCH_HTML})
        scraper = make_scraper(cache, client)
        page = FakePage()

        result = await scraper.search(page, "berserk")

        assert len(result.results) == 2
        assert "https://mangafire.to/home" in page.history
        assert_page_restored(page)

    @pytest.mark.asyncio
    async def test_empty_term_lists_catalogue(self, cache):
        client = mock_client({"https://mangafire.to/az-list?page=2": SEARCH_HTML})
        scraper = make_scraper(cache, client)
        page = FakePage()

        result = await scraper.search(page, "", page_number=2)

        assert result.current_page == 2
        assert [item.title for item in result.results] == ["Vagabond", "Berserk"]
        assert page.history == ["about:blank"]

    @pytest.mark.asyncio
    async def test_challenge_response_gives_empty_result(self, cache):
        client = mock_client(
            {"https://mangafire.to/az-list": "<html><title>Just a moment...</title></html>"}
        )
        scraper = make_scraper(cache, client)

        result = await scraper.search(FakePage(), "")

        assert result.results == []
        assert result.has_next_page is False


class TestMangaFireSeriesDetails:
    """Detail page plus the chapter list endpoint."""

    DETAIL_HTML = """
    <html><body>
    <div class="poster"><img itemprop="image" src="https://static.mfcdn.xyz/op.jpg"></div>
    <div class="info"><p>Releasing</p><h1 itemprop="name">One Piece</h1></div>
    <div class="description">Pirates.</div>
    <div class="meta">
      <div><span>Author:</span><span><a href="/author/oda">Oda Eiichiro</a></span></div>
      <div><span>Genres:</span><span><a href="/genre/action">Action</a>, <a href="/genre/adventure">Adventure</a></span></div>
    </div>
    </body></html>
    """

    @pytest.mark.asyncio
    async def test_chapters_from_list_endpoint(self, cache):
        chapter_list = json.dumps(
            {
                "status": 200,
                "result": (
                    '<ul><li class="item" data-number="2"><a href="/read/one-piece.dkw/en/chapter-2">'
                    "<span>Chapter 2: Romance Dawn</span><span>Jan 1, 2024</span></a></li>"
                    '<li class="item" data-number="1"><a href="/read/one-piece.dkw/en/chapter-1">'
                    "<span>Chapter 1</span></a></li></ul>"
                ),
            }
        )
        client = mock_client({"https://mangafire.to/ajax/manga/dkw/chapter/en": chapter_list})
        scraper = make_scraper(cache, client)
        page = FakePage({SERIES_URL: Visit(self.DETAIL_HTML)})

        detail = await scraper.get_series_details(page, SERIES_URL)

        assert detail.title == "One Piece"
        assert detail.status == "Releasing"
        assert detail.author == "Oda Eiichiro"
        assert detail.genres == ["Action", "Adventure"]
        assert detail.image == "https://static.mfcdn.xyz/op.jpg"
        first, second = detail.chapters
        assert first.chapter_number == "2"
        assert first.chapter_title == "Romance Dawn"
        assert first.release_date == "Jan 1, 2024"
        assert first.chapter_url == READER_URL
        assert second.chapter_title == ""
        assert_page_restored(page)


class TestHelpers:
    """Pure helpers used by the chapter chain and search."""

    def test_reader_location(self):
        location = ReaderLocation.parse(READER_URL)
        assert location.hid == "dkw"
        assert location.lang == "en"
        assert location.chapter_number == "2"
        assert location.origin == "https://mangafire.to"
        assert location.list_path == "/ajax/read/dkw/chapter/en"

    def test_extract_hid(self):
        assert extract_hid(SERIES_URL) == "dkw"
        assert extract_hid("https://mangafire.to/az-list") == ""

    def test_find_chapter_id_by_path(self):
        html = json.loads(LIST_PAYLOAD)["result"]
        assert find_chapter_id(html, "/read/one-piece.dkw/en/chapter-2", "") == "555"

    def test_find_chapter_id_by_number(self):
        html = '<ul><li data-chapter-id="9" data-number="7.5"><a href="/x">Ch</a></li></ul>'
        assert find_chapter_id(html, "/read/a.b/en/chapter-7.5", "7.5") == "9"

    def test_find_chapter_id_no_blind_fallback(self):
        html = '<ul><li data-id="1" data-number="1"><a href="/read/a.b/en/chapter-1">1</a></li></ul>'
        assert find_chapter_id(html, "/read/a.b/en/chapter-40", "40") == ""

    def test_find_chapter_id_on_anchor(self):
        html = (
            "<ul>"
            '<li><a href="/read/one-piece.dkw/en/chapter-1" data-number="1" data-id="554">1</a></li>'
            '<li><a href="/read/one-piece.dkw/en/chapter-2" data-number="2" data-id="555">2</a></li>'
            "</ul>"
        )
        assert find_chapter_id(html, "/read/one-piece.dkw/en/chapter-2", "2") == "555"
        assert find_chapter_id(html, "/read/other.abc/en/chapter-9", "1") == "554"

    def test_find_chapter_id_ignores_empty_link_paths(self):
        html = (
            "<ul>"
            '<li data-id="554" data-number="1"><a href="#">1</a></li>'
            '<li data-id="555" data-number="2"><a href="?page=2">2</a></li>'
            "</ul>"
        )
        assert find_chapter_id(html, "/read/one-piece.dkw/en/chapter-2", "2") == "555"
        assert find_chapter_id(html, "/read/one-piece.dkw/en/chapter-3", "3") == ""

    def test_clean_chapter_title(self):
        assert clean_chapter_title("Chapter 12: The Return EN") == "The Return"
        assert clean_chapter_title("Chapter 5") == ""
        assert clean_chapter_title("Ch. 3 - Go") == ""

    def test_rank_results(self):
        def series(title):
            return SearchedSeries(id=f"https://mangafire.to/manga/{title}", title=title)

        results = [series("Tower of God"), series("Leveling Solo"), series("Solo Leveling")]
        ranked = rank_results(results, "solo leveling")
        assert [item.title for item in ranked] == ["Solo Leveling", "Leveling Solo", "Tower of God"]
        assert rank_results(results, "so") == results

    def test_with_query_param(self):
        assert (
            with_query_param("https://mangafire.to/filter?keyword=a&vrf=x&page=1", "page", "3")
            == "https://mangafire.to/filter?keyword=a&vrf=x&page=3"
        )

    def test_plausible_images(self, cache):
        scraper = make_scraper(cache)
        assert scraper.is_plausible_image("https://s.mfcdn.xyz/mf/a/1.jpg") is True
        assert scraper.is_plausible_image("https://static.mfcdn.xyz/assets/logo.png") is False
        assert scraper.is_plausible_image("https://other.cdn/mf/a/1.jpg") is False
        assert scraper.is_plausible_image("https://s.mfcdn.xyz/mf/a/1.txt") is False

    def test_payload_pages_variants(self, cache):
        scraper = make_scraper(cache)
        objects = {
            "result": {
                "pages": [
                    {"url": "https://s.mfcdn.xyz/mf/x/2.jpg", "page": 2},
                    {"src": "https://s.mfcdn.xyz/mf/x/1.jpg", "page": 1},
                ]
            }
        }
        assert scraper.payload_pages(objects) == [
            (2, "https://s.mfcdn.xyz/mf/x/2.jpg"),
            (1, "https://s.mfcdn.xyz/mf/x/1.jpg"),
        ]
        strings = {"images": ["https://s.mfcdn.xyz/mf/y/1.png", "https://mangafire.to/assets/logo.png"]}
        assert scraper.payload_pages(strings) == [(1, "https://s.mfcdn.xyz/mf/y/1.png")]
        html = {"result": "<div><img data-url='https://s.mfcdn.xyz/chapter_9/1.webp'></div>"}
        assert scraper.payload_pages(html) == [(1, "https://s.mfcdn.xyz/chapter_9/1.webp")]
        assert scraper.payload_pages("not json") == []
