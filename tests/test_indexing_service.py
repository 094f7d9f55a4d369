import asyncio

import httpx
import pytest

from conftest import FakeWeb, html_page, wait_until
from searchengine.frontier import SiteFrontier
from searchengine.indexing_service import (
    ALREADY_STARTED,
    NOT_RUNNING,
    PAGE_NOT_FOUND,
    SITE_NOT_CONFIGURED,
    STOPPED_BY_USER,
    IndexingService,
    OperationResult,
)
from searchengine.storage.models import Index, Lemma, Page, Site, SiteStatus


def alpha_pages():
    return {
        "https://alpha.test/": html_page(
            "Кошка живёт в лесу",
            title="Главная",
            links=[
                "/cats",
                "/dogs",
                "/cats#comments",
                "/search?q=кошка",
                "https://external.test/page",
                "/logo.png",
                "/missing",
            ],
        ),
        "https://alpha.test/cats": html_page("Кошки и кошку любят", title="Раздел", links=["/", "/dogs"]),
        "https://alpha.test/dogs": html_page("Собаки бегут в лесу", title="Собаки", links=["/cats", "/json"]),
        "https://alpha.test/json": httpx.Response(
            200, headers={"Content-Type": "application/json"}, json={"ok": True}
        ),
    }


def beta_pages():
    return {"https://beta.test/": html_page("Собака спит", title="Бета")}


async def site_status(url):
    site = await Site.get(url=url)
    return site.status


@pytest.mark.asyncio
async def test_start_indexing_crawls_configured_sites(db, config, extractor):
    web = FakeWeb({**alpha_pages(), **beta_pages()})
    service = IndexingService(config, extractor, transport=web.transport)

    outcome = await service.start_indexing()

    assert outcome == OperationResult.ok()
    assert not service.is_indexing

    alpha = await Site.get(url="https://alpha.test")
    beta = await Site.get(url="https://beta.test")
    assert alpha.status == SiteStatus.INDEXED
    assert alpha.last_error is None
    assert beta.status == SiteStatus.INDEXED

    paths = sorted(await Page.filter(site_id=alpha.id).values_list("path", flat=True))
    assert paths == ["/", "/cats", "/dogs"]
    assert await Page.filter(site_id=beta.id).count() == 1

    # out-of-scope links are never fetched, every page only once
    assert web.count("https://external.test/page") == 0
    assert web.count("https://alpha.test/logo.png") == 0
    assert web.count("https://alpha.test/search") == 0
    assert web.count("https://alpha.test/") == 1
    assert web.count("https://alpha.test/cats") == 1
    assert web.count("https://alpha.test/missing") == 1
    assert web.count("https://alpha.test/json") == 1


@pytest.mark.asyncio
async def test_crawl_keeps_document_frequency_invariant(db, config, extractor):
    web = FakeWeb({**alpha_pages(), **beta_pages()})
    service = IndexingService(config, extractor, transport=web.transport)

    await service.start_indexing()

    alpha = await Site.get(url="https://alpha.test")
    lemmas = await Lemma.filter(site_id=alpha.id)
    texts = [lemma.lemma for lemma in lemmas]
    assert len(texts) == len(set(texts))

    for lemma in lemmas:
        pages = await Index.filter(lemma_id=lemma.id).values_list("page_id", flat=True)
        assert lemma.frequency == len(set(pages))

    cat = await Lemma.get(site_id=alpha.id, lemma="кошка")
    assert cat.frequency == 2
    cats_page = await Page.get(site_id=alpha.id, path="/cats")
    entry = await Index.get(page_id=cats_page.id, lemma_id=cat.id)
    assert entry.rank == 2.0


@pytest.mark.asyncio
async def test_second_run_revisits_pages(db, config, extractor):
    web = FakeWeb({**alpha_pages(), **beta_pages()})
    service = IndexingService(config, extractor, transport=web.transport)

    await service.start_indexing()
    await service.start_indexing()

    assert web.count("https://alpha.test/") == 2
    assert web.count("https://alpha.test/dogs") == 2
    alpha = await Site.get(url="https://alpha.test")
    assert await Page.filter(site_id=alpha.id).count() == 3
    assert (await Lemma.get(site_id=alpha.id, lemma="кошка")).frequency == 2


@pytest.mark.asyncio
async def test_unreachable_root_still_finishes_site(db, config, extractor):
    web = FakeWeb(beta_pages())
    service = IndexingService(config, extractor, transport=web.transport)

    await service.start_indexing()

    alpha = await Site.get(url="https://alpha.test")
    assert alpha.status == SiteStatus.INDEXED
    assert await Page.filter(site_id=alpha.id).count() == 0


@pytest.mark.asyncio
async def test_site_failure_is_recorded_without_aborting_siblings(db, config, extractor, monkeypatch):
    web = FakeWeb({**alpha_pages(), **beta_pages()})
    service = IndexingService(config, extractor, transport=web.transport)

    original_purge = service.writer.purge_site

    async def failing_purge(site):
        if site.url == "https://beta.test":
            raise RuntimeError("database is locked")
        await original_purge(site)

    monkeypatch.setattr(service.writer, "purge_site", failing_purge)

    await service.start_indexing()

    beta = await Site.get(url="https://beta.test")
    assert beta.status == SiteStatus.FAILED
    assert beta.last_error == "database is locked"
    assert await site_status("https://alpha.test") == SiteStatus.INDEXED


@pytest.mark.asyncio
async def test_start_twice_is_rejected(db, config, extractor):
    gate = asyncio.Event()

    async def slow_root(request):
        await gate.wait()
        return httpx.Response(200, headers={"Content-Type": "text/html"}, text=html_page("Кошка"))

    web = FakeWeb({"https://alpha.test/": slow_root, "https://beta.test/": slow_root})
    service = IndexingService(config, extractor, transport=web.transport)

    first = asyncio.create_task(service.start_indexing())
    await asyncio.sleep(0)

    assert service.is_indexing
    second = await service.start_indexing()
    assert second == OperationResult.failed(ALREADY_STARTED)
    assert service.is_indexing

    gate.set()
    assert await first == OperationResult.ok()
    assert not service.is_indexing


@pytest.mark.asyncio
async def test_stop_when_idle_is_rejected(db, config, extractor):
    service = IndexingService(config, extractor, transport=FakeWeb().transport)

    outcome = await service.stop_indexing()

    assert outcome == OperationResult.failed(NOT_RUNNING)
    assert outcome.to_dict() == {"result": False, "error": NOT_RUNNING}


@pytest.mark.asyncio
async def test_stop_marks_sites_failed_and_halts_crawl(db, config, extractor):
    gate = asyncio.Event()

    async def blocked(request):
        await gate.wait()
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html"},
            text=html_page("Лес", links=["/deeper"]),
        )

    web = FakeWeb(
        {
            "https://alpha.test/": html_page("Кошка", links=["/child"]),
            "https://alpha.test/child": blocked,
            "https://alpha.test/deeper": html_page("Собака"),
            "https://beta.test/": blocked,
        }
    )
    service = IndexingService(config, extractor, transport=web.transport)
    run = asyncio.create_task(service.start_indexing())

    async def both_in_flight():
        return "https://alpha.test/child" in web.requests and "https://beta.test/" in web.requests

    await wait_until(both_in_flight)
    assert await site_status("https://alpha.test") == SiteStatus.INDEXING
    assert await site_status("https://beta.test") == SiteStatus.INDEXING

    outcome = await service.stop_indexing()

    assert outcome == OperationResult.ok()
    assert not service.is_indexing
    for url in ("https://alpha.test", "https://beta.test"):
        site = await Site.get(url=url)
        assert site.status == SiteStatus.FAILED
        assert site.last_error == STOPPED_BY_USER

    gate.set()
    await asyncio.wait_for(run, timeout=5)

    for url in ("https://alpha.test", "https://beta.test"):
        site = await Site.get(url=url)
        assert site.status == SiteStatus.FAILED
        assert site.last_error == STOPPED_BY_USER

    assert web.count("https://alpha.test/deeper") == 0
    assert not await Page.filter(path="/deeper").exists()


@pytest.mark.asyncio
async def test_launch_indexing_runs_in_background(db, config, extractor):
    web = FakeWeb({**alpha_pages(), **beta_pages()})
    service = IndexingService(config, extractor, transport=web.transport)

    outcome = service.launch_indexing()

    assert outcome.result is True
    assert service.is_indexing
    assert service.launch_indexing() == OperationResult.failed(ALREADY_STARTED)

    await service.wait_background()

    assert not service.is_indexing
    assert await site_status("https://alpha.test") == SiteStatus.INDEXED


@pytest.mark.asyncio
async def test_index_page_is_idempotent(db, config, extractor):
    web = FakeWeb(alpha_pages())
    service = IndexingService(config, extractor, transport=web.transport)

    first = await service.index_page("https://alpha.test/cats")
    second = await service.index_page("https://alpha.test/cats")

    assert first == OperationResult.ok()
    assert second == OperationResult.ok()

    site = await Site.get(url="https://alpha.test")
    assert site.name == "Alpha"
    assert await Page.filter(site_id=site.id, path="/cats").count() == 1
    assert (await Lemma.get(site_id=site.id, lemma="кошка")).frequency == 1
    # single-page indexing does not follow links
    assert web.count("https://alpha.test/dogs") == 0


@pytest.mark.asyncio
async def test_index_page_only_touches_its_own_lemmas(db, config, extractor):
    web = FakeWeb(alpha_pages())
    service = IndexingService(config, extractor, transport=web.transport)
    await service.index_page("https://alpha.test/dogs")
    await service.index_page("https://alpha.test/cats")

    web.pages["https://alpha.test/cats"] = html_page("Лес")
    await service.index_page("https://alpha.test/cats")

    site = await Site.get(url="https://alpha.test")
    frequencies = dict(await Lemma.filter(site_id=site.id).values_list("lemma", "frequency"))
    assert "кошка" not in frequencies
    assert frequencies["собака"] == 1
    assert frequencies["лес"] == 2


@pytest.mark.asyncio
async def test_index_page_rejects_unknown_site(db, config, extractor):
    service = IndexingService(config, extractor, transport=FakeWeb().transport)

    outcome = await service.index_page("https://unknown.test/page")

    assert outcome == OperationResult.failed(SITE_NOT_CONFIGURED)
    assert not await Site.filter(url="https://unknown.test").exists()


@pytest.mark.asyncio
async def test_index_page_reports_missing_page(db, config, extractor):
    service = IndexingService(config, extractor, transport=FakeWeb(alpha_pages()).transport)

    outcome = await service.index_page("https://alpha.test/nowhere")

    assert outcome == OperationResult.failed(PAGE_NOT_FOUND)
    assert not await Page.filter(path="/nowhere").exists()


@pytest.mark.asyncio
async def test_restart_after_stop_rebuilds_site(db, config, extractor):
    child_gate = asyncio.Event()
    second_root_gate = asyncio.Event()

    async def root(request):
        if web.count("https://alpha.test/") > 1:
            await second_root_gate.wait()
        return html_page("Кошка", links=["/child"])

    async def child(request):
        await child_gate.wait()
        return html_page("Лес", links=["/deeper"])

    web = FakeWeb(
        {
            "https://alpha.test/": root,
            "https://alpha.test/child": child,
            "https://alpha.test/deeper": html_page("Собака"),
            "https://beta.test/": html_page("Бета"),
        }
    )
    service = IndexingService(config, extractor, transport=web.transport)

    assert service.launch_indexing().result is True

    async def child_in_flight():
        return "https://alpha.test/child" in web.requests

    await wait_until(child_in_flight)
    assert (await service.stop_indexing()).result is True
    assert service.launch_indexing().result is True
    assert service.is_indexing

    # the stopped run finishes its fetch while the new run waits for it
    child_gate.set()

    async def second_root_requested():
        return web.count("https://alpha.test/") == 2

    await wait_until(second_root_requested)
    assert await site_status("https://alpha.test") == SiteStatus.INDEXING

    second_root_gate.set()
    await service.wait_background()

    assert not service.is_indexing
    alpha = await Site.get(url="https://alpha.test")
    assert alpha.status == SiteStatus.INDEXED
    assert alpha.last_error is None
    paths = sorted(await Page.filter(site_id=alpha.id).values_list("path", flat=True))
    assert paths == ["/", "/child", "/deeper"]
    assert web.count("https://alpha.test/deeper") == 1


@pytest.mark.asyncio
async def test_each_link_is_queued_once_per_run(db, config, extractor, monkeypatch):
    paths = ["/"] + [f"/p{i}" for i in range(10)]
    pages = {f"https://alpha.test{path}": html_page("Лес", links=paths) for path in paths}
    web = FakeWeb({**pages, **beta_pages()})
    service = IndexingService(config, extractor, transport=web.transport)

    accepted = []
    original_submit = SiteFrontier.submit

    def recording_submit(frontier, task):
        added = original_submit(frontier, task)
        if added:
            accepted.append(task.url)
        return added

    monkeypatch.setattr(SiteFrontier, "submit", recording_submit)

    await service.start_indexing()

    alpha_tasks = [url for url in accepted if url.startswith("https://alpha.test")]
    assert len(alpha_tasks) == len(paths)
    for path in paths:
        assert web.count(f"https://alpha.test{path}") == 1

    alpha = await Site.get(url="https://alpha.test")
    assert await Page.filter(site_id=alpha.id).count() == len(paths)
