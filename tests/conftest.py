import asyncio
import os
import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from searchengine.lemmas.extractor import LemmaExtractor
from searchengine.lemmas.morphology import WordForms
from searchengine.storage.db_init import close_db, init_db
from searchengine.utils.config_loader import Config, SiteConfig


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep developer .env files and SEARCHENGINE_* variables out of tests."""

    for key in list(os.environ.keys()):
        if key.startswith("SEARCHENGINE_") or key == "DATABASE_URL":
            monkeypatch.delenv(key, raising=False)

    # pydantic-settings reads ".env" relative to the working directory
    monkeypatch.chdir(tmp_path)
    yield


class DictionaryMorphology:
    """Tiny analyzer with a fixed vocabulary; unknown words are their own lemma."""

    FORMS = {
        "кошки": ("кошка",),
        "кошку": ("кошка",),
        "кошкой": ("кошка",),
        "кошек": ("кошка",),
        "собаки": ("собака",),
        "собаку": ("собака",),
        "леса": ("лес",),
        "лесу": ("лес",),
        "стали": ("сталь", "стать"),
        "бежит": ("бежать",),
    }
    CLASSES = {
        "и": "CONJ",
        "но": "CONJ",
        "на": "PREP",
        "под": "PREP",
        "ах": "INTJ",
        "не": "PRCL",
        "же": "PRCL",
    }

    def __init__(self):
        self.calls = []

    def normalize(self, word: str) -> WordForms:
        self.calls.append(word)
        if word in self.CLASSES:
            return WordForms((word,), frozenset({self.CLASSES[word]}))
        return WordForms(self.FORMS.get(word, (word,)), frozenset({"NOUN"}))


@pytest.fixture
def morphology():
    return DictionaryMorphology()


@pytest.fixture
def extractor(morphology):
    return LemmaExtractor(morphology)


@pytest_asyncio.fixture
async def db():
    await init_db("sqlite://:memory:")
    yield
    await close_db()


ALPHA = SiteConfig(url="https://alpha.test", name="Alpha")
BETA = SiteConfig(url="https://beta.test", name="Beta")


@pytest.fixture
def config():
    return Config(
        sites=[ALPHA, BETA],
        crawl_delay_min=0,
        crawl_delay_max=0,
        request_timeout=1,
        workers_per_site=3,
        max_concurrent_fetches=4,
    )


def html_page(body: str, title: str | None = None, links=()) -> str:
    head = f"<title>{title}</title>" if title is not None else ""
    anchors = "".join(f'<a href="{href}">ссылка</a>' for href in links)
    return f"<html><head>{head}</head><body><p>{body}</p>{anchors}</body></html>"


class FakeWeb:
    """Serves canned pages keyed by absolute URL and records every request.

    Values are HTML strings, ready ``httpx.Response`` objects or callables
    (sync or async) taking the request. Unknown URLs answer 404.
    """

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.requests = []
        self.transport = httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        self.requests.append(key)
        page = self.pages.get(key)
        if page is None:
            return httpx.Response(404, headers={"Content-Type": "text/html"}, text="not found")
        if callable(page):
            page = page(request)
            if asyncio.iscoroutine(page):
                page = await page
        if isinstance(page, httpx.Response):
            return page
        return httpx.Response(200, headers={"Content-Type": "text/html; charset=utf-8"}, text=page)

    def count(self, url: str) -> int:
        return self.requests.count(url)


async def wait_until(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
