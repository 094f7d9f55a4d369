from __future__ import annotations

from typing import List

from bs4 import BeautifulSoup

from searchengine.utils.url_utils import resolve_link


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def extract_text(soup: BeautifulSoup) -> str:
    """
    Visible text of the document, used as lemma extraction input.
    """
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    text = soup.get_text(separator=" ", strip=True)
    return " ".join(text.split())


def extract_links(base_url: str, soup: BeautifulSoup) -> List[str]:
    """
    Absolute http(s) URLs of every anchor, in document order, without duplicates.
    """
    links: list[str] = []
    seen: set[str] = set()

    for tag in soup.find_all("a", href=True):
        full_url = resolve_link(base_url, tag["href"])
        if full_url is None or full_url in seen:
            continue
        seen.add(full_url)
        links.append(full_url)

    return links
