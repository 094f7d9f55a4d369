import re
from urllib.parse import urlparse

from searchengine.utils.url_utils import is_within_site

# static resources never worth a fetch
BLOCKED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".mp4", ".mp3", ".pdf",
    ".zip", ".rar", ".exe", ".apk", ".iso", ".tar", ".gz", ".7z", ".css", ".js",
    ".doc", ".docx", ".xls", ".xlsx",
)


def is_crawlable_link(site_url: str, url: str) -> bool:
    """Check that a discovered link may become a crawl task for the site.

    The link has to stay under the site's URL prefix and carry neither a query
    string nor a fragment marker.
    """
    if "?" in url or "#" in url:
        return False

    parsed = urlparse(url)
    if not parsed.scheme.startswith("http") or not parsed.netloc:
        return False

    if re.match(r"^(javascript:|mailto:|tel:)", url, re.I):
        return False

    path = parsed.path.lower()
    if any(path.endswith(ext) for ext in BLOCKED_EXTENSIONS):
        return False

    return is_within_site(site_url, url)
