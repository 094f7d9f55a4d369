from urllib.parse import urldefrag, urljoin, urlparse, urlsplit, urlunsplit


def normalize_url(url: str) -> str:
    """Canonical form used for deduplication: no fragment, lower-case scheme
    and host, no trailing slash except for the root path."""
    defragged, _ = urldefrag(url.strip())

    parts = urlsplit(defragged)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    path = parts.path or "/"

    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")

    return urlunsplit((scheme, netloc, path, parts.query, ""))


def resolve_link(base_url: str, href: str) -> str | None:
    """Resolve an anchor ``href`` against the page URL, http(s) only."""
    raw_link = href.strip()
    if not raw_link:
        return None
    if raw_link.startswith("//"):
        base_scheme = urlparse(base_url).scheme or "http"
        raw_link = f"{base_scheme}:{raw_link}"

    full_url = urljoin(base_url, raw_link)
    if urlparse(full_url).scheme not in ("http", "https"):
        return None
    return full_url


def site_root(site_url: str) -> str:
    return normalize_url(site_url).rstrip("/")


def is_within_site(site_url: str, url: str) -> bool:
    """True when ``url`` lies under the site's URL prefix."""
    root = site_root(site_url)
    candidate = normalize_url(url)
    return candidate == root or candidate.startswith(root + "/")


def to_page_path(url: str) -> str:
    """Path stored on a Page row: the URL path with a leading slash."""
    return urlsplit(normalize_url(url)).path or "/"

