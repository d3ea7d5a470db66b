"""
URL detection and page metadata fetching.

Metadata comes from OpenGraph tags, falling back to <title>, the
description meta tag and the favicon link. Fetch failures are recorded on
the URL record and never propagate to note saving.
"""

import re
from collections.abc import Callable
from datetime import datetime
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from clarity.config import UrlFetchConfig
from clarity.models.url import ExtractedURL
from clarity.utils.exceptions import UrlFetchError
from clarity.utils.logger import get_logger

logger = get_logger(__name__)

_URL_PATTERN = re.compile(r"https?://[^\s<>\"'\]\)]+", re.IGNORECASE)
_TRAILING = ".,;:!?"


def detect_urls(text: str) -> list[str]:
    """
    Find http(s) URLs in free text.

    Returns:
        URLs in order of first appearance, without duplicates or trailing punctuation
    """
    found = []
    for match in _URL_PATTERN.finditer(text or ""):
        url = match.group(0).rstrip(_TRAILING)
        if urlparse(url).netloc:
            found.append(url)
    return list(dict.fromkeys(found))


def _meta(soup: BeautifulSoup, *keys: str) -> str | None:
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def parse_metadata(html: str, base_url: str) -> dict[str, str | None]:
    """
    Extract title, description, site name, image and favicon from markup.

    Relative image and favicon links are resolved against base_url.
    """
    soup = BeautifulSoup(html, "html.parser")

    title = _meta(soup, "og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()

    image = _meta(soup, "og:image", "twitter:image")

    favicon = None
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        rel = [r.lower() for r in (rel if isinstance(rel, list) else [rel])]
        if "icon" in rel or "apple-touch-icon" in rel:
            favicon = link["href"]
            break
    if favicon is None:
        favicon = "/favicon.ico"

    return {
        "title": title or None,
        "description": _meta(soup, "og:description", "description", "twitter:description"),
        "site_name": _meta(soup, "og:site_name") or urlparse(base_url).netloc or None,
        "image_url": urljoin(base_url, image) if image else None,
        "favicon_url": urljoin(base_url, favicon),
    }


class UrlMetadataFetcher:
    """
    Fetches page metadata over HTTP with its own timeout.

    Owns its httpx.AsyncClient unless one is injected. At most max_bytes of
    each body is read; the rest of the stream is never downloaded.
    """

    def __init__(
        self,
        config: UrlFetchConfig | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or UrlFetchConfig()
        self._clock = clock
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.config.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
        )

    async def fetch(self, url: str) -> dict[str, str | None]:
        """
        Fetch and parse metadata for url.

        Raises:
            UrlFetchError: On timeout, transport error, HTTP error status or non-HTML body
        """
        try:
            async with self.client.stream("GET", url, timeout=self.config.timeout) as response:
                response.raise_for_status()

                content_type = response.headers.get("content-type", "")
                if content_type and "html" not in content_type.lower():
                    raise UrlFetchError(
                        f"Not an HTML page: {content_type}",
                        {"url": url, "content_type": content_type},
                    )

                body = await self._read_capped(response)
                final_url = str(response.url)
        except httpx.TimeoutException as e:
            raise UrlFetchError(f"Timed out fetching {url}", {"url": url}) from e
        except httpx.HTTPStatusError as e:
            raise UrlFetchError(
                f"HTTP {e.response.status_code} fetching {url}",
                {"url": url, "status": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            raise UrlFetchError(f"Request failed for {url}: {e}", {"url": url}) from e

        return parse_metadata(body, final_url)

    async def _read_capped(self, response: httpx.Response) -> str:
        limit = self.config.max_bytes
        chunks: list[bytes] = []
        size = 0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            size += len(chunk)
            if size >= limit:
                break
        return b"".join(chunks)[:limit].decode(response.encoding or "utf-8", errors="replace")

    async def enrich(self, record: ExtractedURL) -> ExtractedURL:
        """
        Return a copy of record with metadata or a fetch error filled in.

        Never raises for fetch failures.
        """
        try:
            metadata = await self.fetch(record.url)
        except UrlFetchError as e:
            logger.warning(
                f"URL metadata fetch failed: {e.message}",
                extra={"url": record.url, "note_id": record.source_note_id, **e.context},
            )
            return record.model_copy(update={"fetch_error": e.message, "fetched_at": None})

        return record.model_copy(
            update={**metadata, "fetched_at": self._clock(), "fetch_error": None}
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
