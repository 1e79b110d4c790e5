from __future__ import annotations

import logging
import re

import httpx
from bs4 import BeautifulSoup

from doosr import repositories
from doosr.clock import utc_now_iso
from doosr.settings import get_settings

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://[^\s]+", re.IGNORECASE)
USER_AGENT = "DoosrApp/1.0 (URL Unfurler)"


def detect_url(title: str | None) -> str | None:
    match = URL_PATTERN.search(title or "")
    return match.group(0) if match else None


def _clean(text: str | None) -> str | None:
    if not text:
        return None
    cleaned = " ".join(text.split())
    return cleaned or None


def _meta(soup: BeautifulSoup, *, prop: str | None = None, name: str | None = None) -> str | None:
    attrs = {"property": prop} if prop else {"name": name}
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"]
    return None


def extract_metadata(html: str, base_url: str) -> dict:
    soup = BeautifulSoup(html, "html.parser")
    title = _clean(_meta(soup, prop="og:title")) or _clean(soup.title.string if soup.title else None)
    description = _clean(_meta(soup, name="description")) or _clean(_meta(soup, prop="og:description"))
    image = _meta(soup, prop="og:image")
    if image:
        image = str(httpx.URL(base_url).join(image))
    return {"title": title or "Untitled", "description": description, "image_url": image}


async def fetch_metadata(url: str, client: httpx.AsyncClient | None = None) -> dict | None:
    settings = get_settings()
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(
            timeout=settings.unfurl_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Failed to fetch metadata for %s: %s", url, exc)
        return None
    finally:
        if owns_client:
            await client.aclose()
    return extract_metadata(response.text, str(response.url))


async def unfurl_item(item: dict, client: httpx.AsyncClient | None = None) -> dict:
    """Replace a URL-bearing title with the page title. Never raises."""
    settings = get_settings()
    url = detect_url(item.get("title"))
    if not url or not settings.unfurl_enabled:
        return item
    try:
        metadata = await fetch_metadata(url, client=client)
        if not metadata:
            return item
        extra_data = {
            **(item.get("extra_data") or {}),
            "unfurled_url": url,
            "unfurled_title": metadata["title"],
            "unfurled_description": metadata["description"],
            "unfurled_image_url": metadata["image_url"],
            "unfurled_at": utc_now_iso(),
        }
        logger.info("Unfurled %s for item %s", url, item["id"])
        return await repositories.update_item(item["id"], {"title": metadata["title"], "extra_data": extra_data})
    except Exception:
        logger.exception("URL unfurling failed for item %s", item.get("id"))
        return item
