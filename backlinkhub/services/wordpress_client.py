"""
WordPress REST Client
=====================

Thin async client for a network site's WordPress REST API
(``/wp-json/wp/v2``), authenticated with the site's application password
over HTTP Basic auth.

The stored ``api_url`` may or may not already end in ``/wp-json/wp/v2``;
both forms are normalised to the site root.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import httpx

from backlinkhub.core.errors import WordPressError

logger = logging.getLogger(__name__)

_REST_SUFFIX = re.compile(r"/wp-json/wp/v2$")
_FIRST_LINK = re.compile(r"""<a\s+(?:[^>]*?\s+)?href=(["'])([^"']+)\1[^>]*>(.*?)</a>""", re.IGNORECASE | re.DOTALL)


def normalize_base_url(api_url: str) -> str:
    base = api_url.strip().rstrip("/")
    return _REST_SUFFIX.sub("", base)


def extract_first_link(html: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (href, anchor text) of the first anchor in ``html``.

    Blank anchor text comes back as None; no anchor gives (None, None).
    """
    match = _FIRST_LINK.search(html or "")
    if not match:
        return None, None
    anchor = match.group(3).strip()
    return match.group(2), anchor or None


def post_contains_link(post: Dict[str, Any], target_url: str, anchor_text: Optional[str]) -> bool:
    content = (post.get("content") or {}).get("rendered") or ""
    pattern = r"<a[^>]*href=[\"']" + re.escape(target_url or "") + r"[\"'][^>]*>.*?" + re.escape(anchor_text or "") + r".*?</a>"
    return re.search(pattern, content, re.IGNORECASE | re.DOTALL) is not None


class WordPressClient:
    def __init__(
        self,
        api_url: str,
        username: str,
        application_password: str,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = normalize_base_url(api_url)
        self._auth = httpx.BasicAuth(username, application_password)
        self._timeout = timeout
        self._transport = transport

    @property
    def posts_url(self) -> str:
        return f"{self.base_url}/wp-json/wp/v2/posts"

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with httpx.AsyncClient(auth=self._auth, timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise WordPressError(f"WordPress request to {url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise WordPressError(
                f"WordPress API request failed: {response.status_code} {response.reason_phrase} - {response.text[:300]}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    async def search_posts(
        self,
        title: str,
        after: Optional[date] = None,
        before: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"search": title, "_fields": "id,link,content"}
        if after is not None:
            params["after"] = f"{after.isoformat()}T00:00:00"
        if before is not None:
            params["before"] = f"{before.isoformat()}T00:00:00"
        logger.debug("Searching posts on %s: %s", self.base_url, params)
        return await self._get(self.posts_url, params=params)

    async def get_post(self, post_id: int) -> Dict[str, Any]:
        return await self._get(f"{self.posts_url}/{post_id}")
