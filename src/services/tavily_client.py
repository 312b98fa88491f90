"""Web search through Tavily, plus a guarded plain-HTTP page reader.

``fetch`` only follows http(s) URLs, allows at most three redirects,
reads at most 1 MB and strips the page down to text.  Its output is
flagged ``untrusted`` so the prompt can tell the model not to obey it.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

from src.config import TAVILY_API_KEY, TAVILY_BASE_URL
from src.errors import PortTransportError
from src.ports import WebSearchPort
from src.services.http import RetryingHTTPClient
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 3
MAX_FETCH_BYTES = 1_000_000
FETCH_TIMEOUT_SECONDS = 10.0
MIN_CHARS, MAX_CHARS = 1_000, 60_000

_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def html_to_text(html: str) -> str:
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def _check_scheme(url: str) -> None:
    if urlparse(url).scheme not in ("http", "https"):
        raise PortTransportError("Only http/https URLs are allowed.", service="web")


class TavilyClient(RetryingHTTPClient, WebSearchPort):
    service = "tavily"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        fetch_client: httpx.Client | None = None,
        **kwargs: Any,
    ):
        super().__init__(base_url or TAVILY_BASE_URL, **kwargs)
        self._api_key = api_key or TAVILY_API_KEY
        self._fetch_client = fetch_client or httpx.Client(
            timeout=FETCH_TIMEOUT_SECONDS,
            follow_redirects=False,
            headers={"User-Agent": "Mozilla/5.0"},
        )

    def search(self, query: str, max_results: int = 5) -> dict[str, Any]:
        data = self._request(
            "POST",
            "/search",
            json_body={
                "api_key": self._api_key,
                "query": query,
                "search_depth": "advanced",
                "include_answer": True,
                "max_results": min(max(max_results, 1), 10),
            },
        )
        results = [
            {"url": r.get("url"), "title": r.get("title"), "content": r.get("content"), "score": r.get("score")}
            for r in data.get("results", [])
        ]
        logger.info("Web search %r returned %d results", query, len(results))
        return {"success": True, "answer": data.get("answer"), "results": results}

    def fetch(self, url: str, max_chars: int = 12_000) -> dict[str, Any]:
        _check_scheme(url)
        current = url
        with metrics.timed("web", "GET page"):
            for _ in range(MAX_REDIRECTS + 1):
                try:
                    with self._fetch_client.stream("GET", current) as response:
                        location = response.headers.get("location")
                        if response.is_redirect and location:
                            current = urljoin(current, location)
                            _check_scheme(current)
                            continue
                        if response.status_code >= 400:
                            raise PortTransportError(
                                f"Fetch failed ({response.status_code})",
                                service="web",
                                status_code=response.status_code,
                            )
                        body = self._read_capped(response)
                        break
                except httpx.HTTPError as exc:
                    raise PortTransportError(f"Failed to fetch URL: {exc}", service="web") from exc
            else:
                raise PortTransportError(f"Too many redirects (more than {MAX_REDIRECTS})", service="web")

        limit = min(max(max_chars, MIN_CHARS), MAX_CHARS)
        return {"success": True, "url": current, "content": html_to_text(body)[:limit], "untrusted": True}

    @staticmethod
    def _read_capped(response: httpx.Response) -> str:
        chunks: list[bytes] = []
        received = 0
        for chunk in response.iter_bytes():
            received += len(chunk)
            if received > MAX_FETCH_BYTES:
                chunks.append(chunk[: len(chunk) - (received - MAX_FETCH_BYTES)])
                break
            chunks.append(chunk)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
