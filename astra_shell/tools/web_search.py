"""Web search tool powered by Brave Search API."""

import os
import re
from typing import Any

import httpx

from astra_shell.config import get_config
from astra_shell.logging import get_logger
from astra_shell.security import DomainSafetyCache
from astra_shell.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class WebSearchTool(Tool):
    """Search the web using Brave Search API."""

    name = "WebSearch"
    description = "Search the web and return ranked results with titles, links and snippets."
    timeout_seconds = 30.0
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query text",
            },
            "count": {
                "type": "number",
                "description": "Maximum results to return (default from config, max 20)",
            },
        },
        "required": ["query"],
    }

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        domain_cache: DomainSafetyCache | None = None,
    ):
        security = get_config().security
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": "AstraShell/0.1.0 (Web Search Tool)"},
        )
        self.domain_cache = domain_cache or DomainSafetyCache(
            ttl_seconds=security.domain_cache_ttl_seconds,
            unsafe_domains=security.unsafe_domains,
        )

    @staticmethod
    def _clean_text(value: str, max_chars: int = 500) -> str:
        """Normalize whitespace and bound output size."""
        cleaned = re.sub(r"\s+", " ", (value or "")).strip()
        if len(cleaned) <= max_chars:
            return cleaned
        return cleaned[:max_chars].rstrip() + "... [truncated]"

    async def execute(self, query: str, count: int | None = None, **kwargs: Any) -> ToolResult:
        """Execute Brave web search."""
        q = (query or "").strip()
        if not q:
            return ToolResult.fail("Missing required query")

        search_cfg = get_config().tools.web_search
        if search_cfg.provider.strip().lower() != "brave":
            return ToolResult.fail(f"Unsupported WebSearch provider: {search_cfg.provider}")

        api_key = search_cfg.api_key.strip() or os.environ.get("BRAVE_API_KEY", "").strip()
        if not api_key:
            return ToolResult.fail(
                "Missing Brave API key. Set tools.web_search.api_key in config "
                "or BRAVE_API_KEY environment variable."
            )

        effective_count = search_cfg.max_results if count is None else int(count)
        effective_count = min(max(effective_count, 1), 20)

        try:
            response = await self.client.get(
                search_cfg.base_url,
                params={"q": q, "count": effective_count},
                headers={"Accept": "application/json", "X-Subscription-Token": api_key},
                timeout=float(search_cfg.timeout),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            detail = f"HTTP {e.response.status_code}"
            body = (e.response.text or "").strip()
            if body:
                detail = f"{detail}: {self._clean_text(body, max_chars=300)}"
            log.error("Brave web search failed", query=q, error=detail)
            return ToolResult.fail(detail)
        except httpx.HTTPError as e:
            log.error("Web search failed", query=q, error=str(e))
            return ToolResult.fail(f"Web search request failed: {e}")

        web_block = payload.get("web", {}) if isinstance(payload, dict) else {}
        raw_results = web_block.get("results", []) if isinstance(web_block, dict) else []
        if not isinstance(raw_results, list):
            raw_results = []

        results = []
        for item in raw_results:
            if not isinstance(item, dict):
                continue
            link = str(item.get("url", "") or "").strip()
            results.append({
                "title": self._clean_text(str(item.get("title", "") or "Untitled"), max_chars=180),
                "url": link,
                "snippet": self._clean_text(str(item.get("description", "") or "")),
                "safe": self.domain_cache.is_safe(link) if link else False,
            })

        return ToolResult.ok({"query": q, "results": results})

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
