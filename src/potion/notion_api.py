# potion/notion_api.py
"""Notion REST API client."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import APIError
from .models import GetPageOptions, PageResult, PageSummary, SearchOptions, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"


def _plain_text(items: Optional[List[Dict[str, Any]]]) -> str:
    return "".join(item.get("plain_text", "") for item in items or [])


def extract_title(properties: Dict[str, Any]) -> str:
    """Return the plain text of the page's title property."""
    for prop in properties.values():
        if isinstance(prop, dict) and prop.get("type") == "title" and prop.get("title"):
            return _plain_text(prop["title"])
    return ""


def extract_properties(properties: Dict[str, Any]) -> Dict[str, str]:
    """Flatten rich_text properties to plain strings; the title is kept separately."""
    result = {}
    for name, prop in properties.items():
        if not isinstance(prop, dict):
            continue
        kind = prop.get("type")
        if kind == "rich_text" and prop.get(kind):
            result[name] = _plain_text(prop[kind])
    return result


def normalize_id(page_id: str) -> str:
    return page_id.replace("-", "")


class NotionAPIClient:
    """Thin async client over the REST endpoints used by the CLI."""

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "NotionAPIClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Notion-Version": NOTION_VERSION,
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self._http.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise APIError(f"Failed to send request: {e}") from e

        if response.status_code != 200:
            raise _api_error(response)

        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"Failed to decode response: {e}", status_code=200) from e
        if not isinstance(data, dict):
            raise APIError("Unexpected response: expected a JSON object", status_code=200)
        return data

    async def get_page(
        self, page_id: str, options: Optional[GetPageOptions] = None
    ) -> PageResult:
        """
        Retrieve a page's properties.

        Args:
            page_id: Page ID, with or without hyphens
            options: Optional property filter

        Returns:
            The page, including the raw response document

        Raises:
            APIError: On any non-200 response
        """
        params = []
        if options and options.filter_properties:
            params = [("filter_properties", p) for p in options.filter_properties]

        data = await self._request("GET", f"/pages/{normalize_id(page_id)}", params=params)
        properties = data.get("properties") or {}
        return PageResult(
            id=data.get("id", ""),
            title=extract_title(properties),
            url=data.get("url") or "",
            properties=extract_properties(properties),
            raw=data,
            source="api",
        )

    async def search(
        self, query: str, options: Optional[SearchOptions] = None
    ) -> SearchResult:
        """
        Search pages, most recently edited first unless ``options.sort`` says otherwise.

        Raises:
            APIError: On any non-200 response
        """
        body: Dict[str, Any] = {"filter": {"value": "page", "property": "object"}}
        if query:
            body["query"] = query
        if options:
            if options.page_size > 0:
                body["page_size"] = options.page_size
            if options.start_cursor:
                body["start_cursor"] = options.start_cursor
            if options.sort:
                body["sort"] = {"direction": options.sort, "timestamp": "last_edited_time"}

        data = await self._request("POST", "/search", json=body)
        pages = [
            PageSummary(
                id=item.get("id", ""),
                title=extract_title(item.get("properties") or {}),
                url=item.get("url") or "",
            )
            for item in data.get("results") or []
        ]
        logger.debug(f"Search returned {len(pages)} pages")
        return SearchResult(
            pages=pages,
            has_more=bool(data.get("has_more")),
            next_cursor=data.get("next_cursor"),
            raw=data,
            source="api",
        )


def _api_error(response: httpx.Response) -> APIError:
    try:
        error = response.json()
    except ValueError:
        error = None

    if isinstance(error, dict) and error.get("message"):
        return APIError(error["message"], status_code=response.status_code, code=error.get("code"))
    return APIError(
        f"API error (status {response.status_code}): {response.text}",
        status_code=response.status_code,
    )
