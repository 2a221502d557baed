# potion/models.py
"""Backend-neutral page and search models."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Source = Literal["api", "mcp"]
SortDirection = Literal["ascending", "descending"]


class PageSummary(BaseModel):
    """A page as listed in search results."""

    id: str
    title: str = ""
    url: str = ""


class PageResult(BaseModel):
    """A single retrieved page."""

    id: str
    title: str = ""
    url: str = ""
    # Markdown body (MCP backend)
    content: str = ""
    # Flattened text properties (REST backend)
    properties: Dict[str, str] = Field(default_factory=dict)
    # Raw response document (REST backend)
    raw: Optional[Dict[str, Any]] = None
    source: Source = "api"


class SearchResult(BaseModel):
    """The outcome of a search."""

    pages: List[PageSummary] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None
    # Pre-rendered markdown (MCP backend)
    content: str = ""
    raw: Optional[Dict[str, Any]] = None
    source: Source = "api"


class GetPageOptions(BaseModel):
    filter_properties: List[str] = Field(default_factory=list)


class SearchOptions(BaseModel):
    page_size: int = 10
    start_cursor: Optional[str] = None
    sort: Optional[SortDirection] = None
