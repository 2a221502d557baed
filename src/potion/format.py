# potion/format.py
"""Output formatting for pages, search results and secrets."""

import json
import re
from typing import List, Sequence

from .errors import ConfigError
from .models import PageResult, SearchResult

FORMATS = ("text", "table", "json")
UNTITLED = "(Untitled)"
MAX_TITLE_WIDTH = 50

_PAGE_ID_RE = re.compile(
    r"([a-f0-9]{32}|[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})"
)


def extract_page_id(value: str) -> str:
    """
    Extract a page ID from a workspace URL, or normalize a bare ID.

    Hyphens are removed in both cases.

    Example:
        >>> extract_page_id("https://www.notion.so/Notes-0123456789abcdef0123456789abcdef")
        '0123456789abcdef0123456789abcdef'
    """
    if "notion.so" in value or "notion.site" in value:
        match = _PAGE_ID_RE.search(value)
        if match:
            return match.group(0).replace("-", "")
    return value.replace("-", "")


def mask_token(token: str) -> str:
    """Show the first and last four characters only."""
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}****{token[-4:]}"


def safe_display_token(token: str, prefix_len: int = 20, suffix_len: int = 6) -> str:
    """Safely display a token with most characters redacted."""
    if len(token) <= prefix_len + suffix_len:
        return f"{token[:10]}..."

    prefix = token[:prefix_len]
    suffix = token[-suffix_len:]
    redacted_len = len(token) - prefix_len - suffix_len

    return f"{prefix}...{'*' * min(redacted_len, 20)}...{suffix}"


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render left-aligned columns separated by two spaces."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row[: len(widths)]):
            widths[i] = max(widths[i], len(cell))

    def line(cells: Sequence[str]) -> str:
        return "  ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)).rstrip()

    lines = [line(headers), "  ".join("-" * w for w in widths)]
    lines.extend(line(row) for row in rows)
    return "\n".join(lines)


def _check_format(output_format: str, source: str) -> None:
    if output_format not in FORMATS:
        raise ConfigError(f"unsupported format: {output_format}")
    if output_format == "json" and source == "mcp":
        raise ConfigError("--format=json is not supported with MCP backend")


def _more_hint(result: SearchResult) -> List[str]:
    if result.has_more and result.next_cursor:
        return ["", f"(More results available. Use --cursor {result.next_cursor} to continue)"]
    return []


def format_page(page: PageResult, output_format: str = "text") -> str:
    """
    Render a page.

    MCP pages are markdown documents and are printed as such; REST pages are
    rendered from their properties, or dumped raw in ``json`` mode.

    Raises:
        ConfigError: For an unknown format, or ``json`` with an MCP page
    """
    _check_format(output_format, page.source)

    if output_format == "json":
        return json.dumps(page.raw or {}, indent=2, ensure_ascii=False)

    title = page.title or UNTITLED
    if page.source == "mcp":
        header = [f"# {title}"]
        if page.url:
            header.append(page.url)
        return "\n".join(header) + "\n\n" + page.content

    extra = [(name, value) for name, value in page.properties.items() if value]

    if output_format == "table":
        rows = [("Title", title), ("ID", page.id), ("URL", page.url)] + extra
        return render_table(("Property", "Value"), rows)

    lines = [f"Title: {title}", f"ID: {page.id}", f"URL: {page.url}"]
    if extra:
        lines.append("")
        lines.append("Properties:")
        lines.extend(f"  {name}: {value}" for name, value in extra)
    return "\n".join(lines)


def format_search(result: SearchResult, output_format: str = "table") -> str:
    """
    Render search results.

    Raises:
        ConfigError: For an unknown format, or ``json`` with an MCP result
    """
    _check_format(output_format, result.source)

    if output_format == "json":
        return json.dumps(result.raw or {}, indent=2, ensure_ascii=False)

    if result.source == "mcp":
        return result.content

    if output_format == "table":
        rows = []
        for page in result.pages:
            title = page.title or UNTITLED
            if len(title) > MAX_TITLE_WIDTH:
                title = title[: MAX_TITLE_WIDTH - 3] + "..."
            rows.append((title, page.id, page.url))
        lines = [render_table(("Title", "ID", "URL"), rows)]
    else:
        lines = []
        for i, page in enumerate(result.pages):
            if i > 0:
                lines.append("---")
            lines.append(page.title or UNTITLED)
            lines.append(f"  ID: {page.id}")
            lines.append(f"  URL: {page.url}")

    lines.extend(_more_hint(result))
    return "\n".join(lines)
