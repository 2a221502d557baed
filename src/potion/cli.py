#!/usr/bin/env python3
"""
Command-line interface for potion.

Usage:
    potion auth [--mcp] [--port N] [--no-browser] [--yes]
    potion get <page_id_or_url> [--format text|table|json]
    potion list [--query Q] [--page-size N] [--sort descending]
    potion config
    potion logout
    potion version
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from .client import create_client
from .config import CONFIG_DIR_ENV, ENV_PREFIX, get_config_path, load_settings
from .errors import PotionError
from .format import (
    FORMATS,
    extract_page_id,
    format_page,
    format_search,
    mask_token,
    safe_display_token,
)
from .models import GetPageOptions, SearchOptions
from .oauth_handler import (
    CALLBACK_TIMEOUT,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_MCP_CALLBACK_PORT,
    OAuthHandler,
)
from .token_manager import TokenManager
from .version import get_full_version

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


def print_header(text: str):
    """Print a formatted header."""
    print("\n" + "=" * 60)
    print(text)
    print("=" * 60)


def clamp_page_size(page_size: int) -> int:
    if page_size < 1:
        return DEFAULT_PAGE_SIZE
    return min(page_size, MAX_PAGE_SIZE)


def confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


async def refresh_gate(token_manager: TokenManager) -> None:
    """Refresh a near-expiry MCP token; never fails the calling command."""
    await OAuthHandler(token_manager).refresh_if_needed()


async def cmd_auth(
    use_mcp: bool = False,
    port: Optional[int] = None,
    timeout: float = CALLBACK_TIMEOUT,
    open_browser: bool = True,
    assume_yes: bool = False,
    token_manager: Optional[TokenManager] = None,
) -> int:
    """Authenticate and store the resulting token."""
    token_manager = token_manager or TokenManager()

    if token_manager.has_token() and not assume_yes:
        print(f"Token file already exists: {token_manager.token_path}")
        if not confirm("Do you want to re-authenticate? [y/N]: "):
            print("Cancelled.")
            return 0

    handler = OAuthHandler(token_manager)
    if use_mcp:
        port = DEFAULT_MCP_CALLBACK_PORT if port is None else port
        record = await handler.authenticate_mcp(
            port=port, timeout=timeout, open_browser=open_browser
        )
    else:
        port = DEFAULT_CALLBACK_PORT if port is None else port
        record = await handler.authenticate(
            port=port, timeout=timeout, open_browser=open_browser
        )

    print("\n✅ Authentication successful!")
    print(f"Access Token: {safe_display_token(record.access_token)}")
    if record.workspace_name:
        print(f"Workspace: {record.workspace_name}")
    if record.expires_at:
        print(f"Expires At: {record.expires_at}")
    print(f"\n💾 Token saved to {token_manager.token_path}")
    return 0


async def cmd_get(
    page: str,
    output_format: str = "text",
    filter_properties: Optional[str] = None,
    token_manager: Optional[TokenManager] = None,
) -> int:
    """Fetch one page and print it."""
    token_manager = token_manager or TokenManager()
    await refresh_gate(token_manager)

    settings = load_settings(token_manager)
    options = None
    if filter_properties:
        names = [p.strip() for p in filter_properties.split(",") if p.strip()]
        options = GetPageOptions(filter_properties=names)

    async with create_client(settings) as client:
        result = await client.get_page(extract_page_id(page), options)

    print(format_page(result, output_format))
    return 0


async def cmd_list(
    query: str = "",
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: Optional[str] = "descending",
    cursor: Optional[str] = None,
    output_format: str = "table",
    token_manager: Optional[TokenManager] = None,
) -> int:
    """Search pages and print the results."""
    token_manager = token_manager or TokenManager()
    await refresh_gate(token_manager)

    settings = load_settings(token_manager)
    options = SearchOptions(
        page_size=clamp_page_size(page_size), start_cursor=cursor or None, sort=sort
    )

    async with create_client(settings) as client:
        result = await client.search(query, options)

    print(format_search(result, output_format))
    return 0


def cmd_config(token_manager: Optional[TokenManager] = None) -> int:
    """Show the effective configuration with secrets masked."""
    token_manager = token_manager or TokenManager()
    settings = load_settings(token_manager)

    print_header("Current Configuration")
    print(f"Backend:       {settings.backend}")
    print(f"Token:         {mask_token(settings.token) if settings.token else '(not set)'}")
    print(
        f"Client ID:     {mask_token(settings.client_id) if settings.client_id else '(not set)'}"
    )
    print(f"Client Secret: {'(set)' if settings.client_secret else '(not set)'}")

    print()
    print("Sources")
    print("-------")
    for name in ("BACKEND", "TOKEN", "CLIENT_ID", "CLIENT_SECRET"):
        var = f"{ENV_PREFIX}{name}"
        if os.environ.get(var):
            print(f"{var + ':':<23}set")
    for var in ("NOTION_TOKEN", CONFIG_DIR_ENV):
        if os.environ.get(var):
            print(f"{var + ':':<23}set")

    config_path = get_config_path()
    print(f"{'Config file:':<23}{config_path if config_path.exists() else '(not found)'}")
    token_path = token_manager.token_path
    print(f"{'Token file:':<23}{token_path if token_path.exists() else '(not found)'}")
    return 0


def cmd_logout(token_manager: Optional[TokenManager] = None) -> int:
    """Remove the stored token."""
    handler = OAuthHandler(token_manager or TokenManager())
    if handler.logout():
        print("✅ Logged out; stored token removed")
    else:
        print("No stored token found")
    return 0


def cmd_version() -> int:
    print(get_full_version())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="potion",
        description="Command-line client for Notion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  potion auth --mcp
  potion list --query roadmap --page-size 20
  potion get https://www.notion.so/Notes-0123456789abcdef0123456789abcdef
  potion config
        """,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Auth command
    auth_parser = subparsers.add_parser("auth", help="Authenticate with Notion using OAuth")
    auth_parser.add_argument(
        "--mcp",
        action="store_true",
        help="Use MCP OAuth (Dynamic Client Registration)",
    )
    auth_parser.add_argument(
        "-p",
        "--port",
        type=int,
        help=f"Local callback server port (default: {DEFAULT_CALLBACK_PORT}, "
        f"{DEFAULT_MCP_CALLBACK_PORT} with --mcp)",
    )
    auth_parser.add_argument(
        "--timeout",
        type=float,
        default=CALLBACK_TIMEOUT,
        help="Seconds to wait for the browser redirect",
    )
    auth_parser.add_argument(
        "--no-browser", action="store_true", help="Print the URL without opening a browser"
    )
    auth_parser.add_argument(
        "-y", "--yes", action="store_true", help="Overwrite an existing token without asking"
    )

    # Get command
    get_parser = subparsers.add_parser("get", help="Get a single page")
    get_parser.add_argument("page", help="Page ID or URL")
    get_parser.add_argument("-f", "--format", choices=FORMATS, default="text")
    get_parser.add_argument(
        "--filter-properties", help="Properties to retrieve (comma-separated)"
    )

    # List command
    list_parser = subparsers.add_parser("list", help="Search and list pages")
    list_parser.add_argument("-q", "--query", default="", help="Search keyword")
    list_parser.add_argument(
        "-n",
        "--page-size",
        type=int,
        default=DEFAULT_PAGE_SIZE,
        help=f"Number of results to retrieve (max {MAX_PAGE_SIZE})",
    )
    list_parser.add_argument(
        "--sort", choices=("ascending", "descending"), default="descending"
    )
    list_parser.add_argument("--cursor", help="Pagination cursor")
    list_parser.add_argument("-f", "--format", choices=FORMATS, default="table")

    subparsers.add_parser("config", help="Show current configuration")
    subparsers.add_parser("logout", help="Remove the stored token")
    subparsers.add_parser("version", help="Print version information")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    # Execute command
    try:
        if args.command == "auth":
            return asyncio.run(
                cmd_auth(
                    use_mcp=args.mcp,
                    port=args.port,
                    timeout=args.timeout,
                    open_browser=not args.no_browser,
                    assume_yes=args.yes,
                )
            )
        elif args.command == "get":
            return asyncio.run(cmd_get(args.page, args.format, args.filter_properties))
        elif args.command == "list":
            return asyncio.run(
                cmd_list(
                    query=args.query,
                    page_size=args.page_size,
                    sort=args.sort,
                    cursor=args.cursor,
                    output_format=args.format,
                )
            )
        elif args.command == "config":
            return cmd_config()
        elif args.command == "logout":
            return cmd_logout()
        elif args.command == "version":
            return cmd_version()
        else:  # pragma: no cover
            # This should never be reached due to argparse validation
            parser.print_help()
            return 1

    except KeyboardInterrupt:
        print("\n\n❌ Interrupted by user", file=sys.stderr)
        return 130
    except TimeoutError:
        print("\n❌ Error: timed out waiting for authorization", file=sys.stderr)
        return 1
    except (PotionError, OSError) as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
