#!/usr/bin/env python3
"""
Step-by-step MCP OAuth login, then one tool call with the new token.

This drives the building blocks directly instead of going through
OAuthHandler:

1. Discover the authorization server (RFC 9728 / RFC 8414)
2. Open a loopback listener on an OS-chosen port
3. Register a dynamic client for that redirect URI (RFC 7591)
4. Send the user to the authorization URL with PKCE (RFC 7636)
5. Exchange the code and call ``notion-search`` over MCP

Usage:
    python basic_mcp_oauth.py [server_url] [query]

The token is printed redacted and is not saved.
"""

import asyncio
import sys
import webbrowser

from potion import (
    CallbackServer,
    MCPOAuthClient,
    NotionMCPClient,
    generate_pkce_pair,
    generate_state,
)
from potion.errors import PotionError
from potion.format import safe_display_token


async def main():
    server_url = sys.argv[1] if len(sys.argv) > 1 else "https://mcp.notion.com"
    query = sys.argv[2] if len(sys.argv) > 2 else ""

    print(f"Starting MCP OAuth flow with {server_url}...")
    print("=" * 60)

    try:
        async with MCPOAuthClient(server_url) as client:
            metadata = await client.discover_authorization_server()
            print(f"Authorization server: {metadata.authorization_servers[0]}")

            state = generate_state()
            server = CallbackServer(port=0, expected_state=state)
            await server.open()
            try:
                registration = await client.register_client(metadata, server.redirect_uri)
                print(f"Registered client: {registration.client_id}")

                pkce = generate_pkce_pair()
                url = client.get_authorization_url(
                    metadata, registration, pkce, server.redirect_uri, state=state
                )
                print(f"\nOpen this URL to authorize:\n{url}\n")
                webbrowser.open(url)

                code = await server.wait_for_callback(state, timeout=300)
            finally:
                await server.close()

            record = await client.exchange_code(
                metadata, registration, pkce, code, server.redirect_uri
            )

        print("\n✅ Authentication successful!")
        print(f"Access Token: {safe_display_token(record.access_token)}")
        if record.refresh_token:
            print(f"Refresh Token: {safe_display_token(record.refresh_token)}")

        async with NotionMCPClient(
            record.access_token, endpoint=server_url.rstrip("/") + "/mcp"
        ) as notion:
            result = await notion.search(query)
            print(f"\nSession: {notion.transport.session_id}")
            print(result.content)

    except (PotionError, TimeoutError) as e:
        print(f"\n❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
