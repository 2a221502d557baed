# potion/callback_server.py
"""Local loopback HTTP server that receives a single OAuth redirect."""

import asyncio
import html
import logging
import os
import socket
from typing import Optional, Tuple

from aiohttp import web

from .errors import AuthorizationDeniedError, MissingCodeError, StateMismatchError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"

_PAGE = """<html>
<head><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>{title}</h1>
    <p>{message}</p>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>"""


def _page(title: str, message: str, status: int = 200) -> web.Response:
    return web.Response(
        text=_PAGE.format(title=title, message=html.escape(message)),
        content_type="text/html",
        status=status,
    )


class CallbackServer:
    """
    Serve exactly one authorization redirect on 127.0.0.1.

    The first request to the callback path completes a one-shot future with
    either the authorization code or an error. Later requests are answered
    and discarded. The state is checked against ``expected_state`` when the
    request arrives, or by ``wait_for_callback`` if it was not known yet.

    Example:
        >>> server = CallbackServer(port=0, expected_state=state)
        >>> await server.open()
        >>> url = client.get_authorization_url(..., redirect_uri=server.redirect_uri, state=state)
        >>> code = await server.wait_for_callback(state, timeout=300)
    """

    def __init__(
        self,
        port: int = 0,
        host: str = "127.0.0.1",
        expected_state: Optional[str] = None,
    ):
        """
        Initialize callback server.

        Args:
            port: Preferred port; 0 lets the OS choose one
            host: Interface to bind (loopback only)
            expected_state: CSRF state to check, if known before waiting
        """
        self.host = host
        self.preferred_port = port
        self.expected_state = expected_state
        self._sock: Optional[socket.socket] = None
        self._runner: Optional[web.AppRunner] = None
        self._result: Optional[asyncio.Future] = None
        self._port: Optional[int] = None

    @property
    def port(self) -> int:
        """The actual bound port."""
        if self._port is None:
            raise RuntimeError("Callback server is not open")
        return self._port

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{CALLBACK_PATH}"

    @property
    def closed(self) -> bool:
        return self._runner is None

    async def open(self) -> int:
        """
        Bind the listening socket and start serving.

        Returns:
            The actual bound port (useful when port 0 was requested)

        Raises:
            OSError: If the port cannot be bound
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if os.name == "posix":
                # Allow rebinding a fixed port still in TIME_WAIT from a previous run
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.preferred_port))
            sock.listen(8)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        self._sock = sock
        self._port = sock.getsockname()[1]
        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self._handle_callback)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.SockSite(runner, sock)
        try:
            await site.start()
        except Exception:
            await runner.cleanup()
            sock.close()
            raise
        self._runner = runner

        logger.debug(f"Callback server listening on {self.redirect_uri}")
        return self._port

    def _complete(
        self, received: Optional[Tuple[str, Optional[str]]], error: Optional[Exception]
    ) -> bool:
        """Resolve the one-shot result. Returns False if it was already resolved."""
        if self._result is None or self._result.done():
            return False
        if error is not None:
            self._result.set_exception(error)
        else:
            self._result.set_result(received)
        return True

    def _state_mismatch(self, state: Optional[str]) -> bool:
        if not self.expected_state or state is None:
            return False
        return state != self.expected_state

    async def _handle_callback(self, request: web.Request) -> web.Response:
        if self._result is None or self._result.done():
            return _page(
                "Authorization Already Completed",
                "This authorization request has already been handled.",
                status=409,
            )

        query = request.query
        error = query.get("error")
        if error:
            description = query.get("error_description", "")
            detail = f"{error}: {description}" if description else error
            self._complete(None, AuthorizationDeniedError(f"OAuth error: {detail}"))
            return _page("Authentication Failed", detail, status=400)

        state = query.get("state")
        if self._state_mismatch(state):
            self._complete(None, StateMismatchError("State mismatch in OAuth callback"))
            return _page("Authentication Failed", "State mismatch", status=400)

        code = query.get("code")
        if not code:
            self._complete(None, MissingCodeError("No authorization code received"))
            return _page(
                "Authentication Failed", "No authorization code received", status=400
            )

        self._complete((code, state), None)
        if not self.expected_state:
            # State is checked by wait_for_callback once it is known
            logger.warning("Callback received before the expected state was set")
            return _page("Authorization Received", "Authorization response received.")
        return _page("Authentication Successful!", "Authorization code received.")

    async def wait_for_callback(
        self, expected_state: Optional[str] = None, timeout: Optional[float] = None
    ) -> str:
        """
        Block until the redirect arrives, the timeout passes, or the task is cancelled.

        The server is closed before this method returns or raises.

        Args:
            expected_state: CSRF state sent with the authorization URL
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            The authorization code

        Raises:
            AuthorizationDeniedError: If the redirect carries an error
            StateMismatchError: If the state does not match
            MissingCodeError: If no code is present
            TimeoutError: If no redirect arrived in time
            asyncio.CancelledError: If the waiting task was cancelled
        """
        if self._result is None:
            raise RuntimeError("Callback server is not open")
        if expected_state is not None:
            self.expected_state = expected_state

        try:
            code, state = await asyncio.wait_for(asyncio.shield(self._result), timeout)
        finally:
            await self.close()

        if self._state_mismatch(state):
            raise StateMismatchError("State mismatch in OAuth callback")
        return code

    async def close(self) -> None:
        """Stop serving and release the socket. Safe to call more than once."""
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
            logger.debug("Callback server closed")
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    async def __aenter__(self) -> "CallbackServer":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
