"""Tests for the loopback callback server."""

import asyncio
import time

import httpx
import pytest

from potion.callback_server import CallbackServer
from potion.errors import AuthorizationDeniedError, MissingCodeError, StateMismatchError


@pytest.fixture
async def server():
    server = CallbackServer(port=0)
    await server.open()
    yield server
    await server.close()


async def visit(server, **params):
    async with httpx.AsyncClient(trust_env=False) as client:
        return await client.get(server.redirect_uri, params=params)


class TestOpen:
    """Test binding."""

    @pytest.mark.asyncio
    async def test_ephemeral_port_discoverable(self, server):
        """Test port 0 resolves to the actual bound port."""
        assert server.port > 0
        assert server.redirect_uri == f"http://127.0.0.1:{server.port}/callback"

    @pytest.mark.asyncio
    async def test_port_before_open(self):
        """Test the port is unavailable before binding."""
        with pytest.raises(RuntimeError):
            CallbackServer().port

    @pytest.mark.asyncio
    async def test_rebind_after_served_callback(self, server):
        """Test the same port can be reopened right after a callback was served."""
        port = server.port
        waiter = asyncio.create_task(server.wait_for_callback("abc", timeout=5))
        await visit(server, code="x", state="abc")
        assert await waiter == "x"

        again = CallbackServer(port=port)
        assert await again.open() == port
        await again.close()

    @pytest.mark.asyncio
    async def test_port_in_use(self, server):
        """Test binding a taken port raises OSError."""
        other = CallbackServer(port=server.port)
        with pytest.raises(OSError):
            await other.open()
        assert other.closed


class TestWaitForCallback:
    """Test redirect handling."""

    @pytest.mark.asyncio
    async def test_success(self, server):
        """Test a valid redirect yields the code and closes the server."""
        waiter = asyncio.create_task(server.wait_for_callback("abc123", timeout=5))
        response = await visit(server, code="the-code", state="abc123")

        assert response.status_code == 200
        assert "Authentication Successful" in response.text
        assert await waiter == "the-code"
        assert server.closed

    @pytest.mark.asyncio
    async def test_state_mismatch(self, server):
        """Test a wrong state fails with StateMismatchError and a failure page."""
        waiter = asyncio.create_task(server.wait_for_callback("abc123", timeout=5))
        response = await visit(server, code="c", state="wrong")

        assert response.status_code == 400
        assert "Failed" in response.text
        with pytest.raises(StateMismatchError):
            await waiter

    @pytest.mark.asyncio
    async def test_wrong_state_before_waiting(self, server):
        """Test a wrong state arriving before the wait starts is still rejected."""
        response = await visit(server, code="attacker", state="wrong")
        assert "Successful" not in response.text

        with pytest.raises(StateMismatchError):
            await server.wait_for_callback("abc123", timeout=5)
        assert server.closed

    @pytest.mark.asyncio
    async def test_matching_state_before_waiting(self, server):
        """Test a valid redirect that arrives early is returned by the wait."""
        await visit(server, code="early", state="abc123")

        assert await server.wait_for_callback("abc123", timeout=5) == "early"

    @pytest.mark.asyncio
    async def test_expected_state_from_constructor(self):
        """Test a state known at construction is checked as the request arrives."""
        server = CallbackServer(port=0, expected_state="abc123")
        await server.open()
        try:
            response = await visit(server, code="attacker", state="wrong")
            assert response.status_code == 400

            with pytest.raises(StateMismatchError):
                await server.wait_for_callback(timeout=5)
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_absent_state_accepted(self, server):
        """Test a redirect without state is not treated as a mismatch."""
        waiter = asyncio.create_task(server.wait_for_callback("abc123", timeout=5))
        await visit(server, code="c")

        assert await waiter == "c"

    @pytest.mark.asyncio
    async def test_authorization_denied(self, server):
        """Test an error parameter fails with AuthorizationDeniedError."""
        waiter = asyncio.create_task(server.wait_for_callback("s", timeout=5))
        response = await visit(server, error="access_denied", error_description="User <b>said</b> no")

        assert response.status_code == 400
        assert "<b>" not in response.text
        with pytest.raises(AuthorizationDeniedError, match="access_denied"):
            await waiter

    @pytest.mark.asyncio
    async def test_missing_code(self, server):
        """Test a redirect without code fails with MissingCodeError."""
        waiter = asyncio.create_task(server.wait_for_callback("s", timeout=5))
        await visit(server, state="s")

        with pytest.raises(MissingCodeError):
            await waiter

    @pytest.mark.asyncio
    async def test_only_first_callback_processed(self, server):
        """Test later requests are answered but do not change the result."""
        server.expected_state = "s"
        first = await visit(server, code="first", state="s")
        second = await visit(server, code="second", state="s")

        assert first.status_code == 200
        assert second.status_code == 409
        assert await server.wait_for_callback(timeout=5) == "first"

    @pytest.mark.asyncio
    async def test_timeout_closes_socket(self, server):
        """Test a timeout raises promptly and releases the port."""
        port = server.port
        started = time.monotonic()

        with pytest.raises(TimeoutError):
            await server.wait_for_callback("s", timeout=1)

        assert time.monotonic() - started < 3
        assert server.closed
        with pytest.raises(httpx.ConnectError):
            async with httpx.AsyncClient(trust_env=False) as client:
                await client.get(f"http://127.0.0.1:{port}/callback")

    @pytest.mark.asyncio
    async def test_cancellation_closes_socket(self, server):
        """Test cancelling the waiting task closes the server."""
        waiter = asyncio.create_task(server.wait_for_callback("s"))
        await asyncio.sleep(0.05)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert server.closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, server):
        """Test close can be called repeatedly."""
        await server.close()
        await server.close()
        assert server.closed
