"""Tests for the registrar HTTP client, run against the real API app."""

import asyncio
import tempfile
from pathlib import Path

import httpx
import pytest

from virt.config import Settings
from virt.registrar.errors import Conflict, InvalidTag, NotFound, Unauthorized, UpstreamFetchFailure
from virt.registrar.service import DeleteRequest, RegisterRequest, RegistrarService, UpdateRequest
from virt.resolver.client import RegistrarClient, request_with_retry
from virt.resolver.resolver import Outcome, Resolver
from web.backend.app.main import create_app

REGISTRAR = "http://registrar.test"


class _HostRouter(httpx.AsyncBaseTransport):
    """Dispatch requests to a transport chosen by host."""

    def __init__(self, routes: dict[str, httpx.AsyncBaseTransport]):
        self.routes = routes

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.routes[request.url.host].handle_async_request(request)


def _asgi_transport(tmpdir: str) -> httpx.ASGITransport:
    settings = Settings(data_dir=Path(tmpdir), pbkdf2_iterations=1000)
    app = create_app(settings)
    # ASGITransport does not run lifespan events
    app.state.registrar = RegistrarService.open(settings)
    return httpx.ASGITransport(app=app)


def test_full_registration_cycle():
    async def _go(transport):
        async with RegistrarClient(REGISTRAR, transport=transport) as client:
            assert (await client.check("myapp", "vc")).available

            registered = await client.register(
                RegisterRequest(label="myapp", tag="vc", target="https://github.com/u/r", title="App")
            )
            assert registered.name == "myapp.vc"
            assert registered.secret_key.startswith("v12-")
            assert not (await client.check("myapp", "vc")).available

            site = await client.lookup("myapp", "vc")
            assert site.raw_base == "https://raw.githubusercontent.com/u/r/"
            assert site.title == "App"

            with pytest.raises(Conflict):
                await client.register(RegisterRequest(label="myapp", tag="vc", target="https://example.com"))

            updated = await client.update(
                UpdateRequest(label="myapp", tag="vc", secret=registered.secret_key, description="Notes")
            )
            assert updated.description == "Notes"
            assert updated.title == "App"

            hits = await client.search("app")
            assert [(h.label, h.tag) for h in hits] == [("myapp", "vc")]

            with pytest.raises(Unauthorized):
                await client.delete(DeleteRequest(label="myapp", tag="vc", secret="v12-wrong"))
            await client.delete(DeleteRequest(label="myapp", tag="vc", secret=registered.secret_key))
            with pytest.raises(NotFound):
                await client.lookup("myapp", "vc")

    with tempfile.TemporaryDirectory() as tmpdir:
        asyncio.run(_go(_asgi_transport(tmpdir)))


def test_typed_errors_cross_the_wire():
    async def _go(transport):
        async with RegistrarClient(REGISTRAR, transport=transport) as client:
            with pytest.raises(InvalidTag):
                await client.check("myapp", "com")
            with pytest.raises(NotFound) as exc_info:
                await client.lookup("ghost", "at")
            assert exc_info.value.status_code == 404

    with tempfile.TemporaryDirectory() as tmpdir:
        asyncio.run(_go(_asgi_transport(tmpdir)))


def test_unknown_error_body_is_upstream_failure():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))

    async def _go():
        async with RegistrarClient(REGISTRAR, transport=transport) as client:
            with pytest.raises(UpstreamFetchFailure):
                await client.lookup("myapp", "vc")

    asyncio.run(_go())


def test_request_with_retry_gives_up():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    async def _go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(UpstreamFetchFailure):
                await request_with_retry(http, "GET", "https://down.example", retries=1)

    asyncio.run(_go())
    assert len(calls) == 2


class _LoseFirstPostReply(httpx.AsyncBaseTransport):
    """Deliver every request, but time out reading the first POST reply."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.posts = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self.inner.handle_async_request(request)
        if request.method == "POST":
            self.posts += 1
            if self.posts == 1:
                raise httpx.ReadTimeout("reply lost", request=request)
        return response


def test_register_is_not_resent_after_lost_reply():
    async def _go(transport):
        async with RegistrarClient(REGISTRAR, transport=transport) as client:
            with pytest.raises(UpstreamFetchFailure):
                await client.register(RegisterRequest(label="myapp", tag="vc", target="https://example.com"))
            assert transport.posts == 1
            assert not (await client.check("myapp", "vc")).available

    with tempfile.TemporaryDirectory() as tmpdir:
        asyncio.run(_go(_LoseFirstPostReply(_asgi_transport(tmpdir))))


def test_register_is_retried_when_connection_fails():
    class _RefuseFirst(httpx.AsyncBaseTransport):
        def __init__(self, inner):
            self.inner = inner
            self.attempts = 0

        async def handle_async_request(self, request):
            self.attempts += 1
            if self.attempts == 1:
                raise httpx.ConnectError("refused", request=request)
            return await self.inner.handle_async_request(request)

    async def _go(transport):
        async with RegistrarClient(REGISTRAR, transport=transport) as client:
            result = await client.register(RegisterRequest(label="myapp", tag="vc", target="https://example.com"))
            assert result.secret_key.startswith("v12-")
            assert transport.attempts == 2

    with tempfile.TemporaryDirectory() as tmpdir:
        asyncio.run(_go(_RefuseFirst(_asgi_transport(tmpdir))))


def test_get_is_retried_after_read_timeout():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"label": "myapp", "tag": "vc", "available": True})

    async def _go():
        async with RegistrarClient(REGISTRAR, transport=httpx.MockTransport(handler)) as client:
            assert (await client.check("myapp", "vc")).available

    asyncio.run(_go())
    assert len(calls) == 2


@pytest.mark.parametrize(
    "reply",
    [
        httpx.Response(200, text="<html>captive portal</html>"),
        httpx.Response(200, json={"label": "myapp"}),
        httpx.Response(200, json={"label": "myapp", "tag": "vc", "target": None}),
    ],
)
def test_unreadable_reply_is_upstream_failure(reply):
    async def _go():
        transport = httpx.MockTransport(lambda request: reply)
        async with RegistrarClient(REGISTRAR, transport=transport) as client:
            with pytest.raises(UpstreamFetchFailure):
                await client.lookup("myapp", "vc")

    asyncio.run(_go())


def test_redirect_loop_is_upstream_failure():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(302, headers={"location": "https://loop.example/"})

    async def _go():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, follow_redirects=True, max_redirects=3) as http:
            with pytest.raises(UpstreamFetchFailure):
                await request_with_retry(http, "GET", "https://loop.example/", retries=1)

    asyncio.run(_go())
    # redirect failures are not retried
    assert len(calls) == 4


def test_resolver_against_live_registrar():
    pages = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<p>hello</p>"))

    async def _go(registrar_transport):
        transport = _HostRouter({"registrar.test": registrar_transport, "example.com": pages})
        settings = Settings(registrar_url=REGISTRAR)
        async with Resolver.from_settings(settings, transport=transport) as resolver:
            missing = await resolver.resolve("virt://myapp.vc")
            assert missing.outcome is Outcome.fallback

            await resolver.registrar.register(
                RegisterRequest(label="myapp", tag="vc", target="https://example.com")
            )
            found = await resolver.resolve("virt://myapp.vc")
            assert found.outcome is Outcome.resolved
            assert found.content == b"<p>hello</p>"

    with tempfile.TemporaryDirectory() as tmpdir:
        asyncio.run(_go(_asgi_transport(tmpdir)))
