"""Resolver — navigation state machine for ``virt://`` addresses.

Each request is classified once and then handled by its route:

- ``system``: one of the built-in hosts, served from bundled assets
- ``reserved``: ``label.tag`` under a reserved tag, looked up in the
  registrar and fetched from its target
- ``web``: a plain ``https://`` URL, handed back for direct navigation
- ``denied``: anything else, blocked before any network activity

A reserved name that is unknown, or whose lookup or fetch fails, resolves
to a fallback page pointing at the registration system name. The fallback is
built locally and needs no network.
"""

from __future__ import annotations

import html
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import httpx

from virt.config import Settings
from virt.naming.validator import (
    REGISTRATION_NAME,
    SCHEME,
    SYSTEM_HOSTS,
    is_acceptable_name,
    is_ip_endpoint,
    is_secure_web_url,
    is_system_name,
    normalize_address,
    split_name,
)
from virt.registrar.errors import NavigationDenied, NotFound, RegistrarError, UpstreamFetchFailure
from virt.registrar.service import LookupResult
from virt.resolver.client import RegistrarClient, request_with_retry

logger = logging.getLogger(__name__)

ASSET_ROOT = Path(__file__).resolve().parent.parent / "assets"

HTML_MEDIA_TYPE = "text/html; charset=utf-8"

_INDEX_PATHS = ("", "/", "/index.html")

_FALLBACK_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>V12 Browser</title></head>
<body style="font-family: sans-serif; padding: 50px; text-align: center; background: #1f2937; color: white;">
  <h1>Welcome to V12 Browser</h1>
  <p>{message}</p>
  <p><a href="{register}" style="color: #3b82f6;">Register this domain now!</a></p>
</body>
</html>
"""


class Route(str, Enum):
    system = "system"
    reserved = "reserved"
    web = "web"
    denied = "denied"


class Outcome(str, Enum):
    resolved = "resolved"
    fallback = "fallback"
    not_found = "not_found"
    denied = "denied"


@dataclass
class Resolution:
    """Terminal result of resolving one address."""

    name: str
    route: Route
    outcome: Outcome
    status: int = 200
    content: bytes = b""
    media_type: str = HTML_MEDIA_TYPE
    location: str = ""  # URL fetched or, for the web route, to navigate to
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.resolved and self.status < 400


@dataclass
class Navigation:
    """Result of an address-bar navigation request."""

    success: bool
    type: str = ""  # "virt" | "https"
    url: str = ""
    error: str = ""


def classify(name: str) -> Route:
    """Pick the route for *name* without touching the network."""
    if is_acceptable_name(name):
        return Route.system if is_system_name(name) else Route.reserved
    if is_secure_web_url(name):
        return Route.web
    return Route.denied


def check_navigation(url: str) -> str:
    """Return *url* if it may be navigated to, else raise :class:`NavigationDenied`."""
    if url.startswith(SCHEME):
        if not is_acceptable_name(url):
            raise NavigationDenied("Invalid VIRT URL")
        return "virt"
    if is_secure_web_url(url):
        return "https"
    raise NavigationDenied("Unsupported protocol")


def navigate(address: str) -> Navigation:
    """Normalize address-bar input and decide whether it may be loaded."""
    try:
        url = normalize_address(address)
        kind = check_navigation(url)
    except (ValueError, NavigationDenied) as exc:
        logger.info("Blocked navigation to %r: %s", address, exc)
        return Navigation(success=False, error=str(exc))
    return Navigation(success=True, type=kind, url=url)


def fallback_page(name: str, failed: bool = False) -> bytes:
    """Render the placeholder page for an unregistered or unreachable name."""
    shown = f"<strong>{html.escape(name)}</strong>"
    if failed:
        message = f"Failed to load content for {shown}."
    else:
        message = f"The domain {shown} is not yet registered."
    return _FALLBACK_TEMPLATE.format(message=message, register=REGISTRATION_NAME).encode()


class Resolver:
    """Resolve VIRT addresses into content.

    The resolver holds no per-request state; concurrent ``resolve`` calls are
    independent. Cancelling the awaiting task abandons the in-flight request.
    """

    def __init__(
        self,
        registrar: RegistrarClient,
        *,
        timeout: float = 5.0,
        retries: int = 1,
        asset_root: Path = ASSET_ROOT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.registrar = registrar
        self.retries = retries
        self.asset_root = Path(asset_root).resolve()
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Resolver":
        registrar = RegistrarClient.from_settings(settings, transport=transport)
        return cls(registrar, timeout=settings.timeout, retries=settings.retries, transport=transport)

    async def __aenter__(self) -> "Resolver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()
        await self.registrar.aclose()

    async def resolve(self, name: str) -> Resolution:
        route = classify(name)
        if route is Route.denied:
            logger.info("Blocked navigation to %r", name)
            return Resolution(
                name=name,
                route=route,
                outcome=Outcome.denied,
                status=403,
                media_type="text/plain",
                reason="Navigation blocked",
            )
        if route is Route.web:
            return Resolution(name=name, route=route, outcome=Outcome.resolved, location=name)
        if route is Route.system:
            return self._serve_asset(name)
        return await self._resolve_reserved(name)

    # -- system names --------------------------------------------------------

    def _serve_asset(self, name: str) -> Resolution:
        host, _, path = name[len(SCHEME):].partition("/")
        path = "/" + path.split("?", 1)[0].split("#", 1)[0]
        relative = SYSTEM_HOSTS[host.lower()] if path in _INDEX_PATHS else path.lstrip("/")
        asset = (self.asset_root / relative).resolve()

        if not asset.is_relative_to(self.asset_root) or not asset.is_file():
            logger.warning("Asset not found for %s: %s", name, relative)
            return Resolution(
                name=name,
                route=Route.system,
                outcome=Outcome.not_found,
                status=404,
                content=b"Not Found",
                media_type="text/plain",
                reason="Asset not found",
            )

        media_type, _ = mimetypes.guess_type(asset.name)
        return Resolution(
            name=name,
            route=Route.system,
            outcome=Outcome.resolved,
            content=asset.read_bytes(),
            media_type=media_type or "application/octet-stream",
            location=str(asset),
        )

    # -- reserved names ------------------------------------------------------

    async def _resolve_reserved(self, name: str) -> Resolution:
        label, tag, path = split_name(name)
        host = f"{label}.{tag}"

        try:
            site = await self.registrar.lookup(label, tag)
        except NotFound:
            return self._fallback(name, host, failed=False, reason="Name not registered")
        except (RegistrarError, UpstreamFetchFailure) as exc:
            logger.warning("Lookup of %s failed: %s", host, exc)
            return self._fallback(name, host, failed=False, reason=f"Lookup failed: {exc}")

        url = content_url(site, path)
        try:
            response = await request_with_retry(self._http, "GET", url, self.retries)
            if response.status_code >= 400:
                raise UpstreamFetchFailure(f"{url} answered {response.status_code}")
        except UpstreamFetchFailure as exc:
            logger.warning("Fetching %s for %s failed: %s", url, host, exc)
            return self._fallback(name, host, failed=True, reason=str(exc))

        return Resolution(
            name=name,
            route=Route.reserved,
            outcome=Outcome.resolved,
            status=response.status_code,
            content=response.content,
            media_type=response.headers.get("content-type", "application/octet-stream"),
            location=url,
        )

    @staticmethod
    def _fallback(name: str, host: str, failed: bool, reason: str) -> Resolution:
        return Resolution(
            name=name,
            route=Route.reserved,
            outcome=Outcome.fallback,
            content=fallback_page(host, failed=failed),
            reason=reason,
        )


def content_url(site: LookupResult, path: str) -> str:
    """Pick the URL to fetch for *path* under a looked-up name.

    The root path loads the target itself; deeper paths are taken relative
    to the raw base. Bare IP targets are reached over plain HTTP.
    """
    target, base = site.target, site.raw_base
    if is_ip_endpoint(target):
        target = base = f"http://{target}"
    if path in ("", "/"):
        return target
    return base.rstrip("/") + "/" + path.lstrip("/")


async def resolve_name(name: str, settings: Optional[Settings] = None) -> Resolution:
    """Resolve one address with a short-lived resolver."""
    settings = settings or Settings.load()
    async with Resolver.from_settings(settings) as resolver:
        return await resolver.resolve(name)
