"""Async HTTP client for the VIRT registrar API.

Every call runs with a bounded timeout. Idempotent calls get one retry on
any transport error; ``POST`` and ``DELETE`` are retried only when the
connection was never established, since the server may already have acted
on a request whose reply was lost. Error responses are turned back into the
registrar's typed errors, so callers handle ``NotFound`` or ``Conflict`` the
same way locally and remotely. Replies that cannot be understood raise
:class:`UpstreamFetchFailure`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

import httpx

from virt.config import Settings
from virt.registrar.errors import ERRORS_BY_CODE, UpstreamFetchFailure
from virt.registrar.service import (
    CheckResult,
    DeleteRequest,
    LookupResult,
    RegisterRequest,
    RegisterResult,
    SearchHit,
    UpdateRequest,
    UpdateResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT"})

# Failures where the request cannot have reached the server
CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retries: int = 1,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying safe transport failures up to *retries* times.

    Any other httpx failure (redirect loops, undecodable bodies, malformed
    URLs) is not retried. Raises :class:`UpstreamFetchFailure` once the
    request has definitively failed.
    """
    retry_on = httpx.TransportError if method.upper() in IDEMPOTENT_METHODS else CONNECT_ERRORS
    last_error: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            return await client.request(method, url, **kwargs)
        except retry_on as exc:
            last_error = exc
            logger.debug("%s %s failed (attempt %d): %s", method, url, attempt + 1, exc)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise UpstreamFetchFailure(f"{method} {url} failed: {exc}") from exc
    raise UpstreamFetchFailure(f"{method} {url} failed: {last_error}") from last_error


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


def _text(data: dict, key: str, default: Optional[str] = None) -> str:
    value = data.get(key, default)
    if value is None and default is not None:
        return default
    if not isinstance(value, str):
        raise TypeError(f"field {key!r} is not a string")
    return value


# ---------------------------------------------------------------------------
# Reply parsers
# ---------------------------------------------------------------------------


def _check_result(data: dict) -> CheckResult:
    return CheckResult(
        label=_text(data, "label"),
        tag=_text(data, "tag"),
        available=bool(data["available"]),
        message=_text(data, "message", ""),
    )


def _lookup_result(data: dict) -> LookupResult:
    target = _text(data, "target")
    return LookupResult(
        label=_text(data, "label"),
        tag=_text(data, "tag"),
        target=target,
        raw_base=_text(data, "rawBase", "") or target,
        title=_text(data, "title", ""),
        description=_text(data, "description", ""),
        verified=bool(data.get("verified", False)),
        created_at=_text(data, "createdAt", ""),
        last_accessed=_text(data, "lastAccessed", ""),
    )


def _register_result(data: dict) -> RegisterResult:
    return RegisterResult(
        name=_text(data, "name"),
        secret_key=_text(data, "secretKey"),
        message=_text(data, "message", ""),
    )


def _update_result(data: dict) -> UpdateResult:
    site = data["site"]
    return UpdateResult(
        label=_text(site, "label"),
        tag=_text(site, "tag"),
        target=_text(site, "target"),
        title=_text(site, "title", ""),
        description=_text(site, "description", ""),
        last_accessed=_text(site, "lastAccessed", ""),
        message=_text(data, "message", ""),
    )


def _search_hits(data: list) -> list[SearchHit]:
    return [
        SearchHit(
            label=_text(d, "label"),
            tag=_text(d, "tag"),
            title=_text(d, "title", ""),
            description=_text(d, "description", ""),
        )
        for d in data
    ]


def _ignore(data: Any) -> None:
    return None


class RegistrarClient:
    """Client for a registrar served by :mod:`web.backend.app`.

    Parameters
    ----------
    base_url : str
        Registrar root URL, e.g. ``http://127.0.0.1:3001``. Endpoints live
        under ``/api``.
    timeout : float
        Seconds allowed per request.
    retries : int
        Extra attempts after a transport error (connect errors only for
        ``POST`` and ``DELETE``).
    transport : httpx.AsyncBaseTransport | None
        Custom transport, mainly for tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api",
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "RegistrarClient":
        return cls(
            settings.registrar_url,
            timeout=settings.timeout,
            retries=settings.retries,
            transport=transport,
        )

    async def __aenter__(self) -> "RegistrarClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- plumbing ------------------------------------------------------------

    async def _call(self, method: str, path: str, parse: Callable[[Any], T], **kwargs: Any) -> T:
        response = await request_with_retry(self._client, method, path, self.retries, **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            code = body.get("error") if isinstance(body, dict) else None
            error_cls = ERRORS_BY_CODE.get(code) if isinstance(code, str) else None
            if error_cls is not None:
                raise error_cls(str(body.get("detail", "")))
            raise UpstreamFetchFailure(f"Registrar answered {response.status_code} for {method} {path}")
        try:
            return parse(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise UpstreamFetchFailure(f"Unreadable registrar reply to {method} {path}: {exc!r}") from exc

    # -- endpoints -----------------------------------------------------------

    async def check(self, label: str, tag: str) -> CheckResult:
        return await self._call("GET", f"/check/{label}", _check_result, params={"tag": tag})

    async def lookup(self, label: str, tag: str) -> LookupResult:
        return await self._call("GET", f"/lookup/{label}/{tag}", _lookup_result)

    async def register(self, request: RegisterRequest) -> RegisterResult:
        payload = _drop_none({
            "label": request.label,
            "tag": request.tag,
            "target": request.target,
            "title": request.title,
            "description": request.description,
            "keywords": request.keywords or None,
            "bodyText": request.body_text,
        })
        return await self._call("POST", "/register", _register_result, json=payload)

    async def update(self, request: UpdateRequest) -> UpdateResult:
        payload = _drop_none({
            "label": request.label,
            "tag": request.tag,
            "secret": request.secret,
            "target": request.target,
            "title": request.title,
            "description": request.description,
        })
        return await self._call("PUT", "/update", _update_result, json=payload)

    async def delete(self, request: DeleteRequest) -> None:
        payload = {"label": request.label, "tag": request.tag, "secret": request.secret}
        await self._call("DELETE", "/delete", _ignore, json=payload)

    async def search(self, query: str) -> list[SearchHit]:
        return await self._call("GET", "/search", _search_hits, params={"q": query})
