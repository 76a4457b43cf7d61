"""
Request session against a service under test.

A RequestSession owns one CookieJar and applies an AssertionPolicy to
every response. Calls on one session are dispatched strictly one after
another, so the cookies set by response N are always sent with request N+1.
"""

import asyncio
import json
import logging
import time
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

import httpx

from .config import JSON_CONTENT_TYPE, TEXT_CONTENT_TYPE, SessionConfig
from .cookies import Cookie, CookieJar
from .exceptions import ServerConnectionError
from .logging_config import log_request, log_response
from .models import Request, Response, RequestOptions
from .policy import AssertionPolicy, check_status

logger = logging.getLogger(__name__)

# Response bodies longer than this are truncated in assertion messages
_FAILURE_BODY_LIMIT = 500

BaseAddress = str | tuple[str, int] | Any


def _base_url(target: BaseAddress) -> str:
    base_url = getattr(target, "base_url", None)
    if base_url is not None:
        return base_url
    if isinstance(target, tuple):
        host, port = target
        host = f"[{host}]" if ":" in host else host
        return f"http://{host}:{port}"
    if isinstance(target, str):
        return target if "://" in target else f"http://{target}"
    raise TypeError(f"Cannot derive a base address from {target!r}")


def build_request_url(base_url: str, path: str) -> str:
    """
    Join a base address and a request path.

    Example:
        >>> build_request_url("http://127.0.0.1:8080", "ping")
        'http://127.0.0.1:8080/ping'
    """
    base_url = base_url.rstrip("/")
    if path == "":
        return base_url
    if path.startswith("/"):
        return f"{base_url}{path}"
    return f"{base_url}/{path}"


def _merge_headers(
    defaults: list[tuple[str, str]], overrides: list[tuple[str, str]]
) -> list[tuple[str, str]]:
    """Drop every default whose name is overridden, then append the overrides."""
    overridden = {name.lower() for name, _ in overrides}
    merged = [(name, value) for name, value in defaults if name.lower() not in overridden]
    merged.extend(overrides)
    return merged


class RequestSession:
    """
    Client for one logical user session against a service under test.

    Attributes:
        base_url: Address every request path is resolved against
        config: Session defaults
        cookies: The session's cookie jar
        last_request: Most recently dispatched request, if any
    """

    def __init__(
        self,
        target: BaseAddress,
        config: SessionConfig | None = None,
        **overrides: Any,
    ):
        """
        Args:
            target: A ServerHandle, a (host, port) tuple, or a base URL
            config: Session defaults, SessionConfig() when omitted
            **overrides: SessionConfig fields overriding `config`
        """
        config = config or SessionConfig()
        if overrides:
            config = replace(config, **overrides)

        self.base_url = _base_url(target)
        self.config = config
        self.cookies = CookieJar()
        self.last_request: Request | None = None
        self._lock = asyncio.Lock()

    @property
    def expect(self) -> AssertionPolicy:
        return self.config.expect

    def add_cookie(self, cookie: Cookie) -> None:
        self.cookies.add(cookie)

    def add_cookies(self, cookies: Iterable[Cookie]) -> None:
        self.cookies.update(cookies)

    def clear_cookies(self) -> None:
        self.cookies.clear()

    def build_request(self, method: str, path: str, options: RequestOptions) -> Request:
        method = method.upper()
        body = options.body
        content_type = options.content_type

        if options.json is not None:
            body = json.dumps(options.json).encode("utf-8")
            content_type = content_type or JSON_CONTENT_TYPE
        elif isinstance(body, str):
            body = body.encode("utf-8")
            content_type = content_type or TEXT_CONTENT_TYPE

        content_type = content_type or self.config.default_content_type

        defaults = list(self.config.default_headers)
        if content_type:
            defaults = _merge_headers(defaults, [("content-type", content_type)])

        # Per-call cookie changes apply to a copy, the session jar is untouched
        request_cookies = CookieJar()
        if not options.clear_cookies:
            request_cookies.update(self.cookies)
        request_cookies.update(options.cookies)

        cookie_header = request_cookies.render_header()
        if cookie_header:
            defaults = _merge_headers(defaults, [("cookie", cookie_header)])

        headers = _merge_headers(defaults, list(options.headers))

        return Request(
            method=method,
            path=path,
            url=build_request_url(self.base_url, path),
            headers=tuple(headers),
            body=body,
        )

    async def request(
        self,
        method: str,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        """
        Send a request and check its status against the assertion policy.

        Args:
            method: HTTP method
            path: Path relative to the session's base address
            options: Per-call settings
            **option_fields: RequestOptions fields overriding `options`

        Returns:
            The response, after its cookies have been merged into the jar

        Raises:
            ServerConnectionError: If the service could not be reached
            UnexpectedFailureStatus: If a success was expected and not received
            UnexpectedSuccessStatus: If a failure was expected and not received
        """
        options = options or RequestOptions()
        if option_fields:
            options = replace(options, **option_fields)

        async with self._lock:
            request = self.build_request(method, path, options)
            response = await self._dispatch(request)

            save_cookies = (
                self.config.save_cookies
                if options.save_cookies is None
                else options.save_cookies
            )
            if save_cookies:
                self.cookies.merge_from_response(response.headers)

        policy = options.expect or self.config.expect
        failure = check_status(
            policy,
            response.status,
            method=request.method,
            path=request.path,
            body=response.text[:_FAILURE_BODY_LIMIT],
        )
        if failure is not None:
            logger.warning(
                f"{request.method} {request.path} failed {policy.name}: {response.status}",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status,
                },
            )
            raise failure

        return response

    async def _dispatch(self, request: Request) -> Response:
        self.last_request = request
        log_request(logger, request.method, request.url, request.body)
        start_time = time.perf_counter()

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                http_response = await client.request(
                    request.method,
                    request.url,
                    headers=list(request.headers),
                    content=request.body,
                )
        except httpx.TransportError as e:
            raise ServerConnectionError(
                f"Could not complete {request.method} {request.url}: {e!r}"
            ) from e

        duration = (time.perf_counter() - start_time) * 1000
        log_response(
            logger, request.method, request.path, http_response.status_code, duration
        )

        return Response(
            status=http_response.status_code,
            headers=tuple(http_response.headers.multi_items()),
            contents=http_response.content,
            method=request.method,
            path=request.path,
        )

    async def get(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("GET", path, options, **option_fields)

    async def post(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("POST", path, options, **option_fields)

    async def put(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("PUT", path, options, **option_fields)

    async def patch(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("PATCH", path, options, **option_fields)

    async def delete(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("DELETE", path, options, **option_fields)

    async def head(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("HEAD", path, options, **option_fields)

    async def options(
        self,
        path: str,
        options: RequestOptions | None = None,
        **option_fields: Any,
    ) -> Response:
        return await self.request("OPTIONS", path, options, **option_fields)

    def __repr__(self) -> str:
        return f"RequestSession({self.base_url}, expect={self.config.expect.name})"
