"""Request and response records exchanged by a RequestSession."""

import json
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from .cookies import SET_COOKIE, Cookie, parse_set_cookie
from .exceptions import MalformedCookie
from .policy import AssertionPolicy, is_success

Headers = tuple[tuple[str, str], ...]


class Request(NamedTuple):
    method: str
    path: str
    url: str
    headers: Headers
    body: bytes | None = None

    def header(self, name: str) -> str | None:
        return _first_header(self.headers, name)


class Response(NamedTuple):
    status: int
    headers: Headers
    contents: bytes
    method: str = ""
    path: str = ""

    @property
    def text(self) -> str:
        return self.contents.decode("utf-8", errors="replace")

    @property
    def is_success(self) -> bool:
        return is_success(self.status)

    def json(self) -> Any:
        return json.loads(self.contents)

    def header(self, name: str) -> str | None:
        return _first_header(self.headers, name)

    def headers_named(self, name: str) -> list[str]:
        wanted = name.lower()
        return [value for key, value in self.headers if key.lower() == wanted]

    def cookies(self) -> dict[str, Cookie]:
        """Cookies set by this response, skipping malformed entries."""
        found = {}
        for raw in self.headers_named(SET_COOKIE):
            try:
                cookie = parse_set_cookie(raw)
            except MalformedCookie:
                continue
            found[cookie.name] = cookie
        return found

    def cookie(self, name: str) -> Cookie | None:
        return self.cookies().get(name)

    def assert_status(self, expected: int) -> None:
        assert self.status == expected, (
            f"Expected status {expected} for {self.method} {self.path}, "
            f"received {self.status}"
        )

    def assert_text(self, expected: str) -> None:
        assert self.text == expected, (
            f"Expected body {expected!r} for {self.method} {self.path}, "
            f"received {self.text!r}"
        )

    def assert_json(self, expected: Any) -> None:
        actual = self.json()
        assert actual == expected, (
            f"Expected JSON {expected!r} for {self.method} {self.path}, "
            f"received {actual!r}"
        )


@dataclass
class RequestOptions:
    """Per-call request settings.

    Attributes:
        headers: Extra headers, merged over session defaults by name
        body: Raw payload; a str is sent UTF-8 encoded as text/plain
        json: Payload serialized as JSON and sent as application/json
        content_type: Content type overriding any default
        expect: Assertion policy for this call only
        save_cookies: Whether this response's cookies reach the jar
        cookies: Cookies sent with this call only, never stored in the session jar
        clear_cookies: Send none of the session jar's cookies with this call
    """

    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes | str | None = None
    json: Any = None
    content_type: str | None = None
    expect: AssertionPolicy | None = None
    save_cookies: bool | None = None
    cookies: list[Cookie] = field(default_factory=list)
    clear_cookies: bool = False

    def __post_init__(self) -> None:
        if self.body is not None and self.json is not None:
            raise ValueError("RequestOptions accepts either body or json, not both")
        if isinstance(self.headers, dict):
            self.headers = list(self.headers.items())


def _first_header(headers: Headers, name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers:
        if key.lower() == wanted:
            return value
    return None
