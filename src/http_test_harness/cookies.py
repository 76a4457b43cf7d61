"""Session cookie storage.

A CookieJar holds at most one cookie per name. Cookies arrive through
Set-Cookie response headers and leave as a single Cookie request header.
Expired cookies remain stored until cleared or replaced, they are only
filtered out when the outgoing header is rendered.
"""

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from .exceptions import MalformedCookie

logger = logging.getLogger(__name__)

SET_COOKIE = "set-cookie"

# Whitespace, control characters and the separators that end a cookie name
_INVALID_NAME_CHARS = re.compile(r'[\s\x00-\x1f\x7f",;]')

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    path: str | None = None
    domain: str | None = None
    expires: datetime | None = None
    secure: bool = False
    http_only: bool = False
    same_site: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (now or datetime.now(timezone.utc))

    def to_pair(self) -> str:
        return f"{self.name}={self.value}"


def _parse_expires(raw: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_set_cookie(header_value: str, now: datetime | None = None) -> Cookie:
    """Parse one Set-Cookie header value.

    Args:
        header_value: Raw header value, e.g. "session=abc; Path=/; HttpOnly"
        now: Reference time for Max-Age, defaults to the current UTC time

    Returns:
        The parsed Cookie

    Raises:
        MalformedCookie: If the name=value pair is missing or the name is invalid

    Example:
        >>> parse_set_cookie("token=xyz; Path=/; Secure").secure
        True
    """
    pair, *attributes = header_value.split(";")

    if "=" not in pair:
        raise MalformedCookie(f"Cookie has no name=value pair: {header_value!r}")

    name, value = pair.split("=", 1)
    name = name.strip()
    value = value.strip()

    if not name:
        raise MalformedCookie(f"Cookie name is empty: {header_value!r}")
    if _INVALID_NAME_CHARS.search(name):
        raise MalformedCookie(f"Cookie name {name!r} contains invalid characters")

    fields: dict = {}
    max_age: int | None = None

    for attribute in attributes:
        key, _, attr_value = attribute.partition("=")
        key = key.strip().lower()
        attr_value = attr_value.strip()

        if key == "path":
            fields["path"] = attr_value or None
        elif key == "domain":
            fields["domain"] = attr_value.lstrip(".") or None
        elif key == "expires":
            expires = _parse_expires(attr_value)
            if expires is not None:
                fields["expires"] = expires
        elif key == "max-age":
            try:
                max_age = int(attr_value)
            except ValueError:
                logger.debug(f"Ignoring invalid Max-Age {attr_value!r} on {name}")
        elif key == "secure":
            fields["secure"] = True
        elif key == "httponly":
            fields["http_only"] = True
        elif key == "samesite":
            fields["same_site"] = attr_value or None

    # Max-Age wins over Expires
    if max_age is not None:
        if max_age <= 0:
            fields["expires"] = _EPOCH
        else:
            reference = now or datetime.now(timezone.utc)
            fields["expires"] = reference + timedelta(seconds=max_age)

    return Cookie(name=name, value=value, **fields)


def _set_cookie_values(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> list[str]:
    # httpx.Headers keeps repeated Set-Cookie entries
    get_list = getattr(headers, "get_list", None)
    if get_list is not None:
        return list(get_list(SET_COOKIE))

    if isinstance(headers, Mapping):
        items: Iterable[tuple[str, str]] = headers.items()
    else:
        items = headers

    return [value for key, value in items if key.lower() == SET_COOKIE]


class CookieJar:
    """Cookies of one request session, keyed by name."""

    def __init__(self) -> None:
        self._cookies: dict[str, Cookie] = {}

    def merge_from_response(
        self,
        headers: Mapping[str, str] | Iterable[tuple[str, str]],
        now: datetime | None = None,
    ) -> list[str]:
        """
        Store every cookie set by a response, replacing cookies of the same name.

        Malformed entries are logged and skipped; the rest are still merged.

        Args:
            headers: Response headers as (name, value) pairs, a mapping, or httpx.Headers
            now: Reference time for Max-Age

        Returns:
            Names of the cookies that were stored, in header order
        """
        merged = []
        for raw in _set_cookie_values(headers):
            try:
                cookie = parse_set_cookie(raw, now=now)
            except MalformedCookie as e:
                logger.warning(f"Skipping malformed cookie: {e}")
                continue
            self._cookies[cookie.name] = cookie
            merged.append(cookie.name)
        return merged

    def add(self, cookie: Cookie) -> None:
        self._cookies[cookie.name] = cookie

    def update(self, cookies: Iterable[Cookie]) -> None:
        """Store several cookies, each replacing any cookie of the same name."""
        for cookie in cookies:
            self._cookies[cookie.name] = cookie

    def get(self, name: str) -> Cookie | None:
        return self._cookies.get(name)

    def remove(self, name: str) -> bool:
        return self._cookies.pop(name, None) is not None

    def clear(self) -> None:
        self._cookies.clear()

    def render_header(self, now: datetime | None = None) -> str | None:
        """Render unexpired cookies as a Cookie header value, or None if there are none."""
        now = now or datetime.now(timezone.utc)
        pairs = [
            cookie.to_pair()
            for cookie in self._cookies.values()
            if not cookie.is_expired(now)
        ]
        if not pairs:
            return None
        return "; ".join(pairs)

    def __len__(self) -> int:
        return len(self._cookies)

    def __contains__(self, name: object) -> bool:
        return name in self._cookies

    def __iter__(self) -> Iterator[Cookie]:
        return iter(list(self._cookies.values()))

    def __repr__(self) -> str:
        return f"CookieJar({sorted(self._cookies)!r})"
