from .config import ServerConfig, SessionConfig, load_env
from .cookies import Cookie, CookieJar, parse_set_cookie
from .exceptions import (
    BindError,
    HandlerStartError,
    HarnessError,
    MalformedCookie,
    ServerConnectionError,
    StatusAssertionError,
    UnexpectedFailureStatus,
    UnexpectedSuccessStatus,
)
from .logging_config import setup_logging
from .models import Request, RequestOptions, Response
from .policy import AssertionPolicy, check_status, is_success
from .server import ServerHandle, bind_socket, serve
from .session import RequestSession, build_request_url

__all__ = [
    "AssertionPolicy",
    "BindError",
    "Cookie",
    "CookieJar",
    "HandlerStartError",
    "HarnessError",
    "MalformedCookie",
    "Request",
    "RequestOptions",
    "RequestSession",
    "Response",
    "ServerConfig",
    "ServerConnectionError",
    "ServerHandle",
    "SessionConfig",
    "StatusAssertionError",
    "UnexpectedFailureStatus",
    "UnexpectedSuccessStatus",
    "bind_socket",
    "build_request_url",
    "check_status",
    "is_success",
    "load_env",
    "parse_set_cookie",
    "serve",
    "setup_logging",
]
