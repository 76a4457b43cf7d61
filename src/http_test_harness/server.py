"""
Ephemeral-port server lifecycle for services under test.

Each ServerHandle binds its own loopback socket on a port chosen by the
OS and runs the handler with uvicorn as a task on the caller's event
loop. Many handles can run side by side in one process, one per test,
without sharing any state beyond the OS port namespace.
"""

import asyncio
import contextlib
import errno
import logging
import math
import socket
import warnings
import weakref
from collections.abc import AsyncIterator, Callable
from typing import Any

import uvicorn

from .config import BIND_ATTEMPTS, ServerConfig
from .exceptions import BindError, HandlerStartError
from .session import RequestSession

logger = logging.getLogger(__name__)

# How often startup progress is polled
_STARTUP_POLL_INTERVAL = 0.01


class _HarnessServer(uvicorn.Server):
    """uvicorn server that leaves process signals to the test runner."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def bind_socket(
    host: str,
    port: int = 0,
    attempts: int = BIND_ATTEMPTS,
    socket_factory: Callable[..., socket.socket] = socket.socket,
) -> socket.socket:
    """
    Bind a TCP socket for a service instance.

    With port 0 the OS assigns a free ephemeral port. Should that port be
    rejected as in use by a race, binding is retried up to `attempts` times.
    A fixed port is tried exactly once.

    Args:
        host: Interface to bind
        port: Port to bind, 0 for an OS-assigned port
        attempts: Maximum bind attempts for an OS-assigned port
        socket_factory: Socket constructor

    Returns:
        The bound (not yet listening) socket

    Raises:
        BindError: If no port could be bound
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    max_attempts = max(1, attempts) if port == 0 else 1
    last_error: OSError | None = None

    for attempt in range(1, max_attempts + 1):
        sock = socket_factory(family, socket.SOCK_STREAM)
        try:
            if port != 0:
                # Allow rebinding a fixed port still in TIME_WAIT
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            last_error = e
            if e.errno == errno.EADDRINUSE and attempt < max_attempts:
                logger.warning(
                    f"Port race on {host} (attempt {attempt}/{max_attempts}), retrying",
                    extra={"host": host},
                )
                continue
            break
        return sock

    raise BindError(
        f"Could not bind {host}:{port} after {attempt} attempt(s): {last_error}"
    ) from last_error


async def _run_server(server: uvicorn.Server, sock: socket.socket) -> None:
    try:
        await server.serve(sockets=[sock])
    except SystemExit as e:
        # uvicorn exits the process when lifespan startup fails
        raise HandlerStartError(
            f"Handler failed during startup (exit code {e.code})"
        ) from e


async def _wait_until_started(
    server: uvicorn.Server, task: asyncio.Task, timeout: float
) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while not server.started:
        if task.done():
            error = None if task.cancelled() else task.exception()
            if isinstance(error, HandlerStartError):
                raise error
            raise HandlerStartError("Handler stopped before it started serving") from error
        if loop.time() >= deadline:
            raise HandlerStartError(f"Handler did not start serving within {timeout}s")
        await asyncio.sleep(_STARTUP_POLL_INTERVAL)


async def _stop_serving(server: uvicorn.Server, task: asyncio.Task, timeout: float) -> None:
    server.should_exit = True

    if task.done():
        error = None if task.cancelled() else task.exception()
        if error is not None and not isinstance(error, HandlerStartError):
            logger.error("Server task had already failed", exc_info=error)
        return

    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        # wait_for has cancelled the task by now
        logger.warning(f"Server did not stop within {timeout}s, cancelled")
    except Exception as e:
        logger.error(f"Server task failed during shutdown: {e}", exc_info=True)


def _release_discarded(
    server: uvicorn.Server, task: asyncio.Task, sock: socket.socket, base_url: str
) -> None:
    warnings.warn(
        f"ServerHandle for {base_url} was discarded without shutdown()",
        ResourceWarning,
        stacklevel=2,
    )
    # uvicorn closes the listening socket once its main loop sees the flag
    server.should_exit = True
    if task.done():
        sock.close()


class ServerHandle:
    """
    One running instance of a service under test.

    The handle owns the bound socket and the uvicorn task exclusively.
    Use it as an async context manager, or through serve(), so the
    instance is shut down on every exit path. A handle that is garbage
    collected without shutdown() stops serving and emits a ResourceWarning.

    Attributes:
        config: Settings the instance was started with
    """

    def __init__(
        self,
        server: uvicorn.Server,
        task: asyncio.Task,
        sock: socket.socket,
        config: ServerConfig,
    ):
        self.config = config
        self._server = server
        self._task = task
        self._socket = sock
        host, port = sock.getsockname()[:2]
        self._address: tuple[str, int] = (host, port)
        self._closed = False
        self._finalizer = weakref.finalize(
            self, _release_discarded, server, task, sock, self.base_url
        )
        self._finalizer.atexit = False

    @classmethod
    async def start(
        cls, handler: Any, config: ServerConfig | None = None
    ) -> "ServerHandle":
        """
        Start serving an ASGI handler on a free loopback port.

        Args:
            handler: ASGI application, e.g. a FastAPI app
            config: Server settings, defaults to ServerConfig()

        Returns:
            A handle whose address is bound and already accepting connections

        Raises:
            BindError: If no free port could be bound
            HandlerStartError: If the handler could not start serving
        """
        config = config or ServerConfig()

        if not callable(handler):
            raise HandlerStartError(f"Handler {handler!r} is not an ASGI callable")

        sock = bind_socket(config.host, config.port, config.bind_attempts)
        host, port = sock.getsockname()[:2]

        uvicorn_config = uvicorn.Config(
            handler,
            host=host,
            port=port,
            lifespan=config.lifespan,
            access_log=config.access_log,
            log_config=None,
            timeout_graceful_shutdown=math.ceil(config.shutdown_timeout),
        )
        server = _HarnessServer(uvicorn_config)
        task = asyncio.create_task(
            _run_server(server, sock), name=f"http-harness-server:{port}"
        )

        try:
            await _wait_until_started(server, task, config.startup_timeout)
        except BaseException:
            await _stop_serving(server, task, config.shutdown_timeout)
            sock.close()
            raise

        handle = cls(server, task, sock, config)
        logger.info(
            f"Serving {type(handler).__name__} on {handle.base_url}",
            extra={"host": host, "port": port},
        )
        return handle

    @property
    def host(self) -> str:
        return self._address[0]

    @property
    def port(self) -> int:
        return self._address[1]

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"

    @property
    def is_running(self) -> bool:
        return not self._closed and not self._task.done()

    def address(self) -> tuple[str, int]:
        return self._address

    def session(self, **kwargs: Any) -> RequestSession:
        """Create a RequestSession bound to this instance."""
        return RequestSession(self, **kwargs)

    async def shutdown(self) -> None:
        """Stop accepting connections and release the port. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._finalizer.detach()

        await _stop_serving(self._server, self._task, self.config.shutdown_timeout)
        self._socket.close()

        logger.info(
            f"Stopped server on {self.base_url}",
            extra={"host": self.host, "port": self.port},
        )

    async def __aenter__(self) -> "ServerHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped"
        return f"ServerHandle({self.base_url}, {state})"


@contextlib.asynccontextmanager
async def serve(
    handler: Any, config: ServerConfig | None = None
) -> AsyncIterator[ServerHandle]:
    """Run a handler for the duration of an `async with` block."""
    handle = await ServerHandle.start(handler, config)
    try:
        yield handle
    finally:
        await handle.shutdown()
