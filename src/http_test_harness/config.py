"""Configuration for the HTTP test harness.

This module defines:
- Bind host and ephemeral port acquisition settings
- Startup, shutdown and request timeouts
- Default request session behaviour (assertion policy, cookies, headers)
- Optional .env loading for test runs

Every module-level default can be overridden through an environment
variable so CI runs can tune timeouts without touching test code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .policy import AssertionPolicy


# ============================================================================
# SERVER SETTINGS
# ============================================================================

# Loopback only; the harness never exposes services beyond the local host
DEFAULT_HOST = os.environ.get("HTTP_HARNESS_HOST", "127.0.0.1")

# Bind attempts when the OS-assigned port is rejected as already in use
BIND_ATTEMPTS = int(os.environ.get("HTTP_HARNESS_BIND_ATTEMPTS", "3"))

STARTUP_TIMEOUT = float(os.environ.get("HTTP_HARNESS_STARTUP_TIMEOUT", "10"))
SHUTDOWN_TIMEOUT = float(os.environ.get("HTTP_HARNESS_SHUTDOWN_TIMEOUT", "5"))


# ============================================================================
# CLIENT SETTINGS
# ============================================================================

REQUEST_TIMEOUT = float(os.environ.get("HTTP_HARNESS_REQUEST_TIMEOUT", "15"))

JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain"


# ============================================================================
# LOGGING SETTINGS
# ============================================================================

DEFAULT_LOG_LEVEL = "WARNING"


def log_settings() -> tuple[str, str | None]:
    """Log level and log directory, read from the environment on each call."""
    level = os.environ.get("HTTP_HARNESS_LOG_LEVEL") or DEFAULT_LOG_LEVEL
    log_dir = os.environ.get("HTTP_HARNESS_LOG_DIR") or None
    return level, log_dir


@dataclass
class ServerConfig:
    """Settings for one running service instance.

    Attributes:
        host: Interface to bind (loopback by default)
        port: Fixed port to bind, or 0 to let the OS pick a free one
        bind_attempts: Attempts made when an OS-assigned port races
        startup_timeout: Seconds to wait for the handler to start serving
        shutdown_timeout: Seconds to wait for a graceful stop before cancelling
        lifespan: uvicorn lifespan mode ("auto", "on" or "off")
        access_log: Whether uvicorn logs every request it serves
    """

    host: str = DEFAULT_HOST
    port: int = 0
    bind_attempts: int = BIND_ATTEMPTS
    startup_timeout: float = STARTUP_TIMEOUT
    shutdown_timeout: float = SHUTDOWN_TIMEOUT
    lifespan: str = "auto"
    access_log: bool = False


@dataclass
class SessionConfig:
    """Defaults applied to every request of a RequestSession.

    Attributes:
        expect: Assertion policy used when a call does not override it
        save_cookies: Whether response cookies are merged into the jar
        default_content_type: Content type sent when a call sets none
        default_headers: Headers sent with every request, lowest precedence
        timeout: Per-request timeout in seconds
    """

    expect: AssertionPolicy = AssertionPolicy.EXPECT_SUCCESS
    save_cookies: bool = True
    default_content_type: str | None = None
    default_headers: list[tuple[str, str]] = field(default_factory=list)
    timeout: float = REQUEST_TIMEOUT


def load_env(env_file: str | Path = ".env") -> bool:
    """Load harness settings from a .env file if it exists.

    Only affects configuration read after the call, i.e. settings looked up
    through os.environ by the caller. Module-level defaults are read at
    import time.

    Args:
        env_file: Path to the .env file

    Returns:
        True if the file existed and was loaded
    """
    env_path = Path(env_file)
    if not env_path.exists():
        return False
    return load_dotenv(dotenv_path=env_path)
