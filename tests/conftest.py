from __future__ import annotations

import os
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi import Response as FastAPIResponse
from fastapi.responses import PlainTextResponse

from http_test_harness import ServerHandle, serve

# Load environment variables from .env file for all tests
test_env_file = os.getenv("TEST_ENV_FILE", ".env")
if Path(test_env_file).exists():
    load_dotenv(dotenv_path=test_env_file)
else:
    load_dotenv()


def build_app() -> FastAPI:
    """Small service exercising the behaviours the harness has to cope with."""

    app = FastAPI()

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping() -> str:
        return "pong!"

    @app.post("/login")
    async def login(response: FastAPIResponse) -> dict:
        response.set_cookie("token", "xyz")
        return {"logged_in": True}

    @app.post("/logout")
    async def logout(response: FastAPIResponse) -> dict:
        response.delete_cookie("token")
        return {"logged_in": False}

    @app.get("/profile")
    async def profile(request: Request) -> dict:
        return {"cookie": request.headers.get("cookie")}

    @app.api_route("/echo", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def echo(request: Request) -> dict:
        body = await request.body()
        return {
            "method": request.method,
            "body": body.decode(),
            "content_type": request.headers.get("content-type"),
            "headers": dict(request.headers),
        }

    @app.get("/status/{code}")
    async def status(code: int) -> FastAPIResponse:
        return FastAPIResponse(status_code=code)

    @app.get("/broken")
    async def broken() -> PlainTextResponse:
        response = PlainTextResponse("boom", status_code=500)
        response.set_cookie("trace", "t-1")
        return response

    @app.get("/mixed-cookies")
    async def mixed_cookies() -> PlainTextResponse:
        response = PlainTextResponse("ok")
        response.raw_headers.append((b"set-cookie", b"novalue"))
        response.raw_headers.append((b"set-cookie", b"good=1; Path=/"))
        return response

    @app.post("/counter", response_class=PlainTextResponse)
    async def counter(request: Request, response: FastAPIResponse) -> str:
        count = int(request.cookies.get("n", "0")) + 1
        response.set_cookie("n", str(count))
        return str(count)

    return app


async def pong_app(scope, receive, send) -> None:
    """Bare ASGI handler, no framework involved."""
    if scope["type"] != "http":
        return
    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [(b"content-type", b"text/plain")],
        }
    )
    await send({"type": "http.response.body", "body": b"pong!"})


@pytest.fixture
def app() -> FastAPI:
    return build_app()


@pytest_asyncio.fixture
async def live_server(app: FastAPI):
    """Run the test app on an ephemeral port for the duration of a test."""
    async with serve(app) as server:
        yield server


@pytest_asyncio.fixture
async def session(live_server: ServerHandle):
    return live_server.session()
