"""
End-to-end tests for request sessions against live services.
"""

import asyncio

import pytest

from conftest import pong_app
from http_test_harness import (
    AssertionPolicy,
    Cookie,
    RequestOptions,
    RequestSession,
    SessionConfig,
    UnexpectedFailureStatus,
    UnexpectedSuccessStatus,
    build_request_url,
    serve,
)


class TestBasicRequests:
    """Test dispatching requests and reading responses."""

    @pytest.mark.asyncio
    async def test_ping_against_bare_asgi_handler(self):
        async with serve(pong_app) as server:
            session = RequestSession(server)
            response = await session.get("/ping")

        assert response.status == 200
        assert response.contents == b"pong!"
        assert response.text == "pong!"

    @pytest.mark.asyncio
    async def test_ping_against_fastapi(self, session):
        response = await session.get("/ping")

        response.assert_status(200)
        response.assert_text("pong!")
        assert response.header("Content-Type").startswith("text/plain")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["get", "post", "put", "patch", "delete"])
    async def test_method_shortcuts(self, session, method):
        response = await getattr(session, method)("/echo")

        assert response.json()["method"] == method.upper()
        assert response.method == method.upper()
        assert response.path == "/echo"

    @pytest.mark.asyncio
    async def test_head_has_no_body(self, session):
        response = await session.head("/ping", expect=AssertionPolicy.NO_ASSERTION)

        assert response.contents == b""

    @pytest.mark.asyncio
    async def test_session_from_address_tuple(self, live_server):
        session = RequestSession(live_server.address())

        response = await session.get("ping")

        assert response.text == "pong!"

    @pytest.mark.asyncio
    async def test_session_from_base_url(self, live_server):
        session = RequestSession(live_server.base_url + "/")

        response = await session.get("/ping")

        assert response.text == "pong!"


class TestAssertionPolicy:
    """Test fail-fast status checking on live responses."""

    @pytest.mark.asyncio
    async def test_not_found_aborts_by_default(self, session):
        with pytest.raises(UnexpectedFailureStatus) as excinfo:
            await session.get("/missing")

        assert excinfo.value.status == 404
        assert excinfo.value.path == "/missing"

    @pytest.mark.asyncio
    async def test_expect_failure_session_accepts_not_found(self, live_server):
        session = live_server.session(expect=AssertionPolicy.EXPECT_FAILURE)

        response = await session.get("/missing")

        assert response.status == 404

    @pytest.mark.asyncio
    async def test_expect_failure_rejects_success(self, live_server):
        session = live_server.session(expect=AssertionPolicy.EXPECT_FAILURE)

        with pytest.raises(UnexpectedSuccessStatus) as excinfo:
            await session.get("/ping")

        assert excinfo.value.status == 200

    @pytest.mark.asyncio
    async def test_per_call_override(self, session):
        response = await session.get("/status/503", expect=AssertionPolicy.EXPECT_FAILURE)
        assert response.status == 503

        response = await session.get("/status/418", expect=AssertionPolicy.NO_ASSERTION)
        assert response.status == 418

        # Session default is untouched
        with pytest.raises(UnexpectedFailureStatus):
            await session.get("/status/500")

    @pytest.mark.asyncio
    async def test_redirects_are_not_followed(self, session):
        with pytest.raises(UnexpectedFailureStatus) as excinfo:
            await session.get("/status/302")

        assert excinfo.value.status == 302

    @pytest.mark.asyncio
    async def test_cookies_are_merged_before_status_check(self, session):
        with pytest.raises(UnexpectedFailureStatus) as excinfo:
            await session.get("/broken")

        assert "boom" in str(excinfo.value)
        assert session.cookies.get("trace").value == "t-1"


class TestCookies:
    """Test cookie propagation across calls of one session."""

    @pytest.mark.asyncio
    async def test_login_cookie_sent_with_next_request(self, session):
        await session.post("/login")

        response = await session.get("/profile")

        assert response.json() == {"cookie": "token=xyz"}
        assert session.last_request.header("cookie") == "token=xyz"

    @pytest.mark.asyncio
    async def test_response_exposes_set_cookies(self, session):
        response = await session.post("/login")

        assert response.cookie("token").value == "xyz"
        assert response.cookie("token").path == "/"
        assert list(response.cookies()) == ["token"]

    @pytest.mark.asyncio
    async def test_no_cookie_header_without_cookies(self, session):
        response = await session.get("/profile")

        assert response.json() == {"cookie": None}

    @pytest.mark.asyncio
    async def test_deleted_cookie_is_no_longer_sent(self, session):
        await session.post("/login")
        await session.post("/logout")

        response = await session.get("/profile")

        assert response.json() == {"cookie": None}
        # Expired cookies stay in the jar until cleared
        assert "token" in session.cookies

    @pytest.mark.asyncio
    async def test_clear_cookies(self, session):
        await session.post("/login")

        session.clear_cookies()
        response = await session.get("/profile")

        assert response.json() == {"cookie": None}
        assert len(session.cookies) == 0

    @pytest.mark.asyncio
    async def test_add_cookie(self, session):
        session.add_cookie(Cookie(name="flavour", value="oat"))

        response = await session.get("/profile")

        assert response.json() == {"cookie": "flavour=oat"}

    @pytest.mark.asyncio
    async def test_call_cookies_are_sent_but_not_stored(self, session):
        await session.post("/login")

        response = await session.get("/profile", cookies=[Cookie(name="flavour", value="oat")])

        assert response.json() == {"cookie": "token=xyz; flavour=oat"}
        assert "flavour" not in session.cookies
        assert (await session.get("/profile")).json() == {"cookie": "token=xyz"}

    @pytest.mark.asyncio
    async def test_call_cookie_replaces_session_cookie_of_same_name(self, session):
        await session.post("/login")

        response = await session.get("/profile", cookies=[Cookie(name="token", value="other")])

        assert response.json() == {"cookie": "token=other"}
        assert session.cookies.get("token").value == "xyz"

    @pytest.mark.asyncio
    async def test_clear_cookies_for_call_keeps_session_jar(self, session):
        await session.post("/login")

        response = await session.get("/profile", clear_cookies=True)

        assert response.json() == {"cookie": None}
        assert session.cookies.get("token").value == "xyz"

    @pytest.mark.asyncio
    async def test_add_cookies(self, session):
        session.add_cookies([Cookie(name="a", value="1"), Cookie(name="b", value="2")])

        response = await session.get("/profile")

        assert response.json() == {"cookie": "a=1; b=2"}

    @pytest.mark.asyncio
    async def test_save_cookies_disabled_for_session(self, live_server):
        session = live_server.session(save_cookies=False)

        await session.post("/login")
        response = await session.get("/profile")

        assert response.json() == {"cookie": None}

    @pytest.mark.asyncio
    async def test_save_cookies_disabled_for_call(self, session):
        await session.post("/login", save_cookies=False)

        assert "token" not in session.cookies

    @pytest.mark.asyncio
    async def test_malformed_cookie_does_not_block_others(self, session):
        await session.get("/mixed-cookies")

        assert session.cookies.render_header() == "good=1"

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_cookies(self, live_server):
        alice = live_server.session()
        bob = live_server.session()

        await alice.post("/login")

        assert (await alice.get("/profile")).json() == {"cookie": "token=xyz"}
        assert (await bob.get("/profile")).json() == {"cookie": None}

    @pytest.mark.asyncio
    async def test_concurrent_calls_see_cookies_in_call_order(self, session):
        responses = await asyncio.gather(*(session.post("/counter") for _ in range(5)))

        assert [response.text for response in responses] == ["1", "2", "3", "4", "5"]
        assert session.cookies.get("n").value == "5"


class TestRequestBodies:
    """Test payload encoding, content types and header merging."""

    @pytest.mark.asyncio
    async def test_json_body(self, session):
        response = await session.post("/echo", json={"name": "widget", "qty": 2})

        payload = response.json()
        assert payload["content_type"] == "application/json"
        assert payload["body"] == '{"name": "widget", "qty": 2}'

    @pytest.mark.asyncio
    async def test_text_body(self, session):
        response = await session.post("/echo", body="hello")

        payload = response.json()
        assert payload["content_type"] == "text/plain"
        assert payload["body"] == "hello"

    @pytest.mark.asyncio
    async def test_bytes_body_has_no_default_content_type(self, session):
        response = await session.put("/echo", body=b"\x01\x02")

        assert response.json()["content_type"] is None

    @pytest.mark.asyncio
    async def test_explicit_content_type(self, session):
        response = await session.post(
            "/echo", body="<a/>", content_type="application/xml"
        )

        assert response.json()["content_type"] == "application/xml"

    @pytest.mark.asyncio
    async def test_session_default_content_type(self, live_server):
        session = live_server.session(default_content_type="application/x-custom")

        response = await session.post("/echo", body=b"raw")

        assert response.json()["content_type"] == "application/x-custom"

    @pytest.mark.asyncio
    async def test_call_headers_override_session_defaults(self, live_server):
        config = SessionConfig(default_headers=[("X-Team", "core"), ("X-Trace", "1")])
        session = RequestSession(live_server, config)

        response = await session.get("/echo", headers={"x-team": "edge"})

        headers = response.json()["headers"]
        assert headers["x-team"] == "edge"
        assert headers["x-trace"] == "1"

    @pytest.mark.asyncio
    async def test_explicit_cookie_header_overrides_jar(self, session):
        await session.post("/login")

        response = await session.get("/profile", headers=[("Cookie", "token=forged")])

        assert response.json() == {"cookie": "token=forged"}

    @pytest.mark.asyncio
    async def test_options_object(self, session):
        options = RequestOptions(json=[1, 2, 3], headers=[("X-Request-Id", "abc")])

        response = await session.post("/echo", options)

        payload = response.json()
        assert payload["body"] == "[1, 2, 3]"
        assert payload["headers"]["x-request-id"] == "abc"

    @pytest.mark.asyncio
    async def test_keyword_fields_override_options_object(self, session):
        options = RequestOptions(body="first")

        response = await session.post("/echo", options, body="second")

        assert response.json()["body"] == "second"

    def test_body_and_json_are_exclusive(self):
        with pytest.raises(ValueError):
            RequestOptions(body="a", json={"a": 1})


class TestResponseHelpers:
    """Test response inspection helpers."""

    @pytest.mark.asyncio
    async def test_assert_helpers_fail_with_context(self, session):
        response = await session.get("/ping")

        with pytest.raises(AssertionError, match="Expected status 201"):
            response.assert_status(201)
        with pytest.raises(AssertionError, match="Expected body"):
            response.assert_text("pong?")

    @pytest.mark.asyncio
    async def test_assert_json(self, session):
        response = await session.post("/login")

        response.assert_json({"logged_in": True})
        assert response.is_success

    @pytest.mark.asyncio
    async def test_headers_named(self, session):
        response = await session.get("/mixed-cookies")

        assert response.headers_named("Set-Cookie") == ["novalue", "good=1; Path=/"]


@pytest.mark.parametrize(
    "path,expected",
    [
        ("", "http://127.0.0.1:8000"),
        ("/ping", "http://127.0.0.1:8000/ping"),
        ("ping", "http://127.0.0.1:8000/ping"),
        ("/a?b=c", "http://127.0.0.1:8000/a?b=c"),
    ],
)
def test_build_request_url(path, expected):
    assert build_request_url("http://127.0.0.1:8000", path) == expected
