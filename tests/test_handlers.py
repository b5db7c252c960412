"""Tests for the built-in handlers and the request/response types."""

from __future__ import annotations

import pytest

from simserve.http.handlers import EchoHandler, FixedResponseHandler, render_echo
from simserve.http.server import HttpRequest, HttpResponse


def make_request(**overrides) -> HttpRequest:
    fields = {
        "method": "POST",
        "path": "/7?x=1",
        "version": "HTTP/1.1",
        "headers": {"Host": ["127.0.0.1"], "Accept": ["text/plain", " */* "]},
        "body": b"payload",
    }
    fields.update(overrides)
    return HttpRequest(**fields)


@pytest.mark.anyio
async def test_fixed_response_ignores_the_request():
    handler = FixedResponseHandler(status=201, headers={"X-Test": ("a", "b")}, content=b"canned")

    first = await handler(make_request())
    second = await handler(make_request(method="GET", body=b""))

    assert first == second
    assert first.status == 201
    assert first.body == b"canned"
    assert dict(first.headers) == {"X-Test": ("a", "b")}


@pytest.mark.anyio
async def test_fixed_response_without_headers():
    response = await FixedResponseHandler()(make_request())
    assert response.headers is None
    assert response.status == 200
    assert response.body == b""


@pytest.mark.anyio
async def test_echo_reflects_the_request():
    response = await EchoHandler()(make_request())

    assert response.status == 200
    assert response.body.decode("utf-8") == (
        "POST /7?x=1 HTTP/1.1\n"
        "Host: 127.0.0.1\n"
        "Accept: text/plain; */*\n"
        "REQUEST BODY:\n"
        "payload"
    )


@pytest.mark.anyio
async def test_echo_reads_body_one_byte_per_character():
    """Non-ASCII bytes are treated as latin-1 characters."""
    response = await EchoHandler()(make_request(headers={}, body=b"caf\xc3\xa9"))

    text = response.body.decode("utf-8")
    assert text.endswith("REQUEST BODY:\ncafÃ©")


def test_render_echo_without_headers_or_body():
    text = render_echo(make_request(method="GET", path="/0", headers={}, body=b""))
    assert text == "GET /0 HTTP/1.1\n\nREQUEST BODY:\n"


class TestRequestResponse:
    """Test HttpRequest and HttpResponse helpers."""

    def test_route_drops_query(self):
        assert make_request().route == "/7"

    def test_header_lookup_is_case_insensitive(self):
        request = make_request()
        assert request.header("accept") == "text/plain"
        assert request.header("HOST") == "127.0.0.1"
        assert request.header("missing") is None

    def test_text_response(self):
        response = HttpResponse.text("hi", status=418, headers={"X-A": "1"})
        assert response.status == 418
        assert response.body == b"hi"
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.headers["X-A"] == "1"

    def test_json_response(self):
        response = HttpResponse.json({"ok": True})
        assert response.body == b'{"ok":true}'
        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
