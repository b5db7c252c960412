"""
Endpoint example

Registers a few endpoints on the global registry and calls them.

- Plain and TLS endpoints live on separate servers, each on an ephemeral port.
- Every registration gets its own path on the shared server.
- simserve.stop() shuts everything down.

Run:
  python examples/endpoints.py
"""

from __future__ import annotations

import httpx

import simserve
from simserve import HttpRequest, HttpResponse


def handle_greeting(req: HttpRequest) -> HttpResponse:
    name = req.header("x-name") or "stranger"
    return HttpResponse.text(f"hello, {name}\n")


async def handle_health(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.json({"ok": True})


def main() -> None:
    urls = {
        "fixed": simserve.endpoint().with_content("hello from simserve\n").start(),
        "teapot": simserve.endpoint().with_response_code(418).with_headers("X-Kind: teapot").start(),
        "secure": simserve.endpoint().with_ssl().with_content("over TLS\n").start(),
        "greeting": simserve.endpoint().with_handler(handle_greeting).start(),
        "health": simserve.endpoint().with_handler(handle_health).start(),
        "echo": simserve.endpoint().start_echo(),
    }

    try:
        with httpx.Client(verify=simserve.client_ssl_context(), trust_env=False) as client:
            for name, url in urls.items():
                response = client.post(url, content=b"ping", headers={"X-Name": "example"})
                print(f"--- {name}: {url} -> {response.status_code}")
                print(response.text)
    finally:
        simserve.stop()


if __name__ == "__main__":
    main()
