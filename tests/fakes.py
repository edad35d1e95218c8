"""In-process stand-in for the quote provider, served via httpx.MockTransport."""

from collections.abc import Callable
from typing import Any

import httpx

COOKIE_URL = "https://finance.yahoo.com/"
CRUMB_URL = "https://query1.finance.yahoo.com/v1/test/getcrumb"
QUOTE_URL = "https://query1.finance.yahoo.com/v7/finance/quote"


def json_quote_response(entries: list[Any]) -> httpx.Response:
    return httpx.Response(200, json={"quoteResponse": {"result": entries, "error": None}})


class FakeProvider:
    """Routes requests like the real provider and records what it saw.

    Attributes:
        requests: Every request received, in order.
        quote_handler: Callable producing the quote endpoint response.
        cookie_status, set_cookie, crumb_status, crumb_body: Knobs for
            simulating authentication failures.
    """

    def __init__(self, quote_handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self.quote_handler = quote_handler
        self.cookie_status = 200
        self.set_cookie = True
        self.crumb_status = 200
        self.crumb_body = "mock_crumb"

    def count(self, url_prefix: str) -> int:
        return sum(1 for request in self.requests if str(request.url).startswith(url_prefix))

    def quote_requests(self) -> list[httpx.Request]:
        return [request for request in self.requests if str(request.url).startswith(QUOTE_URL)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith(CRUMB_URL):
            return httpx.Response(self.crumb_status, text=self.crumb_body)
        if url.startswith(QUOTE_URL):
            return self.quote_handler(request)

        headers = {}
        if self.set_cookie:
            headers["Set-Cookie"] = "A1=mock_a1_cookie; Path=/; Domain=.yahoo.com"
        return httpx.Response(self.cookie_status, text="<html></html>", headers=headers)
