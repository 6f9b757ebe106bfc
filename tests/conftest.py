"""
Shared fixtures: a canned Polygon.io backend served through a fake
requests session, and a fake LLM provider. No network access.
"""

import json
import re

import pytest
import requests


DETAILS = {
    "status": "OK",
    "results": {
        "ticker": "AAPL",
        "name": "Apple Inc.",
        "description": "Apple designs smartphones and personal computers.",
        "market_cap": 3_000_000_000_000,
        "total_employees": 161000,
    },
}

PREV = {
    "status": "OK",
    "results": [{"o": 190.0, "h": 196.0, "l": 189.0, "c": 195.0, "v": 52_000_000, "t": 1717185600000}],
}


def indicator(**fields):
    return {"status": "OK", "results": {"values": [dict(timestamp=1717185600000, **fields)]}}


INDICATORS = {
    "sma": indicator(value=185.0),
    "rsi": indicator(value=55.0),
    "macd": indicator(value=1.2, signal=0.9, histogram=0.3),
    "bbands": indicator(upper_band=200.0, middle_band=190.0, lower_band=180.0),
    "ema": indicator(value=192.0),
}

# Closes moving 1% a day, 2M shares a day
BARS = [
    {"t": 1714521600000 + i * 86_400_000, "o": 100.0, "c": c, "h": c, "l": c, "v": 2_000_000}
    for i, c in enumerate([100.0, 101.0, 99.99, 100.9899])
]

NEWS = [
    {"title": "Strong growth in profit", "description": "Revenue gain improved", "article_url": "https://example.com/1",
     "publisher": {"name": "Wire"}, "published_utc": "2024-06-01T12:00:00Z"},
    {"title": "Shares higher on success", "description": "", "article_url": "https://example.com/2",
     "publisher": {"name": "Wire"}, "published_utc": "2024-06-02T12:00:00Z"},
    {"title": "Analyst day scheduled", "description": "Event next week", "article_url": "https://example.com/3",
     "publisher": {"name": "Desk"}, "published_utc": "2024-06-03T12:00:00Z"},
]


class FakeResponse:
    def __init__(self, payload, status_code=200, text=None):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise requests.exceptions.JSONDecodeError("Expecting value", self.text, 0)
        return self._payload


class FakeSession:
    """Routes Polygon.io paths to canned responses and records every call."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        for pattern, response in self.routes:
            if re.search(pattern, url):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse({"status": "NOT_FOUND", "message": "unknown route"}, status_code=404)


def default_routes():
    return [
        (r"/v3/reference/tickers/", FakeResponse(DETAILS)),
        (r"/v2/aggs/ticker/[^/]+/prev", FakeResponse(PREV)),
        (r"/v2/aggs/ticker/[^/]+/range/", FakeResponse({"status": "OK", "results": BARS})),
        (r"/v2/reference/news", FakeResponse({"status": "OK", "results": NEWS})),
    ] + [
        (rf"/v1/indicators/{kind}/", FakeResponse(payload)) for kind, payload in INDICATORS.items()
    ]


@pytest.fixture
def routes():
    return default_routes()


@pytest.fixture
def session(routes):
    return FakeSession(routes)


@pytest.fixture
def client(session):
    from polygon_client import PolygonClient
    return PolygonClient(api_key="test-key", session=session)


class FakeProvider:
    provider_name = "fake"
    model = "fake-1"

    def __init__(self, text="<div>Report</div>", error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate_text(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def provider():
    return FakeProvider()
