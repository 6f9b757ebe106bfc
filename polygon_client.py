#!/usr/bin/env python3
"""
Polygon.io market-data client.

Environment Variables:
    POLYGON_API_KEY: API key for Polygon.io - required
    POLYGON_BASE_URL: Override the API host (optional)
    POLYGON_TIMEOUT: Request timeout in seconds (optional, default 10)
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.polygon.io"
DEFAULT_TIMEOUT = 10.0

# Default query parameters for each indicator endpoint
INDICATOR_PARAMS = {
    "sma": {"window": 50},
    "rsi": {"window": 14},
    "macd": {"short_window": 12, "long_window": 26, "signal_window": 9},
    "bbands": {"window": 20},
    "ema": {"window": 20},
}


class MarketDataError(Exception):
    """Base exception for market-data errors."""
    pass


class MissingAPIKeyError(MarketDataError):
    """Raised when no Polygon API key is configured."""
    pass


class SymbolNotFoundError(MarketDataError):
    """Raised when the provider has no data for a symbol."""
    pass


def format_date(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def utc_now() -> datetime:
    """Polygon dates are UTC calendar days."""
    return datetime.now(timezone.utc)


class PolygonClient:
    """Fetches reference data, aggregates, indicators and news from Polygon.io."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or os.environ.get("POLYGON_API_KEY")
        if not self.api_key:
            raise MissingAPIKeyError("POLYGON_API_KEY is not set")

        self.base_url = (base_url or os.environ.get("POLYGON_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        if timeout is None:
            timeout = float(os.environ.get("POLYGON_TIMEOUT", DEFAULT_TIMEOUT))
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _request(self, path: str, params: Optional[dict] = None) -> requests.Response:
        query = dict(params or {})
        query["apiKey"] = self.api_key
        return self.session.get(f"{self.base_url}{path}", params=query, timeout=self.timeout)

    def _get_json(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        """Best-effort GET: returns the decoded body, or None if it can't be read."""
        text = ""
        try:
            response = self._request(path, params)
            text = response.text
            return response.json()
        except ValueError as e:
            # requests' JSONDecodeError is also a RequestException
            logger.warning("Error parsing JSON from %s: %s | Response text: %s", path, e, text[:500])
        except requests.RequestException as e:
            logger.warning("Request to %s failed: %s", path, e)
        return None

    # ------------------------------------------------------------------
    # Reference / aggregates
    # ------------------------------------------------------------------

    def get_ticker_details(self, symbol: str) -> Optional[dict]:
        return self._get_json(f"/v3/reference/tickers/{symbol}")

    def get_previous_close(self, symbol: str) -> Optional[dict]:
        return self._get_json(f"/v2/aggs/ticker/{symbol}/prev", {"adjusted": "true"})

    def get_daily_aggregates(self, symbol: str, start: str, end: str, limit: int = 120) -> Optional[dict]:
        return self._get_json(
            f"/v2/aggs/ticker/{symbol}/range/1/day/{start}/{end}",
            {"adjusted": "true", "sort": "asc", "limit": limit},
        )

    def get_recent_aggregates(self, symbol: str, days: int, limit: int = 120) -> Optional[dict]:
        """Daily bars for the last `days` calendar days (UTC)."""
        end = utc_now()
        return self.get_daily_aggregates(symbol, format_date(end - timedelta(days=days)), format_date(end), limit)

    def get_indicator(self, kind: str, symbol: str, **params) -> Optional[dict]:
        """Fetch the latest value of a technical indicator computed by Polygon."""
        if kind not in INDICATOR_PARAMS:
            raise ValueError(f"Unknown indicator '{kind}'. Available: {', '.join(INDICATOR_PARAMS)}")

        query = {
            "timespan": "day",
            "adjusted": "true",
            "series_type": "close",
            "order": "desc",
            "limit": 1,
        }
        query.update(INDICATOR_PARAMS[kind])
        query.update(params)
        return self._get_json(f"/v1/indicators/{kind}/{symbol}", query)

    def get_news(self, symbol: str, days: int = 14, limit: int = 50) -> list[dict]:
        """Fetch news articles tagged with the symbol over the last `days` days."""
        today = utc_now()
        data = self._get_json("/v2/reference/news", {
            "ticker": symbol,
            "published_utc.gte": format_date(today - timedelta(days=days)),
            "published_utc.lte": format_date(today),
            "limit": limit,
            "sort": "published_utc",
        })
        if not isinstance(data, dict):
            return []
        return data.get("results") or []

    def get_price_series(self, symbol: str, days: int = 100, limit: int = 120) -> list[dict]:
        """
        Fetch daily closing prices for the price-trend chart.

        Returns:
            [{"date": "YYYY-MM-DD", "price": float}, ...] oldest first

        Raises:
            MarketDataError: If the request fails or the provider rejects it.
            SymbolNotFoundError: If no bars exist for the symbol.
        """
        end = utc_now()
        start = end - timedelta(days=days)
        path = f"/v2/aggs/ticker/{symbol}/range/1/day/{format_date(start)}/{format_date(end)}"

        try:
            response = self._request(path, {"adjusted": "true", "sort": "asc", "limit": limit})
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Error fetching stock data for %s: %s", symbol, e)
            raise MarketDataError(f"Failed to fetch stock data: {e}") from e

        if not response.ok:
            message = data.get("message") or data.get("error") or "Failed to fetch stock data"
            raise MarketDataError(f"Failed to fetch stock data: {message}")

        results = data.get("results") or []
        if not results:
            raise SymbolNotFoundError("No data available for this symbol")

        return [{
            "date": datetime.fromtimestamp(bar["t"] / 1000, tz=timezone.utc).strftime("%Y-%m-%d"),
            "price": bar["c"],
        } for bar in results if "t" in bar and "c" in bar]
