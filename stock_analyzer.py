#!/usr/bin/env python3
"""
Stock Analyzer
Gathers price, indicator and news data for one ticker from Polygon.io,
derives sentiment / volatility / trading-style features locally, and asks
the configured LLM (Gemini by default) for a narrative HTML report.

Environment Variables:
    POLYGON_API_KEY: Polygon.io API key
    LLM_PROVIDER: gemini, openai, or anthropic (default gemini)
    LLM_MODEL: (optional) specific model name
    GEMINI_API_KEY/GOOGLE_API_KEY, OPENAI_API_KEY, or ANTHROPIC_API_KEY
"""

import os
import re
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Optional

from bs4 import BeautifulSoup
from dotenv import load_dotenv

from llm_provider import BaseLLMProvider, LLMError, get_provider
from local_analyzer import (
    NA,
    SentimentAnalyzer,
    SignalGenerator,
    TradingStyleAdvisor,
    VolatilityAnalyzer,
    is_number,
    key_levels,
)
from polygon_client import MarketDataError, PolygonClient, SymbolNotFoundError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

VOLATILITY_WINDOW_DAYS = 30
NEWS_WINDOW_DAYS = 14
NEWS_LIMIT = 50
HEADLINES_KEPT = 10


def normalize_symbol(symbol: str) -> str:
    symbol = (symbol or "").strip().upper()
    if not symbol:
        raise ValueError("A stock symbol is required")
    return symbol


def _latest_value(payload: Optional[dict], field: str = "value"):
    """Read `field` from the newest entry of an indicator response, or "N/A"."""
    try:
        value = payload["results"]["values"][0][field]
    except (KeyError, IndexError, TypeError):
        return NA
    return value if value is not None else NA


def _first_result(payload: Optional[dict]) -> dict:
    if not isinstance(payload, dict):
        return {}
    results = payload.get("results")
    if isinstance(results, list) and results and isinstance(results[0], dict):
        return results[0]
    return {}


class StockDataAggregator:
    """Fans out the per-ticker feeds and merges them into one snapshot dict."""

    def __init__(self, client: Optional[PolygonClient] = None):
        self._client = client
        self.sentiment = SentimentAnalyzer()
        self.volatility = VolatilityAnalyzer()
        self.style_advisor = TradingStyleAdvisor()
        self.signals = SignalGenerator()

    @property
    def client(self) -> PolygonClient:
        if self._client is None:
            self._client = PolygonClient()
        return self._client

    def _run_parallel(self, calls: dict) -> dict:
        """Run every call concurrently and wait for all of them."""
        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            futures = {name: pool.submit(fn) for name, fn in calls.items()}
            return {name: future.result() for name, future in futures.items()}

    def fetch(self, symbol: str) -> dict:
        """
        Build the full data snapshot for a ticker.

        Raises:
            ValueError: If the symbol is blank.
            SymbolNotFoundError: If the reference lookup fails.
            MarketDataError: If the client can't be configured.
        """
        symbol = normalize_symbol(symbol)
        client = self.client

        feeds = self._run_parallel({
            "details": lambda: client.get_ticker_details(symbol),
            "sma": lambda: client.get_indicator("sma", symbol),
            "rsi": lambda: client.get_indicator("rsi", symbol),
            "prev": lambda: client.get_previous_close(symbol),
            "macd": lambda: client.get_indicator("macd", symbol),
            "bbands": lambda: client.get_indicator("bbands", symbol),
            "ema": lambda: client.get_indicator("ema", symbol),
        })

        details = feeds["details"]
        if (not isinstance(details, dict) or details.get("status") != "OK"
                or not isinstance(details.get("results"), dict)):
            raise SymbolNotFoundError("Invalid stock symbol or API error")

        missing = [name for name, payload in feeds.items() if payload is None]
        if missing:
            logger.warning("%s: feeds unavailable: %s", symbol, ", ".join(missing))

        stock = self._merge(symbol, feeds)

        extra = self._run_parallel({
            "news": lambda: client.get_news(symbol, days=NEWS_WINDOW_DAYS, limit=NEWS_LIMIT),
            "bars": lambda: client.get_recent_aggregates(symbol, VOLATILITY_WINDOW_DAYS),
        })
        articles = extra["news"]
        bars = (extra["bars"].get("results") or []) if isinstance(extra["bars"], dict) else []

        news_sentiment = self.sentiment.news_sentiment(articles)
        stock["sentiment"] = {
            "news": news_sentiment,
            "price": self.sentiment.price_sentiment(news_sentiment, _first_result(feeds["prev"])),
        }
        stock["news"] = [{
            "title": article.get("title", ""),
            "publisher": (article.get("publisher") or {}).get("name", ""),
            "url": article.get("article_url", ""),
            "published": article.get("published_utc", ""),
        } for article in articles[:HEADLINES_KEPT]]

        stock["volatility"] = self.volatility.analyze(bars)
        stock["trading_style"] = self.style_advisor.recommend(stock, stock["volatility"])
        stock["key_levels"] = key_levels(stock, bars)
        stock["signals"] = self.signals.generate(stock)

        logger.info(
            "%s: %d articles, %d bars, style=%s",
            symbol, len(articles), len(bars), stock["trading_style"]["recommended_style"],
        )
        return stock

    @staticmethod
    def _merge(symbol: str, feeds: dict) -> dict:
        info = feeds["details"]["results"]
        prev = _first_result(feeds["prev"])

        return {
            "symbol": symbol,
            "name": info.get("name", symbol),
            "description": info.get("description", ""),
            "market_cap": info.get("market_cap", NA),
            "employees": info.get("total_employees", NA),
            "homepage_url": info.get("homepage_url", ""),
            "sma50": _latest_value(feeds["sma"]),
            "rsi": _latest_value(feeds["rsi"]),
            "current_price": prev.get("c", NA),
            "previous_day": {
                "open": prev.get("o", NA),
                "high": prev.get("h", NA),
                "low": prev.get("l", NA),
                "close": prev.get("c", NA),
                "volume": prev.get("v", NA),
            },
            "macd": {
                "macd_line": _latest_value(feeds["macd"], "value"),
                "signal_line": _latest_value(feeds["macd"], "signal"),
                "histogram": _latest_value(feeds["macd"], "histogram"),
            },
            "bbands": {
                "upper": _latest_value(feeds["bbands"], "upper_band"),
                "middle": _latest_value(feeds["bbands"], "middle_band"),
                "lower": _latest_value(feeds["bbands"], "lower_band"),
            },
            "ema20": _latest_value(feeds["ema"]),
        }


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

def fmt(value, digits: int = 2) -> str:
    return f"{value:.{digits}f}" if is_number(value) else str(value)


def fmt_market_cap(value) -> str:
    return f"${value / 1e9:.2f} billion" if is_number(value) else NA


def fmt_volume(value) -> str:
    return f"{value:,.0f}" if is_number(value) else NA


REPORT_LAYOUT = """
<div class="max-w-4xl mx-auto p-4 space-y-6">
  <!-- Executive Summary Card -->
  <div class="bg-white rounded-lg shadow-lg p-6">
    <h2 class="text-2xl font-bold mb-4">Executive Summary</h2>
    <div class="grid grid-cols-1 md:grid-cols-2 gap-4">
      <div>
        <h3 class="font-semibold">Overall Recommendation</h3>
        [Overall bias: Strong Buy/Buy/Hold/Sell/Strong Sell]
      </div>
      <div>
        <h3 class="font-semibold">Market Bias</h3>
        [Bullish/Bearish with key reasons]
      </div>
    </div>
    <div class="mt-4">
      <h3 class="font-semibold">Key Factors</h3>
      [Top 3-4 factors influencing the recommendation]
    </div>
  </div>

  <!-- Time Horizon Targets -->
  <div class="bg-white rounded-lg shadow-lg p-6">
    <h2 class="text-2xl font-bold mb-4">Time Horizon Analysis</h2>
    <div class="grid grid-cols-1 md:grid-cols-3 gap-4">
      <!-- Repeat this block for Short-term (1-5 days), Medium-term (1-4 weeks), Long-term (1-6 months) -->
      <div>
        <h3 class="font-semibold">[Horizon]</h3>
        <p>Target: [Price target]</p>
        <p>Risk/Reward: [Ratio]</p>
        <div class="mt-2">
          <p class="text-green-600">Max Profit: [Maximum profit potential]</p>
          <p class="text-red-600">Min Loss: [Minimum loss threshold]</p>
        </div>
      </div>
    </div>
  </div>

  <!-- Trading Styles Analysis -->
  <div class="bg-white rounded-lg shadow-lg p-6">
    <h2 class="text-2xl font-bold mb-4">Trading Style Analysis</h2>
    <!-- Repeat this block for Intraday Trading and Swing Trading -->
    <div class="mb-6">
      <h3 class="text-xl font-semibold mb-3">[Trading style]</h3>
      <div class="grid grid-cols-1 md:grid-cols-2 gap-4">
        <div>
          <h4 class="font-medium">Key Levels</h4>
          <p>Support: [Support price levels]</p>
          <p>Resistance: [Resistance price levels]</p>
        </div>
        <div>
          <h4 class="font-medium">Risk/Reward Profile</h4>
          <p>Ratio: [R/R ratio]</p>
          <p>Stop Loss: [Stop loss level]</p>
          <p>Take Profit: [Take profit level]</p>
          <div class="mt-2">
            <p class="text-green-600">Max Profit Target: [Maximum profit potential]</p>
            <p class="text-red-600">Max Loss Limit: [Maximum loss threshold]</p>
          </div>
        </div>
      </div>
      <div class="mt-3">
        <h4 class="font-medium">Strategy Recommendations</h4>
        [Specific strategies for this style]
      </div>
      <div class="mt-3 p-3 bg-gray-50 rounded">
        <h4 class="font-medium">Profit/Loss Guidelines</h4>
        <p>Suggested position size: [Position size]</p>
        <p>Maximum profit target: [Profit target]</p>
        <p>Maximum loss limit: [Loss limit]</p>
        <p>Per-trade profit target: [Per-trade target]</p>
        <p>Per-trade stop loss: [Per-trade stop]</p>
      </div>
    </div>
  </div>

  <!-- Sentiment Analysis -->
  <div class="bg-white rounded-lg shadow-lg p-6">
    <h2 class="text-2xl font-bold mb-4">Sentiment Analysis</h2>
    <div class="grid grid-cols-1 md:grid-cols-2 gap-4">
      <div>
        <h3 class="font-semibold">News Sentiment</h3>
        [Detailed news sentiment analysis]
      </div>
      <div>
        <h3 class="font-semibold">Market Reaction Sentiment</h3>
        [Detailed price-reaction sentiment analysis]
      </div>
    </div>
    <div class="mt-4">
      <h3 class="font-semibold">Impact Assessment</h3>
      [How sentiment affects trading decisions]
    </div>
  </div>

  <!-- Risk Analysis -->
  <div class="bg-white rounded-lg shadow-lg p-6">
    <h2 class="text-2xl font-bold mb-4">Risk Analysis</h2>
    <div class="space-y-4">
      <div>
        <h3 class="font-semibold">Technical Risks</h3>
        [Technical risk factors]
      </div>
      <div>
        <h3 class="font-semibold">Sentiment Risks</h3>
        [Sentiment-based risk factors]
      </div>
      <div>
        <h3 class="font-semibold">Stop Loss Recommendations</h3>
        [Stop loss levels for different trading styles]
      </div>
    </div>
  </div>
</div>
"""


def build_prompt(stock: dict) -> str:
    """Render the analysis prompt for a snapshot produced by StockDataAggregator."""
    macd = stock["macd"]
    bbands = stock["bbands"]
    levels = stock["key_levels"]
    sentiment = stock["sentiment"]
    style = stock["trading_style"]

    return f"""Analyze the following stock data and provide key insights:
Symbol: {stock['symbol']}
Company Name: {stock['name']}
Current Price: ${fmt(stock['current_price'])}
Market Cap: {fmt_market_cap(stock['market_cap'])}

Technical Indicators:
- RSI (14-day): {fmt(stock['rsi'])}
- MACD Line: {fmt(macd['macd_line'], 4)} | Signal: {fmt(macd['signal_line'], 4)} | Histogram: {fmt(macd['histogram'], 4)}
- SMA (50-day): {fmt(stock['sma50'])} | EMA (20-day): {fmt(stock['ema20'])}
- Bollinger Bands (20-day): {fmt(bbands['lower'])} / {fmt(bbands['middle'])} / {fmt(bbands['upper'])}
- Average Daily Volume: {fmt_volume(stock['volatility']['average_volume'])}
- Average Daily Move: {fmt(stock['volatility']['volatility'])}%
- Support Level: ${fmt(levels['support'])}
- Resistance Level: ${fmt(levels['resistance'])}

Sentiment Analysis:
- News Sentiment: {sentiment['news']['overall']} ({sentiment['news']['article_count']} articles)
- Market Reaction Sentiment: {sentiment['price']['overall']}

Computed Trading Style: {style['recommended_style']} (confidence {style['confidence']:.0f}%)

Please provide analysis in the following HTML structure:
{REPORT_LAYOUT}
Provide a comprehensive analysis using this structure, with detailed explanations for each section. Focus on actionable insights and clear reasoning for all recommendations. Include specific price targets, risk/reward ratios, and maximum profit/loss thresholds for each time horizon and trading style."""


# ---------------------------------------------------------------------------
# Report HTML
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:html)?", re.IGNORECASE)
_UNSAFE_TAGS = ["script", "style", "iframe", "object", "embed", "meta", "base", "link"]
_URL_ATTRS = {"href", "src", "action", "formaction", "xlink:href"}
_UNSAFE_SCHEMES = ("javascript:", "vbscript:", "data:text/html")
_URL_NOISE_RE = re.compile(r"[\x00-\x20]+")


def _unsafe_url(value) -> bool:
    if isinstance(value, list):
        value = " ".join(value)
    # Browsers ignore embedded whitespace and control characters in schemes
    return _URL_NOISE_RE.sub("", str(value)).lower().startswith(_UNSAFE_SCHEMES)


def clean_report_html(text: str) -> str:
    """Strip Markdown fences and active content from model-written HTML."""
    soup = BeautifulSoup(_FENCE_RE.sub("", text or "").strip(), "html.parser")
    for tag in soup(_UNSAFE_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            name = attr.lower()
            if name.startswith("on") or (name in _URL_ATTRS and _unsafe_url(tag.attrs[attr])):
                del tag.attrs[attr]
    return str(soup)


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class StockAnalyzer:
    """Runs the aggregation pipeline and asks the LLM for the report."""

    def __init__(self, aggregator: Optional[StockDataAggregator] = None,
                 provider: Optional[BaseLLMProvider] = None):
        self.aggregator = aggregator or StockDataAggregator()
        self._provider = provider

    @property
    def provider(self) -> BaseLLMProvider:
        if self._provider is None:
            self._provider = get_provider()
        return self._provider

    def analyze(self, symbol: str) -> dict:
        """Analyze a ticker; errors come back as a `success: False` dict."""
        try:
            stock = self.aggregator.fetch(symbol)
            analysis = self.provider.generate_text(build_prompt(stock))

            return {
                "success": True,
                "analysis": analysis,
                "timestamp": datetime.now().isoformat(),
                "metadata": {
                    "symbol": stock["symbol"],
                    "name": stock["name"],
                    "last_price": stock["current_price"],
                    "overall_sentiment": stock["sentiment"]["news"]["overall"],
                },
                "provider": self.provider.provider_name,
                "model": self.provider.model,
                "stock_data": stock,
            }

        except (ValueError, MarketDataError, LLMError) as e:
            logger.error("Error in stock analysis for %s: %s", symbol, e)
            return self._failure(e)
        except Exception as e:
            logger.exception("Unexpected error in stock analysis for %s", symbol)
            return self._failure(e)

    @staticmethod
    def _failure(error: Exception) -> dict:
        return {
            "success": False,
            "error": "Error performing analysis",
            "details": str(error),
            "timestamp": datetime.now().isoformat(),
        }


def main():
    """Main entry point for CLI."""
    import argparse

    parser = argparse.ArgumentParser(
        description="AI stock analysis for a single ticker",
        epilog="""
Environment Variables:
  POLYGON_API_KEY       Polygon.io API key (required)
  LLM_PROVIDER          gemini, openai, or anthropic (default gemini)
  LLM_MODEL             Specific model name (optional)
  GEMINI_API_KEY        API key for Gemini

Example:
  python stock_analyzer.py AAPL --json aapl.json
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("symbol", help="Ticker symbol to analyze (e.g. AAPL)")
    parser.add_argument("--json", dest="json_file", help="Write the full result to this file")
    parser.add_argument("--features-only", action="store_true",
                        help="Print the computed features and skip the LLM report")

    args = parser.parse_args()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.features_only:
        try:
            results = {"success": True, "stock_data": StockDataAggregator().fetch(args.symbol)}
        except (ValueError, MarketDataError) as e:
            results = StockAnalyzer._failure(e)
        if results["success"]:
            print(json.dumps(results["stock_data"], indent=2, default=str))
    else:
        results = StockAnalyzer().analyze(args.symbol)
        if results["success"]:
            print(results["analysis"])

    if not results["success"]:
        print(f"\nError: {results['details']}")

    if args.json_file:
        with open(args.json_file, "w") as f:
            json.dump(results, f, indent=2, default=str)
        print(f"\nResults saved to: {args.json_file}")

    return 0 if results["success"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
