"""
Tests for the aggregation pipeline: feed fan-out, defensive merging,
prompt construction, report cleanup and the analyze() result contract.
"""

import pytest
import requests

from conftest import FakeProvider, FakeResponse, FakeSession, default_routes


def make_aggregator(*overrides):
    """Aggregator over the canned backend, with (pattern, response) overrides taking priority."""
    from polygon_client import PolygonClient
    from stock_analyzer import StockDataAggregator
    session = FakeSession(list(overrides) + default_routes())
    return StockDataAggregator(PolygonClient(api_key="test-key", session=session)), session


@pytest.fixture
def snapshot():
    aggregator, _ = make_aggregator()
    return aggregator.fetch("AAPL")


# ============================================================================
# AGGREGATION
# ============================================================================

class TestAggregator:

    def test_requests_every_feed(self):
        aggregator, session = make_aggregator()
        aggregator.fetch(" aapl ")
        paths = [url.replace("https://api.polygon.io", "") for url, _ in session.calls]
        assert len(paths) == 9
        for expected in ("/v3/reference/tickers/AAPL", "/v2/aggs/ticker/AAPL/prev",
                         "/v1/indicators/sma/AAPL", "/v1/indicators/rsi/AAPL",
                         "/v1/indicators/macd/AAPL", "/v1/indicators/bbands/AAPL",
                         "/v1/indicators/ema/AAPL", "/v2/reference/news"):
            assert expected in paths
        assert any("/range/1/day/" in p for p in paths)

    def test_merged_fields(self, snapshot):
        assert snapshot["symbol"] == "AAPL"
        assert snapshot["name"] == "Apple Inc."
        assert snapshot["employees"] == 161000
        assert snapshot["current_price"] == 195.0
        assert snapshot["sma50"] == 185.0
        assert snapshot["rsi"] == 55.0
        assert snapshot["ema20"] == 192.0
        assert snapshot["macd"] == {"macd_line": 1.2, "signal_line": 0.9, "histogram": 0.3}
        assert snapshot["bbands"] == {"upper": 200.0, "middle": 190.0, "lower": 180.0}
        assert snapshot["previous_day"]["high"] == 196.0

    def test_derived_features(self, snapshot):
        assert snapshot["sentiment"]["news"]["overall"] == "positive"
        assert snapshot["sentiment"]["news"]["article_count"] == 3
        assert snapshot["sentiment"]["price"]["overall"] == "very positive"
        assert snapshot["volatility"]["volatility"] == pytest.approx(1.0)
        assert snapshot["volatility"]["average_volume"] == pytest.approx(2_000_000)
        assert snapshot["trading_style"]["factors"] == {"intraday": 3, "swing": 3}
        assert snapshot["trading_style"]["recommended_style"] == "swing"
        assert snapshot["key_levels"] == {"support": 180.0, "resistance": 200.0}
        assert snapshot["signals"]["signal"] == "Buy"
        assert snapshot["news"][0]["publisher"] == "Wire"

    def test_unknown_symbol(self):
        from polygon_client import SymbolNotFoundError
        aggregator, _ = make_aggregator(
            (r"/v3/reference/tickers/", FakeResponse({"status": "NOT_FOUND"}, status_code=404)),
        )
        with pytest.raises(SymbolNotFoundError, match="Invalid stock symbol"):
            aggregator.fetch("ZZZZ")

    def test_blank_symbol(self):
        aggregator, session = make_aggregator()
        with pytest.raises(ValueError):
            aggregator.fetch("   ")
        assert session.calls == []

    def test_missing_feeds_become_na(self):
        from local_analyzer import NA
        aggregator, _ = make_aggregator(
            (r"/v1/indicators/rsi/", requests.ConnectionError("reset")),
            (r"/v1/indicators/macd/", FakeResponse(None, text="upstream timeout")),
            (r"/v2/aggs/ticker/[^/]+/prev", FakeResponse({"status": "OK", "results": []})),
            (r"/v2/reference/news", requests.Timeout("slow")),
        )
        stock = aggregator.fetch("AAPL")
        assert stock["rsi"] == NA
        assert stock["macd"] == {"macd_line": NA, "signal_line": NA, "histogram": NA}
        assert stock["current_price"] == NA
        assert stock["sentiment"]["news"]["article_count"] == 0
        assert stock["sentiment"]["price"]["overall"] == "neutral"
        assert stock["sma50"] == 185.0

    def test_no_bars(self):
        from local_analyzer import NA
        aggregator, _ = make_aggregator(
            (r"/v2/aggs/ticker/[^/]+/range/", FakeResponse({"status": "OK", "resultsCount": 0})),
        )
        stock = aggregator.fetch("AAPL")
        assert stock["volatility"] == {"volatility": NA, "average_volume": NA}

    def test_details_body_not_an_object(self):
        from polygon_client import SymbolNotFoundError
        aggregator, _ = make_aggregator(
            (r"/v3/reference/tickers/", FakeResponse([1, 2])),
        )
        with pytest.raises(SymbolNotFoundError, match="Invalid stock symbol"):
            aggregator.fetch("AAPL")

    def test_other_bodies_not_objects(self):
        from local_analyzer import NA
        aggregator, _ = make_aggregator(
            (r"/v2/aggs/ticker/[^/]+/prev", FakeResponse([{"c": 1.0}])),
            (r"/v2/aggs/ticker/[^/]+/range/", FakeResponse(["bar"])),
            (r"/v2/reference/news", FakeResponse("no news")),
            (r"/v1/indicators/rsi/", FakeResponse([55.0])),
        )
        stock = aggregator.fetch("AAPL")
        assert stock["current_price"] == NA
        assert stock["rsi"] == NA
        assert stock["volatility"] == {"volatility": NA, "average_volume": NA}
        assert stock["sentiment"]["news"]["article_count"] == 0

    def test_month_window_in_utc(self, monkeypatch):
        from datetime import datetime, timezone
        import polygon_client
        monkeypatch.setattr(polygon_client, "utc_now", lambda: datetime(2024, 6, 3, 1, 0, tzinfo=timezone.utc))
        aggregator, session = make_aggregator()
        aggregator.fetch("AAPL")
        assert any(url.endswith("/range/1/day/2024-05-04/2024-06-03") for url, _ in session.calls)


# ============================================================================
# PROMPT & REPORT
# ============================================================================

class TestPrompt:

    def test_formats_figures(self, snapshot):
        from stock_analyzer import build_prompt
        prompt = build_prompt(snapshot)
        assert "Symbol: AAPL" in prompt
        assert "Company Name: Apple Inc." in prompt
        assert "Current Price: $195.00" in prompt
        assert "Market Cap: $3000.00 billion" in prompt
        assert "RSI (14-day): 55.00" in prompt
        assert "MACD Line: 1.2000" in prompt
        assert "Average Daily Volume: 2,000,000" in prompt
        assert "Support Level: $180.00" in prompt
        assert "Resistance Level: $200.00" in prompt
        assert "News Sentiment: positive (3 articles)" in prompt
        assert "Computed Trading Style: swing" in prompt
        assert "Executive Summary" in prompt

    def test_missing_values(self, snapshot):
        from local_analyzer import NA
        from stock_analyzer import build_prompt
        snapshot["current_price"] = NA
        snapshot["market_cap"] = NA
        snapshot["rsi"] = NA
        prompt = build_prompt(snapshot)
        assert "Current Price: $N/A" in prompt
        assert "Market Cap: N/A" in prompt
        assert "RSI (14-day): N/A" in prompt


class TestCleanReport:

    def test_strips_fences(self):
        from stock_analyzer import clean_report_html
        assert clean_report_html("```html\n<div><h2>Summary</h2></div>\n```") == "<div><h2>Summary</h2></div>"

    def test_removes_active_content(self):
        from stock_analyzer import clean_report_html
        html = '<div onclick="steal()">Hi<script>alert(1)</script><iframe src="x"></iframe></div>'
        assert clean_report_html(html) == "<div>Hi</div>"

    def test_keeps_classes(self):
        from stock_analyzer import clean_report_html
        html = '<p class="text-green-600">Max Profit: $12</p>'
        assert clean_report_html(html) == html

    def test_removes_script_urls_and_meta(self):
        from stock_analyzer import clean_report_html
        html = '<a href="javascript:alert(1)">x</a><meta http-equiv="refresh" content="0;url=http://x">'
        assert clean_report_html(html) == "<a>x</a>"

    def test_obfuscated_schemes(self):
        from stock_analyzer import clean_report_html
        html = ('<img src=" JaVa\tScript:alert(1)"/><a href="data:text/html;base64,PHNjcmlwdD4=">d</a>'
                '<link rel="stylesheet" href="x.css"/><base href="http://evil"/>')
        assert clean_report_html(html) == "<img/><a>d</a>"

    def test_keeps_web_links(self):
        from stock_analyzer import clean_report_html
        html = '<a href="https://example.com/aapl">Filing</a>'
        assert clean_report_html(html) == html


# ============================================================================
# ANALYZE
# ============================================================================

class TestAnalyze:

    def test_success(self, provider):
        from stock_analyzer import StockAnalyzer
        aggregator, _ = make_aggregator()
        result = StockAnalyzer(aggregator, provider).analyze("AAPL")
        assert result["success"] is True
        assert result["analysis"] == "<div>Report</div>"
        assert result["metadata"] == {
            "symbol": "AAPL",
            "name": "Apple Inc.",
            "last_price": 195.0,
            "overall_sentiment": "positive",
        }
        assert result["provider"] == "fake"
        assert result["model"] == "fake-1"
        assert "Symbol: AAPL" in provider.prompts[0]

    def test_market_data_failure(self, provider):
        from stock_analyzer import StockAnalyzer
        aggregator, _ = make_aggregator(
            (r"/v3/reference/tickers/", FakeResponse(None, text="")),
        )
        result = StockAnalyzer(aggregator, provider).analyze("AAPL")
        assert result["success"] is False
        assert result["error"] == "Error performing analysis"
        assert result["details"] == "Invalid stock symbol or API error"
        assert provider.prompts == []

    def test_llm_failure(self):
        from llm_provider import EmptyResponseError
        from stock_analyzer import StockAnalyzer
        aggregator, _ = make_aggregator()
        failing = FakeProvider(error=EmptyResponseError("Empty analysis received from gemini"))
        result = StockAnalyzer(aggregator, failing).analyze("AAPL")
        assert result["success"] is False
        assert "Empty analysis" in result["details"]

    def test_missing_api_key(self, monkeypatch, provider):
        from stock_analyzer import StockAnalyzer
        monkeypatch.delenv("POLYGON_API_KEY", raising=False)
        result = StockAnalyzer(provider=provider).analyze("AAPL")
        assert result["success"] is False
        assert result["details"] == "POLYGON_API_KEY is not set"
