#!/usr/bin/env python3
"""
Local heuristics for the stock dashboard.
Derives sentiment, volatility, trading-style and signal features from
market data that has already been fetched - no external API calls.

Modules:
    1. SentimentAnalyzer   — keyword sentiment for news + price-move sentiment
    2. VolatilityAnalyzer  — mean daily move and mean volume over a window
    3. TradingStyleAdvisor — point scoring for intraday vs. swing trading
    4. key_levels          — support / resistance estimates
    5. SignalGenerator     — RSI / MACD / SMA → Buy / Sell / Hold badge
"""

import re
from typing import Optional


NA = "N/A"


def is_number(value) -> bool:
    """True for real numeric values (the "N/A" placeholder and bools excluded)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# 1. SENTIMENT ANALYZER
# ---------------------------------------------------------------------------

POSITIVE_WORDS = frozenset([
    "growth", "profit", "increase", "up", "higher",
    "positive", "success", "strong", "gain", "improved",
])

NEGATIVE_WORDS = frozenset([
    "loss", "decline", "decrease", "down", "lower",
    "negative", "weak", "fail", "poor", "risk",
])

# Polarity score cut-off for a single text
TEXT_THRESHOLD = 0.2
# Percentage-point lead one class needs over the other to set the overall label
OVERALL_MARGIN = 10.0
# Percentage points added to the side the prior-day candle moved toward
PRICE_MOVE_BONUS = 10.0


class SentimentAnalyzer:
    """Bag-of-words sentiment over news text, plus a price-move sentiment."""

    def __init__(self, positive_words=None, negative_words=None):
        self._positive = frozenset(positive_words) if positive_words else POSITIVE_WORDS
        self._negative = frozenset(negative_words) if negative_words else NEGATIVE_WORDS

    def analyze(self, text: str) -> str:
        """Classify a text as "positive", "negative" or "neutral"."""
        words = re.split(r"\W+", (text or "").lower())
        positive = sum(1 for w in words if w in self._positive)
        negative = sum(1 for w in words if w in self._negative)

        total = positive + negative
        if total == 0:
            return "neutral"

        score = (positive - negative) / total
        if score > TEXT_THRESHOLD:
            return "positive"
        if score < -TEXT_THRESHOLD:
            return "negative"
        return "neutral"

    def news_sentiment(self, articles: list[dict]) -> dict:
        """
        Aggregate per-article sentiment into class percentages.

        Returns:
            {
                "overall": "positive" | "negative" | "neutral",
                "details": {"positive": float, "negative": float, "neutral": float},
                "article_count": int
            }
        """
        labels = [
            self.analyze(f"{article.get('description') or ''} {article.get('title') or ''}")
            for article in articles
        ]

        total = len(labels)
        if total == 0:
            return {
                "overall": "neutral",
                "details": {"positive": 0.0, "negative": 0.0, "neutral": 0.0},
                "article_count": 0,
            }

        positive = labels.count("positive") * 100 / total
        negative = labels.count("negative") * 100 / total
        neutral = labels.count("neutral") * 100 / total

        if positive > negative + OVERALL_MARGIN:
            overall = "positive"
        elif negative > positive + OVERALL_MARGIN:
            overall = "negative"
        else:
            overall = "neutral"

        return {
            "overall": overall,
            "details": {
                "positive": round(positive, 1),
                "negative": round(negative, 1),
                "neutral": round(neutral, 1),
            },
            "article_count": total,
        }

    @staticmethod
    def price_sentiment(news: dict, prev_bar: Optional[dict]) -> dict:
        """
        Market-reaction sentiment from the prior day's candle, reinforced
        by the news sentiment when both point the same way.
        """
        change = None
        if prev_bar and is_number(prev_bar.get("c")) and is_number(prev_bar.get("o")):
            change = prev_bar["c"] - prev_bar["o"]

        news_overall = news["overall"]
        if change is not None and change > 0:
            overall = "very positive" if news_overall == "positive" else "positive"
        elif change is not None and change < 0:
            overall = "very negative" if news_overall == "negative" else "negative"
        else:
            overall = "neutral"

        news_pos = news["details"]["positive"]
        news_neg = news["details"]["negative"]
        up = change is not None and change > 0
        down = change is not None and change < 0

        return {
            "overall": overall,
            "price_change": round(change, 4) if change is not None else NA,
            "details": {
                "positive": round(news_pos + (PRICE_MOVE_BONUS if up else 0.0), 1),
                "negative": round(news_neg + (PRICE_MOVE_BONUS if down else 0.0), 1),
                "neutral": round(100.0 - news_pos - news_neg, 1),
            },
        }


# ---------------------------------------------------------------------------
# 2. VOLATILITY ANALYZER
# ---------------------------------------------------------------------------

class VolatilityAnalyzer:
    """Mean absolute daily close-to-close move (%) and mean daily volume."""

    def analyze(self, bars: list[dict]) -> dict:
        if not bars:
            return {"volatility": NA, "average_volume": NA}

        closes = [bar.get("c") for bar in bars]
        changes = []
        for prev, cur in zip(closes, closes[1:]):
            if not is_number(prev) or not is_number(cur) or prev == 0:
                continue
            changes.append(abs((cur - prev) / prev * 100))

        volumes = [bar["v"] for bar in bars if is_number(bar.get("v"))]

        return {
            "volatility": sum(changes) / len(changes) if changes else NA,
            "average_volume": sum(volumes) / len(volumes) if volumes else NA,
        }


# ---------------------------------------------------------------------------
# 3. TRADING STYLE ADVISOR
# ---------------------------------------------------------------------------

class TradingStyleAdvisor:
    """
    Scores intraday vs. swing trading suitability from volatility, volume,
    technical indicators and sentiment agreement.
    """

    HIGH_VOLATILITY = 2.0          # mean daily move, percent
    HIGH_VOLUME = 1_000_000        # mean daily shares
    RSI_OVERSOLD = 30.0
    RSI_OVERBOUGHT = 70.0
    MACD_HISTOGRAM_STRONG = 0.5
    WIDE_BAND_PERCENT = 4.0

    def recommend(self, stock: dict, volatility: dict) -> dict:
        intraday = 0
        swing = 0

        vol = volatility.get("volatility", NA)
        if is_number(vol):
            if vol > self.HIGH_VOLATILITY:
                intraday += 2
            else:
                swing += 1

        avg_volume = volatility.get("average_volume", NA)
        high_volume = is_number(avg_volume) and avg_volume > self.HIGH_VOLUME
        if high_volume:
            intraday += 1

        rsi = stock.get("rsi", NA)
        if is_number(rsi):
            if rsi < self.RSI_OVERSOLD or rsi > self.RSI_OVERBOUGHT:
                intraday += 1
            else:
                swing += 1

        histogram = stock.get("macd", {}).get("histogram", NA)
        if is_number(histogram):
            if abs(histogram) > self.MACD_HISTOGRAM_STRONG:
                intraday += 1
            else:
                swing += 1

        width = band_width(stock.get("bbands", {}))
        if width is not None:
            if width > self.WIDE_BAND_PERCENT:
                intraday += 1
            else:
                swing += 1

        sentiment = stock.get("sentiment", {})
        news_overall = sentiment.get("news", {}).get("overall")
        price_overall = sentiment.get("price", {}).get("overall")
        consistent = news_overall == price_overall
        if consistent:
            swing += 1
        else:
            intraday += 1

        style = "intraday" if intraday > swing else "swing"

        if not is_number(vol):
            volatility_reason = "Volatility data unavailable"
        elif vol > self.HIGH_VOLATILITY:
            volatility_reason = "High volatility favors intraday trading"
        else:
            volatility_reason = "Moderate volatility suits swing trading"

        return {
            "recommended_style": style,
            "confidence": abs(intraday - swing) / (intraday + swing) * 100,
            "factors": {"intraday": intraday, "swing": swing},
            "reasoning": {
                "volatility": volatility_reason,
                "volume": ("High volume supports intraday trading" if high_volume
                           else "Average volume better for swing trading"),
                "technicals": ("Technical indicators suggest "
                               f"{'shorter' if style == 'intraday' else 'longer'} holding periods"),
                "sentiment": ("Consistent sentiment supports swing trading" if consistent
                              else "Mixed sentiment suggests intraday opportunities"),
            },
        }


def band_width(bbands: dict) -> Optional[float]:
    """Bollinger band width as a percentage of the middle band, or None."""
    upper = bbands.get("upper", NA)
    middle = bbands.get("middle", NA)
    lower = bbands.get("lower", NA)
    if not (is_number(upper) and is_number(middle) and is_number(lower)) or middle == 0:
        return None
    return (upper - lower) / middle * 100


# ---------------------------------------------------------------------------
# 4. KEY LEVELS
# ---------------------------------------------------------------------------

def key_levels(stock: dict, bars: Optional[list[dict]] = None) -> dict:
    """Support/resistance from the Bollinger bands, else the recent closing range."""
    bbands = stock.get("bbands", {})
    closes = [bar["c"] for bar in bars or [] if is_number(bar.get("c"))]

    support = bbands.get("lower", NA)
    if not is_number(support):
        support = min(closes) if closes else NA

    resistance = bbands.get("upper", NA)
    if not is_number(resistance):
        resistance = max(closes) if closes else NA

    return {
        "support": round(support, 2) if is_number(support) else NA,
        "resistance": round(resistance, 2) if is_number(resistance) else NA,
    }


# ---------------------------------------------------------------------------
# 5. SIGNAL GENERATOR
# ---------------------------------------------------------------------------

class SignalGenerator:
    """Votes RSI zone, MACD direction and price vs. SMA-50 into a single signal."""

    def generate(self, stock: dict) -> dict:
        """
        Returns:
            {
                "signal": "Buy" | "Sell" | "Hold",
                "buy_votes": int,
                "sell_votes": int,
                "indicators": [str, ...]  # one line per available indicator
            }
        """
        buy = 0
        sell = 0
        lines = []

        rsi = stock.get("rsi", NA)
        if is_number(rsi):
            if rsi < TradingStyleAdvisor.RSI_OVERSOLD:
                label = "Oversold"
                buy += 1
            elif rsi > TradingStyleAdvisor.RSI_OVERBOUGHT:
                label = "Overbought"
                sell += 1
            else:
                label = "Neutral"
            lines.append(f"RSI: {rsi:.0f} ({label})")

        macd = stock.get("macd", {})
        macd_line = macd.get("macd_line", NA)
        signal_line = macd.get("signal_line", NA)
        if is_number(macd_line) and is_number(signal_line):
            if macd_line > signal_line:
                buy += 1
                lines.append("MACD: Bullish (above signal line)")
            elif macd_line < signal_line:
                sell += 1
                lines.append("MACD: Bearish (below signal line)")
            else:
                lines.append("MACD: Flat")

        price = stock.get("current_price", NA)
        sma50 = stock.get("sma50", NA)
        if is_number(price) and is_number(sma50):
            if price > sma50:
                buy += 1
                lines.append("Moving Averages: Above 50-day MA")
            elif price < sma50:
                sell += 1
                lines.append("Moving Averages: Below 50-day MA")
            else:
                lines.append("Moving Averages: At 50-day MA")

        if buy > sell:
            signal = "Buy"
        elif sell > buy:
            signal = "Sell"
        else:
            signal = "Hold"

        return {"signal": signal, "buy_votes": buy, "sell_votes": sell, "indicators": lines}
