#!/usr/bin/env python3
"""
AI Stock Analysis - Streamlit Web Interface
Enter a ticker to chart its recent price trend, see locally computed
sentiment / signal / trading-style scores, and read a Gemini-written report.

Run with: streamlit run app.py
"""

import os
import logging
from datetime import datetime

import pandas as pd
import plotly.graph_objects as go
import pytz
import streamlit as st
import streamlit.components.v1 as components
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(os.path.join(os.path.dirname(__file__), ".env"), override=True)

from llm_provider import get_provider_info
from local_analyzer import NA, is_number
from polygon_client import MarketDataError, PolygonClient
from stock_analyzer import StockAnalyzer, StockDataAggregator, clean_report_html, normalize_symbol

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Constants
EASTERN_TZ = pytz.timezone('US/Eastern')
PRICE_HISTORY_DAYS = 100
REPORT_HEIGHT = 1600
TAILWIND_CDN = "https://cdn.tailwindcss.com"

SENTIMENT_COLORS = {
    "very positive": "#00c853",
    "positive": "#2ca02c",
    "neutral": "#666666",
    "negative": "#ff7043",
    "very negative": "#ff1744",
}

SIGNAL_ICONS = {"Buy": "🟢", "Sell": "🔴", "Hold": "⚪"}

CUSTOM_CSS = """
<style>
    .main-header {
        font-size: 2.5rem;
        font-weight: 700;
        background: linear-gradient(90deg, #7c3aed, #06b6d4);
        -webkit-background-clip: text;
        -webkit-text-fill-color: transparent;
        padding: 0.5rem 0 0 0;
    }
    .sub-header { color: #888; margin-top: -0.5rem; }
    .badge {
        display: inline-block;
        padding: 0.2rem 0.8rem;
        border-radius: 999px;
        font-weight: 600;
        color: white;
    }
    .stButton > button, .stFormSubmitButton > button {
        width: 100%;
        background: linear-gradient(90deg, #7c3aed, #06b6d4);
        color: white;
        border: none;
        font-weight: 600;
        border-radius: 8px;
    }
</style>
"""


def is_market_open(now=None):
    """Check if US stock market is currently open (NYSE/NASDAQ hours)."""
    now = now or datetime.now(EASTERN_TZ)

    if now.weekday() >= 5:  # Saturday = 5, Sunday = 6
        return False, "Market closed (Weekend)"

    market_open = now.replace(hour=9, minute=30, second=0, microsecond=0)
    market_close = now.replace(hour=16, minute=0, second=0, microsecond=0)

    if now < market_open:
        return False, "Pre-market"
    elif now > market_close:
        return False, "After hours"
    else:
        return True, "Market is OPEN"


def format_compact(value) -> str:
    """1234567 -> '1.2M'."""
    if not is_number(value):
        return NA
    for divisor, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")):
        if abs(value) >= divisor:
            return f"{value / divisor:.1f}{suffix}"
    return f"{value:.0f}"


def format_price(value) -> str:
    return f"${value:,.2f}" if is_number(value) else NA


def day_change_percent(previous_day: dict):
    """Prior session's open-to-close move in percent, or None."""
    open_, close = previous_day.get("open"), previous_day.get("close")
    if not is_number(open_) or not is_number(close) or open_ == 0:
        return None
    return (close - open_) / open_ * 100


def price_frame(series: list[dict]) -> pd.DataFrame:
    frame = pd.DataFrame(series, columns=["date", "price"])
    frame["date"] = pd.to_datetime(frame["date"])
    return frame.set_index("date")


def build_price_chart(series: list[dict], levels=None) -> go.Figure:
    """Line chart of closing prices, with support/resistance when known."""
    frame = price_frame(series)
    fig = go.Figure()
    fig.add_trace(go.Scatter(x=frame.index, y=frame["price"], mode="lines", name="Price",
                             line=dict(color="#7c3aed", width=2)))

    for key, color in (("support", "#2ca02c"), ("resistance", "#ff1744")):
        value = (levels or {}).get(key)
        if is_number(value):
            fig.add_hline(y=value, line_dash="dot", line_color=color,
                          annotation_text=f"{key.title()} {value:.2f}")

    fig.update_layout(height=320, margin=dict(l=10, r=10, t=30, b=10),
                      xaxis_title=None, yaxis_title="Price ($)", hovermode="x unified")
    return fig


def report_document(analysis: str) -> str:
    """Wrap the model's HTML in a page that loads the Tailwind classes it uses."""
    return (f'<script src="{TAILWIND_CDN}"></script>'
            f'<div class="bg-slate-100 py-2">{clean_report_html(analysis)}</div>')


@st.cache_resource
def get_client():
    return PolygonClient()


@st.cache_data(ttl=60)
def fetch_price_series(symbol):
    """Closing prices for the trend chart."""
    return get_client().get_price_series(symbol, days=PRICE_HISTORY_DAYS)


def run_analysis(symbol):
    try:
        client = get_client()
    except MarketDataError:
        # analyze() reports the missing key in its error result
        client = None
    return StockAnalyzer(StockDataAggregator(client)).analyze(symbol)


def display_price_chart(series, levels=None):
    st.plotly_chart(build_price_chart(series, levels), width="stretch")


def sentiment_badge(label: str) -> str:
    color = SENTIMENT_COLORS.get(label, "#666666")
    return f"<span class='badge' style='background:{color}'>{label.title()}</span>"


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

def display_stats(stock):
    """Top row of stat tiles."""
    market_open, market_status = is_market_open()
    col1, col2, col3, col4 = st.columns(4)

    with col1:
        st.metric("Market Status", "Active" if market_open else "Closed", market_status,
                  delta_color="off")
    with col2:
        volume = stock["volatility"]["average_volume"] if stock else NA
        st.metric("Trading Volume", format_compact(volume))
    with col3:
        signal = stock["sentiment"]["news"]["overall"].title() if stock else NA
        st.metric("AI Signals", signal)
    with col4:
        change = day_change_percent(stock["previous_day"]) if stock else None
        st.metric("Trend", f"{change:+.2f}%" if change is not None else NA)


def display_stock_info(stock):
    st.subheader("Stock Information")
    prev = stock["previous_day"]
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.markdown(f"**Symbol:** {stock['symbol']}")
        st.caption(stock["name"])
    with col2:
        st.metric("Current Price", format_price(stock["current_price"]))
    with col3:
        st.markdown("**Day Range:**")
        st.write(f"{format_price(prev['low'])} - {format_price(prev['high'])}")
    with col4:
        st.metric("Market Cap", format_compact(stock["market_cap"]))

    if stock.get("description"):
        with st.expander("About the company"):
            st.write(stock["description"])
            if is_number(stock.get("employees")):
                st.caption(f"Employees: {stock['employees']:,}")


def display_sentiment(stock):
    st.subheader("Sentiment Analysis")
    news = stock["sentiment"]["news"]
    price = stock["sentiment"]["price"]

    col1, col2 = st.columns(2)
    for col, title, data in ((col1, "News", news), (col2, "Market Reaction", price)):
        with col:
            st.markdown(f"**{title} Sentiment:** {sentiment_badge(data['overall'])}",
                        unsafe_allow_html=True)
            details = data["details"]
            st.progress(min(1.0, max(0.0, details["positive"] / 100)))
            st.caption(f"Positive {details['positive']:.1f}% | "
                       f"Neutral {details['neutral']:.1f}% | "
                       f"Negative {details['negative']:.1f}%")

    st.caption(f"Based on {news['article_count']} articles from the last 14 days")


def display_signals(stock):
    st.subheader("Buy/Sell Signals")
    signals = stock["signals"]
    st.markdown(f"### {SIGNAL_ICONS.get(signals['signal'], '')} {signals['signal']}")
    if signals["indicators"]:
        st.markdown("\n".join(f"- {line}" for line in signals["indicators"]))
    else:
        st.caption("Indicator data unavailable")


def display_trading_style(stock):
    st.subheader("Trading Style")
    style = stock["trading_style"]
    volatility = stock["volatility"]["volatility"]

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Recommended", style["recommended_style"].title())
    with col2:
        st.metric("Confidence", f"{style['confidence']:.0f}%")
    with col3:
        st.metric("Avg Daily Move", f"{volatility:.2f}%" if is_number(volatility) else NA)

    st.caption(f"Intraday points: {style['factors']['intraday']} | Swing points: {style['factors']['swing']}")
    for reason in style["reasoning"].values():
        st.write(f"• {reason}")


def display_news(news_items):
    """Display news items."""
    if not news_items:
        st.info("No recent news for this symbol.")
        return

    for news in news_items:
        with st.container():
            st.markdown(f"**[{news['title']}]({news['url']})**" if news.get("url") else f"**{news['title']}**")
            st.caption(f"{news.get('publisher') or 'Unknown'} | {news.get('published', NA)}")


def display_report(result):
    st.subheader("Gemini AI Stock Analysis")
    st.caption(f"{result['provider']} / {result['model']} | Generated {result['timestamp']}")
    components.html(report_document(result["analysis"]), height=REPORT_HEIGHT, scrolling=True)


def main():
    st.set_page_config(
        page_title="AI Stock Analysis",
        page_icon="📈",
        layout="wide",
    )
    st.markdown(CUSTOM_CSS, unsafe_allow_html=True)

    st.markdown("<h1 class='main-header'>🤖 AI Stock Analysis</h1>", unsafe_allow_html=True)
    provider = get_provider_info()
    st.markdown(f"<p class='sub-header'>Powered by ✨ {provider['provider'].title()} AI</p>",
                unsafe_allow_html=True)

    if provider.get("status") == "error":
        st.warning(f"LLM not configured: {provider.get('error')}")

    result = st.session_state.get("result")
    stock = result["stock_data"] if result and result.get("success") else None

    display_stats(stock)
    st.divider()

    with st.form("symbol_form"):
        col1, col2 = st.columns([4, 1])
        with col1:
            symbol = st.text_input("Stock symbol", placeholder="Enter stock symbol (e.g., AAPL)",
                                   label_visibility="collapsed")
        with col2:
            submitted = st.form_submit_button("Fetch Data")

    if submitted:
        try:
            symbol = normalize_symbol(symbol)
        except ValueError as e:
            st.error(str(e))
            return

        st.session_state.symbol = symbol
        st.session_state.series = None
        st.session_state.series_error = None
        try:
            st.session_state.series = fetch_price_series(symbol)
        except MarketDataError as e:
            st.session_state.series_error = str(e)

        with st.spinner(f"Analyzing {symbol}..."):
            st.session_state.result = run_analysis(symbol)
        st.rerun()

    if "symbol" not in st.session_state:
        st.info("Enter a ticker symbol to start.")
        return

    st.subheader(f"Stock Price Trend: {st.session_state.symbol}")
    if st.session_state.get("series_error"):
        st.error(st.session_state.series_error)
    elif st.session_state.get("series"):
        levels = stock["key_levels"] if stock else None
        display_price_chart(st.session_state.series, levels)

    if not result:
        return
    if not result.get("success"):
        st.error(f"{result['error']}: {result.get('details')}")
        return

    display_stock_info(stock)
    st.divider()

    col1, col2 = st.columns(2)
    with col1:
        display_sentiment(stock)
    with col2:
        display_signals(stock)

    st.divider()
    display_trading_style(stock)

    with st.expander(f"Recent News ({len(stock['news'])})"):
        display_news(stock["news"])

    st.divider()
    display_report(result)


if __name__ == "__main__":
    main()
