"""Build the embeddable TradingView widget URL for a symbol and interval."""

from urllib.parse import urlencode

WIDGET_BASE_URL = "https://s.tradingview.com/widgetembed/"
EXCHANGE_PREFIX = "OANDA"


def build_chart_url(symbol: str, interval: str) -> str:
    """Return the widget URL for `symbol` rendered at `interval`."""
    ticker = f"{EXCHANGE_PREFIX}:{symbol}"
    params = {
        "frameElementId": "tradingview_capture",
        "symbol": ticker,
        "interval": interval,
        "theme": "light",
        "style": "1",
        "locale": "it",
        "enable_publishing": "0",
        "allow_symbol_change": "0",
        "hide_side_toolbar": "0",
        "hide_top_toolbar": "0",
        "withdateranges": "1",
        "hide_volume": "0",
        "timezone": "Etc/UTC",
        "utm_source": "localhost",
        "utm_medium": "widget_new",
        "utm_campaign": "chart",
        "utm_term": ticker,
    }
    return f"{WIDGET_BASE_URL}?{urlencode(params)}"
