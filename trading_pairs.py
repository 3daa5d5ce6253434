"""
Instrument catalog and symbol/interval mapping.

Pairs are stored in the database as plain codes (EURUSD). The market data
provider and the chart widgets each want their own symbol format.
"""
from typing import Dict, Optional

# code -> (label, description, twelvedata symbol, tradingview symbol, type, exchange)
TRADING_PAIRS = {
    "EURUSD": ("EUR/USD", "Euro vs US Dollar", "EUR/USD", "FX:EURUSD", "forex", "FOREX"),
    "GBPUSD": ("GBP/USD", "British Pound vs US Dollar", "GBP/USD", "FX:GBPUSD", "forex", "FOREX"),
    "USDJPY": ("USD/JPY", "US Dollar vs Japanese Yen", "USD/JPY", "FX:USDJPY", "forex", "FOREX"),
    "USDCHF": ("USD/CHF", "US Dollar vs Swiss Franc", "USD/CHF", "FX:USDCHF", "forex", "FOREX"),
    "AUDUSD": ("AUD/USD", "Australian Dollar vs US Dollar", "AUD/USD", "FX:AUDUSD", "forex", "FOREX"),
    "USDCAD": ("USD/CAD", "US Dollar vs Canadian Dollar", "USD/CAD", "FX:USDCAD", "forex", "FOREX"),
    "NZDUSD": ("NZD/USD", "New Zealand Dollar vs US Dollar", "NZD/USD", "FX:NZDUSD", "forex", "FOREX"),
    "EURGBP": ("EUR/GBP", "Euro vs British Pound", "EUR/GBP", "FX:EURGBP", "forex", "FOREX"),
    "EURJPY": ("EUR/JPY", "Euro vs Japanese Yen", "EUR/JPY", "FX:EURJPY", "forex", "FOREX"),
    "GBPJPY": ("GBP/JPY", "British Pound vs Japanese Yen", "GBP/JPY", "FX:GBPJPY", "forex", "FOREX"),
    "XAUUSD": ("XAU/USD", "Gold vs US Dollar", "XAU/USD", "TVC:GOLD", "commodity", "FOREX"),
    "XAGUSD": ("XAG/USD", "Silver vs US Dollar", "XAG/USD", "TVC:SILVER", "commodity", "FOREX"),
    "BTCUSD": ("BTC/USD", "Bitcoin vs US Dollar", "BTC/USD", "BINANCE:BTCUSDT", "crypto", "Coinbase Pro"),
    "ETHUSD": ("ETH/USD", "Ethereum vs US Dollar", "ETH/USD", "BINANCE:ETHUSDT", "crypto", "Coinbase Pro"),
    "GER40": ("DAX", "DAX Index (Germany)", "DAX", "TVC:DAX", "index", "XETR"),
}

# TwelveData accepts exactly these
TWELVEDATA_INTERVALS = (
    "1min", "5min", "15min", "30min", "45min",
    "1h", "2h", "4h", "1day", "1week", "1month",
)

INTERVAL_ALIASES = {
    "1m": "1min", "5m": "5min", "15m": "15min", "30m": "30min", "45m": "45min",
    "60m": "1h", "60min": "1h", "1H": "1h", "2H": "2h", "4H": "4h",
    "1d": "1day", "d": "1day", "D": "1day", "1D": "1day", "day": "1day", "daily": "1day",
    "1w": "1week", "w": "1week", "W": "1week", "1W": "1week", "week": "1week", "weekly": "1week",
    "1M": "1month", "1mo": "1month", "month": "1month", "monthly": "1month",
}


def normalize_code(pair: str) -> str:
    """'eur/usd' or ' EURUSD ' -> 'EURUSD'. Unknown codes are only upper-cased."""
    code = pair.strip().upper()
    compact = code.replace("/", "").replace("-", "").replace("_", "")
    if compact in TRADING_PAIRS:
        return compact
    for key, info in TRADING_PAIRS.items():
        if info[2] == code:
            return key
    return code


def get_pair_info(pair: str) -> Optional[Dict]:
    code = normalize_code(pair)
    info = TRADING_PAIRS.get(code)
    if not info:
        return None
    label, description, td_symbol, tv_symbol, kind, exchange = info
    return {
        "value": code,
        "label": label,
        "description": description,
        "twelvedata_symbol": td_symbol,
        "tradingview_symbol": tv_symbol,
        "type": kind,
        "exchange": exchange,
    }


def format_pair(pair: str) -> str:
    info = get_pair_info(pair)
    return info["label"] if info else pair


def format_pair_with_description(pair: str) -> str:
    info = get_pair_info(pair)
    return f"{info['label']} - {info['description']}" if info else pair


def get_twelvedata_symbol(pair: str) -> str:
    info = get_pair_info(pair)
    return info["twelvedata_symbol"] if info else pair.strip()


def get_tradingview_symbol(pair: str) -> str:
    info = get_pair_info(pair)
    return info["tradingview_symbol"] if info else pair.strip()


def supported_instruments() -> Dict[str, Dict]:
    """Catalog keyed by stored code, in the shape the client expects."""
    instruments = {}
    for code in TRADING_PAIRS:
        info = get_pair_info(code)
        instruments[code] = {
            "symbol": info["twelvedata_symbol"],
            "type": info["type"],
            "exchange": info["exchange"],
            "label": info["label"],
            "description": info["description"],
            "tradingview_symbol": info["tradingview_symbol"],
        }
    return instruments


def normalize_interval(interval: str) -> str:
    """Map user-facing interval strings to TwelveData intervals.

    Raises ValueError for anything TwelveData would reject.
    """
    raw = (interval or "").strip()
    if raw in TWELVEDATA_INTERVALS:
        return raw
    if raw in INTERVAL_ALIASES:
        return INTERVAL_ALIASES[raw]
    lowered = raw.lower()
    if lowered in TWELVEDATA_INTERVALS:
        return lowered
    if lowered in INTERVAL_ALIASES:
        return INTERVAL_ALIASES[lowered]
    raise ValueError(f"Unsupported interval: {interval!r}")
