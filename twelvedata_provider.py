"""
TwelveData Provider - market data for forex, metals, crypto and indices.

Endpoints used (all available on the free tier):
- /time_series  historical OHLC(V) candles
- /price        latest price (single or comma separated symbols)
- /quote        daily quote with change and 52 week range

Free tier allows 8 calls per minute, so calls go through a shared rate
limiter and latest prices are cached for PRICE_CACHE_TTL seconds.
"""
import time
import logging
import threading
from typing import Dict, List, Optional

import requests

import config
import trading_pairs

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
MAX_OUTPUTSIZE = 5000


class MarketDataError(Exception):
    """Provider rejected the request or could not be reached."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


# ============================================
# Cache Implementation
# ============================================

class PriceCache:
    """Thread-safe in-memory price cache with TTL."""

    def __init__(self, ttl: int = 60):
        self.ttl = ttl
        self._cache: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, symbol: str) -> Optional[dict]:
        with self._lock:
            entry = self._cache.get(symbol)
            if entry is None:
                return None
            if time.time() - entry['timestamp'] < self.ttl:
                return entry['data']
            del self._cache[symbol]
        return None

    def set(self, symbol: str, data: dict):
        with self._lock:
            self._cache[symbol] = {'data': data, 'timestamp': time.time()}

    def clear(self):
        with self._lock:
            self._cache.clear()

    def stats(self) -> dict:
        with self._lock:
            return {'entries': len(self._cache), 'ttl': self.ttl}


# Shared across all requests/users
price_cache = PriceCache(ttl=config.PRICE_CACHE_TTL)

# ============================================
# Rate limiting
# ============================================

_call_lock = threading.Lock()
_calls_this_minute = 0
_minute_start = 0.0


def _rate_limit():
    """Block until another call fits into the per-minute allowance."""
    global _calls_this_minute, _minute_start

    with _call_lock:
        current_time = time.time()

        if current_time - _minute_start > 60:
            _calls_this_minute = 0
            _minute_start = current_time

        if _calls_this_minute >= config.TWELVEDATA_RATE_LIMIT:
            sleep_time = 60 - (current_time - _minute_start) + 0.1
            if sleep_time > 0:
                logger.info("Rate limit reached, waiting %.1fs", sleep_time)
                time.sleep(sleep_time)
            _calls_this_minute = 0
            _minute_start = time.time()

        _calls_this_minute += 1


def _get(endpoint: str, params: dict) -> dict:
    if not config.TWELVEDATA_API_KEY:
        raise MarketDataError("TwelveData API key not configured")

    _rate_limit()

    url = f"{config.TWELVEDATA_BASE_URL}/{endpoint}"
    query = dict(params, apikey=config.TWELVEDATA_API_KEY)
    try:
        response = requests.get(url, params=query, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise MarketDataError(f"TwelveData request failed: {e}")

    try:
        data = response.json()
    except ValueError:
        raise MarketDataError(f"TwelveData returned non-JSON response (HTTP {response.status_code})")

    # Errors come back either as HTTP errors or as 200 with status=error
    if response.status_code != 200 or (isinstance(data, dict) and data.get("status") == "error"):
        message = data.get("message") if isinstance(data, dict) else None
        code = data.get("code") if isinstance(data, dict) else None
        raise MarketDataError(message or f"TwelveData HTTP {response.status_code}", code=code or response.status_code)

    return data


# ============================================
# Fetch functions
# ============================================

def fetch_time_series(symbol: str, interval: str = "1h", outputsize: int = 30,
                      start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
    """
    Fetch OHLC candles.

    Returns the raw provider payload: {"meta": {...}, "values": [...], "status": "ok"}
    with values ordered newest first and numbers encoded as strings.
    """
    params = {
        "symbol": trading_pairs.get_twelvedata_symbol(symbol),
        "interval": trading_pairs.normalize_interval(interval),
        "outputsize": max(1, min(int(outputsize), MAX_OUTPUTSIZE)),
        "timezone": "UTC",
    }
    if start_date:
        params["start_date"] = start_date
    if end_date:
        params["end_date"] = end_date

    data = _get("time_series", params)
    data.setdefault("values", [])
    return data


def fetch_price(symbol: str, use_cache: bool = True) -> dict:
    """Latest price for one symbol: {'symbol', 'price', 'source'}."""
    td_symbol = trading_pairs.get_twelvedata_symbol(symbol)

    if use_cache:
        cached = price_cache.get(td_symbol)
        if cached:
            return dict(cached, source='cache')

    data = _get("price", {"symbol": td_symbol})
    try:
        price = float(data["price"])
    except (KeyError, TypeError, ValueError):
        raise MarketDataError(f"No price returned for {td_symbol}")

    result = {"symbol": symbol, "price": price, "source": "twelvedata"}
    price_cache.set(td_symbol, result)
    return result


def fetch_price_multi(symbols: List[str]) -> Dict[str, Optional[float]]:
    """Latest prices keyed by the symbols as passed in. Missing prices are None."""
    if not symbols:
        return {}

    by_td_symbol = {trading_pairs.get_twelvedata_symbol(s): s for s in symbols}
    results = {}
    missing = []
    for td_symbol, requested in by_td_symbol.items():
        cached = price_cache.get(td_symbol)
        if cached:
            results[requested] = cached["price"]
        else:
            missing.append(td_symbol)

    if missing:
        data = _get("price", {"symbol": ",".join(missing)})
        # Single symbol responses are not keyed by symbol
        if len(missing) == 1:
            data = {missing[0]: data}
        for td_symbol in missing:
            requested = by_td_symbol[td_symbol]
            entry = data.get(td_symbol) or {}
            try:
                price = float(entry["price"])
            except (KeyError, TypeError, ValueError):
                results[requested] = None
                continue
            price_cache.set(td_symbol, {"symbol": requested, "price": price, "source": "twelvedata"})
            results[requested] = price

    return results


QUOTE_NUMERIC_FIELDS = ("open", "high", "low", "close", "volume", "previous_close",
                        "change", "percent_change", "average_volume")


def fetch_quote(symbol: str) -> dict:
    """Daily quote with numeric fields converted to floats."""
    data = _get("quote", {"symbol": trading_pairs.get_twelvedata_symbol(symbol)})
    quote = dict(data)
    for field in QUOTE_NUMERIC_FIELDS:
        if quote.get(field) not in (None, ""):
            try:
                quote[field] = float(quote[field])
            except (TypeError, ValueError):
                pass
    week = quote.get("fifty_two_week")
    if isinstance(week, dict):
        for key in ("low", "high", "low_change", "high_change", "low_change_percent", "high_change_percent"):
            if week.get(key) not in (None, ""):
                try:
                    week[key] = float(week[key])
                except (TypeError, ValueError):
                    pass
    return quote


def check_connectivity() -> dict:
    """Lightweight check used by the health endpoint."""
    if not config.TWELVEDATA_API_KEY:
        return {"status": "disabled", "message": "TwelveData not configured"}

    start_time = time.time()
    try:
        data = _get("api_usage", {})
        latency = (time.time() - start_time) * 1000
        return {
            "status": "ok",
            "message": "Connected to TwelveData",
            "latency_ms": round(latency, 2),
            "current_usage": data.get("current_usage"),
            "plan_limit": data.get("plan_limit"),
        }
    except MarketDataError as e:
        return {"status": "error", "message": f"TwelveData check failed: {e}"}
