"""
Market Data API
Proxies TwelveData for the chart widgets and the backtest replay.
Falls back to generated data on the legacy endpoints when no API key is set.
"""
import random
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import pandas as pd
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

import auth
import config
import models
import trading_pairs
import twelvedata_provider
from twelvedata_provider import MarketDataError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["market-data"])


def _error(status_code, message):
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# --- Formatting ---

def format_candles_for_chart(payload: dict) -> list:
    """
    Provider rows -> chart candles.

    TwelveData returns newest first with string numbers; charts want ascending
    unix-second timestamps and floats. Forex rows carry no volume.
    """
    values = payload.get("values") or []
    if not values:
        return []

    df = pd.DataFrame(values)
    df["time"] = pd.to_datetime(df["datetime"], utc=True)
    for col in ("open", "high", "low", "close"):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    if "volume" in df.columns:
        df["volume"] = pd.to_numeric(df["volume"], errors="coerce").fillna(0)
    else:
        df["volume"] = 0.0

    df = df.dropna(subset=["open", "high", "low", "close"])
    df = df.sort_values("time").drop_duplicates(subset="time", keep="last")
    epoch = pd.Timestamp("1970-01-01", tz="UTC")
    df["time"] = (df["time"] - epoch) // pd.Timedelta(seconds=1)

    return [
        {
            "time": int(row.time),
            "open": float(row.open),
            "high": float(row.high),
            "low": float(row.low),
            "close": float(row.close),
            "volume": float(row.volume),
        }
        for row in df.itertuples(index=False)
    ]


def generate_mock_chart_data(symbol: str, interval: str, count: int = 30) -> dict:
    """Random-walk hourly candles ending now (count + 1 points)."""
    data = []
    now = datetime.now(timezone.utc)
    base_price = 100.0

    for i in range(count, -1, -1):
        ts = now - timedelta(hours=i)

        base_price = max(base_price + (random.random() - 0.5) * 2, 1)
        open_ = base_price
        close = max(base_price + (random.random() - 0.5), 1)
        high = max(open_, close) + random.random()
        low = max(min(open_, close) - random.random(), 1)

        data.append({
            "time": ts.isoformat(),
            "open": round(open_, 5),
            "high": round(high, 5),
            "low": round(low, 5),
            "close": round(close, 5),
            "volume": random.randint(1000, 10999),
        })

    return {"data": data, "symbol": symbol, "interval": interval}


# --- TwelveData endpoints ---

@router.get("/api/market-data/instruments")
def get_instruments():
    """List supported instruments"""
    return {"success": True, "data": trading_pairs.supported_instruments()}


@router.get("/api/market-data/candles/{symbol}")
def get_candles(
    symbol: str,
    interval: str = "1h",
    outputsize: int = 1000,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    """Historical candles for a symbol"""
    try:
        trading_pairs.normalize_interval(interval)
    except ValueError as e:
        return _error(400, str(e))

    outputsize = max(1, min(outputsize, twelvedata_provider.MAX_OUTPUTSIZE))
    logger.info("Fetching candles for %s interval=%s outputsize=%s", symbol, interval, outputsize)

    try:
        payload = twelvedata_provider.fetch_time_series(symbol, interval, outputsize, start_date, end_date)
    except MarketDataError as e:
        logger.error("Error fetching candles for %s: %s", symbol, e)
        return _error(502, str(e) or "Failed to fetch candle data")

    return {
        "success": True,
        "data": {
            "symbol": symbol,
            "interval": interval,
            "candles": format_candles_for_chart(payload),
            "meta": payload.get("meta"),
        },
    }


@router.get("/api/market-data/quote/{symbol}")
def get_quote(symbol: str):
    """Real-time quote for a symbol"""
    try:
        quote = twelvedata_provider.fetch_quote(symbol)
    except MarketDataError as e:
        logger.error("Error fetching quote for %s: %s", symbol, e)
        return _error(502, str(e) or "Failed to fetch quote")
    return {"success": True, "data": quote}


@router.get("/api/market-data/backtest-data/{symbol}")
def get_backtest_data(
    symbol: str,
    interval: str = "1h",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    """Historical candles over a fixed window, for replaying a session"""
    if not start_date or not end_date:
        return _error(400, "start_date and end_date are required for backtesting")
    try:
        trading_pairs.normalize_interval(interval)
    except ValueError as e:
        return _error(400, str(e))

    logger.info("Fetching backtest data for %s interval=%s %s..%s", symbol, interval, start_date, end_date)
    try:
        payload = twelvedata_provider.fetch_time_series(
            symbol, interval, twelvedata_provider.MAX_OUTPUTSIZE, start_date, end_date
        )
    except MarketDataError as e:
        logger.error("Error fetching backtest data for %s: %s", symbol, e)
        return _error(502, str(e) or "Failed to fetch backtest data")

    candles = format_candles_for_chart(payload)
    return {
        "success": True,
        "data": {
            "symbol": symbol,
            "interval": interval,
            "start_date": start_date,
            "end_date": end_date,
            "candles": candles,
            "count": len(candles),
        },
    }


# --- Legacy endpoints (older chart widgets) ---

@router.get("/api/chart-data")
def get_chart_data(
    symbol: Optional[str] = None,
    interval: Optional[str] = None,
    limit: int = Query(100, ge=1, le=5000),
    current_user: models.User = Depends(auth.get_current_user),
):
    if not symbol or not interval:
        raise HTTPException(status_code=400, detail="Symbol and interval are required")

    if not config.TWELVEDATA_API_KEY:
        logger.info("Using mock chart data for %s, TWELVEDATA_API_KEY not set", symbol)
        return generate_mock_chart_data(symbol, interval, limit)

    try:
        payload = twelvedata_provider.fetch_time_series(symbol, interval, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MarketDataError as e:
        logger.error("Error fetching chart data for %s: %s", symbol, e)
        raise HTTPException(status_code=502, detail="Failed to fetch chart data")

    data = [
        {
            "time": datetime.fromtimestamp(c["time"], tz=timezone.utc).isoformat(),
            "open": c["open"],
            "high": c["high"],
            "low": c["low"],
            "close": c["close"],
            "volume": c["volume"],
        }
        for c in format_candles_for_chart(payload)
    ]
    return {"data": data, "symbol": symbol, "interval": interval}


@router.get("/api/price")
def get_current_price(symbol: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user)):
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol is required")

    timestamp = datetime.now(timezone.utc).isoformat()
    if not config.TWELVEDATA_API_KEY:
        logger.info("Using mock price for %s, TWELVEDATA_API_KEY not set", symbol)
        return {"symbol": symbol, "price": round(100 + (random.random() - 0.5) * 10, 5), "timestamp": timestamp}

    try:
        price_data = twelvedata_provider.fetch_price(symbol)
    except MarketDataError as e:
        logger.error("Error fetching price for %s: %s", symbol, e)
        raise HTTPException(status_code=502, detail="Failed to fetch current price")

    return {"symbol": symbol, "price": price_data["price"], "timestamp": timestamp}
