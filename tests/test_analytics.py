import pytest

from analytics import PROFIT_FACTOR_CAP, compute_performance


def test_empty_performance():
    result = compute_performance([])
    assert result["total_trades"] == 0
    assert result["win_rate"] == 0.0
    assert result["profit_factor"] == 0.0
    assert result["max_drawdown"] == 0.0


def test_mixed_results():
    result = compute_performance([100, -50, 200, -100, 50])
    assert result["total_return"] == 200.0
    assert result["total_trades"] == 5
    assert result["winning_trades"] == 3
    assert result["losing_trades"] == 2
    assert result["win_rate"] == 60.0
    assert result["profit_factor"] == 2.33
    assert result["average_win"] == pytest.approx(116.67)
    assert result["average_loss"] == 75.0
    assert result["best_trade"] == 200.0
    assert result["worst_trade"] == -100.0
    # running totals 100, 50, 250, 150, 200 -> worst drop 250 -> 150
    assert result["max_drawdown"] == 100.0


def test_drawdown_counts_initial_loss():
    assert compute_performance([-30, 10])["max_drawdown"] == 30.0


def test_profit_factor_without_losses():
    assert compute_performance([10, 20])["profit_factor"] == PROFIT_FACTOR_CAP
    assert compute_performance([0, -5])["profit_factor"] == 0.0


def _closed(client, headers, session_id, pair, entry, exit_, exit_time):
    response = client.post("/api/trades", json={
        "session_id": session_id,
        "pair": pair,
        "type": "buy",
        "entry_price": entry,
        "exit_price": exit_,
        "quantity": 1,
        "status": "closed",
        "entry_time": exit_time.replace("T12", "T08"),
        "exit_time": exit_time,
    }, headers=headers)
    assert response.status_code == 201


@pytest.fixture
def closed_trades(client, auth_headers, trading_session):
    sid = trading_session["id"]
    # inserted out of order on purpose
    _closed(client, auth_headers, sid, "EURUSD", 100, 90, "2024-01-03T12:00:00")
    _closed(client, auth_headers, sid, "EURUSD", 100, 150, "2024-01-02T12:00:00")
    _closed(client, auth_headers, sid, "XAUUSD", 100, 120, "2024-01-03T12:00:00")
    client.post("/api/trades", json={
        "session_id": sid, "type": "buy", "entry_price": 1, "quantity": 1,
        "entry_time": "2024-01-04T08:00:00",
    }, headers=auth_headers)
    return sid


def test_performance_endpoint(client, auth_headers, closed_trades):
    result = client.get("/api/analytics/performance", headers=auth_headers).json()
    assert result["total_trades"] == 3
    assert result["total_return"] == 60.0
    assert result["max_drawdown"] == 10.0

    scoped = client.get("/api/analytics/performance", params={"session_id": "other"}, headers=auth_headers).json()
    assert scoped["total_trades"] == 0


def test_equity_curve_in_exit_order(client, auth_headers, closed_trades):
    curve = client.get("/api/analytics/equity-curve", headers=auth_headers).json()
    assert curve["equity"][0] == 50.0
    assert curve["equity"][-1] == 60.0
    assert curve["dates"][0].startswith("2024-01-02")
    assert len(curve["dates"]) == 3


def test_calendar(client, auth_headers, closed_trades):
    days = client.get("/api/analytics/calendar", headers=auth_headers).json()
    assert days == [
        {"date": "2024-01-02", "pnl": 50.0, "count": 1},
        {"date": "2024-01-03", "pnl": 10.0, "count": 2},
    ]


def test_by_pair(client, auth_headers, closed_trades):
    rows = client.get("/api/analytics/by-pair", headers=auth_headers).json()
    assert rows == [
        {"pair": "EURUSD", "trades": 2, "total_pnl": 40.0, "win_rate": 50.0},
        {"pair": "XAUUSD", "trades": 1, "total_pnl": 20.0, "win_rate": 100.0},
    ]


def test_analytics_are_user_scoped(client, other_headers, closed_trades):
    assert client.get("/api/analytics/performance", headers=other_headers).json()["total_trades"] == 0
    assert client.get("/api/analytics/calendar", headers=other_headers).json() == []
