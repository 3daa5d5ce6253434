import pytest

from trade_journal import compute_profit_loss


def _trade(session_id, **overrides):
    payload = {
        "session_id": session_id,
        "type": "buy",
        "execution_type": "market",
        "entry_price": 1.1,
        "quantity": 1000,
        "entry_time": "2024-01-02T09:00:00",
    }
    payload.update(overrides)
    return payload


@pytest.mark.parametrize("trade_type,entry,exit_,qty,expected", [
    ("buy", 100, 110, 2, 20.0),
    ("buy", 100, 90, 2, -20.0),
    ("sell", 100, 90, 2, 20.0),
    ("sell", 1.2345, 1.2400, 10000, -55.0),
])
def test_compute_profit_loss(trade_type, entry, exit_, qty, expected):
    assert compute_profit_loss(trade_type, entry, exit_, qty) == expected


def test_create_open_trade(client, auth_headers, trading_session):
    response = client.post("/api/trades", json=_trade(trading_session["id"], tags=["breakout"]), headers=auth_headers)
    assert response.status_code == 201
    trade = response.json()
    assert trade["status"] == "open"
    assert trade["pair"] == "EURUSD"
    assert trade["profit_loss"] is None
    assert trade["tags"] == ["breakout"]
    assert isinstance(trade["entry_price"], float)


def test_create_closed_trade_computes_pnl(client, auth_headers, trading_session):
    response = client.post("/api/trades", json=_trade(
        trading_session["id"], type="SELL", status="closed", exit_price=1.09,
        exit_time="2024-01-02T10:00:00",
    ), headers=auth_headers)
    assert response.status_code == 201
    trade = response.json()
    assert trade["type"] == "sell"
    assert trade["profit_loss"] == 10.0


def test_create_trade_validation(client, auth_headers, trading_session):
    response = client.post("/api/trades", json=_trade(
        trading_session["id"], type="hold", entry_price=-1, quantity=0,
    ), headers=auth_headers)
    assert response.status_code == 400
    fields = {err["loc"][-1] for err in response.json()["errors"]}
    assert {"type", "entry_price", "quantity"} <= fields


def test_trade_requires_own_session(client, other_headers, trading_session):
    response = client.post("/api/trades", json=_trade(trading_session["id"]), headers=other_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Session not found"


def test_list_trades_newest_first(client, auth_headers, trading_session):
    sid = trading_session["id"]
    client.post("/api/trades", json=_trade(sid, entry_time="2024-01-01T09:00:00"), headers=auth_headers)
    client.post("/api/trades", json=_trade(sid, entry_time="2024-01-03T09:00:00"), headers=auth_headers)

    trades = client.get("/api/trades", params={"session_id": sid}, headers=auth_headers).json()
    assert [t["entry_time"][:10] for t in trades] == ["2024-01-03", "2024-01-01"]
    assert client.get("/api/trades", params={"session_id": "nope"}, headers=auth_headers).json() == []


def test_get_trade_is_user_scoped(client, auth_headers, other_headers, trading_session):
    trade = client.post("/api/trades", json=_trade(trading_session["id"]), headers=auth_headers).json()
    assert client.get(f"/api/trades/{trade['id']}", headers=auth_headers).status_code == 200
    response = client.get(f"/api/trades/{trade['id']}", headers=other_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Trade not found"


def test_close_trade(client, auth_headers, trading_session):
    trade = client.post("/api/trades", json=_trade(trading_session["id"]), headers=auth_headers).json()

    response = client.post(f"/api/trades/{trade['id']}/close", json={
        "exit_price": 1.105, "exit_time": "2024-01-02T15:00:00",
    }, headers=auth_headers)
    assert response.status_code == 200
    closed = response.json()
    assert closed["status"] == "closed"
    assert closed["profit_loss"] == 5.0
    assert closed["exit_time"].startswith("2024-01-02T15:00:00")

    session = client.get(f"/api/trading-sessions/{trading_session['id']}", headers=auth_headers).json()
    assert session["current_balance"] == 10005.0

    again = client.post(f"/api/trades/{trade['id']}/close", json={"exit_price": 1.2}, headers=auth_headers)
    assert again.status_code == 400


def test_update_trade_recomputes_pnl(client, auth_headers, trading_session):
    trade = client.post("/api/trades", json=_trade(
        trading_session["id"], status="closed", exit_price=1.12, exit_time="2024-01-02T10:00:00",
    ), headers=auth_headers).json()
    assert trade["profit_loss"] == 20.0

    response = client.put(f"/api/trades/{trade['id']}", json={"quantity": 500, "notes": "half size"}, headers=auth_headers)
    assert response.status_code == 200
    updated = response.json()
    assert updated["profit_loss"] == 10.0
    assert updated["notes"] == "half size"

    session = client.get(f"/api/trading-sessions/{trading_session['id']}", headers=auth_headers).json()
    assert session["current_balance"] == 10010.0


def test_update_trade_explicit_pnl_wins(client, auth_headers, trading_session):
    trade = client.post("/api/trades", json=_trade(trading_session["id"]), headers=auth_headers).json()
    response = client.put(f"/api/trades/{trade['id']}", json={
        "status": "closed", "exit_price": 1.2, "profit_loss": 42.5,
    }, headers=auth_headers)
    data = response.json()
    assert data["profit_loss"] == 42.5
    assert data["exit_time"] is not None


def test_delete_trade_restores_balance(client, auth_headers, trading_session):
    trade = client.post("/api/trades", json=_trade(
        trading_session["id"], status="closed", exit_price=1.12, exit_time="2024-01-02T10:00:00",
    ), headers=auth_headers).json()

    response = client.delete(f"/api/trades/{trade['id']}", headers=auth_headers)
    assert response.json() == {"message": "Trade deleted successfully"}
    assert client.get(f"/api/trades/{trade['id']}", headers=auth_headers).status_code == 404

    session = client.get(f"/api/trading-sessions/{trading_session['id']}", headers=auth_headers).json()
    assert session["current_balance"] == 10000.0


def test_export_csv(client, auth_headers, trading_session):
    client.post("/api/trades", json=_trade(trading_session["id"], tags=["a", "b"]), headers=auth_headers)

    response = client.get("/api/trades/export", headers=auth_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("id,session_id,pair,type")
    assert len(lines) == 2
    assert "EURUSD" in lines[1]
    assert "a;b" in lines[1]


def test_template_csv(client):
    response = client.get("/api/trades/template")
    assert response.status_code == 200
    header = response.text.splitlines()[0]
    assert header.startswith("pair,type,execution_type,entry_price")


def test_import_csv(client, auth_headers, trading_session):
    csv_body = (
        "pair,type,entry_price,exit_price,quantity,status,entry_time,exit_time,tags\n"
        "GBPUSD,buy,1.25,1.26,1000,closed,2024-01-02T09:00:00,2024-01-02T11:00:00,london;trend\n"
        "EURUSD,sell,1.10,,500,open,2024-01-03T09:00:00,,\n"
        "EURUSD,hold,1.10,,500,open,2024-01-03T09:00:00,,\n"
    )
    response = client.post(
        "/api/trades/import",
        data={"session_id": trading_session["id"]},
        files={"file": ("trades.csv", csv_body, "text/csv")},
        headers=auth_headers,
    )
    assert response.status_code == 200
    result = response.json()
    assert result["imported"] == 2
    assert result["skipped"] == 1
    assert result["errors"][0]["row"] == 4

    trades = client.get("/api/trades", headers=auth_headers).json()
    gbp = next(t for t in trades if t["pair"] == "GBPUSD")
    assert gbp["profit_loss"] == 10.0
    assert gbp["tags"] == ["london", "trend"]


def test_import_missing_columns(client, auth_headers, trading_session):
    response = client.post(
        "/api/trades/import",
        data={"session_id": trading_session["id"]},
        files={"file": ("trades.csv", "pair,notes\nEURUSD,hi\n", "text/csv")},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert "entry_price" in response.json()["detail"]
