"""
Performance Analytics
Win rate, profit factor and drawdown over a user's closed trades.
"""
from collections import OrderedDict
from datetime import date, datetime
from typing import Iterable, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import auth
import models
from database import get_db

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

# Reported instead of infinity when there are wins and no losses
PROFIT_FACTOR_CAP = 999.0

EMPTY_PERFORMANCE = {
    "total_return": 0.0,
    "win_rate": 0.0,
    "profit_factor": 0.0,
    "max_drawdown": 0.0,
    "total_trades": 0,
    "winning_trades": 0,
    "losing_trades": 0,
    "average_win": 0.0,
    "average_loss": 0.0,
    "best_trade": 0.0,
    "worst_trade": 0.0,
}


def compute_performance(profits: Iterable[float]) -> dict:
    """
    Summary statistics for an ordered sequence of realized P&L values.

    Drawdown is measured on the running total with the peak starting at 0,
    so a first losing trade already counts as drawdown.
    """
    profits = [float(p or 0) for p in profits]
    if not profits:
        return dict(EMPTY_PERFORMANCE)

    total_trades = len(profits)
    wins = [p for p in profits if p > 0]
    losses = [p for p in profits if p < 0]

    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = PROFIT_FACTOR_CAP if gross_profit > 0 else 0.0

    peak = 0.0
    running_total = 0.0
    max_drawdown = 0.0
    for p in profits:
        running_total += p
        peak = max(peak, running_total)
        max_drawdown = max(max_drawdown, peak - running_total)

    return {
        "total_return": round(sum(profits), 2),
        "win_rate": round(len(wins) / total_trades * 100, 2),
        "profit_factor": round(profit_factor, 2),
        "max_drawdown": round(max_drawdown, 2),
        "total_trades": total_trades,
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "average_win": round(gross_profit / len(wins), 2) if wins else 0.0,
        "average_loss": round(gross_loss / len(losses), 2) if losses else 0.0,
        "best_trade": round(max(profits), 2),
        "worst_trade": round(min(profits), 2),
    }


def closed_trades(db: Session, user_id: str, session_id: Optional[str] = None) -> List[models.Trade]:
    """Closed trades in realization order (exit time, then entry time)."""
    query = db.query(models.Trade).filter(
        models.Trade.user_id == user_id,
        models.Trade.status == "closed",
    )
    if session_id:
        query = query.filter(models.Trade.session_id == session_id)
    trades = query.all()
    return sorted(trades, key=lambda t: (_sort_key(t.exit_time), _sort_key(t.entry_time)))


def _sort_key(value):
    if value is None:
        return datetime.max
    # SQLite hands back naive datetimes, Postgres aware ones
    return value.replace(tzinfo=None) if isinstance(value, datetime) else value


def _day(value) -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')
    return str(value)[:10]


@router.get("/performance")
def get_performance(session_id: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Performance metrics over closed trades (User Scoped)"""
    trades = closed_trades(db, current_user.id, session_id)
    return compute_performance(t.profit_loss for t in trades)


@router.get("/equity-curve")
def get_equity_curve(session_id: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Cumulative P&L after each closed trade"""
    dates = []
    equity = []
    running_total = 0.0
    for t in closed_trades(db, current_user.id, session_id):
        if t.exit_time is None:
            continue
        running_total += t.profit_loss or 0
        dates.append(t.exit_time.isoformat())
        equity.append(round(running_total, 2))
    return {"dates": dates, "equity": equity}


@router.get("/calendar")
def get_calendar_data(current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Daily P&L for calendar visualization"""
    days = OrderedDict()
    for t in closed_trades(db, current_user.id):
        if t.exit_time is None:
            continue
        day = days.setdefault(_day(t.exit_time), {"pnl": 0.0, "count": 0})
        day["pnl"] += t.profit_loss or 0
        day["count"] += 1

    return [
        {"date": d, "pnl": round(v["pnl"], 2), "count": v["count"]}
        for d, v in sorted(days.items())
    ]


@router.get("/by-pair")
def get_pair_breakdown(current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Trade count, total P&L and win rate per pair"""
    grouped = {}
    for t in closed_trades(db, current_user.id):
        grouped.setdefault(t.pair, []).append(t.profit_loss or 0)

    result = []
    for pair, profits in sorted(grouped.items()):
        wins = sum(1 for p in profits if p > 0)
        result.append({
            "pair": pair,
            "trades": len(profits),
            "total_pnl": round(sum(profits), 2),
            "win_rate": round(wins / len(profits) * 100, 2),
        })
    return result
