"""
Trade Journal (ORM Version)
Trades executed inside trading sessions, with P&L bookkeeping and CSV import/export.
"""
import io
import logging
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd
from fastapi import APIRouter, HTTPException, Depends, UploadFile, File, Form
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import desc
from sqlalchemy.orm import Session

import auth
import models
import trading_pairs
from database import get_db
from trading_sessions import get_user_session, refresh_session_balance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trades", tags=["trades"])

TRADE_TYPES = ("buy", "sell")
EXECUTION_TYPES = ("market", "limit", "stop")
TRADE_STATUSES = ("open", "closed", "cancelled")

CSV_COLUMNS = [
    "pair", "type", "execution_type", "entry_price", "exit_price", "quantity",
    "stop_loss", "take_profit", "profit_loss", "status", "entry_time", "exit_time",
    "notes", "tags",
]


def _choice(value, allowed, label):
    if value is None:
        return value
    value = value.strip().lower()
    if value not in allowed:
        raise ValueError(f"{label} must be one of: {', '.join(allowed)}")
    return value


def _split_tags(value):
    if isinstance(value, str):
        value = [t for t in (s.strip() for s in value.replace(";", ",").split(",")) if t]
    return value


# Pydantic Models
class TradeCreate(BaseModel):
    session_id: str
    pair: Optional[str] = None
    type: str
    execution_type: str = "market"
    entry_price: float = Field(gt=0)
    exit_price: Optional[float] = Field(default=None, gt=0)
    quantity: float = Field(gt=0)
    stop_loss: Optional[float] = Field(default=None, gt=0)
    take_profit: Optional[float] = Field(default=None, gt=0)
    profit_loss: Optional[float] = None
    status: str = "open"
    entry_time: datetime
    exit_time: Optional[datetime] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("type")
    @classmethod
    def check_type(cls, v):
        return _choice(v, TRADE_TYPES, "type")

    @field_validator("execution_type")
    @classmethod
    def check_execution_type(cls, v):
        return _choice(v, EXECUTION_TYPES, "execution_type")

    @field_validator("status")
    @classmethod
    def check_status(cls, v):
        return _choice(v, TRADE_STATUSES, "status")

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v):
        return _split_tags(v)


class TradeUpdate(BaseModel):
    session_id: Optional[str] = None
    pair: Optional[str] = None
    type: Optional[str] = None
    execution_type: Optional[str] = None
    entry_price: Optional[float] = Field(default=None, gt=0)
    exit_price: Optional[float] = Field(default=None, gt=0)
    quantity: Optional[float] = Field(default=None, gt=0)
    stop_loss: Optional[float] = Field(default=None, gt=0)
    take_profit: Optional[float] = Field(default=None, gt=0)
    profit_loss: Optional[float] = None
    status: Optional[str] = None
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("type")
    @classmethod
    def check_type(cls, v):
        return _choice(v, TRADE_TYPES, "type")

    @field_validator("execution_type")
    @classmethod
    def check_execution_type(cls, v):
        return _choice(v, EXECUTION_TYPES, "execution_type")

    @field_validator("status")
    @classmethod
    def check_status(cls, v):
        return _choice(v, TRADE_STATUSES, "status")

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v):
        return _split_tags(v)


class TradeClose(BaseModel):
    exit_price: float = Field(gt=0)
    exit_time: Optional[datetime] = None


class TradeResponse(BaseModel):
    id: str
    session_id: str
    user_id: str
    pair: str
    type: str
    execution_type: str
    entry_price: float
    exit_price: Optional[float] = None
    quantity: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    profit_loss: Optional[float] = None
    status: str
    entry_time: datetime
    exit_time: Optional[datetime] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Fields that may be set back to null on update
NULLABLE_FIELDS = ("exit_price", "stop_loss", "take_profit", "profit_loss", "exit_time", "notes", "tags")


def compute_profit_loss(trade_type: str, entry_price: float, exit_price: float, quantity: float) -> float:
    """Realized P&L: long gains when price rises, short gains when it falls."""
    if trade_type == "buy":
        pnl = (exit_price - entry_price) * quantity
    else:
        pnl = (entry_price - exit_price) * quantity
    return round(pnl, 2)


def _settle(trade: models.Trade):
    """Fill in P&L and exit time for closed trades that lack them."""
    if trade.status != "closed":
        return
    if trade.exit_time is None:
        trade.exit_time = datetime.now(timezone.utc)
    if trade.profit_loss is None and trade.exit_price is not None:
        trade.profit_loss = compute_profit_loss(trade.type, trade.entry_price, trade.exit_price, trade.quantity)


def get_user_trade(db: Session, trade_id: str, user_id: str) -> models.Trade:
    trade = db.query(models.Trade).filter(
        models.Trade.id == trade_id,
        models.Trade.user_id == user_id,
    ).first()
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade


def create_trade_record(db: Session, user: models.User, trade_in: TradeCreate) -> models.Trade:
    session = get_user_session(db, trade_in.session_id, user.id)
    data = trade_in.model_dump()
    data["pair"] = trading_pairs.normalize_code(trade_in.pair) if trade_in.pair else session.pair

    trade = models.Trade(user_id=user.id, **data)
    _settle(trade)
    db.add(trade)
    refresh_session_balance(db, session)
    return trade


# --- API Endpoints ---

@router.get("", response_model=List[TradeResponse])
def list_trades(session_id: Optional[str] = None, status: Optional[str] = None, pair: Optional[str] = None,
                current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Trades for the current user, newest entry first"""
    query = db.query(models.Trade).filter(models.Trade.user_id == current_user.id)
    if session_id:
        query = query.filter(models.Trade.session_id == session_id)
    if status:
        query = query.filter(models.Trade.status == status.lower())
    if pair:
        query = query.filter(models.Trade.pair == trading_pairs.normalize_code(pair))
    return query.order_by(desc(models.Trade.entry_time)).all()


@router.post("", response_model=TradeResponse, status_code=201)
def create_trade(trade_in: TradeCreate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    trade = create_trade_record(db, current_user, trade_in)
    db.commit()
    db.refresh(trade)
    logger.info("Trade %s logged in session %s", trade.id, trade.session_id)
    return trade


@router.get("/template")
def download_template():
    """CSV template for bulk import"""
    template = pd.DataFrame(
        [["EURUSD", "buy", "market", "1.0850", "1.0900", "1000", "1.0800", "1.0950", "",
          "closed", "2024-01-02T09:30:00", "2024-01-02T15:00:00", "Example trade", "breakout;london"]],
        columns=CSV_COLUMNS,
    )
    response = Response(content=template.to_csv(index=False), media_type="text/csv")
    response.headers["Content-Disposition"] = "attachment; filename=trades_template.csv"
    return response


@router.get("/export")
def export_trades(session_id: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Download the user's trades as CSV"""
    query = db.query(models.Trade).filter(models.Trade.user_id == current_user.id)
    if session_id:
        query = query.filter(models.Trade.session_id == session_id)
    trades = query.order_by(models.Trade.entry_time).all()

    rows = []
    for t in trades:
        rows.append({
            "id": t.id,
            "session_id": t.session_id,
            "pair": t.pair,
            "type": t.type,
            "execution_type": t.execution_type,
            "entry_price": t.entry_price,
            "exit_price": t.exit_price,
            "quantity": t.quantity,
            "stop_loss": t.stop_loss,
            "take_profit": t.take_profit,
            "profit_loss": t.profit_loss,
            "status": t.status,
            "entry_time": t.entry_time.isoformat() if t.entry_time else None,
            "exit_time": t.exit_time.isoformat() if t.exit_time else None,
            "notes": t.notes,
            "tags": ";".join(t.tags or []),
        })
    df = pd.DataFrame(rows, columns=["id", "session_id"] + CSV_COLUMNS)

    response = Response(content=df.to_csv(index=False), media_type="text/csv")
    response.headers["Content-Disposition"] = "attachment; filename=trades.csv"
    return response


@router.post("/import")
async def import_trades(session_id: str = Form(...), file: UploadFile = File(...),
                        current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """
    Bulk import trades from CSV into one session.
    Columns: pair, type, execution_type, entry_price, exit_price, quantity, stop_loss,
    take_profit, profit_loss, status, entry_time, exit_time, notes, tags (';' separated)
    """
    get_user_session(db, session_id, current_user.id)

    raw = await file.read()
    try:
        df = pd.read_csv(io.BytesIO(raw), dtype=str, keep_default_na=False)
    except (ValueError, pd.errors.ParserError) as e:
        raise HTTPException(status_code=400, detail=f"Could not parse CSV: {e}")

    df.columns = [c.strip().lower() for c in df.columns]
    missing = {"type", "entry_price", "quantity", "entry_time"} - set(df.columns)
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing columns: {', '.join(sorted(missing))}")

    imported = 0
    errors = []
    for index, row in enumerate(df.to_dict(orient="records"), start=2):  # row 1 is the header
        values = {k: (v.strip() or None) for k, v in row.items() if k in CSV_COLUMNS}
        values["session_id"] = session_id
        values = {k: v for k, v in values.items() if v is not None}
        try:
            trade_in = TradeCreate(**values)
        except ValidationError as e:
            errors.append({"row": index, "error": "; ".join(err["msg"] for err in e.errors())})
            continue
        create_trade_record(db, current_user, trade_in)
        imported += 1

    db.commit()
    logger.info("Imported %s trades (%s skipped) into session %s", imported, len(errors), session_id)
    return {"imported": imported, "skipped": len(errors), "errors": errors}


@router.get("/{trade_id}", response_model=TradeResponse)
def get_trade(trade_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return get_user_trade(db, trade_id, current_user.id)


@router.put("/{trade_id}", response_model=TradeResponse)
def update_trade(trade_id: str, trade_update: TradeUpdate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Update specific fields of a trade (User Scoped)"""
    trade = get_user_trade(db, trade_id, current_user.id)
    old_session = trade.session

    changes = {
        k: v for k, v in trade_update.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_FIELDS
    }
    if "session_id" in changes:
        get_user_session(db, changes["session_id"], current_user.id)
    if changes.get("pair"):
        changes["pair"] = trading_pairs.normalize_code(changes["pair"])

    for field, value in changes.items():
        setattr(trade, field, value)

    # Recompute P&L when price inputs changed and no explicit value was sent
    price_inputs = {"type", "entry_price", "exit_price", "quantity", "status"}
    if "profit_loss" not in changes and price_inputs & changes.keys() and trade.exit_price is not None:
        trade.profit_loss = None
    _settle(trade)

    db.flush()
    db.refresh(trade)
    refresh_session_balance(db, trade.session)
    if old_session is not None and old_session.id != trade.session_id:
        refresh_session_balance(db, old_session)

    db.commit()
    db.refresh(trade)
    return trade


@router.post("/{trade_id}/close", response_model=TradeResponse)
def close_trade(trade_id: str, close_in: TradeClose, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Close an open trade at the given price and book its P&L"""
    trade = get_user_trade(db, trade_id, current_user.id)
    if trade.status != "open":
        raise HTTPException(status_code=400, detail=f"Trade is {trade.status}, only open trades can be closed")

    trade.exit_price = close_in.exit_price
    trade.exit_time = close_in.exit_time or datetime.now(timezone.utc)
    trade.status = "closed"
    trade.profit_loss = compute_profit_loss(trade.type, trade.entry_price, trade.exit_price, trade.quantity)

    refresh_session_balance(db, trade.session)
    db.commit()
    db.refresh(trade)
    logger.info("Trade %s closed at %s, P&L %s", trade.id, trade.exit_price, trade.profit_loss)
    return trade


@router.delete("/{trade_id}")
def delete_trade(trade_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    trade = get_user_trade(db, trade_id, current_user.id)
    session = trade.session
    db.delete(trade)
    refresh_session_balance(db, session)
    db.commit()
    return {"message": "Trade deleted successfully"}
