"""
Trading Sessions
A session is one backtest/practice run on a pair with its own balance.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import desc, func
from sqlalchemy.orm import Session

import analytics
import auth
import models
import trading_pairs
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trading-sessions", tags=["trading-sessions"])


# Pydantic Models
class SessionCreate(BaseModel):
    name: str = Field(min_length=1)
    pair: str = Field(min_length=1)
    starting_balance: float = Field(gt=0)
    start_date: datetime
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("pair")
    @classmethod
    def normalize_pair(cls, v):
        return trading_pairs.normalize_code(v)


class SessionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    pair: Optional[str] = None
    starting_balance: Optional[float] = Field(default=None, gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("pair")
    @classmethod
    def normalize_pair(cls, v):
        return trading_pairs.normalize_code(v) if v is not None else v


class SessionResponse(BaseModel):
    id: str
    user_id: str
    name: str
    pair: str
    starting_balance: float
    current_balance: float
    start_date: datetime
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# --- Helpers ---

def get_user_session(db: Session, session_id: str, user_id: str) -> models.TradingSession:
    session = db.query(models.TradingSession).filter(
        models.TradingSession.id == session_id,
        models.TradingSession.user_id == user_id,
    ).first()
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def refresh_session_balance(db: Session, session: models.TradingSession):
    """current_balance = starting_balance + realized P&L of the session's closed trades."""
    db.flush()
    realized = db.query(func.coalesce(func.sum(models.Trade.profit_loss), 0.0)).filter(
        models.Trade.session_id == session.id,
        models.Trade.status == "closed",
    ).scalar()
    session.current_balance = round(session.starting_balance + float(realized or 0), 2)


# --- API Endpoints ---

@router.get("", response_model=List[SessionResponse])
def list_sessions(current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """All sessions for the current user, newest first"""
    return db.query(models.TradingSession).filter(
        models.TradingSession.user_id == current_user.id
    ).order_by(desc(models.TradingSession.created_at)).all()


@router.post("", response_model=SessionResponse, status_code=201)
def create_session(session_in: SessionCreate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    session = models.TradingSession(
        user_id=current_user.id,
        name=session_in.name,
        pair=session_in.pair,
        starting_balance=session_in.starting_balance,
        current_balance=session_in.starting_balance,
        start_date=session_in.start_date,
        description=session_in.description,
        is_active=True,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("Created trading session %s for user %s", session.id, current_user.id)
    return session


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return get_user_session(db, session_id, current_user.id)


@router.put("/{session_id}", response_model=SessionResponse)
def update_session(session_id: str, updates: SessionUpdate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    session = get_user_session(db, session_id, current_user.id)

    # Only end_date and description may be cleared
    changes = {
        k: v for k, v in updates.model_dump(exclude_unset=True).items()
        if v is not None or k in ("end_date", "description")
    }
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise HTTPException(status_code=400, detail="Name is required")
    for field, value in changes.items():
        setattr(session, field, value)

    if "starting_balance" in changes:
        refresh_session_balance(db, session)

    db.commit()
    db.refresh(session)
    return session


@router.delete("/{session_id}")
def delete_session(session_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    session = get_user_session(db, session_id, current_user.id)
    db.delete(session)
    db.commit()
    return {"message": "Session deleted successfully"}


@router.get("/{session_id}/summary")
def get_session_summary(session_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Session plus performance over its closed trades"""
    session = get_user_session(db, session_id, current_user.id)
    trades = analytics.closed_trades(db, current_user.id, session.id)
    open_count = db.query(models.Trade).filter(
        models.Trade.session_id == session.id,
        models.Trade.status == "open",
    ).count()

    performance = analytics.compute_performance(t.profit_loss for t in trades)
    return {
        "session": SessionResponse.model_validate(session).model_dump(),
        "performance": performance,
        "open_trades": open_count,
        "return_pct": round((session.current_balance - session.starting_balance) / session.starting_balance * 100, 2),
    }
