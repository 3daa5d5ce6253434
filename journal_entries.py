"""
Journal Entries
Written reflections attached to a trade.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

import auth
import models
from database import get_db
from trade_journal import get_user_trade

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/journal-entries", tags=["journal"])


class EntryCreate(BaseModel):
    trade_id: str
    title: str = Field(min_length=1)
    content: str
    emotions: Optional[List[str]] = None
    lessons: Optional[List[str]] = None
    screenshots: Optional[List[str]] = None


class EntryUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    emotions: Optional[List[str]] = None
    lessons: Optional[List[str]] = None
    screenshots: Optional[List[str]] = None


class EntryResponse(BaseModel):
    id: str
    trade_id: str
    user_id: str
    title: str
    content: str
    emotions: Optional[List[str]] = None
    lessons: Optional[List[str]] = None
    screenshots: Optional[List[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def get_user_entry(db: Session, entry_id: str, user_id: str) -> models.JournalEntry:
    entry = db.query(models.JournalEntry).filter(
        models.JournalEntry.id == entry_id,
        models.JournalEntry.user_id == user_id,
    ).first()
    if not entry:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@router.get("", response_model=List[EntryResponse])
def list_entries(trade_id: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    query = db.query(models.JournalEntry).filter(models.JournalEntry.user_id == current_user.id)
    if trade_id:
        query = query.filter(models.JournalEntry.trade_id == trade_id)
    return query.order_by(desc(models.JournalEntry.created_at)).all()


@router.post("", response_model=EntryResponse, status_code=201)
def create_entry(entry_in: EntryCreate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    get_user_trade(db, entry_in.trade_id, current_user.id)

    entry = models.JournalEntry(user_id=current_user.id, **entry_in.model_dump())
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info("Journal entry %s added to trade %s", entry.id, entry.trade_id)
    return entry


@router.get("/{entry_id}", response_model=EntryResponse)
def get_entry(entry_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return get_user_entry(db, entry_id, current_user.id)


@router.put("/{entry_id}", response_model=EntryResponse)
def update_entry(entry_id: str, entry_update: EntryUpdate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    entry = get_user_entry(db, entry_id, current_user.id)

    update_data = entry_update.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        if value is None and key in ("title", "content"):
            continue
        setattr(entry, key, value)

    db.commit()
    db.refresh(entry)
    return entry


@router.delete("/{entry_id}")
def delete_entry(entry_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    entry = get_user_entry(db, entry_id, current_user.id)
    db.delete(entry)
    db.commit()
    return {"message": "Entry deleted successfully"}
