"""
Notebook
Free-form notes, optionally grouped into colored folders.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy import desc
from sqlalchemy.orm import Session

import auth
import models
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notebook", tags=["notebook"])

DEFAULT_FOLDER_COLOR = "#3b82f6"


def _clean_tags(tags):
    if tags is None:
        return None
    seen = []
    for t in tags:
        t = t.strip()
        if t and t not in seen:
            seen.append(t)
    return seen


# Pydantic Models
class FolderCreate(BaseModel):
    name: str
    color: Optional[str] = DEFAULT_FOLDER_COLOR

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Folder name is required")
        return v


class FolderUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Folder name is required")
        return v


class FolderResponse(BaseModel):
    id: str
    name: str
    color: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NoteCreate(BaseModel):
    title: str
    content: str = ""
    folder_id: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return _clean_tags(v)


class NoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    folder_id: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return _clean_tags(v)


class NoteResponse(BaseModel):
    id: str
    folder_id: Optional[str] = None
    title: str
    content: str
    tags: Optional[List[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# --- Helpers ---

def get_user_folder(db: Session, folder_id: str, user_id: str) -> models.NotebookFolder:
    folder = db.query(models.NotebookFolder).filter(
        models.NotebookFolder.id == folder_id,
        models.NotebookFolder.user_id == user_id,
    ).first()
    if not folder:
        raise HTTPException(status_code=404, detail="Folder not found")
    return folder


def get_user_note(db: Session, note_id: str, user_id: str) -> models.NotebookNote:
    note = db.query(models.NotebookNote).filter(
        models.NotebookNote.id == note_id,
        models.NotebookNote.user_id == user_id,
    ).first()
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


def _matches(note: models.NotebookNote, search: str) -> bool:
    needle = search.lower()
    haystack = [note.title or "", note.content or ""] + list(note.tags or [])
    return any(needle in s.lower() for s in haystack)


# --- Folders ---

@router.get("/folders", response_model=List[FolderResponse])
def list_folders(current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return db.query(models.NotebookFolder).filter(
        models.NotebookFolder.user_id == current_user.id
    ).order_by(models.NotebookFolder.created_at, models.NotebookFolder.name).all()


@router.post("/folders", response_model=FolderResponse, status_code=201)
def create_folder(folder_in: FolderCreate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    folder = models.NotebookFolder(
        user_id=current_user.id,
        name=folder_in.name,
        color=folder_in.color or DEFAULT_FOLDER_COLOR,
    )
    db.add(folder)
    db.commit()
    db.refresh(folder)
    return folder


@router.put("/folders/{folder_id}", response_model=FolderResponse)
def update_folder(folder_id: str, folder_update: FolderUpdate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    folder = get_user_folder(db, folder_id, current_user.id)
    for key, value in folder_update.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(folder, key, value)
    db.commit()
    db.refresh(folder)
    return folder


@router.delete("/folders/{folder_id}")
def delete_folder(folder_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Delete a folder; its notes move to the top level"""
    folder = get_user_folder(db, folder_id, current_user.id)
    db.query(models.NotebookNote).filter(
        models.NotebookNote.folder_id == folder.id
    ).update({models.NotebookNote.folder_id: None}, synchronize_session=False)
    db.delete(folder)
    db.commit()
    return {"message": "Folder deleted successfully"}


# --- Notes ---

@router.get("/notes", response_model=List[NoteResponse])
def list_notes(folder_id: Optional[str] = None, tag: Optional[str] = None, search: Optional[str] = None,
               current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Notes, most recently edited first"""
    query = db.query(models.NotebookNote).filter(models.NotebookNote.user_id == current_user.id)
    if folder_id:
        query = query.filter(models.NotebookNote.folder_id == folder_id)
    notes = query.order_by(desc(models.NotebookNote.updated_at), desc(models.NotebookNote.created_at)).all()

    # JSON tag columns are filtered here to stay portable across SQLite and Postgres
    if tag:
        notes = [n for n in notes if tag in (n.tags or [])]
    if search and search.strip():
        notes = [n for n in notes if _matches(n, search.strip())]
    return notes


@router.get("/tags")
def list_tags(current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    tags = set()
    for (note_tags,) in db.query(models.NotebookNote.tags).filter(models.NotebookNote.user_id == current_user.id):
        tags.update(note_tags or [])
    return sorted(tags)


@router.post("/notes", response_model=NoteResponse, status_code=201)
def create_note(note_in: NoteCreate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if note_in.folder_id:
        get_user_folder(db, note_in.folder_id, current_user.id)

    note = models.NotebookNote(user_id=current_user.id, **note_in.model_dump())
    db.add(note)
    db.commit()
    db.refresh(note)
    return note


@router.get("/notes/{note_id}", response_model=NoteResponse)
def get_note(note_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return get_user_note(db, note_id, current_user.id)


@router.put("/notes/{note_id}", response_model=NoteResponse)
def update_note(note_id: str, note_update: NoteUpdate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    note = get_user_note(db, note_id, current_user.id)

    changes = note_update.model_dump(exclude_unset=True)
    if changes.get("folder_id"):
        get_user_folder(db, changes["folder_id"], current_user.id)
    for key, value in changes.items():
        # folder_id and tags may be cleared, the rest only replaced
        if value is None and key not in ("folder_id", "tags"):
            continue
        setattr(note, key, value)

    db.commit()
    db.refresh(note)
    return note


@router.delete("/notes/{note_id}")
def delete_note(note_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    note = get_user_note(db, note_id, current_user.id)
    db.delete(note)
    db.commit()
    return {"message": "Note deleted successfully"}
