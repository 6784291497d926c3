"""Relational note storage on top of the SQLAlchemy models."""
import re
from functools import wraps
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notes_api.domain import ContentType, NoteRecord, utc_now
from notes_api.errors import InvalidRequestError, StorageError
from notes_api.models import Note, NoteContent

# Largest value a signed 64-bit INTEGER column holds.
MAX_NOTE_ID = 2**63 - 1
_NOTE_ID_PATTERN = re.compile(r"[0-9]+")

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def _wrap_sql_errors(func):
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class SqlIndexStore:
    """Index store over the ``notes`` table. Every mutation is its own committed statement."""

    def __init__(self, session: Session):
        self.session = session

    def parse_id(self, raw: str) -> int:
        if not isinstance(raw, str) or _NOTE_ID_PATTERN.fullmatch(raw) is None:
            raise InvalidRequestError(f"invalid note id: {raw}")
        note_id = int(raw)
        if not 1 <= note_id <= MAX_NOTE_ID:
            raise InvalidRequestError(f"note id out of range: {raw}")
        return note_id

    def normalize_title(self, title: str) -> str:
        return title

    @_wrap_sql_errors
    def load(self) -> List[NoteRecord]:
        return [note.to_record() for note in self.session.scalars(select(Note))]

    @_wrap_sql_errors
    def get(self, note_id) -> Optional[NoteRecord]:
        note = self.session.scalars(select(Note).where(Note.id == note_id)).first()
        return note.to_record() if note is not None else None

    @_wrap_sql_errors
    def create(self, title: str) -> NoteRecord:
        now = utc_now()
        note = Note(title=title, created_on=now, updated_on=now, content_type_id=int(ContentType.SQL))
        self.session.add(note)
        self.session.commit()
        return note.to_record()

    @_wrap_sql_errors
    def update_title(self, note_id, title: str) -> None:
        self.session.execute(
            update(Note).where(Note.id == note_id).values(title=title, updated_on=utc_now())
        )
        self.session.commit()

    @_wrap_sql_errors
    def touch(self, note_id) -> None:
        self.session.execute(update(Note).where(Note.id == note_id).values(updated_on=utc_now()))
        self.session.commit()

    @_wrap_sql_errors
    def delete(self, note_id) -> None:
        # notes_content rows go with it through ON DELETE CASCADE
        self.session.execute(delete(Note).where(Note.id == note_id))
        self.session.commit()


class SqlContentStore:
    """Content store over the ``notes_content`` table."""

    content_type = ContentType.SQL

    def __init__(self, session: Session):
        self.session = session

    @_wrap_sql_errors
    def read(self, note: NoteRecord) -> bytes:
        content = self.session.scalar(
            select(NoteContent.content).where(NoteContent.note_id == note.id)
        )
        return content or b""

    @_wrap_sql_errors
    def read_many(self, notes: Iterable[NoteRecord]) -> Dict[object, bytes]:
        ids = [note.id for note in notes]
        if not ids:
            return {}
        rows = self.session.execute(
            select(NoteContent.note_id, NoteContent.content).where(NoteContent.note_id.in_(ids))
        )
        return {note_id: content or b"" for note_id, content in rows}

    @_wrap_sql_errors
    def write(self, note: NoteRecord, content: bytes) -> None:
        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise StorageError(f"content upsert is not supported for dialect {dialect}")
        stmt = insert(NoteContent).values(note_id=note.id, content=content)
        stmt = stmt.on_conflict_do_update(
            index_elements=[NoteContent.note_id],
            set_={"content": stmt.excluded.content},
        )
        self.session.execute(stmt)
        self.session.commit()
