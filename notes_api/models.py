from sqlalchemy import Column, ForeignKey, Integer, LargeBinary, Text

from notes_api.db import Base, UTCDateTime
from notes_api.domain import ContentType, NoteRecord


class Note(Base):
    """SQLAlchemy model representing a note's metadata."""
    __tablename__ = "notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False, default="")
    created_on = Column(UTCDateTime, nullable=False)
    updated_on = Column(UTCDateTime, nullable=False)
    content_type_id = Column(Integer, nullable=False, default=int(ContentType.SQL))

    def to_record(self) -> NoteRecord:
        return NoteRecord(
            id=self.id,
            title=self.title,
            created_on=self.created_on,
            updated_on=self.updated_on,
            content_type=ContentType.coerce(self.content_type_id),
        )


class NoteContent(Base):
    """SQLAlchemy model holding the content blob of a note."""
    __tablename__ = "notes_content"

    note_id = Column(Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True)
    content = Column(LargeBinary, nullable=True)
