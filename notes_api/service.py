import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from notes_api.domain import NoteRecord
from notes_api.errors import (
    InvalidRequestError,
    NoteNotFoundError,
    StorageError,
    UnsupportedContentTypeError,
)
from notes_api.storage.base import ContentStore, IndexStore

logger = logging.getLogger(__name__)

MAX_PREVIEW_LENGTH = 100_000
PREVIEW_ELLIPSIS = b"..."


@dataclass
class NoteWithPreview:
    note: NoteRecord
    content_preview: str


def make_preview(content: bytes, length: int) -> str:
    """Truncate content to ``length`` bytes, marking truncation with an ellipsis."""
    if len(content) > length:
        content = content[:length] + PREVIEW_ELLIPSIS
    return content.decode("utf-8", errors="replace")


class NoteService:
    """Note operations shared by every storage backend."""

    def __init__(self, index: IndexStore, content: ContentStore):
        self.index = index
        self.content = content

    def parse_id(self, raw: str):
        return self.index.parse_id(raw)

    def create_note(self, title: str) -> NoteRecord:
        note = self.index.create(title)
        logger.info("Created note id=%s title_len=%s", note.id, len(title))
        return note

    def list_notes(self) -> List[NoteRecord]:
        return self.index.load()

    def list_notes_with_preview(self, preview_length: int) -> List[NoteWithPreview]:
        if preview_length <= 0 or preview_length >= MAX_PREVIEW_LENGTH:
            raise InvalidRequestError(
                f"preview length must be greater than 0 and less than 100KB: {preview_length}"
            )
        notes = self.index.load()
        contents = self.content.read_many(notes)
        return [
            NoteWithPreview(note=note, content_preview=make_preview(contents.get(note.id, b""), preview_length))
            for note in notes
        ]

    def get_note(self, note_id) -> NoteRecord:
        note = self.index.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def update_note(self, note: NoteRecord, title: str) -> bool:
        """Change the note's title. Returns False without writing when it is unchanged."""
        title = self.index.normalize_title(title)
        if note.title == title:
            return False
        self.index.update_title(note.id, title)
        note.title = title
        return True

    def delete_note(self, note_id) -> None:
        self.index.delete(note_id)

    def _check_content_type(self, note: NoteRecord) -> None:
        if note.content_type != self.content.content_type:
            raise UnsupportedContentTypeError(note.content_type)

    def get_content(self, note: NoteRecord) -> bytes:
        self._check_content_type(note)
        return self.content.read(note)

    def set_content(self, note: NoteRecord, content: bytes) -> None:
        self._check_content_type(note)
        self.content.write(note, content)
        self.index.touch(note.id)

    def import_note(self, source: Path) -> NoteRecord:
        """Create a note titled after ``source`` holding a copy of its bytes."""
        source = Path(source)
        try:
            content = source.read_bytes()
        except OSError as exc:
            raise StorageError(f"failed to read {source}: {exc}") from exc
        note = self.create_note(source.name)
        self.set_content(note, content)
        return note
