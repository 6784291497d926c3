from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from notes_api.domain import ContentType, NoteRecord


@runtime_checkable
class IndexStore(Protocol):
    """Persists the metadata records of all notes."""

    def parse_id(self, raw: str):
        ...

    def normalize_title(self, title: str) -> str:
        ...

    def load(self) -> List[NoteRecord]:
        ...

    def get(self, note_id) -> Optional[NoteRecord]:
        ...

    def create(self, title: str) -> NoteRecord:
        ...

    def update_title(self, note_id, title: str) -> None:
        ...

    def touch(self, note_id) -> None:
        ...

    def delete(self, note_id) -> None:
        ...


@runtime_checkable
class ContentStore(Protocol):
    """Persists the byte content that belongs to a note."""

    content_type: ContentType

    def read(self, note: NoteRecord) -> bytes:
        ...

    def read_many(self, notes: Iterable[NoteRecord]) -> Dict[object, bytes]:
        ...

    def write(self, note: NoteRecord, content: bytes) -> None:
        ...
