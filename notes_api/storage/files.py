"""
Flat-file note storage.

Metadata for every note lives in ``<root>/index.txt``; each note's content is
a sibling file named ``note<epoch-millis>.txt``. The whole index is read on
every call and rewritten on every mutation. There is no locking, so
concurrent writers race and the last one wins.
"""
import logging
import os
import tempfile
import time
from functools import wraps
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from notes_api import index_file
from notes_api.domain import ContentType, NoteRecord, utc_now
from notes_api.errors import StorageError

logger = logging.getLogger(__name__)

INDEX_FILE_NAME = "index.txt"
SEQUENCE_FILE_NAME = "index.seq"


def _wrap_os_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OSError as exc:
            raise StorageError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


def new_note_name() -> str:
    return f"note{time.time_ns() // 1_000_000:015d}.txt"


class FileIndexStore:
    """Index store backed by a plain-text index file."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE_NAME

    @property
    def sequence_path(self) -> Path:
        return self.root / SEQUENCE_FILE_NAME

    def _ensure_root(self) -> None:
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)

    def parse_id(self, raw: str) -> str:
        return raw.strip()

    def normalize_title(self, title: str) -> str:
        return index_file.normalize_title(title)

    @_wrap_os_errors
    def load(self) -> List[NoteRecord]:
        self._ensure_root()
        if not self.index_path.exists():
            return []
        return index_file.parse_index(self.index_path.read_text(encoding="utf-8"))

    @_wrap_os_errors
    def save(self, records: Iterable[NoteRecord]) -> None:
        self._ensure_root()
        self._replace(self.index_path, index_file.serialize_index(records))

    def _replace(self, target: Path, text: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(text)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_sequence(self) -> int:
        try:
            return int(self.sequence_path.read_text(encoding="utf-8").strip() or 0)
        except FileNotFoundError:
            return 0
        except ValueError:
            logger.warning("Ignoring unreadable id sequence file %s", self.sequence_path)
            return 0

    def get(self, note_id) -> Optional[NoteRecord]:
        return index_file.lookup(note_id, self.load())

    def _reserve_content_file(self) -> Path:
        while True:
            path = self.root / new_note_name()
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_RDWR, 0o600)
            except FileExistsError:
                continue
            os.close(fd)
            return path

    @_wrap_os_errors
    def create(self, title: str) -> NoteRecord:
        records = self.load()
        path = self._reserve_content_file()
        record = NoteRecord(
            id=index_file.next_id(records, floor=self._read_sequence()),
            title=self.normalize_title(title),
            path=str(path),
            created_on=utc_now(),
            content_type=ContentType.FILE,
        )
        records.append(record)
        self.save(records)
        self._replace(self.sequence_path, f"{record.id}\n")
        return record

    def update_title(self, note_id, title: str) -> None:
        records = self.load()
        record = index_file.lookup(note_id, records)
        if record is None:
            return
        record.title = self.normalize_title(title)
        self.save(records)

    def touch(self, note_id) -> None:
        # The flat-file index does not track modification times.
        return None

    @_wrap_os_errors
    def delete(self, note_id) -> None:
        records = self.load()
        record = index_file.lookup(note_id, records)
        if record is None:
            return
        if record.path:
            Path(record.path).unlink(missing_ok=True)
        self.save([r for r in records if r is not record])


class FileContentStore:
    """Content store keeping each note's content in the file named by its index record."""

    content_type = ContentType.FILE

    @_wrap_os_errors
    def read(self, note: NoteRecord) -> bytes:
        try:
            return Path(note.path).read_bytes()
        except FileNotFoundError:
            return b""

    def read_many(self, notes: Iterable[NoteRecord]) -> Dict[object, bytes]:
        return {note.id: self.read(note) for note in notes}

    @_wrap_os_errors
    def write(self, note: NoteRecord, content: bytes) -> None:
        Path(note.path).write_bytes(content)
