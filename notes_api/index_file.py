"""
Reader and writer for the flat-file notes index.

The index is line oriented, one ``field: value`` pair per line, with records
separated by blank lines::

    id: 1
    title: groceries
    path: /home/me/.notes/note001700000000000.txt
    created_on: 2024-01-02T03:04:05Z

``id``, ``title`` and ``path`` are required and must appear in that order.
``created_on`` is optional. Blank lines anywhere between records or fields
are ignored.
"""
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from notes_api.domain import ContentType, NoteRecord
from notes_api.errors import IndexParseError

_FIELD_PATTERNS = {
    name: re.compile(rf"^{name}:\s*(.*)")
    for name in ("id", "title", "path", "created_on")
}

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
# Fractional seconds of any precision; fromisoformat on 3.10 takes only 3 or 6 digits.
_FRACTION = re.compile(r"\.([0-9]+)")


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an RFC3339 UTC timestamp with second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(raw: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime."""
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {raw}")
    return parsed.astimezone(timezone.utc)


def _skip_blank(lines: List[str], pos: int) -> int:
    while pos < len(lines) and not lines[pos].strip():
        pos += 1
    return pos


def _expect_field(lines: List[str], pos: int, field: str, context: str):
    pos = _skip_blank(lines, pos)
    if pos >= len(lines):
        raise IndexParseError(f"no matching {field} for {context}", line=len(lines))
    match = _FIELD_PATTERNS[field].match(lines[pos])
    if match is None:
        raise IndexParseError(f"invalid {field}: {lines[pos]!r}", line=pos + 1)
    return match.group(1).strip(), pos + 1


def parse_index(text: str) -> List[NoteRecord]:
    """
    Parse the full text of an index file.

    Raises IndexParseError on the first malformed record; nothing is returned
    for the records that parsed before it.
    """
    lines = text.splitlines()
    records: List[NoteRecord] = []

    pos = _skip_blank(lines, 0)
    while pos < len(lines):
        note_id, pos = _expect_field(lines, pos, "id", "record")
        title, pos = _expect_field(lines, pos, "title", f"id: {note_id}")
        path, pos = _expect_field(lines, pos, "path", f"title: {title}")

        created_on = None
        pos = _skip_blank(lines, pos)
        if pos < len(lines):
            match = _FIELD_PATTERNS["created_on"].match(lines[pos])
            # Anything else is the start of the next record.
            if match is not None:
                try:
                    created_on = parse_timestamp(match.group(1))
                except ValueError as exc:
                    raise IndexParseError(f"invalid created_on: {exc}", line=pos + 1) from exc
                pos += 1

        records.append(
            NoteRecord(
                id=note_id,
                title=title,
                path=path,
                created_on=created_on,
                content_type=ContentType.FILE,
            )
        )
        pos = _skip_blank(lines, pos)

    return records


def _single_line(value: str) -> str:
    return " ".join(str(value).splitlines())


def normalize_title(title: str) -> str:
    """Return ``title`` as it reads back after a save and load of the index."""
    return _single_line(title).strip()


def serialize_index(records: Iterable[NoteRecord]) -> str:
    """Render records in the index file format, one blank line after each."""
    chunks = []
    for record in records:
        chunks.append(f"id: {record.id}\n")
        chunks.append(f"title: {_single_line(record.title)}\n")
        chunks.append(f"path: {record.path}\n")
        if record.created_on is not None:
            chunks.append(f"created_on: {format_timestamp(record.created_on)}\n")
        chunks.append("\n")
    return "".join(chunks)


def next_id(records: Iterable[NoteRecord], floor: int = 0) -> str:
    """
    Return the id for a new record.

    The result is one more than the largest numeric id in ``records`` or
    ``floor``, whichever is greater. Non-numeric ids are ignored.
    """
    highest = floor
    for record in records:
        try:
            value = int(str(record.id))
        except ValueError:
            continue
        highest = max(highest, value)
    return str(highest + 1)


def lookup(note_id, records: Iterable[NoteRecord]) -> Optional[NoteRecord]:
    wanted = str(note_id)
    for record in records:
        if str(record.id) == wanted:
            return record
    return None
