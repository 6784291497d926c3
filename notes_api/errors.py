class NotesError(Exception):
    """Base class for errors raised by the notes service."""


class StorageError(NotesError):
    """Reading or writing the backing store failed."""


class IndexParseError(StorageError):
    """The flat-file index contains a malformed record."""

    def __init__(self, message: str, line: int | None = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class NoteNotFoundError(NotesError):
    def __init__(self, note_id):
        self.note_id = note_id
        super().__init__(f"no note with id: {note_id}")


class InvalidRequestError(NotesError):
    """The request is malformed or missing required data."""


class UnsupportedContentTypeError(NotesError):
    def __init__(self, content_type):
        self.content_type = content_type
        super().__init__(f"note has invalid content type: {content_type}")


class AuthError(NotesError):
    """Login state, nonce or access token could not be validated."""
