import re
from typing import Any, Dict, Iterator, Optional

from fastapi import Depends, Header, Request

from notes_api.auth.gateway import ACCESS_TOKEN_COOKIE
from notes_api.domain import NoteRecord
from notes_api.errors import AuthError
from notes_api.service import NoteService
from notes_api.storage.files import FileContentStore, FileIndexStore
from notes_api.storage.sql import SqlContentStore, SqlIndexStore

_BEARER_PATTERN = re.compile(r"^Bearer\s+(.*)$", re.IGNORECASE)


# PUBLIC_INTERFACE
def get_note_service(request: Request) -> Iterator[NoteService]:
    """FastAPI dependency yielding a NoteService over the configured backend for one request."""
    settings = request.app.state.settings
    if settings.storage_backend == "file":
        yield NoteService(FileIndexStore(settings.notes_root), FileContentStore())
        return

    db = request.app.state.session_factory()
    try:
        yield NoteService(SqlIndexStore(db), SqlContentStore(db))
    finally:
        db.close()


# PUBLIC_INTERFACE
def load_note(note_id: str, service: NoteService = Depends(get_note_service)) -> NoteRecord:
    """Resolve the ``{note_id}`` path segment to a note, raising before the handler runs if it is absent."""
    return service.get_note(service.parse_id(note_id))


# PUBLIC_INTERFACE
def require_access_token(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Validate the bearer token (or access_token cookie) and return its claims."""
    if authorization:
        match = _BEARER_PATTERN.match(authorization)
        if match is None:
            raise AuthError("malformed Authorization header")
        token = match.group(1).strip()
    else:
        token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise AuthError("access token is missing")
    return request.app.state.auth.authenticate(token)
