import codecs
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from notes_api.api.deps import get_note_service, load_note
from notes_api.domain import NoteRecord
from notes_api.errors import InvalidRequestError
from notes_api.schemas import NoteOut, NoteRequest, NoteWithPreviewOut
from notes_api.service import NoteService

router = APIRouter(prefix="/notes", tags=["Notes"])

_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
)
_SNIFF_LENGTH = 512


def sniff_media_type(content: bytes) -> str:
    """Guess a media type from the leading bytes of ``content``."""
    head = content[:_SNIFF_LENGTH]
    for signature, media_type in _SIGNATURES:
        if head.startswith(signature):
            return media_type
    if b"\x00" in head:
        return "application/octet-stream"
    try:
        codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
    except UnicodeDecodeError:
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


def _to_out(note: NoteRecord) -> NoteOut:
    return NoteOut.model_validate(note)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=None,
    summary="List notes",
    description="Return all notes. With includePreview=true each note carries the start of its content.",
)
def list_notes(
    request: Request,
    include_preview: bool = Query(False, alias="includePreview"),
    preview_length: Optional[int] = Query(None, alias="previewLength"),
    service: NoteService = Depends(get_note_service),
):
    """List all notes."""
    if not include_preview:
        return [_to_out(note) for note in service.list_notes()]

    length = preview_length if preview_length is not None else request.app.state.settings.preview_length
    return [
        NoteWithPreviewOut(**_to_out(item.note).model_dump(), content_preview=item.content_preview)
        for item in service.list_notes_with_preview(length)
    ]


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=NoteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create note",
    description="Create a new, empty note with the given title.",
)
def create_note(payload: NoteRequest, service: NoteService = Depends(get_note_service)) -> NoteOut:
    """Create a note."""
    return _to_out(service.create_note(payload.title))


# PUBLIC_INTERFACE
@router.get("/{note_id}", response_model=NoteOut, summary="Get note", description="Fetch a single note by ID.")
def get_note(note: NoteRecord = Depends(load_note)) -> NoteOut:
    """Get a note by id."""
    return _to_out(note)


# PUBLIC_INTERFACE
@router.api_route(
    "/{note_id}",
    methods=["POST", "PUT"],
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update note",
    description="Rename a note. Only the title is taken from the body.",
)
def update_note(
    payload: NoteRequest,
    note: NoteRecord = Depends(load_note),
    service: NoteService = Depends(get_note_service),
) -> Response:
    """Update a note's title."""
    service.update_note(note, payload.title)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# PUBLIC_INTERFACE
@router.delete(
    "/{note_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete note",
    description="Delete a note and its content.",
)
def delete_note(note: NoteRecord = Depends(load_note), service: NoteService = Depends(get_note_service)) -> Response:
    """Delete a note by id."""
    service.delete_note(note.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# PUBLIC_INTERFACE
@router.get(
    "/{note_id}/content",
    response_class=Response,
    summary="Get note content",
    description="Return the raw content of a note.",
)
def get_note_content(note: NoteRecord = Depends(load_note), service: NoteService = Depends(get_note_service)) -> Response:
    """Stream back the note's content bytes."""
    content = service.get_content(note)
    return Response(content=content, media_type=sniff_media_type(content))


# PUBLIC_INTERFACE
@router.api_route(
    "/{note_id}/content",
    methods=["POST", "PUT"],
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Set note content",
    description="Replace a note's content from a 'content' form value or uploaded file.",
)
async def set_note_content(
    request: Request,
    note: NoteRecord = Depends(load_note),
    service: NoteService = Depends(get_note_service),
) -> Response:
    """Replace the note's content."""
    form = await request.form()
    value = form.get("content")
    if isinstance(value, UploadFile):
        content = await value.read()
    elif isinstance(value, str) and value:
        content = value.encode("utf-8")
    else:
        raise InvalidRequestError("either form value or form file required for 'content' form field")

    await run_in_threadpool(service.set_content, note, content)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
