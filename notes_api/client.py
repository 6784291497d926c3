"""
HTTP client for the notes API.

Example::

    client = NotesClient("http://localhost:3333")
    note = client.create_note("groceries")
    client.update_note_content(note.id, b"eggs\\nmilk\\n")
"""
from typing import List, Optional

import httpx

from notes_api.schemas import NoteOut, NoteWithPreviewOut


class NotesClientError(Exception):
    """The API answered with an error status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"invalid status code: {status_code} (response: {body})")


class NotesClient:
    """Thin wrapper over the notes endpoints."""

    def __init__(self, base_url: str, http: Optional[httpx.Client] = None, access_token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.http = http or httpx.Client(timeout=10.0)
        self.headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.http.request(method, self.base_url + path, headers=self.headers, **kwargs)
        except httpx.HTTPError as exc:
            raise NotesClientError(0, f"error invoking API: {exc}") from exc
        if response.status_code >= 400:
            raise NotesClientError(response.status_code, response.text.strip())
        return response

    def list_notes(self) -> List[NoteOut]:
        return [NoteOut.model_validate(item) for item in self._request("GET", "/notes").json()]

    def list_notes_with_preview(self, preview_length: Optional[int] = None) -> List[NoteWithPreviewOut]:
        params = {"includePreview": "true"}
        if preview_length is not None:
            params["previewLength"] = str(preview_length)
        response = self._request("GET", "/notes", params=params)
        return [NoteWithPreviewOut.model_validate(item) for item in response.json()]

    def create_note(self, title: str) -> NoteOut:
        return NoteOut.model_validate(self._request("POST", "/notes", json={"title": title}).json())

    def get_note(self, note_id) -> NoteOut:
        return NoteOut.model_validate(self._request("GET", f"/notes/{note_id}").json())

    def update_note(self, note_id, title: str) -> None:
        self._request("POST", f"/notes/{note_id}", json={"title": title})

    def delete_note(self, note_id) -> None:
        self._request("DELETE", f"/notes/{note_id}")

    def get_note_content(self, note_id) -> bytes:
        return self._request("GET", f"/notes/{note_id}/content").content

    def update_note_content(self, note_id, content: bytes) -> None:
        files = {"content": ("content", content, "application/octet-stream")}
        self._request("POST", f"/notes/{note_id}/content", files=files)
