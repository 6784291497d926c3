from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class NoteRequest(BaseModel):
    """Schema for creating or renaming a note. id and timestamps in the body are ignored."""
    title: str = Field("", description="Note title; may be empty.")


class NoteOut(BaseModel):
    """Schema returned for a note."""
    model_config = ConfigDict(from_attributes=True)

    id: Union[int, str] = Field(..., description="Store-assigned ID of the note.")
    title: str = Field(..., description="Note title.")
    created_on: Optional[datetime] = Field(None, description="Creation time (UTC).")
    updated_on: Optional[datetime] = Field(None, description="Last title or content change (UTC); SQL storage only.")


class NoteWithPreviewOut(NoteOut):
    """Schema returned for a note when listing with previews."""
    content_preview: str = Field("", description="Leading bytes of the content, '...' appended when truncated.")
