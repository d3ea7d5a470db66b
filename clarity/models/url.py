"""
URLs detected in notes and their fetched page metadata.
"""

from datetime import datetime
from urllib.parse import urlparse

from pydantic import BaseModel, Field


class ExtractedURL(BaseModel):
    """A URL found in a note. fetch_error is set when metadata could not be fetched."""

    id: str = Field(..., description="Unique URL record ID (url_xxx)")
    url: str
    source_note_id: str
    title: str | None = None
    description: str | None = None
    site_name: str | None = None
    image_url: str | None = None
    favicon_url: str | None = None
    fetched_at: datetime | None = None
    fetch_error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_fetched(self) -> bool:
        return self.fetched_at is not None and self.fetch_error is None

    @property
    def display_title(self) -> str:
        return self.title or self.site_name or self.url

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc or self.url
