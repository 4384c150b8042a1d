from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ResourceClass = Literal["image", "raw"]


def classify_resource(mime_hint: Optional[str]) -> ResourceClass:
    """Images get image delivery; everything else is stored as a raw binary."""
    if mime_hint and mime_hint.lower().startswith("image/"):
        return "image"
    return "raw"


@dataclass
class ProcessedFile:
    """Output of a transformation, uploaded once and then discarded."""

    buffer: bytes
    filename: str
    mime_hint: Optional[str] = None

    @property
    def resource_class(self) -> ResourceClass:
        return classify_resource(self.mime_hint)


@dataclass
class StoredObject:
    id: str
    retrieval_url: str
    resource_class: ResourceClass
    size: int


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileRecord(_CamelModel):
    """Client-facing descriptor of one stored file.

    `url` is signed and may expire; clients download through the proxy with
    `public_id`, which is always re-signed.
    """

    public_id: str = Field(..., description="Storage identifier, accepted by the download proxy")
    original_name: str = Field(..., description="File name to present to the user")
    url: str = Field(..., description="Signed (or public) retrieval URL with limited TTL")
    size: int = Field(..., description="Size in bytes")


class UploadRecord(FileRecord):
    mimetype: Optional[str] = Field(default=None, description="Content type reported by the client")


class ConversionResponse(_CamelModel):
    """Envelope for tool endpoints: exactly one of `file` / `files` is set."""

    message: str
    file: Optional[FileRecord] = None
    files: Optional[List[FileRecord]] = None


class UploadResponse(_CamelModel):
    message: str
    file: Optional[UploadRecord] = None
    files: Optional[List[UploadRecord]] = None
    is_authenticated: bool = False
