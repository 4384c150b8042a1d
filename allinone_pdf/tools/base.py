from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel
from pypdf import PdfReader, PdfWriter

from ..schemas.files import ProcessedFile


ToolOutput = Union[ProcessedFile, List[ProcessedFile]]


class ToolInputError(ValueError):
    """The request cannot be converted as given (maps to HTTP 400)."""


@dataclass
class InputFile:
    data: bytes
    filename: str
    content_type: Optional[str] = None

    @property
    def stem(self) -> str:
        return PurePath(self.filename).stem or "document"


class Tool:
    """One conversion endpoint.

    Subclasses set `summary` and implement `run`, which is synchronous and
    executed in a worker thread. A class may be registered under several
    slugs; `self.slug` tells the instance which one was requested.
    """

    summary: str = ""
    multiple: bool = False
    min_files: int = 1
    settings_model: Optional[Type[BaseModel]] = None

    def __init__(self, slug: str, settings: Dict[str, Any] | None = None) -> None:
        self.slug = slug
        self.settings: Dict[str, Any] = self.validate_settings(settings or {})

    def validate_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        Model = self.settings_model
        if Model is not None:
            return Model.model_validate(settings).model_dump()
        return {}

    @classmethod
    def settings_schema(cls) -> Optional[Dict[str, Any]]:
        if cls.settings_model is None:
            return None
        return cls.settings_model.model_json_schema()

    def check_inputs(self, inputs: List[InputFile]) -> None:
        if len(inputs) >= self.min_files:
            return
        if self.min_files == 1:
            raise ToolInputError("No file provided")
        raise ToolInputError(f"At least {self.min_files} files required")

    def run(self, inputs: List[InputFile]) -> ToolOutput:  # pragma: no cover - to be implemented by subclasses
        raise NotImplementedError


def parse_page_ranges(ranges: str, total_pages: int) -> List[int]:
    """Turn "1,3,5-7" into zero-based page indices, keeping order and dropping out-of-range pages."""
    indices: List[int] = []
    for part in (p.strip() for p in str(ranges).split(",")):
        if not part:
            continue
        try:
            if "-" in part:
                start_s, end_s = part.split("-", 1)
                start, end = int(start_s), int(end_s)
                indices.extend(i - 1 for i in range(max(start, 1), min(end, total_pages) + 1))
            else:
                num = int(part)
                if 0 < num <= total_pages:
                    indices.append(num - 1)
        except ValueError:
            raise ToolInputError(f"Invalid page range: {part!r}") from None
    return indices


def read_pdf(item: InputFile) -> PdfReader:
    return PdfReader(io.BytesIO(item.data))


def require_pages(total: int) -> int:
    if total == 0:
        raise ToolInputError("PDF has no pages")
    return total


def pdf_output(writer: PdfWriter, filename: str) -> ProcessedFile:
    buf = io.BytesIO()
    writer.write(buf)
    return ProcessedFile(buffer=buf.getvalue(), filename=filename, mime_hint="application/pdf")
