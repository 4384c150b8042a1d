from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator
from pypdf import PdfWriter

from .base import InputFile, Tool, ToolInputError, ToolOutput, parse_page_ranges, pdf_output, read_pdf, require_pages
from .registry import register


class PagesSettings(BaseModel):
    pages: str = Field(default="1", description='Pages to keep, e.g. "1,3,5-7" (1-based)')


class RemovePagesSettings(BaseModel):
    pages: str = Field(..., description='Pages to drop, e.g. "2,4-6" (1-based)')


class OrderSettings(BaseModel):
    order: str = Field(..., description='New page order, e.g. "3,1,2"')


class RotateSettings(BaseModel):
    degrees: int = Field(default=90, description="Clockwise rotation, a multiple of 90")

    @field_validator("degrees")
    @classmethod
    def _right_angle(cls, v: int) -> int:
        if v % 90 != 0:
            raise ValueError("degrees must be a multiple of 90")
        return v


class PartsSettings(BaseModel):
    parts: int = Field(default=2, ge=1, le=100, description="Number of roughly equal parts")


def _select(item: InputFile, indices: List[int], filename: str) -> ToolOutput:
    if not indices:
        raise ToolInputError("No valid pages selected")
    reader = read_pdf(item)
    writer = PdfWriter()
    for idx in indices:
        writer.add_page(reader.pages[idx])
    return pdf_output(writer, filename)


@register("merge-pdf")
class MergePdf(Tool):
    summary = "Combine several PDFs into one, in upload order"
    multiple = True
    min_files = 2

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        writer = PdfWriter()
        for item in inputs:
            writer.append(read_pdf(item))
        return pdf_output(writer, "merged.pdf")


@register("split-pdf")
class SplitPdf(Tool):
    summary = "One PDF per page"

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        reader = read_pdf(inputs[0])
        require_pages(len(reader.pages))
        outputs = []
        for i, page in enumerate(reader.pages, start=1):
            writer = PdfWriter()
            writer.add_page(page)
            outputs.append(pdf_output(writer, f"page_{i}.pdf"))
        return outputs


@register("make-pdf-parts")
class MakePdfParts(Tool):
    summary = "Split a PDF into N parts of consecutive pages"
    settings_model = PartsSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        reader = read_pdf(item)
        total = require_pages(len(reader.pages))
        parts = min(self.settings["parts"], total) or 1
        size, extra = divmod(total, parts)
        outputs = []
        start = 0
        for n in range(parts):
            end = start + size + (1 if n < extra else 0)
            writer = PdfWriter()
            for idx in range(start, end):
                writer.add_page(reader.pages[idx])
            outputs.append(pdf_output(writer, f"{item.stem}_part_{n + 1}.pdf"))
            start = end
        return outputs


@register("extract-pdf-pages")
class ExtractPages(Tool):
    summary = "Keep only the selected pages"
    settings_model = PagesSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        total = len(read_pdf(item).pages)
        indices = parse_page_ranges(self.settings["pages"], total)
        return _select(item, indices, f"{item.stem}_extracted.pdf")


@register("remove-pdf-pages")
class RemovePages(Tool):
    summary = "Drop the selected pages"
    settings_model = RemovePagesSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        total = len(read_pdf(item).pages)
        removed = set(parse_page_ranges(self.settings["pages"], total))
        keep = [i for i in range(total) if i not in removed]
        return _select(item, keep, f"{item.stem}_removed.pdf")


@register("organize-pdf")
class OrganizePdf(Tool):
    summary = "Reorder pages"
    settings_model = OrderSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        total = len(read_pdf(item).pages)
        indices = parse_page_ranges(self.settings["order"], total)
        return _select(item, indices, f"{item.stem}_organized.pdf")


@register("reverse-pdf")
class ReversePdf(Tool):
    summary = "Reverse page order"

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        total = len(read_pdf(item).pages)
        return _select(item, list(reversed(range(total))), f"{item.stem}_reversed.pdf")


@register("rotate-pdf")
class RotatePdf(Tool):
    summary = "Rotate every page"
    settings_model = RotateSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        writer = PdfWriter(clone_from=read_pdf(item))
        for page in writer.pages:
            page.rotate(self.settings["degrees"])
        return pdf_output(writer, f"{item.stem}_rotated.pdf")


@register("compress-pdf")
class CompressPdf(Tool):
    summary = "Lossless compression of content streams and duplicate objects"

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        writer = PdfWriter(clone_from=read_pdf(item))
        for page in writer.pages:
            page.compress_content_streams()
        writer.compress_identical_objects()
        return pdf_output(writer, f"{item.stem}_compressed.pdf")
