from __future__ import annotations

from typing import List

import fitz  # PyMuPDF
from pydantic import BaseModel, Field
from pypdf import PdfWriter

from ..schemas.files import ProcessedFile
from .base import InputFile, Tool, ToolInputError, ToolOutput, pdf_output, read_pdf
from .registry import register


class PageNumberSettings(BaseModel):
    start: int = Field(default=1, ge=0, description="Number printed on the first page")
    font_size: float = Field(default=12, gt=0, le=72)


class WatermarkSettings(BaseModel):
    watermark: str = Field(default="WATERMARK", min_length=1, max_length=200)
    font_size: float = Field(default=48, gt=0, le=200)
    opacity: float = Field(default=0.3, ge=0, le=1)


class ProtectSettings(BaseModel):
    password: str = Field(..., min_length=1, description="Password required to open the PDF")


class UnlockSettings(BaseModel):
    password: str = Field(default="", description="Current password, if the PDF needs one to open")


def _stamp(item: InputFile, suffix: str, draw) -> ProcessedFile:
    with fitz.open(stream=item.data, filetype="pdf") as doc:
        for index, page in enumerate(doc):
            draw(index, page)
        data = doc.tobytes(garbage=3, deflate=True)
    return ProcessedFile(buffer=data, filename=f"{item.stem}_{suffix}.pdf", mime_hint="application/pdf")


@register("add-page-number")
class AddPageNumbers(Tool):
    summary = "Print page numbers centred in the bottom margin"
    settings_model = PageNumberSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        start = self.settings["start"]
        size = self.settings["font_size"]

        def draw(index: int, page: fitz.Page) -> None:
            label = str(start + index)
            width = fitz.get_text_length(label, fontname="helv", fontsize=size)
            page.insert_text(((page.rect.width - width) / 2, page.rect.height - 30), label, fontsize=size, fontname="helv")

        return _stamp(inputs[0], "numbered", draw)


@register("add-watermark")
class AddWatermark(Tool):
    summary = "Overlay translucent text in the middle of every page"
    settings_model = WatermarkSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        text = self.settings["watermark"]
        size = self.settings["font_size"]
        opacity = self.settings["opacity"]

        def draw(index: int, page: fitz.Page) -> None:
            width = fitz.get_text_length(text, fontname="hebo", fontsize=size)
            origin = ((page.rect.width - width) / 2, page.rect.height / 2)
            page.insert_text(origin, text, fontsize=size, fontname="hebo", color=(0.6, 0.6, 0.6), fill_opacity=opacity)

        return _stamp(inputs[0], "watermarked", draw)


@register("protect-pdf")
class ProtectPdf(Tool):
    summary = "Encrypt with a user password"
    settings_model = ProtectSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        reader = read_pdf(item)
        if reader.is_encrypted:
            raise ToolInputError("PDF is already protected")
        writer = PdfWriter(clone_from=reader)
        writer.encrypt(user_password=self.settings["password"])
        return pdf_output(writer, f"{item.stem}_protected.pdf")


@register("unlock-pdf")
class UnlockPdf(Tool):
    summary = "Remove password protection"
    settings_model = UnlockSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        reader = read_pdf(item)
        if reader.is_encrypted and not reader.decrypt(self.settings["password"]):
            raise ToolInputError("Incorrect password")
        writer = PdfWriter()
        writer.append(reader)
        return pdf_output(writer, f"{item.stem}_unlocked.pdf")
