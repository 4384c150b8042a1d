from __future__ import annotations

import io
import textwrap
from typing import List, Optional

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from ..schemas.files import ProcessedFile
from .base import InputFile, Tool, ToolInputError, ToolOutput, read_pdf, require_pages
from .registry import register


class RenderSettings(BaseModel):
    dpi: int = Field(default=150, ge=36, le=600, description="Render resolution")


class TextSettings(BaseModel):
    text: Optional[str] = Field(default=None, description="Text to render when no file is uploaded")


@register("jpg-to-pdf", "png-to-pdf", "webp-to-pdf", "gif-to-pdf", "bmp-to-pdf")
class ImagesToPdf(Tool):
    summary = "One PDF page per image"
    multiple = True

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        pages: List[Image.Image] = []
        for item in inputs:
            try:
                with Image.open(io.BytesIO(item.data)) as img:
                    pages.append(img.convert("RGB"))
            except UnidentifiedImageError:
                raise ToolInputError(f"{item.filename} is not a readable image") from None
        buf = io.BytesIO()
        pages[0].save(buf, format="PDF", save_all=True, append_images=pages[1:])
        return ProcessedFile(buffer=buf.getvalue(), filename=f"{inputs[0].stem}.pdf", mime_hint="application/pdf")


@register("pdf-to-png", "pdf-to-jpg")
class PdfToImages(Tool):
    summary = "Render every page to an image"
    settings_model = RenderSettings

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        fmt = self.slug.rsplit("-", 1)[-1]
        outputs = []
        with fitz.open(stream=item.data, filetype="pdf") as doc:
            require_pages(doc.page_count)
            for number, page in enumerate(doc, start=1):
                pix = page.get_pixmap(dpi=self.settings["dpi"], alpha=False)
                if fmt == "png":
                    data, mime = pix.tobytes("png"), "image/png"
                else:
                    img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
                    out = io.BytesIO()
                    img.save(out, format="JPEG", quality=90)
                    data, mime = out.getvalue(), "image/jpeg"
                outputs.append(ProcessedFile(buffer=data, filename=f"{item.stem}_page_{number}.{fmt}", mime_hint=mime))
        return outputs


@register("pdf-to-txt")
class PdfToText(Tool):
    summary = "Extract the text layer"

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        item = inputs[0]
        reader = read_pdf(item)
        text = "\n\n".join((page.extract_text() or "").strip() for page in reader.pages)
        return ProcessedFile(buffer=text.encode("utf-8"), filename=f"{item.stem}.txt", mime_hint="text/plain")


@register("txt-to-pdf", "text-to-pdf", "csv-to-pdf", "json-to-pdf", "markdown-to-pdf")
class TextToPdf(Tool):
    """Monospaced rendering of plain text, A4 pages."""

    summary = "Render plain text into a PDF"
    min_files = 0
    settings_model = TextSettings

    PAGE_WIDTH, PAGE_HEIGHT = 595, 842
    MARGIN = 50
    FONT_SIZE = 10
    LINE_HEIGHT = 14
    WRAP = 90

    def run(self, inputs: List[InputFile]) -> ToolOutput:
        if inputs:
            content = inputs[0].data.decode("utf-8", errors="replace")
            filename = f"{inputs[0].stem}.pdf"
        else:
            content = self.settings.get("text") or ""
            filename = "converted.pdf"
        if not content.strip():
            raise ToolInputError("No content provided")

        lines: List[str] = []
        for raw in content.splitlines():
            lines.extend(textwrap.wrap(raw.expandtabs(4), self.WRAP) or [""])
        per_page = (self.PAGE_HEIGHT - 2 * self.MARGIN) // self.LINE_HEIGHT

        with fitz.open() as doc:
            for start in range(0, len(lines), per_page):
                page = doc.new_page(width=self.PAGE_WIDTH, height=self.PAGE_HEIGHT)
                y = self.MARGIN + self.FONT_SIZE
                for line in lines[start:start + per_page]:
                    page.insert_text((self.MARGIN, y), line, fontsize=self.FONT_SIZE, fontname="cour")
                    y += self.LINE_HEIGHT
            data = doc.tobytes(garbage=3, deflate=True)
        return ProcessedFile(buffer=data, filename=filename, mime_hint="application/pdf")
