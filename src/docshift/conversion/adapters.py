import base64
import csv
import io
import json
import math
import re
import secrets
from functools import cached_property
from pathlib import Path
from typing import Any, Sequence

from .formats import FormatToken
from .interfaces import Box, JobPaths, RasterImage
from .pipelines import ConversionLimits
from .router import ConversionRouter

# XML 1.0 forbids these; OOXML writers reject them outright.
_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_NUMBER = re.compile(r"-?(0|[1-9]\d*)(\.\d+)?([eE][-+]?\d+)?")


def _xml_safe(text: str) -> str:
    return _XML_ILLEGAL.sub("", text)


class LocalStorage:
    def __init__(self, data_dir: str) -> None:
        self._base = Path(data_dir).resolve()

    def job_dir(self, job_id: str) -> str:
        return str(self._base / "jobs" / job_id)

    def job_paths(self, job_id: str, ext: str = "") -> JobPaths:
        base = Path(self.job_dir(job_id))
        input_dir = base / "input"
        output_dir = base / "output"
        for d in (input_dir, output_dir):
            d.mkdir(parents=True, exist_ok=True)
        return JobPaths(
            job_dir=str(base),
            input_dir=str(input_dir),
            output_dir=str(output_dir),
            input_path=str(input_dir / f"original{ext}"),
        )

    def save_job(self, job: dict[str, object]) -> None:
        job_id = str(job["id"])  # type: ignore[index]
        p = Path(self.job_dir(job_id)) / "job.json"
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            json.dump(job, f, ensure_ascii=False, indent=2)

    def load_job(self, job_id: str) -> dict[str, object]:
        p = Path(self.job_dir(job_id)) / "job.json"
        if not p.exists():
            raise FileNotFoundError("job not found")
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)


class Argon2Security:
    def __init__(self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 1) -> None:
        self._time_cost = time_cost
        self._memory_cost = memory_cost
        self._parallelism = parallelism

    def new_token(self) -> str:
        raw = secrets.token_bytes(32)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def hash_token(self, token: str) -> str:
        """Hash the raw token bytes with Argon2id and return the PHC string."""
        from argon2.low_level import Type, hash_secret

        phc = hash_secret(
            secret=self._b64url_to_bytes(token),
            salt=secrets.token_bytes(16),
            time_cost=self._time_cost,
            memory_cost=self._memory_cost,
            parallelism=self._parallelism,
            hash_len=32,
            type=Type.ID,
        )
        return phc.decode("utf-8")

    def verify(self, phc_hash: str, token: str) -> bool:
        from argon2.exceptions import InvalidHashError, VerificationError
        from argon2.low_level import Type, verify_secret

        if not phc_hash.startswith("$argon2"):
            return False
        try:
            raw = self._b64url_to_bytes(token)
            return verify_secret(phc_hash.encode("utf-8"), raw, Type.ID)
        except (VerificationError, InvalidHashError, ValueError):
            return False

    @staticmethod
    def _b64url_to_bytes(token: str) -> bytes:
        pad = "=" * (-len(token) % 4)
        return base64.urlsafe_b64decode(token + pad)


class PillowRasterCodec:
    _PIL_FORMATS = {FormatToken.JPG: "JPEG", FormatToken.PNG: "PNG"}
    _PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})

    def __init__(self, *, jpeg_quality: int = 90) -> None:
        self._jpeg_quality = jpeg_quality

    def decode(self, buffer: bytes) -> RasterImage:
        from PIL import Image

        img = Image.open(io.BytesIO(buffer))
        img.load()
        return RasterImage(width=img.width, height=img.height, native=img)

    def encode(self, image: RasterImage, target: FormatToken) -> bytes:
        from PIL import Image

        pil_format = self._PIL_FORMATS.get(target)
        if pil_format is None:
            raise ValueError(f"raster encoding to {target} is not available")
        img = image.native
        if not isinstance(img, Image.Image):
            raise TypeError("raster image was not decoded by this codec")

        buf = io.BytesIO()
        if pil_format == "JPEG":
            if img.mode in ("RGBA", "LA", "P"):
                rgba = img.convert("RGBA")
                flat = Image.new("RGB", rgba.size, (255, 255, 255))
                flat.paste(rgba, mask=rgba.split()[-1])
                img = flat
            elif img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(buf, format=pil_format, quality=self._jpeg_quality)
        else:
            if img.mode not in self._PNG_MODES:
                img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
            img.save(buf, format=pil_format)
        return buf.getvalue()


class DoclingTextExtractor:
    @cached_property
    def _converter(self) -> Any:
        from docling.document_converter import DocumentConverter

        return DocumentConverter()

    def extract_text(self, buffer: bytes, fmt: FormatToken) -> str:
        from docling.datamodel.base_models import DocumentStream

        stream = DocumentStream(name=f"input.{fmt.value}", stream=io.BytesIO(buffer))
        result = self._converter.convert(stream)
        doc = getattr(result, "document", None)
        if doc is None:
            to_doc = getattr(result, "to_doc", None)
            if not callable(to_doc):
                raise RuntimeError("Unexpected result type from Docling; cannot extract document")
            doc = to_doc()
        # export method names vary across docling releases
        for m in ("export_to_text", "export_to_markdown"):
            fn = getattr(doc, m, None)
            if callable(fn):
                return fn()
        raise RuntimeError("Doc object does not provide a text export method")


class OpenpyxlTabularExtractor:
    def __init__(self, *, delimiter: str = ",") -> None:
        self._delimiter = delimiter

    def first_sheet_as_delimited_text(self, buffer: bytes) -> str:
        from openpyxl import load_workbook

        wb = load_workbook(io.BytesIO(buffer), read_only=True, data_only=True)
        try:
            if not wb.worksheets:
                return ""
            out = io.StringIO()
            writer = csv.writer(out, delimiter=self._delimiter, lineterminator="\n")
            for row in wb.worksheets[0].iter_rows(values_only=True):
                writer.writerow(["" if v is None else v for v in row])
        finally:
            wb.close()
        return out.getvalue()

    def parse_delimited_text(self, buffer: bytes) -> list[list[str]]:
        text = buffer.decode("utf-8-sig", errors="replace")
        return [row for row in csv.reader(io.StringIO(text), delimiter=self._delimiter)]


class PyMuPdfPageGenerator:
    """Single-page PDF output drawn with a base-14 font (Latin-1 only)."""

    def __init__(self, *, page_width: float = 595.28, page_height: float = 841.89, fontname: str = "helv") -> None:
        self._page_width = page_width
        self._page_height = page_height
        self._fontname = fontname

    def new_document(self) -> Any:
        import fitz

        doc = fitz.open()
        doc.new_page(width=self._page_width, height=self._page_height)
        return doc

    def page_size(self, handle: Any) -> tuple[float, float]:
        rect = handle[-1].rect
        return rect.width, rect.height

    def draw_text(self, handle: Any, text: str, box: Box, font_size: float) -> None:
        import fitz

        page = handle[-1]
        page.insert_text(
            fitz.Point(box.x, box.y + font_size),
            text.replace("\r", ""),
            fontsize=font_size,
            fontname=self._fontname,
            color=(0, 0, 0),
        )

    def embed_raster_asset(self, handle: Any, buffer: bytes) -> Any:
        return bytes(buffer)

    def place_asset(self, handle: Any, asset: Any, box: Box) -> None:
        import fitz

        rect = fitz.Rect(box.x, box.y, box.x + box.width, box.y + box.height)
        handle[-1].insert_image(rect, stream=asset, keep_proportion=True)

    def serialize(self, handle: Any) -> bytes:
        return handle.tobytes(garbage=3, deflate=True)

    def close(self, handle: Any) -> None:
        if not handle.is_closed:
            handle.close()


class DocxFlowGenerator:
    def new_document(self) -> Any:
        from docx import Document

        return Document()

    def add_paragraph(self, handle: Any, text: str) -> None:
        handle.add_paragraph(_xml_safe(text))

    def add_image(self, handle: Any, buffer: bytes, width: float, height: float) -> None:
        from docx.shared import Pt

        handle.add_picture(io.BytesIO(buffer), width=Pt(width), height=Pt(height))

    def serialize(self, handle: Any) -> bytes:
        buf = io.BytesIO()
        handle.save(buf)
        return buf.getvalue()


class PptxSlideGenerator:
    BLANK_LAYOUT = 6

    def __init__(self, *, text_color: str = "363636") -> None:
        self._text_color = text_color

    def new_deck(self) -> Any:
        from pptx import Presentation

        return Presentation()

    def slide_size(self, handle: Any) -> tuple[float, float]:
        return handle.slide_width.pt, handle.slide_height.pt

    def new_slide(self, handle: Any) -> Any:
        return handle.slides.add_slide(handle.slide_layouts[self.BLANK_LAYOUT])

    def add_text_block(self, slide: Any, text: str, box: Box, font_size: float) -> None:
        from pptx.dml.color import RGBColor
        from pptx.enum.text import MSO_ANCHOR
        from pptx.util import Pt

        shape = slide.shapes.add_textbox(Pt(box.x), Pt(box.y), Pt(box.width), Pt(box.height))
        frame = shape.text_frame
        frame.word_wrap = True
        frame.vertical_anchor = MSO_ANCHOR.TOP
        frame.text = _xml_safe(text)
        for para in frame.paragraphs:
            para.font.size = Pt(font_size)
            para.font.color.rgb = RGBColor.from_string(self._text_color)

    def add_image(self, slide: Any, buffer: bytes, box: Box) -> None:
        from pptx.util import Pt

        slide.shapes.add_picture(io.BytesIO(buffer), Pt(box.x), Pt(box.y), Pt(box.width), Pt(box.height))

    def serialize(self, handle: Any) -> bytes:
        buf = io.BytesIO()
        handle.save(buf)
        return buf.getvalue()


class OpenpyxlSpreadsheetGenerator:
    def __init__(self, *, sheet_title: str = "Sheet1") -> None:
        self._sheet_title = sheet_title

    def build(self, rows: Sequence[Sequence[str]], *, infer_types: bool = False) -> bytes:
        from openpyxl import Workbook
        from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

        wb = Workbook()
        ws = wb.active
        ws.title = self._sheet_title
        for row in rows:
            ws.append([self._cell_value(c, ILLEGAL_CHARACTERS_RE, infer_types) for c in row])
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    @staticmethod
    def _cell_value(cell: str, illegal: "re.Pattern[str]", infer_types: bool) -> object:
        if infer_types and _NUMBER.fullmatch(cell):
            if not any(c in cell for c in ".eE"):
                return int(cell)
            number = float(cell)
            if math.isfinite(number):
                return number
        return illegal.sub("", cell)


def build_default_router(limits: ConversionLimits | None = None) -> ConversionRouter:
    return ConversionRouter(
        raster=PillowRasterCodec(),
        text_extractor=DoclingTextExtractor(),
        tabular=OpenpyxlTabularExtractor(),
        page_generator=PyMuPdfPageGenerator(),
        flow_generator=DocxFlowGenerator(),
        slide_generator=PptxSlideGenerator(),
        spreadsheet_generator=OpenpyxlSpreadsheetGenerator(),
        limits=limits,
    )
