"""Shared test fixtures: in-memory providers that record every call."""

import csv
import io
from types import SimpleNamespace

import pytest

from docshift.conversion import ConversionRouter
from docshift.conversion.interfaces import RasterImage

PNG_HEADER = bytes.fromhex("89504e470d0a1a0a") + b"\x00" * 16
JPG_HEADER = bytes.fromhex("ffd8ffe000104a46") + b"\x00" * 16
PDF_HEADER = b"%PDF-1.7\n"
ZIP_HEADER = bytes.fromhex("504b0304") + b"\x14\x00\x06\x00"


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeRaster(Recorder):
    def __init__(self, width: int = 200, height: int = 100, fail_on: str | None = None) -> None:
        super().__init__()
        self.width = width
        self.height = height
        self.fail_on = fail_on

    def decode(self, buffer):
        self.calls.append(("decode", buffer))
        if self.fail_on == "decode":
            raise OSError("cannot identify image file")
        return RasterImage(width=self.width, height=self.height, native=buffer)

    def encode(self, image, target):
        self.calls.append(("encode", target))
        if self.fail_on == "encode":
            raise OSError("encoder error")
        return b"RASTER:" + target.value.encode()


class FakeTextExtractor(Recorder):
    def __init__(self, text: str = "Extracted text", error: Exception | None = None) -> None:
        super().__init__()
        self.text = text
        self.error = error

    def extract_text(self, buffer, fmt):
        self.calls.append(("extract_text", fmt))
        if self.error is not None:
            raise self.error
        return self.text


class FakeTabular(Recorder):
    def __init__(self, sheet_text: str = "a,b\n1,2\n") -> None:
        super().__init__()
        self.sheet_text = sheet_text

    def first_sheet_as_delimited_text(self, buffer):
        self.calls.append(("first_sheet_as_delimited_text",))
        return self.sheet_text

    def parse_delimited_text(self, buffer):
        self.calls.append(("parse_delimited_text",))
        return list(csv.reader(io.StringIO(buffer.decode("utf-8"))))


class FakePageGenerator(Recorder):
    def __init__(self, fail_on: str | None = None) -> None:
        super().__init__()
        self.documents: list[dict] = []
        self.fail_on = fail_on

    def new_document(self):
        self.calls.append(("new_document",))
        doc = {"texts": [], "assets": [], "placements": []}
        self.documents.append(doc)
        return doc

    def page_size(self, handle):
        return 600.0, 800.0

    def draw_text(self, handle, text, box, font_size):
        self.calls.append(("draw_text", text, box, font_size))
        if self.fail_on == "draw_text":
            raise RuntimeError("font not found")
        handle["texts"].append(text)

    def embed_raster_asset(self, handle, buffer):
        self.calls.append(("embed_raster_asset",))
        handle["assets"].append(buffer)
        return len(handle["assets"]) - 1

    def place_asset(self, handle, asset, box):
        self.calls.append(("place_asset", asset, box))
        handle["placements"].append(box)

    def serialize(self, handle):
        self.calls.append(("serialize",))
        return PDF_HEADER + "\n".join(handle["texts"]).encode("latin-1")

    def close(self, handle):
        self.calls.append(("close",))
        handle["closed"] = True


class FakeFlowGenerator(Recorder):
    def __init__(self) -> None:
        super().__init__()
        self.documents: list[dict] = []

    def new_document(self):
        self.calls.append(("new_document",))
        doc = {"paragraphs": [], "images": []}
        self.documents.append(doc)
        return doc

    def add_paragraph(self, handle, text):
        handle["paragraphs"].append(text)

    def add_image(self, handle, buffer, width, height):
        self.calls.append(("add_image", width, height))
        handle["images"].append((buffer, width, height))

    def serialize(self, handle):
        self.calls.append(("serialize",))
        return b"DOCX:" + str(len(handle["paragraphs"])).encode()


class FakeSlideGenerator(Recorder):
    def __init__(self) -> None:
        super().__init__()
        self.decks: list[dict] = []

    def new_deck(self):
        self.calls.append(("new_deck",))
        deck = {"slides": []}
        self.decks.append(deck)
        return deck

    def slide_size(self, handle):
        return 720.0, 540.0

    def new_slide(self, handle):
        slide = {"texts": [], "images": []}
        handle["slides"].append(slide)
        return slide

    def add_text_block(self, slide, text, box, font_size):
        slide["texts"].append(text)

    def add_image(self, slide, buffer, box):
        slide["images"].append((buffer, box))

    def serialize(self, handle):
        self.calls.append(("serialize",))
        return b"PPTX:" + str(len(handle["slides"])).encode()


class FakeSpreadsheetGenerator(Recorder):
    def __init__(self) -> None:
        super().__init__()
        self.workbooks: list[list[list[str]]] = []

    def build(self, rows, *, infer_types=False):
        self.calls.append(("build", infer_types))
        self.workbooks.append([list(r) for r in rows])
        return b"XLSX:" + str(len(rows)).encode()


@pytest.fixture
def fakes():
    return SimpleNamespace(
        raster=FakeRaster(),
        text=FakeTextExtractor(),
        tabular=FakeTabular(),
        pages=FakePageGenerator(),
        flow=FakeFlowGenerator(),
        slides=FakeSlideGenerator(),
        sheets=FakeSpreadsheetGenerator(),
    )


def build_router(fakes, **kwargs) -> ConversionRouter:
    return ConversionRouter(
        raster=fakes.raster,
        text_extractor=fakes.text,
        tabular=fakes.tabular,
        page_generator=fakes.pages,
        flow_generator=fakes.flow,
        slide_generator=fakes.slides,
        spreadsheet_generator=fakes.sheets,
        **kwargs,
    )


@pytest.fixture
def router(fakes):
    return build_router(fakes)


def all_calls(fakes) -> list[tuple]:
    return [c for provider in vars(fakes).values() for c in provider.calls]
