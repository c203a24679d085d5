from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from .formats import FormatToken


@dataclass(frozen=True)
class ConversionRequest:
    payload: bytes
    declared_source: "FormatToken | str | None"
    target: "FormatToken | str"


@dataclass(frozen=True)
class ConversionResult:
    payload: bytes
    format: FormatToken
    source: FormatToken


@dataclass(frozen=True)
class RasterImage:
    width: int
    height: int
    native: Any = None


@dataclass(frozen=True)
class Box:
    """Rectangle in points, origin at the top-left corner of the page or slide."""

    x: float
    y: float
    width: float
    height: float


class RasterCodec(Protocol):
    def decode(self, buffer: bytes) -> RasterImage:
        ...

    def encode(self, image: RasterImage, target: FormatToken) -> bytes:
        ...


class TextExtractor(Protocol):
    def extract_text(self, buffer: bytes, fmt: FormatToken) -> str:
        """Extract plain text from a pdf, docx or pptx buffer.
        This is a blocking call; callers should offload to threads if needed.
        """


class TabularExtractor(Protocol):
    def first_sheet_as_delimited_text(self, buffer: bytes) -> str:
        ...

    def parse_delimited_text(self, buffer: bytes) -> list[list[str]]:
        ...


class PageDocumentGenerator(Protocol):
    def new_document(self) -> Any:
        ...

    def page_size(self, handle: Any) -> tuple[float, float]:
        ...

    def draw_text(self, handle: Any, text: str, box: Box, font_size: float) -> None:
        ...

    def embed_raster_asset(self, handle: Any, buffer: bytes) -> Any:
        ...

    def place_asset(self, handle: Any, asset: Any, box: Box) -> None:
        ...

    def serialize(self, handle: Any) -> bytes:
        ...

    def close(self, handle: Any) -> None:
        ...


class FlowDocumentGenerator(Protocol):
    def new_document(self) -> Any:
        ...

    def add_paragraph(self, handle: Any, text: str) -> None:
        ...

    def add_image(self, handle: Any, buffer: bytes, width: float, height: float) -> None:
        ...

    def serialize(self, handle: Any) -> bytes:
        ...


class SlideDeckGenerator(Protocol):
    def new_deck(self) -> Any:
        ...

    def slide_size(self, handle: Any) -> tuple[float, float]:
        ...

    def new_slide(self, handle: Any) -> Any:
        ...

    def add_text_block(self, slide: Any, text: str, box: Box, font_size: float) -> None:
        ...

    def add_image(self, slide: Any, buffer: bytes, box: Box) -> None:
        ...

    def serialize(self, handle: Any) -> bytes:
        ...


class SpreadsheetGenerator(Protocol):
    def build(self, rows: Sequence[Sequence[str]], *, infer_types: bool = False) -> bytes:
        """Write rows to one sheet; with ``infer_types`` numeric-looking cells become numbers."""
        ...


class StorageGateway(Protocol):
    def job_dir(self, job_id: str) -> str:
        ...

    def job_paths(self, job_id: str, ext: str = "") -> "JobPaths":
        ...

    def save_job(self, job: dict[str, object]) -> None:
        ...

    def load_job(self, job_id: str) -> dict[str, object]:
        ...


class SecurityGateway(Protocol):
    def new_token(self) -> str:
        ...

    def hash_token(self, token: str) -> str:
        ...

    def verify(self, phc_hash: str, token: str) -> bool:
        ...


@dataclass(frozen=True)
class JobPaths:
    job_dir: str
    input_dir: str
    output_dir: str
    input_path: str
