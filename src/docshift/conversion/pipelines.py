"""Pipeline shapes and the (source, target) dispatch table.

The table is kept apart from the capability matrix on purpose: the router
checks at construction that every pair the matrix allows has an entry here.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from .errors import MatrixIntegrityError
from .formats import FormatToken

F = FormatToken


class PipelineKind(str, Enum):
    IMAGE_TRANSCODE = "image_transcode"
    EXTRACT_THEN_RENDER = "extract_then_render"
    EMBED_AS_ASSET = "embed_as_asset"


_T = PipelineKind.IMAGE_TRANSCODE
_X = PipelineKind.EXTRACT_THEN_RENDER
_E = PipelineKind.EMBED_AS_ASSET

PIPELINES: Mapping[tuple[FormatToken, FormatToken], PipelineKind] = MappingProxyType({
    (F.PNG, F.JPG): _T,
    (F.JPG, F.PNG): _T,

    (F.PDF, F.DOCX): _X,
    (F.PDF, F.TXT): _X,
    (F.PDF, F.PPTX): _X,
    (F.DOCX, F.PDF): _X,
    (F.DOCX, F.PPTX): _X,
    (F.DOCX, F.TXT): _X,
    (F.PPTX, F.PDF): _X,
    (F.PPTX, F.DOCX): _X,
    (F.PPTX, F.TXT): _X,
    (F.XLSX, F.PDF): _X,
    (F.XLSX, F.DOCX): _X,
    (F.XLSX, F.CSV): _X,
    (F.XLSX, F.TXT): _X,
    (F.XLSX, F.PPTX): _X,
    (F.CSV, F.XLSX): _X,
    (F.CSV, F.PDF): _X,
    (F.CSV, F.DOCX): _X,
    (F.CSV, F.PPTX): _X,
    (F.TXT, F.PDF): _X,
    (F.TXT, F.DOCX): _X,
    (F.TXT, F.PPTX): _X,
    (F.TXT, F.XLSX): _X,

    (F.JPG, F.PDF): _E,
    (F.JPG, F.DOCX): _E,
    (F.JPG, F.PPTX): _E,
    (F.PNG, F.PDF): _E,
    (F.PNG, F.DOCX): _E,
    (F.PNG, F.PPTX): _E,
})

TABULAR_SOURCES = frozenset({F.XLSX, F.CSV})


@dataclass(frozen=True)
class ConversionLimits:
    """Tunable constants for the render stages. Sizes are in points."""

    document_page_max_chars: int = 5000
    plain_text_page_max_chars: int = 2000
    lines_per_slide: int = 12
    page_font_size: float = 10
    tabular_font_size: float = 8
    slide_font_size: float = 14
    page_text_margin: float = 50
    page_image_margin: float = 20
    slide_margin_ratio: float = 0.05
    docx_image_box: float = 300
    empty_deck_text: str = "No text content found."


def fit_within(width: float, height: float, max_width: float, max_height: float) -> tuple[float, float]:
    """Scale (width, height) to the largest size inside the bounds, keeping aspect ratio."""
    if width <= 0 or height <= 0:
        return max_width, max_height
    scale = min(max_width / width, max_height / height)
    return width * scale, height * scale


def chunk_lines(lines: list[str], size: int) -> list[list[str]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [lines[i:i + size] for i in range(0, len(lines), size)]


def missing_pipelines(
    pairs: Iterable[tuple[FormatToken, FormatToken]],
    pipelines: Mapping[tuple[FormatToken, FormatToken], PipelineKind] = PIPELINES,
) -> list[tuple[FormatToken, FormatToken]]:
    return [pair for pair in pairs if pair[0] != pair[1] and pair not in pipelines]


def check_pipeline_coverage(
    matrix: Mapping[FormatToken, frozenset[FormatToken]],
    pipelines: Mapping[tuple[FormatToken, FormatToken], PipelineKind] = PIPELINES,
) -> None:
    pairs = [(s, t) for s, targets in matrix.items() for t in targets]
    missing = missing_pipelines(pairs, pipelines)
    if missing:
        listed = ", ".join(f"{s}->{t}" for s, t in missing)
        raise MatrixIntegrityError(f"No pipeline registered for supported conversions: {listed}")
