from types import MappingProxyType
from typing import Mapping

from .formats import FormatToken

F = FormatToken

# Directed: a pair being present says nothing about its reverse.
CAPABILITY_MATRIX: Mapping[FormatToken, frozenset[FormatToken]] = MappingProxyType({
    F.PDF: frozenset({F.DOCX, F.TXT, F.PPTX}),
    F.DOCX: frozenset({F.PDF, F.PPTX, F.TXT}),
    F.PPTX: frozenset({F.PDF, F.DOCX, F.TXT}),
    F.XLSX: frozenset({F.PDF, F.DOCX, F.CSV, F.TXT, F.PPTX}),
    F.CSV: frozenset({F.XLSX, F.PDF, F.DOCX, F.PPTX}),
    F.TXT: frozenset({F.PDF, F.DOCX, F.PPTX, F.XLSX}),
    F.JPG: frozenset({F.PDF, F.DOCX, F.PPTX, F.PNG}),
    F.PNG: frozenset({F.PDF, F.DOCX, F.PPTX, F.JPG}),
})


def supported_targets(source: FormatToken) -> frozenset[FormatToken]:
    return CAPABILITY_MATRIX.get(source, frozenset())


def is_supported(source: FormatToken, target: FormatToken) -> bool:
    """Identity is always allowed; otherwise the pair must be in the matrix."""
    return source == target or target in supported_targets(source)


def matrix_pairs() -> list[tuple[FormatToken, FormatToken]]:
    return [(s, t) for s, targets in CAPABILITY_MATRIX.items() for t in sorted(targets, key=lambda f: f.value)]


def as_dict() -> dict[str, list[str]]:
    return {s.value: sorted(t.value for t in targets) for s, targets in CAPABILITY_MATRIX.items()}
