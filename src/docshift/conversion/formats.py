from enum import Enum


class FormatToken(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    PPTX = "pptx"
    XLSX = "xlsx"
    CSV = "csv"
    TXT = "txt"
    JPG = "jpg"
    PNG = "png"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


CONCRETE_FORMATS: tuple[FormatToken, ...] = tuple(f for f in FormatToken if f is not FormatToken.UNKNOWN)

_ALIASES: dict[str, FormatToken] = {
    "doc": FormatToken.DOCX,
    "ppt": FormatToken.PPTX,
    "xls": FormatToken.XLSX,
    "jpeg": FormatToken.JPG,
}

# Labels that say "some file" rather than naming a format; these trigger signature detection.
GENERIC_LABELS = frozenset({"", "unknown", "document", "bin", "file"})

MEDIA_TYPES: dict[FormatToken, str] = {
    FormatToken.PDF: "application/pdf",
    FormatToken.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    FormatToken.PPTX: "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    FormatToken.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    FormatToken.CSV: "text/csv",
    FormatToken.TXT: "text/plain",
    FormatToken.JPG: "image/jpeg",
    FormatToken.PNG: "image/png",
    FormatToken.UNKNOWN: "application/octet-stream",
}


def _clean(label: str) -> str:
    s = label.strip().lower()
    if s.startswith("."):
        s = s[1:].strip()
    return s


def normalize(label: "FormatToken | str | None") -> FormatToken:
    """Map a format name, file extension or alias onto a FormatToken.

    Unrecognized and empty labels become ``FormatToken.UNKNOWN``; deciding
    whether that is fatal is left to the caller.
    """
    if isinstance(label, FormatToken):
        return label
    if not label:
        return FormatToken.UNKNOWN
    s = _clean(label)
    if s in _ALIASES:
        return _ALIASES[s]
    try:
        return FormatToken(s)
    except ValueError:
        return FormatToken.UNKNOWN


def is_generic_label(label: "FormatToken | str | None") -> bool:
    if label is None:
        return True
    if isinstance(label, FormatToken):
        return label is FormatToken.UNKNOWN
    return _clean(label) in GENERIC_LABELS


def media_type(fmt: FormatToken) -> str:
    return MEDIA_TYPES[fmt]
