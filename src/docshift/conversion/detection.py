"""Binary signature sniffing for buffers whose declared format is generic."""

from .formats import FormatToken, normalize

SNIFF_BYTES = 8
MIN_SNIFF_BYTES = 4

# Checked in order. The ZIP signature is shared by docx, pptx and xlsx and
# resolves to docx; "doc" (OLE compound file) goes through the alias table.
SIGNATURES: tuple[tuple[str, str], ...] = (
    ("25504446", "pdf"),
    ("504b0304", "docx"),
    ("ffd8ff", "jpg"),
    ("89504e47", "png"),
    ("d0cf11e0", "doc"),
)


def _printable(b: int) -> bool:
    return 32 <= b <= 126


def detect(buffer: bytes | bytearray | memoryview | None) -> FormatToken | None:
    """Infer a format from the leading bytes of ``buffer``, or None."""
    if not buffer or len(buffer) < MIN_SNIFF_BYTES:
        return None
    head = bytes(buffer[:SNIFF_BYTES])
    hex_head = head.hex()
    for prefix, label in SIGNATURES:
        if hex_head.startswith(prefix):
            return normalize(label)
    if _printable(head[0]) and _printable(head[1]):
        return FormatToken.TXT
    return None
