"""Text cleanup for page output drawn with the standard (WinAnsi/Latin-1) fonts."""

import re

# Applied in order; the final catch-all must run last.
_SUBSTITUTIONS: tuple[tuple["re.Pattern[str]", str], ...] = (
    (re.compile(r"[\u2010-\u2015]"), "-"),
    (re.compile(r"[\u2018-\u201B\u2032\u2035]"), "'"),
    (re.compile(r"[\u201C-\u201F\u2033\u2036]"), '"'),
    (re.compile(r"[\u2022\u2023\u2043\u204C\u204D]"), "*"),
    (re.compile(r"[^\x00-\x7F\u00A0-\u00FF]"), "?"),
)


def sanitize(text: str | None) -> str:
    """Replace characters a Latin-1 font cannot draw.

    The result always encodes as Latin-1 and ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if not text:
        return ""
    for pattern, replacement in _SUBSTITUTIONS:
        text = pattern.sub(replacement, text)
    return text
