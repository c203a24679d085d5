from .formats import FormatToken


class ConversionError(Exception):
    """Base for every failure surfaced by the conversion router.

    Carries the stage that failed and the source/target tokens the router was
    working with at the time, so callers can report them without parsing
    messages.
    """

    code = "conversion_error"

    def __init__(self, message: str, *, stage: str, source: FormatToken, target: FormatToken) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.source = source
        self.target = target

    def __str__(self) -> str:
        return f"[{self.stage}] {self.source} -> {self.target}: {self.message}"

    def to_detail(self) -> dict[str, str]:
        return {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
            "source": str(self.source),
            "target": str(self.target),
        }


class UnsupportedConversion(ConversionError):
    code = "unsupported_conversion"

    def __init__(self, source: FormatToken, target: FormatToken, *, stage: str = "validate", message: str | None = None) -> None:
        super().__init__(
            message or f"Conversion from {source} to {target} is not supported",
            stage=stage,
            source=source,
            target=target,
        )


class DetectionInconclusive(UnsupportedConversion):
    code = "detection_inconclusive"

    def __init__(self, target: FormatToken) -> None:
        super().__init__(
            FormatToken.UNKNOWN,
            target,
            stage="detect",
            message="Source format was not declared and could not be detected from the file signature",
        )


class CodecFailure(ConversionError):
    code = "codec_failure"


class EmptyExtraction(ConversionError):
    code = "empty_extraction"

    def __init__(self, source: FormatToken, target: FormatToken) -> None:
        super().__init__(
            f"No text content could be extracted from the {source} input",
            stage="extract",
            source=source,
            target=target,
        )


class MatrixIntegrityError(RuntimeError):
    """A supported (source, target) pair has no pipeline behind it."""
