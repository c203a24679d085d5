import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from .detection import detect
from .errors import CodecFailure, ConversionError, DetectionInconclusive, EmptyExtraction, UnsupportedConversion
from .formats import FormatToken, is_generic_label, normalize
from .interfaces import (
    Box,
    ConversionRequest,
    ConversionResult,
    FlowDocumentGenerator,
    PageDocumentGenerator,
    RasterCodec,
    SlideDeckGenerator,
    SpreadsheetGenerator,
    TabularExtractor,
    TextExtractor,
)
from .matrix import CAPABILITY_MATRIX
from .pipelines import (
    PIPELINES,
    TABULAR_SOURCES,
    ConversionLimits,
    PipelineKind,
    check_pipeline_coverage,
    chunk_lines,
    fit_within,
)
from .sanitizer import sanitize

logger = logging.getLogger(__name__)

F = FormatToken


class ConversionRouter:
    """Routes a buffer from its (possibly misdeclared) source format to a target format.

    The router itself holds no mutable state; all decode/encode work goes to
    the providers handed in at construction, which makes a single instance
    safe to share across threads as long as the providers are.
    """

    def __init__(
        self,
        raster: RasterCodec,
        text_extractor: TextExtractor,
        tabular: TabularExtractor,
        page_generator: PageDocumentGenerator,
        flow_generator: FlowDocumentGenerator,
        slide_generator: SlideDeckGenerator,
        spreadsheet_generator: SpreadsheetGenerator,
        *,
        limits: ConversionLimits | None = None,
        matrix: Mapping[FormatToken, frozenset[FormatToken]] = CAPABILITY_MATRIX,
        pipelines: Mapping[tuple[FormatToken, FormatToken], PipelineKind] = PIPELINES,
    ) -> None:
        check_pipeline_coverage(matrix, pipelines)
        self._raster = raster
        self._text = text_extractor
        self._tabular = tabular
        self._pages = page_generator
        self._flow = flow_generator
        self._slides = slide_generator
        self._sheets = spreadsheet_generator
        self._limits = limits or ConversionLimits()
        self._matrix = matrix
        self._pipelines = pipelines

    def is_supported(self, source: FormatToken, target: FormatToken) -> bool:
        return source == target or target in self._matrix.get(source, frozenset())

    def convert_bytes(
        self, payload: bytes, source: "FormatToken | str | None", target: "FormatToken | str"
    ) -> ConversionResult:
        return self.convert(ConversionRequest(payload=payload, declared_source=source, target=target))

    def convert(self, request: ConversionRequest) -> ConversionResult:
        try:
            return self._convert(request)
        except ConversionError as e:
            logger.warning("Conversion failed: %s", e)
            raise

    def _convert(self, request: ConversionRequest) -> ConversionResult:
        source = normalize(request.declared_source)
        target = normalize(request.target)
        if target is F.UNKNOWN:
            raise UnsupportedConversion(source, target)

        if is_generic_label(request.declared_source):
            detected = detect(request.payload)
            if detected is None:
                raise DetectionInconclusive(target)
            logger.info("Auto-detected source format %s (declared %r)", detected, request.declared_source)
            source = detected

        logger.debug("Routing request: %s -> %s", source, target)
        if not self.is_supported(source, target):
            raise UnsupportedConversion(source, target)

        if source == target:
            return ConversionResult(payload=request.payload, format=target, source=source)

        kind = self._pipelines[(source, target)]
        if kind is PipelineKind.IMAGE_TRANSCODE:
            payload = self._transcode(request.payload, source, target)
        elif kind is PipelineKind.EMBED_AS_ASSET:
            payload = self._embed(request.payload, source, target)
        else:
            payload = self._extract_then_render(request.payload, source, target)

        if not payload:
            raise CodecFailure("Provider returned an empty document", stage="serialize", source=source, target=target)
        return ConversionResult(payload=bytes(payload), format=target, source=source)

    @contextmanager
    def _stage(self, name: str, source: FormatToken, target: FormatToken) -> Iterator[None]:
        try:
            yield
        except ConversionError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            raise CodecFailure(message, stage=name, source=source, target=target) from e

    @contextmanager
    def _page_document(self) -> Iterator[Any]:
        doc = self._pages.new_document()
        try:
            yield doc
        finally:
            self._pages.close(doc)

    # ------------------------------------------------------------------
    # Image transcode
    # ------------------------------------------------------------------

    def _transcode(self, payload: bytes, source: FormatToken, target: FormatToken) -> bytes:
        with self._stage("decode", source, target):
            image = self._raster.decode(payload)
        with self._stage("encode", source, target):
            return self._raster.encode(image, target)

    # ------------------------------------------------------------------
    # Embed as asset
    # ------------------------------------------------------------------

    def _embed(self, payload: bytes, source: FormatToken, target: FormatToken) -> bytes:
        lim = self._limits
        with self._stage("decode", source, target):
            image = self._raster.decode(payload)

        with self._stage("render", source, target):
            if target is F.PDF:
                with self._page_document() as doc:
                    page_w, page_h = self._pages.page_size(doc)
                    m = lim.page_image_margin
                    w, h = fit_within(image.width, image.height, page_w - 2 * m, page_h - 2 * m)
                    asset = self._pages.embed_raster_asset(doc, payload)
                    self._pages.place_asset(doc, asset, Box(m, m, w, h))
                    out = self._pages.serialize(doc)
            elif target is F.DOCX:
                doc = self._flow.new_document()
                w, h = fit_within(image.width, image.height, lim.docx_image_box, lim.docx_image_box)
                self._flow.add_image(doc, payload, w, h)
                out = self._flow.serialize(doc)
            elif target is F.PPTX:
                deck = self._slides.new_deck()
                box = self._slide_box(deck)
                w, h = fit_within(image.width, image.height, box.width, box.height)
                slide = self._slides.new_slide(deck)
                self._slides.add_image(slide, payload, Box(box.x, box.y, w, h))
                out = self._slides.serialize(deck)
            else:
                raise UnsupportedConversion(source, target, stage="render")
        return out

    # ------------------------------------------------------------------
    # Extract then render
    # ------------------------------------------------------------------

    def _extract_then_render(self, payload: bytes, source: FormatToken, target: FormatToken) -> bytes:
        text = self._extract(payload, source, target)
        if target is not F.PPTX and not text.strip():
            raise EmptyExtraction(source, target)

        with self._stage("render", source, target):
            if target is F.PDF:
                return self._render_page(text, source)
            if target is F.DOCX:
                return self._render_flow(text, source)
            if target is F.PPTX:
                return self._render_slides(text)
            if target is F.XLSX:
                return self._render_sheet(payload, text, source)
            if target in (F.TXT, F.CSV):
                return text.encode("utf-8")
        raise UnsupportedConversion(source, target, stage="render")

    def _extract(self, payload: bytes, source: FormatToken, target: FormatToken) -> str:
        with self._stage("extract", source, target):
            if source in (F.TXT, F.CSV):
                text = payload.decode("utf-8", errors="replace")
            elif source is F.XLSX:
                text = self._tabular.first_sheet_as_delimited_text(payload)
            else:
                text = self._text.extract_text(payload, source)
        if not isinstance(text, str):
            raise CodecFailure(
                f"Extractor returned {type(text).__name__} instead of text",
                stage="extract",
                source=source,
                target=target,
            )
        return text

    def _render_page(self, text: str, source: FormatToken) -> bytes:
        lim = self._limits
        cap = lim.plain_text_page_max_chars if source is F.TXT else lim.document_page_max_chars
        size = lim.tabular_font_size if source in TABULAR_SOURCES else lim.page_font_size
        m = lim.page_text_margin
        with self._page_document() as doc:
            page_w, page_h = self._pages.page_size(doc)
            self._pages.draw_text(doc, sanitize(text[:cap]), Box(m, m, page_w - 2 * m, page_h - 2 * m), size)
            return self._pages.serialize(doc)

    def _render_flow(self, text: str, source: FormatToken) -> bytes:
        lines = text.splitlines()
        if source is F.PDF:
            lines = [line for line in lines if line.strip()]
        doc = self._flow.new_document()
        for line in lines:
            self._flow.add_paragraph(doc, line)
        return self._flow.serialize(doc)

    def _render_slides(self, text: str) -> bytes:
        lim = self._limits
        lines = [line for line in text.splitlines() if line.strip()]
        deck = self._slides.new_deck()
        box = self._slide_box(deck)
        chunks = chunk_lines(lines, lim.lines_per_slide)
        if not chunks:
            slide = self._slides.new_slide(deck)
            self._slides.add_text_block(slide, lim.empty_deck_text, Box(box.x, box.y, box.width, box.height / 9), lim.slide_font_size)
        for chunk in chunks:
            slide = self._slides.new_slide(deck)
            self._slides.add_text_block(slide, "\n".join(chunk), box, lim.slide_font_size)
        return self._slides.serialize(deck)

    def _render_sheet(self, payload: bytes, text: str, source: FormatToken) -> bytes:
        if source is F.CSV:
            rows = self._tabular.parse_delimited_text(payload)
        else:
            rows = [[line] for line in text.splitlines()]
        return self._sheets.build(rows, infer_types=source is F.CSV)

    def _slide_box(self, deck: object) -> Box:
        slide_w, slide_h = self._slides.slide_size(deck)
        r = self._limits.slide_margin_ratio
        return Box(slide_w * r, slide_h * r, slide_w * (1 - 2 * r), slide_h * (1 - 2 * r))
