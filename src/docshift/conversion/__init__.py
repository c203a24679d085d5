"""
Domain layer for document conversion.
Provides format classification (normalizer, signature detector, capability
matrix), the conversion router that dispatches to extraction/render
pipelines, provider interfaces, and a job service so front-ends (HTTP or
others) can use the same core logic.
"""

from .detection import detect
from .errors import (
    CodecFailure,
    ConversionError,
    DetectionInconclusive,
    EmptyExtraction,
    MatrixIntegrityError,
    UnsupportedConversion,
)
from .formats import FormatToken, is_generic_label, normalize
from .interfaces import ConversionRequest, ConversionResult, SecurityGateway, StorageGateway
from .matrix import CAPABILITY_MATRIX, is_supported
from .pipelines import PIPELINES, ConversionLimits, PipelineKind
from .router import ConversionRouter
from .sanitizer import sanitize
from .service import ConversionService, JobRecord, JobStatus
