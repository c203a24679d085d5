"""
docshift: multi-format document conversion router.

This module provides a FastAPI application exposing REST endpoints for
converting between PDF, Office, delimited-text and raster formats.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
