"""
PDF preview rendering.

Rasterizes the first page of an in-memory PDF with PyMuPDF. The engine is
imported on first use, once per process; callers that arrive while that
import is in flight wait on the same attempt.
"""
import asyncio
import importlib
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import ConversionError, ConversionErrorKind
from app.services.storage import LocalFile

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)

_IMAGE_TYPES = {
    "png": ("image/png", ".png"),
    "jpeg": ("image/jpeg", ".jpg"),
}


@dataclass
class ConversionResult:
    file: Optional[LocalFile] = None
    width: int = 0
    height: int = 0
    error: Optional[ConversionErrorKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.file is not None

    @classmethod
    def failed(cls, kind: ConversionErrorKind, message: str) -> "ConversionResult":
        return cls(error=kind, message=message)


class RenderEngineLoader:
    """Process-scoped lazy import of the rendering engine with single-flight init."""

    def __init__(self, module_name: str = "fitz", importer: Callable[[str], Any] = importlib.import_module):
        self.module_name = module_name
        self.importer = importer
        self.load_count = 0
        self._engine: Any = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def loaded(self) -> bool:
        return self._engine is not None

    async def load(self) -> Any:
        if self._engine is not None:
            return self._engine

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._import())
        pending = self._pending

        try:
            engine = await asyncio.shield(pending)
        except Exception:
            # A failed attempt is not cached; the next caller starts over.
            if self._pending is pending:
                self._pending = None
            raise

        self._engine = engine
        if self._pending is pending:
            self._pending = None
        return engine

    async def _import(self) -> Any:
        self.load_count += 1
        logger.info(f"Loading PDF rendering engine ({self.module_name})...")
        engine = await asyncio.to_thread(self.importer, self.module_name)
        logger.info("PDF rendering engine ready")
        return engine


engine_loader = RenderEngineLoader()


def preview_filename(source_name: str, extension: str) -> str:
    if _PDF_SUFFIX.search(source_name):
        return _PDF_SUFFIX.sub(extension, source_name)
    return f"{source_name}{extension}"


class PdfRenderer:
    """
    Converts page 1 of a PDF to an image. Never raises: every failure comes
    back as a ConversionResult carrying a ConversionErrorKind.
    """

    def __init__(
        self,
        loader: Optional[RenderEngineLoader] = None,
        scale: Optional[float] = None,
        max_bytes: Optional[int] = None,
        image_format: Optional[str] = None,
        quality: Optional[float] = None,
    ):
        self.loader = loader or engine_loader
        self.scale = scale or settings.render_scale
        self.max_bytes = max_bytes or settings.max_render_bytes
        self.image_format = (image_format or settings.preview_format).lower()
        self.quality = quality if quality is not None else settings.preview_quality
        if self.image_format not in _IMAGE_TYPES:
            raise ValueError(f"Unsupported preview format: {self.image_format}")

    async def convert(self, source: LocalFile) -> ConversionResult:
        logger.info(f"Starting PDF to image conversion: {source.name}")

        if source.content_type != PDF_CONTENT_TYPE:
            return ConversionResult.failed(ConversionErrorKind.INVALID_INPUT, "Invalid PDF file")
        if source.size > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            return ConversionResult.failed(
                ConversionErrorKind.INVALID_INPUT, f"PDF file too large (max {limit_mb}MB)"
            )

        try:
            engine = await self.loader.load()
        except Exception as e:
            logger.error(f"Failed to load PDF rendering engine: {e}")
            return ConversionResult.failed(
                ConversionErrorKind.ENGINE_LOAD_FAILED, "Failed to load PDF processing library"
            )

        try:
            image, width, height = await asyncio.to_thread(self._render, engine, source.data)
        except ConversionError as e:
            logger.warning(f"PDF conversion failed ({e.kind.value}): {e.message}")
            return ConversionResult.failed(e.kind, e.message)
        except Exception as e:
            logger.error(f"PDF conversion error: {e}", exc_info=True)
            return ConversionResult.failed(*self._classify(engine, e))

        content_type, extension = _IMAGE_TYPES[self.image_format]
        preview = LocalFile(
            name=preview_filename(source.name, extension),
            content_type=content_type,
            data=image,
        )
        logger.info(f"Conversion successful: {preview.name} {width}x{height} ({preview.size / 1024:.1f}KB)")
        return ConversionResult(file=preview, width=width, height=height)

    def _render(self, fitz: Any, data: bytes):
        document = fitz.open(stream=data, filetype="pdf")
        try:
            if document.needs_pass:
                raise ConversionError(
                    ConversionErrorKind.ENCRYPTED_DOCUMENT, "Password-protected PDFs are not supported"
                )
            if document.page_count < 1:
                raise ConversionError(ConversionErrorKind.INVALID_INPUT, "PDF has no pages")

            page = document.load_page(0)
            pixmap = self._rasterize(fitz, page)

            try:
                if self.image_format == "jpeg":
                    image = pixmap.tobytes("jpeg", jpg_quality=round(self.quality * 100))
                else:
                    image = pixmap.tobytes("png")
            except Exception as e:
                raise ConversionError(ConversionErrorKind.ENCODE_FAILED, "Failed to create image from PDF") from e
            if not image:
                raise ConversionError(ConversionErrorKind.ENCODE_FAILED, "Failed to create image from PDF")

            return image, pixmap.width, pixmap.height
        finally:
            document.close()

    def target_size(self, page_width: float, page_height: float) -> Tuple[int, int]:
        return round(page_width * self.scale), round(page_height * self.scale)

    def _rasterize(self, fitz: Any, page: Any):
        """Page image of exactly target_size(page.rect), on an opaque white canvas."""
        rect = page.rect
        width, height = self.target_size(rect.width, rect.height)
        if width < 1 or height < 1:
            raise ConversionError(ConversionErrorKind.INVALID_INPUT, "PDF page has no area")

        # Per-axis zoom so the scaled page spans the rounded size
        matrix = fitz.Matrix(width / rect.width, height / rect.height)
        pixmap = page.get_pixmap(matrix=matrix, alpha=False)
        if (pixmap.width, pixmap.height) != (width, height):
            # MuPDF rounds the device box outward; resample to the exact size
            pixmap = fitz.Pixmap(pixmap, width, height)
        return pixmap

    @staticmethod
    def _classify(fitz: Any, error: Exception):
        file_data_error = getattr(fitz, "FileDataError", None)
        if file_data_error is not None and isinstance(error, file_data_error):
            return ConversionErrorKind.INVALID_INPUT, "Invalid or corrupted PDF file"
        # Fallback only; needs_pass is the primary signal
        if "password" in str(error).lower():
            return ConversionErrorKind.ENCRYPTED_DOCUMENT, "Password-protected PDFs are not supported"
        return ConversionErrorKind.RENDER_FAILED, "PDF conversion failed"
