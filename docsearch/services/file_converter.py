"""
File Converter Service
Converts Word documents to PDF using LibreOffice CLI, so they can follow
the PDF lane.
"""
import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional
import structlog

from docsearch.config import get_settings
from docsearch.errors import FileProcessingError
from docsearch.services.file_handler import get_extension
from docsearch.services.pdf_rasterizer import kill_process

logger = structlog.get_logger()


class FileConverter:
    """
    Converts office documents to PDF using LibreOffice.

    Supported formats:
    - DOCX, DOC → PDF
    """

    # Common install locations, checked before PATH
    KNOWN_PATHS = [
        # Mac
        "/Applications/LibreOffice.app/Contents/MacOS/soffice",
        # Linux
        "/usr/bin/soffice",
        "/usr/bin/libreoffice",
        "/usr/local/bin/soffice",
        # Alternative Mac paths
        "/opt/homebrew/bin/soffice",
    ]

    def __init__(self, soffice_path: Optional[str] = None, timeout_seconds: float = 120.0):
        self.soffice_path = soffice_path or self._find_libreoffice()
        self.timeout_seconds = timeout_seconds
        if self.soffice_path:
            logger.info(f"LibreOffice found at: {self.soffice_path}")
        else:
            logger.warning("LibreOffice not found - Word uploads will fail")

    def _find_libreoffice(self) -> Optional[str]:
        """Find LibreOffice CLI executable."""
        for path in self.KNOWN_PATHS:
            if os.path.exists(path):
                return path
        return shutil.which("soffice") or shutil.which("libreoffice")

    async def convert_to_pdf(self, content: bytes, filename: str) -> bytes:
        """
        Convert a document to PDF.

        Args:
            content: Raw document bytes
            filename: Original filename (its extension tells LibreOffice the format)

        Returns:
            PDF bytes

        Raises:
            FileProcessingError: If LibreOffice is missing or the conversion fails
        """
        if not self.soffice_path:
            raise FileProcessingError("LibreOffice is not installed", filename)

        extension = get_extension(filename) or "docx"

        with tempfile.TemporaryDirectory(prefix="pdf_convert_") as output_dir:
            input_path = os.path.join(output_dir, f"input.{extension}")
            with open(input_path, "wb") as f:
                f.write(content)

            logger.info(f"Converting {extension.upper()} to PDF...", filename=filename)

            process = await asyncio.create_subprocess_exec(
                self.soffice_path,
                "--headless",  # No GUI
                "--convert-to", "pdf",
                "--outdir", output_dir,
                input_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                await kill_process(process)
                raise FileProcessingError("PDF conversion timed out", filename) from e
            except BaseException:
                await kill_process(process)
                raise

            if process.returncode != 0:
                stderr_text = (stderr or b"").decode("utf-8", errors="replace").strip()
                logger.error(f"Conversion failed: {stderr_text}")
                raise FileProcessingError(f"PDF conversion failed: {stderr_text}", filename)

            output_pdf = os.path.join(output_dir, f"{Path(input_path).stem}.pdf")
            if not os.path.exists(output_pdf):
                raise FileProcessingError("conversion completed but PDF file not found", filename)

            with open(output_pdf, "rb") as f:
                pdf_bytes = f.read()

        logger.info("✅ Conversion successful", filename=filename, pdf_size_bytes=len(pdf_bytes))
        return pdf_bytes


# Singleton instance
_file_converter: Optional[FileConverter] = None


def get_file_converter() -> FileConverter:
    """Get or create the file converter instance."""
    global _file_converter
    if _file_converter is None:
        settings = get_settings()
        _file_converter = FileConverter(soffice_path=settings.libreoffice_path)
    return _file_converter
