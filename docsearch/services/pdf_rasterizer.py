"""
PDF Rasterizer
Renders each PDF page to a PNG with poppler's pdftocairo.
"""
import asyncio
import os
import re
import tempfile
import time
from typing import List, Optional
import structlog

from docsearch.config import get_settings
from docsearch.errors import FileProcessingError

logger = structlog.get_logger()

# pdftocairo zero-pads page numbers to the width of the page count
# (page-1.png ... page-9.png, or page-01.png ... page-12.png)
PAGE_FILE_PATTERN = re.compile(r"^page-(\d+)\.png$")


async def kill_process(process: asyncio.subprocess.Process) -> None:
    """Kill a child process that is still running and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


def order_page_files(file_names: List[str]) -> List[str]:
    """Keep generated page images and sort them by their numeric page index."""
    numbered = []
    for name in file_names:
        match = PAGE_FILE_PATTERN.match(name)
        if match:
            numbered.append((int(match.group(1)), name))
    return [name for _, name in sorted(numbered)]


class PdfRasterizer:
    """Converts a PDF byte stream into ordered page images."""

    def __init__(
        self,
        executable: str = "pdftocairo",
        scale_to: int = 1024,
        timeout_seconds: float = 120.0,
    ):
        self.executable = executable
        self.scale_to = scale_to
        self.timeout_seconds = timeout_seconds

    async def rasterize(self, pdf_bytes: bytes, filename: Optional[str] = None) -> List[bytes]:
        """
        Render every page of a PDF.

        Args:
            pdf_bytes: Raw PDF content
            filename: Original filename, for error messages

        Returns:
            PNG bytes per page, in ascending page order

        Raises:
            FileProcessingError: If the tool fails or produces no pages
        """
        start_time = time.monotonic()

        with tempfile.TemporaryDirectory(prefix="pdf-convert-") as temp_dir:
            pdf_path = os.path.join(temp_dir, "input.pdf")
            with open(pdf_path, "wb") as f:
                f.write(pdf_bytes)

            output_prefix = os.path.join(temp_dir, "page")
            await self._run_tool(pdf_path, output_prefix, filename)

            page_files = order_page_files(os.listdir(temp_dir))
            if not page_files:
                raise FileProcessingError("no images were generated from the PDF", filename)

            pages = []
            for name in page_files:
                with open(os.path.join(temp_dir, name), "rb") as f:
                    pages.append(f.read())

        logger.info(
            "PDF converted to images",
            page_count=len(pages),
            input_size_bytes=len(pdf_bytes),
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
        )
        return pages

    async def _run_tool(self, pdf_path: str, output_prefix: str, filename: Optional[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                "-png",
                "-scale-to",
                str(self.scale_to),
                pdf_path,
                output_prefix,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise FileProcessingError(f"{self.executable} is not installed", filename) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            await kill_process(process)
            raise FileProcessingError("PDF rasterization timed out", filename) from e
        except BaseException:
            # Cancelled upload: the child must not outlive its temp dir
            await kill_process(process)
            raise

        stderr_text = (stderr or b"").decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            logger.error("PDF rasterization failed", returncode=process.returncode, stderr=stderr_text)
            detail = stderr_text or f"exit code {process.returncode}"
            raise FileProcessingError(f"PDF rasterization failed: {detail}", filename)
        if stderr_text:
            logger.warning("PDF conversion warnings", stderr=stderr_text)


# Singleton instance
_pdf_rasterizer: Optional[PdfRasterizer] = None


def get_pdf_rasterizer() -> PdfRasterizer:
    """Get singleton rasterizer instance."""
    global _pdf_rasterizer
    if _pdf_rasterizer is None:
        settings = get_settings()
        _pdf_rasterizer = PdfRasterizer(
            executable=settings.pdftocairo_path,
            scale_to=settings.pdf_render_size,
            timeout_seconds=settings.rasterize_timeout_seconds,
        )
    return _pdf_rasterizer
