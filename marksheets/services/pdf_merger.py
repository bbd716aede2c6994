"""PDF merge, overlay masking and compression for generated marksheets."""

import logging
from io import BytesIO
from pathlib import Path

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)


class MergeError(Exception):
    """Raised when PDFs cannot be merged into the final marksheet file."""

    pass


def _to_bytes(writer: PdfWriter) -> bytes:
    output = BytesIO()
    writer.write(output)
    output.seek(0)
    return output.getvalue()


def merge_pdfs(pdf_paths: list[Path], title: str = "Student Marksheet") -> bytes:
    """
    Concatenate PDFs in the given order into a single PDF.

    Files that cannot be read are skipped and logged.

    Returns:
        Merged PDF as bytes

    Raises:
        MergeError: If no pages could be merged
    """
    writer = PdfWriter()

    for pdf_path in pdf_paths:
        try:
            reader = PdfReader(str(pdf_path))
            for page in reader.pages:
                writer.add_page(page)
        except (PdfReadError, OSError) as e:
            logger.error(f"Skipping unreadable PDF {pdf_path.name}: {e}")
            continue

    if not writer.pages:
        raise MergeError("No pages could be merged from the converted PDFs")

    writer.add_metadata({"/Title": title, "/Creator": "marksheet-jobs", "/Producer": "marksheet-jobs"})
    logger.info(f"Merged {len(pdf_paths)} PDF(s) into {len(writer.pages)} page(s)")
    return _to_bytes(writer)


def compress_pdf(pdf_bytes: bytes) -> bytes:
    """
    Losslessly compress the content streams of every page.

    Returns the original bytes when compression does not make the file smaller.
    """
    reader = PdfReader(BytesIO(pdf_bytes))
    writer = PdfWriter(clone_from=reader)
    for page in writer.pages:
        page.compress_content_streams()

    compressed = _to_bytes(writer)
    if len(compressed) >= len(pdf_bytes):
        return pdf_bytes
    logger.info(f"Compressed PDF from {len(pdf_bytes)} to {len(compressed)} bytes")
    return compressed


def _mask_page(width: float, height: float, regions: list[list[float]]):
    """Build a single-page PDF with white filled rectangles over the regions."""
    packet = BytesIO()
    can = canvas.Canvas(packet, pagesize=(width, height))
    can.setFillColorRGB(1, 1, 1)
    can.setStrokeColorRGB(1, 1, 1)
    for x, y, w, h in regions:
        can.rect(x, y, w, h, stroke=0, fill=1)
    can.save()
    packet.seek(0)
    return PdfReader(packet).pages[0]


def apply_mask_overlay(pdf_bytes: bytes, regions: list[list[float]]) -> bytes:
    """
    Hide regions of every page (e.g. a template watermark or stale header) under white boxes.

    Args:
        pdf_bytes: PDF file as bytes
        regions: [[x, y, width, height], ...] in PDF points from the bottom-left corner

    Returns:
        Masked PDF as bytes
    """
    if not regions:
        return pdf_bytes

    reader = PdfReader(BytesIO(pdf_bytes))
    writer = PdfWriter()
    masks: dict[tuple[float, float], object] = {}

    for page in reader.pages:
        size = (float(page.mediabox.width), float(page.mediabox.height))
        if size not in masks:
            masks[size] = _mask_page(size[0], size[1], regions)
        page.merge_page(masks[size])
        writer.add_page(page)

    return _to_bytes(writer)
