"""Fill document templates (ODT, DOCX, XLSX register) with marksheet data."""

import io
import logging
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from docx.opc.exceptions import PackageNotFoundError
from docxtpl import DocxTemplate
from jinja2 import Environment, TemplateError
from openpyxl import load_workbook

from marksheets.services.document_template import (
    ODF_XML_PARTS,
    read_odf_package,
    write_odf_package,
)
from marksheets.services.platform_client import PlatformAPIError, PlatformClient

logger = logging.getLogger(__name__)

ODF_SUFFIXES = (".odt", ".ott")
DOCX_SUFFIXES = (".docx", ".dotx")
REGISTER_SUFFIXES = (".xlsx",)


class TemplateDownloadError(Exception):
    """Raised when the document template cannot be downloaded or is not a supported package."""

    pass


class RenderError(Exception):
    """Raised when a template cannot be filled for a student."""

    pass


def detect_template_suffix(content: bytes, url: str) -> str:
    """
    Work out the template type from its package contents, falling back to the URL suffix.

    Signed storage URLs often carry no extension, so the package is inspected first.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as zf:
            names = set(zf.namelist())
            if "mimetype" in names:
                mimetype = zf.read("mimetype").decode("ascii", errors="ignore").strip()
                if mimetype.endswith("opendocument.text") or mimetype.endswith("opendocument.text-template"):
                    return ".odt"
            if "word/document.xml" in names:
                return ".docx"
            if "xl/workbook.xml" in names:
                return ".xlsx"
    except zipfile.BadZipFile:
        pass
    return Path(urlparse(url).path).suffix.lower()


async def download_template(client: PlatformClient, url: str, dest_dir: Path) -> Path:
    """
    Download the job template into dest_dir.

    Returns:
        Local template path with a suffix matching its type

    Raises:
        TemplateDownloadError: If the download fails or the template type is unsupported
    """
    logger.info("Downloading template from URL...")
    try:
        content = await client.download(url)
    except PlatformAPIError as e:
        raise TemplateDownloadError(f"Failed to download template: {e.detail}") from e

    suffix = detect_template_suffix(content, url)
    if suffix not in ODF_SUFFIXES + DOCX_SUFFIXES + REGISTER_SUFFIXES:
        raise TemplateDownloadError(f"Unsupported template type '{suffix or 'unknown'}' for {url}")

    template_path = dest_dir / f"template{suffix}"
    template_path.write_bytes(content)
    logger.info(f"Template saved locally to: {template_path}")
    return template_path


class DocumentRenderer(ABC):
    """Fills one document per student from a template."""

    @abstractmethod
    def render(self, template_path: Path, context: dict[str, Any], dest: Path) -> Path:
        pass


class OdtRenderer(DocumentRenderer):
    """
    Render ODF text documents by treating content.xml and styles.xml as Jinja2 templates.

    Values are XML-escaped; the package keeps its uncompressed mimetype as first entry.
    """

    def __init__(self):
        self.env = Environment(autoescape=True, keep_trailing_newline=True)

    def render(self, template_path: Path, context: dict[str, Any], dest: Path) -> Path:
        try:
            entries = read_odf_package(template_path)
        except (zipfile.BadZipFile, OSError) as e:
            raise RenderError(f"Template {template_path.name} is not a valid ODF package: {e}") from e

        for part in ODF_XML_PARTS:
            if part not in entries:
                continue
            try:
                template = self.env.from_string(entries[part].decode("utf-8"))
                entries[part] = template.render(context).encode("utf-8")
            except (TemplateError, UnicodeDecodeError) as e:
                raise RenderError(f"Failed to render {part}: {e}") from e

        return write_odf_package(entries, dest)


class DocxRenderer(DocumentRenderer):
    """Render Word documents with docxtpl."""

    def render(self, template_path: Path, context: dict[str, Any], dest: Path) -> Path:
        try:
            doc = DocxTemplate(str(template_path))
            doc.render(context, autoescape=True)
            doc.save(str(dest))
        except TemplateError as e:
            raise RenderError(f"Failed to render {template_path.name}: {e}") from e
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise RenderError(f"Template {template_path.name} is not a valid Word document: {e}") from e
        return dest


def get_renderer(template_path: Path) -> DocumentRenderer:
    """Select the per-student renderer for a template by its suffix."""
    suffix = template_path.suffix.lower()
    if suffix in ODF_SUFFIXES:
        return OdtRenderer()
    if suffix in DOCX_SUFFIXES:
        return DocxRenderer()
    raise RenderError(f"No per-student renderer for '{suffix}' templates")


def is_register_template(template_path: Path) -> bool:
    return template_path.suffix.lower() in REGISTER_SUFFIXES


def _cell_value(value: Any) -> Any:
    """Coerce values openpyxl cannot store (nested structures) to text."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class RegisterWorkbookRenderer:
    """
    Fill a class register (one row per student) into an XLSX template.

    The header row holds ``{key}`` placeholders naming student fields. Student rows are
    written from the row below it; string values starting with "=" are kept as formulas.
    The placeholder row is hidden and leftover template rows below the data are removed.
    """

    def __init__(self, header_row: int = 18, stale_rows: int = 100):
        self.header_row = header_row
        self.stale_rows = stale_rows

    def placeholder_keys(self, worksheet) -> list[str | None]:
        keys: list[str | None] = []
        for cell in worksheet[self.header_row]:
            value = cell.value
            if value is None or not str(value).strip():
                keys.append(None)
            else:
                keys.append(str(value).strip().strip("{}").strip())
        return keys

    def render(self, template_path: Path, rows: list[dict[str, Any]], dest: Path) -> Path:
        try:
            workbook = load_workbook(template_path)
        except (zipfile.BadZipFile, OSError, KeyError, ValueError) as e:
            raise RenderError(f"Template {template_path.name} is not a valid workbook: {e}") from e

        worksheet = workbook.worksheets[0]
        keys = self.placeholder_keys(worksheet)
        if not any(keys):
            raise RenderError(f"No placeholders found in header row {self.header_row}")

        row_index = self.header_row + 1
        for values in rows:
            for column, key in enumerate(keys, start=1):
                if key is None:
                    continue
                # openpyxl stores strings starting with "=" as formulas
                worksheet.cell(row=row_index, column=column, value=_cell_value(values.get(key)))
            row_index += 1

        last_filled = row_index - 1
        worksheet.row_dimensions[self.header_row].hidden = True
        worksheet.delete_rows(last_filled + 1, self.stale_rows)
        workbook.calculation.fullCalcOnLoad = True

        workbook.save(dest)
        logger.info(f"Register filled with {len(rows)} rows and saved as {dest.name}")
        return dest
