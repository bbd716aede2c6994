"""Convert rendered office documents to PDF with a local office suite or a remote conversion service."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

DOCUMENT_CONTENT_TYPES = {
    ".odt": "application/vnd.oasis.opendocument.text",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


class ConversionError(Exception):
    """Raised when a document cannot be converted to PDF."""

    pass


def split_into_batches(lst: list, batch_size: int = 5) -> list[list]:
    """
    Group a list into sublists of a specified size.

    Parameters:
    lst (list): The list to be grouped.
    batch_size (int): The size of each group (default is 5).

    Returns:
    list of lists: A list where each element is a sublist of the original list.
    """
    batch_size = max(1, batch_size)
    return [lst[i : i + batch_size] for i in range(0, len(lst), batch_size)]


@dataclass
class ConversionOutcome:
    """PDFs produced, in document order, plus the documents that could not be converted."""

    pdf_paths: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)


class PdfConverter(ABC):
    """Converts one or more documents into a single PDF."""

    batch_size: int = 1

    @abstractmethod
    async def convert(self, documents: list[Path], out_dir: Path) -> Path:
        """
        Convert documents into one PDF in out_dir (merged in order when more than one).

        Raises:
            ConversionError: If conversion fails
        """
        pass


class LocalOfficeConverter(PdfConverter):
    """Headless LibreOffice (or compatible soffice binary) running on this machine."""

    batch_size = 1

    def __init__(self, binary: str = "libreoffice", timeout: float = 300.0):
        self.binary = binary
        self.timeout = timeout

    async def convert(self, documents: list[Path], out_dir: Path) -> Path:
        if len(documents) != 1:
            raise ConversionError("Local office conversion handles one document per call")
        document = documents[0]

        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                "--headless",
                "--convert-to",
                "pdf",
                "--outdir",
                str(out_dir),
                str(document),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConversionError(f"Could not start office binary '{self.binary}': {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ConversionError(f"Conversion of {document.name} timed out after {self.timeout}s") from e

        pdf_path = out_dir / f"{document.stem}.pdf"
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise ConversionError(f"Conversion of {document.name} failed ({process.returncode}): {message}")
        if not pdf_path.exists():
            raise ConversionError(f"Conversion of {document.name} produced no PDF")
        return pdf_path


class RemoteConverter(PdfConverter):
    """
    Remote LibreOffice conversion service with a Gotenberg-compatible API.

    Documents are posted in batches as multipart "files" with merge=true, so each call
    returns one PDF for the whole batch.
    """

    CONVERT_PATH = "/forms/libreoffice/convert"

    def __init__(self, http: httpx.AsyncClient, url: str, timeout: float = 300.0, batch_size: int = 5):
        self.http = http
        self.url = url.rstrip("/") + self.CONVERT_PATH
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self._calls = 0

    async def convert(self, documents: list[Path], out_dir: Path) -> Path:
        files = [
            ("files", (doc.name, doc.read_bytes(), DOCUMENT_CONTENT_TYPES.get(doc.suffix.lower(), "application/octet-stream")))
            for doc in documents
        ]
        try:
            response = await self.http.post(
                self.url,
                files=files,
                data={"merge": "true"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise ConversionError(f"Conversion service request failed: {e}") from e

        if not response.is_success:
            raise ConversionError(f"Conversion service returned {response.status_code}: {response.text[:200]}")
        if not response.content.startswith(b"%PDF"):
            raise ConversionError("Conversion service did not return a PDF")

        self._calls += 1
        pdf_path = out_dir / f"{documents[0].stem}_batch_{self._calls}.pdf"
        pdf_path.write_bytes(response.content)
        logger.info(f"PDF saved as {pdf_path.name} ({len(documents)} document(s))")
        return pdf_path


async def convert_documents(converter: PdfConverter, documents: list[Path], out_dir: Path) -> ConversionOutcome:
    """
    Convert documents sequentially, in batches of the converter's batch size.

    A failed batch is retried one document at a time so a single bad document only
    drops itself. Documents that still fail are reported in ConversionOutcome.failed.
    """
    outcome = ConversionOutcome()
    for batch in split_into_batches(documents, converter.batch_size):
        try:
            outcome.pdf_paths.append(await converter.convert(batch, out_dir))
            continue
        except ConversionError as e:
            if len(batch) == 1:
                logger.error(f"Skipping {batch[0].name}: {e}")
                outcome.failed.append(batch[0])
                continue
            logger.warning(f"Batch of {len(batch)} documents failed, retrying individually: {e}")

        for document in batch:
            try:
                outcome.pdf_paths.append(await converter.convert([document], out_dir))
            except ConversionError as e:
                logger.error(f"Skipping {document.name}: {e}")
                outcome.failed.append(document)
    return outcome
