"""Marksheet generation job: fetch marks, fill the template per student, convert, merge and upload."""

import io
import logging
import shutil
import zipfile
from pathlib import Path
from typing import Any

from marksheets.config import JobSettings, Settings
from marksheets.schemas.job import JobResult
from marksheets.schemas.marksheet import MarksheetConfig
from marksheets.services.document_renderer import (
    RegisterWorkbookRenderer,
    RenderError,
    download_template,
    get_renderer,
    is_register_template,
)
from marksheets.services.document_template import (
    DocumentTemplate,
    ImageReplaceTemplate,
    NoOpTemplate,
    TextReplaceTemplate,
)
from marksheets.services.job_history import NOTES_MAX_LENGTH, JobHistoryReporter
from marksheets.services.marksheet_config import MarksheetConfigSource
from marksheets.services.marksheet_transform import transform_student
from marksheets.services.pdf_converter import ConversionError, PdfConverter, convert_documents
from marksheets.services.pdf_merger import apply_mask_overlay, compress_pdf, merge_pdfs
from marksheets.services.platform_client import PlatformClient
from marksheets.services.storage.base import StorageBackend
from marksheets.utils.naming import result_key, student_document_name, unique_name

logger = logging.getLogger(__name__)

NO_STUDENTS_NOTES = "Completed: No students found."
STUDENT_ID_FIELDS = ("_uid", "student_id", "id")

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def matches_student_filter(record: dict[str, Any], wanted: set[str]) -> bool:
    """True if any of the record's id fields is in wanted (an empty filter matches all)."""
    if not wanted:
        return True
    return any(str(record[key]) in wanted for key in STUDENT_ID_FIELDS if record.get(key) is not None)


def _zip_documents(documents: list[Path]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for document in documents:
            zf.write(document, arcname=document.name)
    return buffer.getvalue()


def _completion_notes(generated: int, skipped: list[str]) -> str | None:
    if not skipped:
        return None
    return f"Completed: {generated} generated, {len(skipped)} skipped ({', '.join(skipped)})"


class MarksheetJob:
    """
    One run of the marksheet pipeline for a school, batch selection and template.

    Students are processed sequentially. A student whose document cannot be rendered or
    converted is skipped and listed in the completion notes; the job fails only when no
    document survives or a job-level step (marks, template, config, merge, upload) fails.
    The terminal state is reported once through the job history reporter.
    """

    def __init__(
        self,
        settings: Settings,
        job: JobSettings,
        client: PlatformClient,
        config_source: MarksheetConfigSource,
        converter: PdfConverter,
        storage: StorageBackend,
        reporter: JobHistoryReporter,
    ):
        self.settings = settings
        self.job = job
        self.client = client
        self.config_source = config_source
        self.converter = converter
        self.storage = storage
        self.reporter = reporter
        self.work_dir = Path(settings.output_dir) / f"job_{job.job_id or 'local'}"

    async def run(self) -> JobResult:
        """
        Run the job end to end.

        Returns:
            JobResult with the uploaded file path on success. Errors never propagate: they
            are logged, reported as a failed job and returned as status=False.
        """
        logger.info(f"Starting marksheet job {self.job.job_id} for school {self.job.school_id}, batch {self.job.batch_id}")
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            result = await self._run()
        except Exception as e:
            logger.error(f"FATAL ERROR during marksheet generation: {e}", exc_info=True)
            message = str(e) or type(e).__name__
            await self.reporter.fail(message)
            return JobResult(status=False, notes=f"Failed: {message}"[:NOTES_MAX_LENGTH])
        finally:
            if self.settings.cleanup_output:
                shutil.rmtree(self.work_dir, ignore_errors=True)

        await self.reporter.succeed(file_path=result.file_path, notes=result.notes)
        logger.info(f"Marksheet job {self.job.job_id} completed: {result.generated} generated, {len(result.skipped)} skipped")
        return result

    async def fetch_students(self) -> list[dict[str, Any]]:
        """Fetch mark records for every batch selection, applying the STUDENT_IDS filter."""
        students: list[dict[str, Any]] = []
        for batch_id, group_ids in self.job.batch_selections():
            records = await self.client.get_marks(
                self.job.school_id,
                batch_id,
                group_ids,
                division_id=self.job.division_id,
                ranking_id=self.job.ranking_id,
            )
            logger.info(f"Fetched {len(records)} student record(s) for batch {batch_id}")
            students.extend(records)

        wanted = self.job.student_id_filter
        if wanted:
            students = [s for s in students if matches_student_filter(s, wanted)]
            logger.info(f"{len(students)} student(s) left after STUDENT_IDS filter")
        return students

    async def _run(self) -> JobResult:
        students = await self.fetch_students()
        if not students:
            logger.info("No students found. Exiting gracefully.")
            return JobResult(status=True, notes=NO_STUDENTS_NOTES)

        template_path = await download_template(self.client, self.job.template_url, self.work_dir)

        if self.job.template_header:
            template_path = await TextReplaceTemplate(self.job.template_header).apply(template_path, self.work_dir)

        if is_register_template(template_path):
            return await self._generate_register(template_path, students)

        config = await self.config_source.load(self.job.school_id, self.job.all_group_ids)
        school = await self.client.get_school_detail(self.job.school_id)
        pattern = await self.client.get_naming_convention(self.job.school_id)

        documents, skipped = await self._render_documents(template_path, students, config, school, pattern)
        if not documents:
            raise RenderError(f"None of the {len(students)} student documents could be rendered")

        if not self.settings.generate_pdf:
            return await self._upload_archive(list(documents), skipped)
        return await self._upload_pdf(documents, skipped)

    def _context(self, transformed: dict[str, Any], school: dict[str, Any]) -> dict[str, Any]:
        return {
            **transformed,
            "school": school,
            "header": self.job.template_header,
            "job": {
                "school_id": self.job.school_id,
                "batch_id": self.job.batch_key,
                "course_id": self.job.course_id,
                "job_id": self.job.job_id,
            },
        }

    def _image_template(self, record: dict[str, Any]) -> DocumentTemplate:
        """Per-student image swap for the configured frames, or a no-op when none are set."""
        frames = {frame: str(record.get(field) or "") for frame, field in self.settings.image_frames.items()}
        if not any(frames.values()):
            return NoOpTemplate()
        return ImageReplaceTemplate(frames, self.client)

    async def _render_documents(
        self,
        template_path: Path,
        students: list[dict[str, Any]],
        config: MarksheetConfig,
        school: dict[str, Any],
        pattern: str | None,
    ) -> tuple[dict[Path, str], list[str]]:
        """
        Render one document per student.

        Returns:
            Tuple of ({document_path: student_label} in student order, skipped student labels)
        """
        renderer = get_renderer(template_path)
        docs_dir = self.work_dir / "documents"
        docs_dir.mkdir(parents=True, exist_ok=True)

        documents: dict[Path, str] = {}
        skipped: list[str] = []
        taken: set[str] = set()

        for index, record in enumerate(students, start=1):
            name = unique_name(student_document_name(record, index, pattern), taken)
            label = str(record.get("full_name") or name)
            logger.info(f"Processing student {index}/{len(students)}: {label}")

            transformed = transform_student(record, config)
            student_template = await self._image_template(record).apply(template_path, self.work_dir)
            dest = docs_dir / f"{name}{template_path.suffix}"
            try:
                renderer.render(student_template, self._context(transformed, school), dest)
            except RenderError as e:
                logger.error(f"Skipping student {label}: {e}")
                skipped.append(label)
                continue
            finally:
                if student_template != template_path:
                    student_template.unlink(missing_ok=True)
            documents[dest] = label

        logger.info(f"Rendered {len(documents)} document(s), skipped {len(skipped)}")
        return documents, skipped

    async def _upload_pdf(self, documents: dict[Path, str], skipped: list[str]) -> JobResult:
        pdf_dir = self.work_dir / "pdf"
        pdf_dir.mkdir(parents=True, exist_ok=True)

        outcome = await convert_documents(self.converter, list(documents), pdf_dir)
        skipped = skipped + [documents[path] for path in outcome.failed]
        if not outcome.pdf_paths:
            raise ConversionError(f"None of the {len(documents)} documents could be converted to PDF")

        merged = merge_pdfs(outcome.pdf_paths, title=self.settings.pdf_title)
        merged = apply_mask_overlay(merged, self.settings.mask_regions)
        if self.settings.compress_pdf:
            merged = compress_pdf(merged)

        key = result_key(self.job.school_id, self.job.batch_key, self.job.job_id, "pdf")
        stored_key, _ = await self.storage.save(merged, key, "application/pdf")
        logger.info(f"Merged PDF stored at {stored_key}")

        generated = len(documents) - len(outcome.failed)
        return JobResult(
            status=True,
            file_path=stored_key,
            notes=_completion_notes(generated, skipped),
            generated=generated,
            skipped=skipped,
        )

    async def _upload_archive(self, documents: list[Path], skipped: list[str]) -> JobResult:
        key = result_key(self.job.school_id, self.job.batch_key, self.job.job_id, "zip")
        stored_key, _ = await self.storage.save(_zip_documents(documents), key, "application/zip")
        logger.info(f"Document archive stored at {stored_key}")
        return JobResult(
            status=True,
            file_path=stored_key,
            notes=_completion_notes(len(documents), skipped),
            generated=len(documents),
            skipped=skipped,
        )

    async def _generate_register(self, template_path: Path, students: list[dict[str, Any]]) -> JobResult:
        """Fill every student into one register workbook and upload it as is."""
        rows = [{"index": index, **record} for index, record in enumerate(students, start=1)]
        renderer = RegisterWorkbookRenderer(header_row=self.settings.xlsx_header_row)
        dest = renderer.render(template_path, rows, self.work_dir / "register.xlsx")

        key = result_key(self.job.school_id, self.job.batch_key, self.job.job_id, "xlsx")
        stored_key, _ = await self.storage.save(dest.read_bytes(), key, XLSX_CONTENT_TYPE)
        logger.info(f"Register stored at {stored_key}")
        return JobResult(status=True, file_path=stored_key, generated=len(rows))
