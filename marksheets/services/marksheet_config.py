"""Sources for the subject/exam-group configuration of a marksheet job."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select

from marksheets.dependencies.database import DatabaseSessionManager
from marksheets.models import CceExamRecord, ExamGroupRecord
from marksheets.schemas.marksheet import CoScholasticArea, Exam, ExamGroup, MarksheetConfig, Subject
from marksheets.services.platform_client import PlatformAPIError, PlatformClient

logger = logging.getLogger(__name__)


def build_marksheet_config(
    exam_groups: list[ExamGroup],
    exams: list[Exam],
    co_scholastic: list[CoScholasticArea] | None = None,
    subjects: list[Subject] | None = None,
) -> MarksheetConfig:
    """
    Assemble a MarksheetConfig.

    When no explicit subject list is given, subjects are derived from the exams,
    deduplicated by uid and kept in first-seen order.
    """
    if subjects is None:
        seen: dict[str, Subject] = {}
        for exam in exams:
            if exam.subject is not None and exam.subject.uid not in seen:
                seen[exam.subject.uid] = exam.subject
        subjects = list(seen.values())

    config = MarksheetConfig(
        exam_groups=exam_groups,
        exams=exams,
        subjects=subjects,
        co_scholastic=co_scholastic or [],
    )
    if not config.subjects:
        logger.warning("No subjects found for the selected exam groups. Marksheets may be empty.")
    logger.info(f"Loaded config with {len(config.subjects)} subjects and {len(config.exams)} exams")
    return config


class MarksheetConfigSource(ABC):
    """Abstract source of subject/exam-group configuration."""

    @abstractmethod
    async def load(self, school_id: str, group_ids: list[str]) -> MarksheetConfig:
        pass


class ApiMarksheetConfigSource(MarksheetConfigSource):
    """Config resolved by the platform's dedicated transform endpoint."""

    def __init__(self, client: PlatformClient):
        self.client = client

    async def load(self, school_id: str, group_ids: list[str]) -> MarksheetConfig:
        data = await self.client.get_marksheet_config(school_id, group_ids)
        try:
            exam_groups = [ExamGroup.model_validate(g) for g in data.get("examGroups") or []]
            exams = [Exam.model_validate(e) for e in data.get("exams") or []]
            co_scholastic = [CoScholasticArea.model_validate(a) for a in data.get("coScholastic") or []]
            raw_subjects: list[dict[str, Any]] | None = data.get("subjects")
            subjects = [Subject.model_validate(s) for s in raw_subjects] if raw_subjects else None
        except ValidationError as e:
            raise PlatformAPIError(self.client.settings.marksheet_config_endpoint, None, f"Malformed config: {e}") from e
        return build_marksheet_config(exam_groups, exams, co_scholastic, subjects)


class DatabaseMarksheetConfigSource(MarksheetConfigSource):
    """Config read directly from the school's schema in the relational config store."""

    def __init__(self, sessionmanager: DatabaseSessionManager):
        self.sessionmanager = sessionmanager

    async def load(self, school_id: str, group_ids: list[str]) -> MarksheetConfig:
        logger.info(f"Fetching config for groups: {group_ids}")
        async with self.sessionmanager.session() as session:
            # Route unqualified tables to the school's schema
            await session.connection(execution_options={"schema_translate_map": {None: school_id}})

            groups_result = await session.execute(
                select(ExamGroupRecord).where(ExamGroupRecord.uid.in_(group_ids))
            )
            group_rows = groups_result.scalars().all()

            exams_result = await session.execute(
                select(CceExamRecord).where(CceExamRecord.examgroups.in_(group_ids)).order_by(CceExamRecord.exam_code)
            )
            exam_rows = exams_result.unique().scalars().all()

        # Keep groups in the order they were requested
        order = {uid: i for i, uid in enumerate(group_ids)}
        exam_groups = sorted(
            (ExamGroup(uid=row.uid, group_code=row.group_code, name=row.name) for row in group_rows),
            key=lambda g: order.get(g.uid, len(order)),
        )
        exams = [
            Exam(
                exam_code=row.exam_code,
                name=row.name,
                exam_group=row.examgroups,
                subject=Subject(uid=row.subject.uid, name=row.subject.sub_name, code=row.subject.code),
            )
            for row in exam_rows
            if row.subject is not None
        ]
        return build_marksheet_config(exam_groups, exams)
