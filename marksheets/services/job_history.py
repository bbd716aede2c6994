"""Report the terminal state of a job to the platform job_history table."""

import logging

from marksheets.schemas.job import JobHistoryPayload
from marksheets.services.platform_client import PlatformAPIError, PlatformClient

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 500


class JobHistoryReporter:
    """
    Writes a job's terminal state exactly once.

    Reporting is best effort: a failing job_history call is logged and never raised, so it
    cannot mask the job's own outcome. Calls after the first report are ignored.
    """

    def __init__(self, client: PlatformClient, school_id: str, job_id: str):
        self.client = client
        self.school_id = school_id
        self.job_id = job_id
        self.reported: JobHistoryPayload | None = None

    async def succeed(self, file_path: str | None = None, notes: str | None = None) -> None:
        await self._report(JobHistoryPayload(status=True, file_path=file_path, notes=_truncate(notes)))

    async def fail(self, message: str) -> None:
        await self._report(JobHistoryPayload(status=False, notes=_truncate(f"Failed: {message}")))

    async def _report(self, payload: JobHistoryPayload) -> None:
        if self.reported is not None:
            logger.warning(f"Job {self.job_id} already reported (status={self.reported.status}); ignoring status={payload.status}")
            return
        self.reported = payload

        if not self.job_id or not self.school_id:
            logger.warning("Job history not updated: JOB_ID or SCHOOL_ID is not set")
            return

        try:
            await self.client.update_job_history(self.school_id, self.job_id, payload.to_request())
        except PlatformAPIError as e:
            logger.error(f"Could not update job_history via API: {e.detail}")
            return
        logger.info(f"Job_history updated for job {self.job_id} (status={payload.status})")


def _truncate(notes: str | None) -> str | None:
    if notes is None:
        return None
    return notes[:NOTES_MAX_LENGTH]
