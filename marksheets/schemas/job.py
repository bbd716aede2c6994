from pydantic import BaseModel, Field


class JobResult(BaseModel):
    """Outcome of a marksheet job run."""

    status: bool
    file_path: str | None = None
    notes: str | None = None
    generated: int = 0
    skipped: list[str] = Field(default_factory=list)


class JobHistoryPayload(BaseModel):
    """Payload written to the platform job_history record on a terminal state."""

    status: bool
    file_path: str | None = None
    notes: str | None = Field(None, max_length=500)

    def to_request(self) -> dict:
        return self.model_dump(exclude_none=True)
