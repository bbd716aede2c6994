from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_code(v: Any) -> str:
    """Codes arrive as ints or padded strings from the platform; normalise to a stripped string."""
    if v is None:
        return ""
    return str(v).strip()


class Subject(BaseModel):
    """Schema for a subject as returned by the config store."""

    model_config = ConfigDict(populate_by_name=True)

    uid: str = Field(..., alias="_uid")
    name: str = Field("", alias="sub_name")
    code: str = ""

    @field_validator("uid", "name", "code", mode="before")
    @classmethod
    def normalise_code(cls, v: Any) -> str:
        return _as_code(v)


class ExamGroup(BaseModel):
    """Schema for an exam group (term)."""

    model_config = ConfigDict(populate_by_name=True)

    uid: str = Field(..., alias="_uid")
    group_code: str
    name: str = ""

    @field_validator("uid", "group_code", "name", mode="before")
    @classmethod
    def normalise_code(cls, v: Any) -> str:
        return _as_code(v)


class Exam(BaseModel):
    """Schema for a single exam of a subject within an exam group."""

    model_config = ConfigDict(populate_by_name=True)

    exam_code: str
    name: str = ""
    exam_group: str = Field(..., alias="examgroups")
    subject: Subject | None = Field(None, alias="subjects")

    @field_validator("exam_code", "name", "exam_group", mode="before")
    @classmethod
    def normalise_code(cls, v: Any) -> str:
        return _as_code(v)

    @property
    def short_code(self) -> str:
        """Last underscore separated part of the exam code, e.g. 'half_yearly_hy' -> 'hy'."""
        return self.exam_code.split("_")[-1].lower()


class CoScholasticArea(BaseModel):
    """Schema for a co-scholastic area graded per exam group."""

    code: str
    name: str = ""

    @field_validator("code", "name", mode="before")
    @classmethod
    def normalise_code(cls, v: Any) -> str:
        return _as_code(v)


class MarksheetConfig(BaseModel):
    """Subject and exam-group configuration loaded once per job."""

    model_config = ConfigDict(populate_by_name=True)

    exam_groups: list[ExamGroup] = Field(default_factory=list, alias="examGroups")
    exams: list[Exam] = Field(default_factory=list)
    subjects: list[Subject] = Field(default_factory=list)
    co_scholastic: list[CoScholasticArea] = Field(default_factory=list, alias="coScholastic")
