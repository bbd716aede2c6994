"""Read-only mappings of the per-school config store tables.

Every school lives in its own schema; the tables below are declared without a schema
and queries route them with ``schema_translate_map``.
"""
from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import relationship

from marksheets.dependencies.database import Base


class ExamGroupRecord(Base):
    __tablename__ = "exam_groups"
    uid = Column("_uid", String, primary_key=True)
    group_code = Column(String, nullable=False)
    name = Column(String, nullable=True)


class SubjectRecord(Base):
    __tablename__ = "subjects"
    uid = Column("_uid", String, primary_key=True)
    sub_name = Column(String, nullable=True)
    code = Column(String, nullable=True)


class CceExamRecord(Base):
    __tablename__ = "cce_exams"
    uid = Column("_uid", String, primary_key=True)
    exam_code = Column(String, nullable=False)
    name = Column(String, nullable=True)
    examgroups = Column(String, ForeignKey("exam_groups._uid"), nullable=False)
    subject_id = Column("subjects", String, ForeignKey("subjects._uid"), nullable=False)

    subject = relationship("SubjectRecord", lazy="joined")
