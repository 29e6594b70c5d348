"""SQLAlchemy models for the tables the ingestion service reads and writes.

The tables are owned by the course platform schema; only the columns this
service touches are mapped here.
"""

from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from ingest.core.database import Base

CODE_STORAGE_TYPES: tuple[str, ...] = ("Code", "CODE")
GENERAL_STORAGE_TYPES: tuple[str, ...] = ("MCQ", "Fill_in", "Essay", "FILLIN", "ESSAY")


class Lecturer(Base):
  __tablename__ = "lecturers"

  id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
  user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False, index=True)


class Video(Base):
  __tablename__ = "videos"

  id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
  course_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True, index=True)
  title: Mapped[str | None] = mapped_column(Text, nullable=True)
  camera_video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  transcript_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Assignment(Base):
  __tablename__ = "assignments"

  id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
  lecturer_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), ForeignKey("lecturers.id"), nullable=True, index=True)
  course_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True, index=True)
  title: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, server_default="draft")
  total_types: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
  generated_types: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
  updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Question(Base):
  __tablename__ = "questions"
  __table_args__ = (
    Index("ux_questions_assignment_code_order", "assignment_id", "order_index", unique=True, postgresql_where=text("type IN ('Code', 'CODE')")),
    Index("ux_questions_assignment_general_order", "assignment_id", "order_index", unique=True, postgresql_where=text("type NOT IN ('Code', 'CODE')")),
    Index("ix_questions_assignment_prompt", "assignment_id", "prompt_markdown"),
  )

  id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
  assignment_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False)
  prompt_markdown: Mapped[str] = mapped_column(Text, nullable=False)
  content_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
  answers: Mapped[object | None] = mapped_column(JSONB, nullable=True)
  points: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
  order_index: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class InAppNotification(Base):
  """Persist in-app notifications for user polling."""

  __tablename__ = "notifications"

  id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
  user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), index=True, nullable=False)
  template_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  data_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
