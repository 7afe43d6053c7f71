from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Topic(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    created_at: datetime = Field(default_factory=_utcnow)


class QuestionRecord(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    topic_id: str = Field(foreign_key="topic.id", index=True)
    question: str
    answer: str
    created_at: datetime = Field(default_factory=_utcnow)
