from __future__ import annotations

import logging
from typing import List, Optional

from sqlmodel import col, select

from voice_practice.db import get_session
from voice_practice.models import QuestionRecord, Topic
from voice_practice.practice import PracticeQuestion

LOG = logging.getLogger("questions")


def _matches(text: str, search: Optional[str]) -> bool:
    return not search or search.lower() in (text or "").lower()


async def list_topics(search: Optional[str] = None) -> List[Topic]:
    async with get_session() as session:
        rows = (await session.exec(select(Topic).order_by(col(Topic.created_at).desc()))).all()
    return [row for row in rows if _matches(row.name, search)]


async def get_topic(topic_id: str) -> Optional[Topic]:
    async with get_session() as session:
        return await session.get(Topic, topic_id)


async def create_topic(name: str) -> Topic:
    topic = Topic(name=name.strip())
    async with get_session() as session:
        session.add(topic)
        await session.commit()
    LOG.info("Created topic %s (%s)", topic.id, topic.name)
    return topic


async def delete_topic(topic_id: str) -> bool:
    async with get_session() as session:
        topic = await session.get(Topic, topic_id)
        if topic is None:
            return False
        questions = (await session.exec(select(QuestionRecord).where(QuestionRecord.topic_id == topic_id))).all()
        for record in questions:
            await session.delete(record)
        await session.delete(topic)
        await session.commit()
    LOG.info("Deleted topic %s", topic_id)
    return True


async def list_questions(topic_id: str, search: Optional[str] = None) -> List[QuestionRecord]:
    async with get_session() as session:
        rows = (
            await session.exec(
                select(QuestionRecord)
                .where(QuestionRecord.topic_id == topic_id)
                .order_by(col(QuestionRecord.created_at).desc())
            )
        ).all()
    return [row for row in rows if _matches(row.question, search)]


async def create_question(topic_id: str, question: str, answer: str) -> QuestionRecord:
    record = QuestionRecord(topic_id=topic_id, question=question.strip(), answer=answer.strip())
    async with get_session() as session:
        session.add(record)
        await session.commit()
    return record


async def delete_question(question_id: str) -> bool:
    async with get_session() as session:
        record = await session.get(QuestionRecord, question_id)
        if record is None:
            return False
        await session.delete(record)
        await session.commit()
    return True


async def load_practice_set(topic_id: str) -> List[PracticeQuestion]:
    """Read-only snapshot of a topic's questions for one practice session."""
    rows = await list_questions(topic_id)
    return [PracticeQuestion(id=row.id, question=row.question, answer=row.answer) for row in rows]
