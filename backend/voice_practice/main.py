"""
FastAPI backend for voice interview practice.
Exposes topic/question CRUD, a scripted practice WebSocket and an AI interview WebSocket.
The browser does the actual speaking and listening; the sockets tell it when.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from voice_practice import config, questions
from voice_practice.db import init_db
from voice_practice.interview import AIInterviewController
from voice_practice.practice import PracticeController
from voice_practice.speech import SpeechRelay

LOG = logging.getLogger("voice_practice")

app = FastAPI(title="Voice Interview Practice", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


class TopicPayload(BaseModel):
    name: str


class QuestionPayload(BaseModel):
    question: str
    answer: str


@app.get("/topics")
async def list_topics(search: Optional[str] = None) -> Dict[str, Any]:
    rows = await questions.list_topics(search)
    return {"items": [row.model_dump() for row in rows]}


@app.post("/topics")
async def create_topic(payload: TopicPayload) -> Dict[str, Any]:
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Topic name is empty.")
    topic = await questions.create_topic(payload.name)
    return topic.model_dump()


@app.delete("/topics/{topic_id}")
async def delete_topic(topic_id: str) -> Dict[str, str]:
    if not await questions.delete_topic(topic_id):
        raise HTTPException(status_code=404, detail="Topic not found.")
    return {"status": "ok"}


@app.get("/topics/{topic_id}/questions")
async def list_questions(topic_id: str, search: Optional[str] = None) -> Dict[str, Any]:
    if await questions.get_topic(topic_id) is None:
        raise HTTPException(status_code=404, detail="Topic not found.")
    rows = await questions.list_questions(topic_id, search)
    return {"items": [row.model_dump() for row in rows]}


@app.post("/topics/{topic_id}/questions")
async def create_question(topic_id: str, payload: QuestionPayload) -> Dict[str, Any]:
    if not payload.question.strip() or not payload.answer.strip():
        raise HTTPException(status_code=400, detail="Question and answer are required.")
    if await questions.get_topic(topic_id) is None:
        raise HTTPException(status_code=404, detail="Topic not found.")
    record = await questions.create_question(topic_id, payload.question, payload.answer)
    return record.model_dump()


@app.delete("/questions/{question_id}")
async def delete_question(question_id: str) -> Dict[str, str]:
    if not await questions.delete_question(question_id):
        raise HTTPException(status_code=404, detail="Question not found.")
    return {"status": "ok"}


async def _drain_outbox(ws: WebSocket, outbox: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        message = await outbox.get()
        try:
            await ws.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            # Client is gone; the receive loop notices and cleans up.
            return


async def _receive_payload(ws: WebSocket, outbox: "asyncio.Queue[Dict[str, Any]]") -> Optional[Dict[str, Any]]:
    raw = await ws.receive_text()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        outbox.put_nowait({"type": "error", "message": "Payload must be JSON"})
        return None
    if not isinstance(payload, dict):
        outbox.put_nowait({"type": "error", "message": "Payload must be a JSON object"})
        return None
    if not isinstance(payload.get("type"), str):
        outbox.put_nowait({"type": "error", "message": "Message type must be a string."})
        return None
    return payload


def handle_practice_message(
    controller: PracticeController,
    relay: SpeechRelay,
    payload: Dict[str, Any],
    outbox: "asyncio.Queue[Dict[str, Any]]",
) -> None:
    msg_type = payload["type"]
    if relay.dispatch(payload):
        return
    if msg_type == "start_session":
        relay.input.available = bool(payload.get("speechRecognition", True))
        if not controller.questions:
            outbox.put_nowait({"type": "error", "message": "Add some questions to start practicing."})
            return
        controller.start_session()
        return
    if msg_type == "stop_session":
        controller.stop_session()
        return
    if msg_type == "ping":
        outbox.put_nowait({"type": "pong"})
        return
    outbox.put_nowait({"type": "error", "message": f"Unrecognized message type: {msg_type}"})


@app.websocket("/ws/practice/{topic_id}")
async def practice_socket(ws: WebSocket, topic_id: str) -> None:
    await ws.accept()
    practice_set = await questions.load_practice_set(topic_id)
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
    relay = SpeechRelay(outbox.put_nowait)
    controller = PracticeController(
        practice_set,
        relay.output,
        relay.input,
        asyncio.get_running_loop(),
        on_change=lambda snapshot: outbox.put_nowait({"type": "state", **snapshot}),
    )
    outbox.put_nowait({"type": "session_ready", "topic_id": topic_id, "question_count": len(practice_set)})
    sender = asyncio.create_task(_drain_outbox(ws, outbox))
    LOG.info("Practice socket opened: topic=%s questions=%s", topic_id, len(practice_set))

    try:
        while True:
            payload = await _receive_payload(ws, outbox)
            if payload is None:
                continue
            handle_practice_message(controller, relay, payload, outbox)
    except WebSocketDisconnect:
        LOG.info("Practice socket closed: topic=%s", topic_id)
    finally:
        controller.on_change = None
        controller.stop_session()
        sender.cancel()


def handle_interview_message(
    controller: AIInterviewController,
    relay: SpeechRelay,
    payload: Dict[str, Any],
    outbox: "asyncio.Queue[Dict[str, Any]]",
) -> None:
    msg_type = payload["type"]
    if relay.dispatch(payload):
        return
    if msg_type == "start_interview":
        if controller.state.running:
            LOG.info("Ignoring start_interview: interview already running")
            return
        relay.input.available = bool(payload.get("speechRecognition", True))
        api_key = payload.get("apiKey")
        controller.api_key = api_key if isinstance(api_key, str) and api_key.strip() else config.GROQ_API_KEY
        instructions = payload.get("instructions")
        controller.instructions = instructions.strip() if isinstance(instructions, str) else ""
        task = asyncio.get_running_loop().create_task(controller.start())
        controller.tasks.add(task)
        task.add_done_callback(controller.tasks.discard)
        return
    if msg_type == "stop_interview":
        controller.stop()
        return
    if msg_type == "ping":
        outbox.put_nowait({"type": "pong"})
        return
    outbox.put_nowait({"type": "error", "message": f"Unrecognized message type: {msg_type}"})


@app.websocket("/ws/interview/{topic_id}")
async def interview_socket(ws: WebSocket, topic_id: str) -> None:
    await ws.accept()
    topic = await questions.get_topic(topic_id)
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
    relay = SpeechRelay(outbox.put_nowait)
    controller = AIInterviewController(
        relay.output,
        relay.input,
        asyncio.get_running_loop(),
        api_key=config.GROQ_API_KEY,
        topic=topic.name if topic else "",
        on_change=lambda snapshot: outbox.put_nowait({"type": "state", **snapshot}),
    )
    outbox.put_nowait({"type": "session_ready", "topic_id": topic_id, "topic": controller.topic})
    sender = asyncio.create_task(_drain_outbox(ws, outbox))
    LOG.info("Interview socket opened: topic=%s", topic_id)

    try:
        while True:
            payload = await _receive_payload(ws, outbox)
            if payload is None:
                continue
            handle_interview_message(controller, relay, payload, outbox)
    except WebSocketDisconnect:
        LOG.info("Interview socket closed: topic=%s", topic_id)
    finally:
        controller.on_change = None
        await controller.close()
        sender.cancel()
