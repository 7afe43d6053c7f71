"""
Conversational AI interview: the model asks, the candidate answers by voice,
and a long silence ends the interview.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from voice_practice import config
from voice_practice.llm import ChatCompletionError, Message, send_interview_message
from voice_practice.practice import Scheduler, TimerHandle, UNSUPPORTED_MESSAGE
from voice_practice.speech import Capture, Results, SpeechInput, SpeechOutput

LOG = logging.getLogger("interview")

ChatFn = Callable[[str, List[Message]], Awaitable[str]]

NO_RESPONSE_MESSAGE = "No response detected for several seconds. Ending the interview now."


def build_system_prompt(topic: str, instructions: str = "") -> Message:
    content = (
        "\nYou are a STRICT professional interviewer.\n\n"
        f"Topic: {topic}\n"
        f"Candidate instructions: {instructions}\n\n"
        "Rules:\n"
        "- Ask ONE question only\n"
        "- Keep replies under 2 sentences unless code required\n"
        "- No explanations unless candidate asks\n"
        "- Ask probing follow-ups for weak answers\n"
        "- Validate behavioral answers using STAR framework\n"
        "- Prefer real-world scenario questions\n"
        "- After 10 questions provide short evaluation (3 lines)\n"
    )
    return {"role": "system", "content": content}


@dataclass
class InterviewState:
    running: bool = False
    listening: bool = False
    status: str = "Idle"
    error: Optional[str] = None


class AIInterviewController:
    def __init__(
        self,
        output: SpeechOutput,
        speech_input: SpeechInput,
        scheduler: Scheduler,
        api_key: Optional[str],
        topic: str,
        instructions: str = "",
        chat: ChatFn = send_interview_message,
        on_change: Optional[Callable[[Dict[str, Any]], None]] = None,
        silence_timeout: float = config.INTERVIEW_SILENCE_TIMEOUT,
        context_messages: int = config.INTERVIEW_CONTEXT_MESSAGES,
        locale: str = config.SPEECH_LOCALE,
    ) -> None:
        self.output = output
        self.speech_input = speech_input
        self.scheduler = scheduler
        self.api_key = api_key
        self.topic = topic
        self.instructions = instructions
        self.chat = chat
        self.on_change = on_change
        self.silence_timeout = silence_timeout
        self.context_messages = context_messages
        self.locale = locale
        self.state = InterviewState()
        self.system_prompt: Optional[Message] = None
        self.messages: List[Message] = []
        self.tasks: Set["asyncio.Task[None]"] = set()
        self._capture: Optional[Capture] = None
        self._silence_timer: Optional[TimerHandle] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "running": self.state.running,
            "listening": self.state.listening,
            "status": self.state.status,
            "error": self.state.error,
            "topic": self.topic,
            "turns": sum(1 for m in self.messages if m["role"] == "user"),
        }

    def _changed(self) -> None:
        if self.on_change:
            self.on_change(self.snapshot())

    def _fail(self, message: str) -> None:
        self.state.error = message
        self._changed()

    def context(self) -> List[Message]:
        if self.system_prompt is None:
            self.system_prompt = build_system_prompt(self.topic, self.instructions)
        return [self.system_prompt, *self.messages[-self.context_messages:]]

    async def start(self) -> None:
        if not self.api_key:
            self._fail("API key missing")
            return
        if not self.topic:
            self._fail("Topic not ready")
            return

        self.state.error = None
        self.state.running = True
        self.state.status = "Generating first question..."
        self.messages = []
        self.system_prompt = build_system_prompt(self.topic, self.instructions)
        self._changed()
        LOG.info("AI interview started: topic=%s", self.topic)

        try:
            first_reply = await self.chat(self.api_key, [self.system_prompt])
        except ChatCompletionError as exc:
            LOG.warning("First interview question failed: %s", exc)
            self._fail("Failed generating question")
            return
        if not self.state.running:
            return

        self.messages = [{"role": "assistant", "content": first_reply}]
        self._changed()
        self.output.speak(first_reply, self.start_listening)

    def stop(self) -> None:
        self._cancel_silence_timer()
        self.state.running = False
        self.state.listening = False
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.stop()
        self.output.cancel()
        self.state.status = "Interview ended"
        LOG.info("AI interview ended: topic=%s turns=%s", self.topic, self.snapshot()["turns"])
        self._changed()

    async def close(self) -> None:
        if self.state.running:
            self.stop()
        for task in list(self.tasks):
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

    def start_listening(self) -> None:
        if not self.state.running:
            return
        if not self.speech_input.available:
            self.state.status = UNSUPPORTED_MESSAGE
            self._changed()
            return

        self.output.cancel()
        if self._capture is not None:
            self._capture.stop()

        capture = self.speech_input.open(self.locale, interim_results=False, continuous=False)
        capture.on_start = lambda: self._capture_started(capture)
        capture.on_result = lambda results: self._capture_result(capture, results)
        capture.on_end = lambda: self._capture_ended(capture)
        capture.on_error = lambda error: self._capture_failed(capture, error)
        self._capture = capture
        capture.start()

    def _capture_started(self, capture: Capture) -> None:
        if not self.state.running or capture is not self._capture:
            return
        self.state.listening = True
        self.state.status = "Listening..."
        self._cancel_silence_timer()
        self._silence_timer = self.scheduler.call_later(self.silence_timeout, self._silence_expired)
        self._changed()

    def _silence_expired(self) -> None:
        self._silence_timer = None
        if not self.state.running:
            return
        LOG.info("No answer within %ss; ending interview", self.silence_timeout)
        if self._capture is not None:
            self._capture.stop()
        self.output.speak(NO_RESPONSE_MESSAGE, self.stop)

    def _capture_result(self, capture: Capture, results: Results) -> None:
        if not self.state.running or capture is not self._capture:
            return
        self._cancel_silence_timer()
        if not results:
            return
        self.state.status = "Processing..."
        self._changed()
        task = asyncio.get_running_loop().create_task(self._respond(results[0][0]))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _respond(self, text: str) -> None:
        self.messages.append({"role": "user", "content": text})
        try:
            reply = await self.chat(self.api_key or "", self.context())
        except ChatCompletionError as exc:
            LOG.warning("Interview reply failed: %s", exc)
            self._fail("AI request failed")
            return
        if not self.state.running:
            return
        self.messages.append({"role": "assistant", "content": reply})
        self._changed()
        self.output.speak(reply, self.start_listening)

    def _capture_ended(self, capture: Capture) -> None:
        if capture is not self._capture:
            return
        self._capture = None
        self._cancel_silence_timer()
        self.state.listening = False
        self._changed()

    def _capture_failed(self, capture: Capture, error: str) -> None:
        if capture is not self._capture:
            return
        self._capture = None
        LOG.warning("Interview capture error: %s", error)
        # The relay drops the end event that follows an error, so the timer stops here.
        self._cancel_silence_timer()
        self.state.listening = False
        self._changed()

    def _cancel_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None
