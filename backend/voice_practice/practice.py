"""
Scripted voice practice: ask a random question, listen, judge the answer,
then accept, allow one retry, or reveal the answer and move on.

Everything runs on the event loop as callbacks. Speech playback, capture
events and timers can all resolve after the session was stopped, so every
continuation re-checks ``state.running`` before touching anything.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from voice_practice import config
from voice_practice.matching import (
    MATCH_THRESHOLD,
    does_not_know,
    keyword_match,
    next_random_index,
    random_reveal_line,
    wants_stop,
)
from voice_practice.speech import Capture, Results, SpeechInput, SpeechOutput

LOG = logging.getLogger("practice")

UNSUPPORTED_MESSAGE = "Speech recognition not supported in this browser."


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Anything with asyncio's ``call_later``; the running loop in production."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        ...


@dataclass(frozen=True)
class PracticeQuestion:
    id: str
    question: str
    answer: str


@dataclass
class PracticeState:
    running: bool = False
    current_index: Optional[int] = None
    listening: bool = False
    transcript: str = ""
    retry_used: bool = False
    attempt: int = 1
    error: Optional[str] = None


def join_transcript(results: Results) -> str:
    return " ".join(result[0] for result in results if result).lower()


class PracticeController:
    def __init__(
        self,
        questions: Sequence[PracticeQuestion],
        output: SpeechOutput,
        speech_input: SpeechInput,
        scheduler: Scheduler,
        rng: Optional[random.Random] = None,
        on_change: Optional[Callable[[Dict[str, Any]], None]] = None,
        silence_timeout: float = config.PRACTICE_SILENCE_TIMEOUT,
        advance_delay: float = config.PRACTICE_ADVANCE_DELAY,
        locale: str = config.SPEECH_LOCALE,
    ) -> None:
        self.questions: List[PracticeQuestion] = list(questions)
        self.output = output
        self.speech_input = speech_input
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.on_change = on_change
        self.silence_timeout = silence_timeout
        self.advance_delay = advance_delay
        self.locale = locale
        self.state = PracticeState()
        self._capture: Optional[Capture] = None
        self._silence_timer: Optional[TimerHandle] = None
        self._advance_timer: Optional[TimerHandle] = None

    @property
    def current_question(self) -> Optional[PracticeQuestion]:
        if self.state.current_index is None:
            return None
        return self.questions[self.state.current_index]

    @property
    def timer_armed(self) -> bool:
        return self._silence_timer is not None or self._advance_timer is not None

    def snapshot(self) -> Dict[str, Any]:
        question = self.current_question
        return {
            "running": self.state.running,
            "currentIndex": self.state.current_index,
            "question": question.question if question else None,
            "questionId": question.id if question else None,
            "listening": self.state.listening,
            "transcript": self.state.transcript,
            "retryUsed": self.state.retry_used,
            "attempt": self.state.attempt,
            "error": self.state.error,
            "questionCount": len(self.questions),
        }

    def _changed(self) -> None:
        if self.on_change:
            self.on_change(self.snapshot())

    # Session lifecycle

    def start_session(self) -> None:
        if not self.questions:
            return
        if self.state.running:
            self.stop_session()
        self.state.running = True
        self.state.attempt = 1
        self.state.transcript = ""
        self.state.retry_used = False
        self.state.error = None
        LOG.info("Practice session started: questions=%s", len(self.questions))
        self._show_question(next_random_index(len(self.questions), None, self.rng))

    def stop_session(self) -> None:
        was_running = self.state.running
        self.state.running = False
        self.state.listening = False
        self.state.current_index = None
        self.state.transcript = ""
        self._cancel_silence_timer()
        if self._advance_timer is not None:
            self._advance_timer.cancel()
            self._advance_timer = None
        self.output.cancel()
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.stop()
        if was_running:
            LOG.info("Practice session stopped")
        self._changed()

    def _show_question(self, index: int) -> None:
        self.state.current_index = index
        self._changed()
        question = self.questions[index]
        LOG.info("Asking question %s (index=%s)", question.id, index)
        self.output.speak(question.question, self.begin_listening)

    # Listening

    def begin_listening(self) -> None:
        if not self.state.running:
            return
        if not self.speech_input.available:
            self.state.error = UNSUPPORTED_MESSAGE
            LOG.warning("Speech input unavailable; cannot listen")
            self._changed()
            return

        self.output.cancel()
        if self._capture is not None:
            self._capture.stop()
            self._capture = None

        capture = self.speech_input.open(self.locale, interim_results=True, continuous=False)
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
        self.state.transcript = ""
        self._arm_silence_timer()
        self._changed()

    def _capture_result(self, capture: Capture, results: Results) -> None:
        if not self.state.running or capture is not self._capture:
            return
        self.state.transcript = join_transcript(results)
        self._arm_silence_timer()
        self._changed()

    def _capture_ended(self, capture: Capture) -> None:
        if capture is not self._capture:
            return
        self._capture = None
        self._cancel_silence_timer()
        if not self.state.running:
            return
        self.state.listening = False
        self._changed()
        self.evaluate_answer()

    def _capture_failed(self, capture: Capture, error: str) -> None:
        if capture is not self._capture:
            return
        self._capture = None
        self._cancel_silence_timer()
        if not self.state.running:
            return
        # No evaluation and no automatic re-listen after a hard capture error.
        LOG.warning("Capture error on question index=%s: %s", self.state.current_index, error)
        self.state.listening = False
        self._changed()

    def _arm_silence_timer(self) -> None:
        self._cancel_silence_timer()
        self._silence_timer = self.scheduler.call_later(self.silence_timeout, self._silence_expired)

    def _cancel_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _silence_expired(self) -> None:
        self._silence_timer = None
        if not self.state.running or self._capture is None:
            return
        # The capture's own end event drives evaluation.
        self._capture.stop()

    # Evaluation

    def evaluate_answer(self) -> None:
        question = self.current_question
        if not self.state.running or question is None:
            return

        spoken = self.state.transcript.strip()
        correct = question.answer

        if wants_stop(spoken):
            LOG.info("Stop command heard")
            self.output.speak("Okay, stopping the session.", self.stop_session)
            return

        if does_not_know(spoken):
            LOG.info("Revealing answer for %s on request", question.id)
            self.output.speak(f"{random_reveal_line(self.rng)} {correct}", self.advance)
            return

        if not spoken:
            self.output.speak("I did not hear anything. Please answer again.", self.begin_listening)
            return

        score = keyword_match(spoken, correct)
        LOG.info("Answer scored %.2f for %s (retry_used=%s)", score, question.id, self.state.retry_used)

        if score >= MATCH_THRESHOLD:
            self.output.speak(f"Correct. {correct}", self.advance)
            return

        if not self.state.retry_used:
            self.state.retry_used = True
            self.state.attempt += 1
            self._changed()
            self.output.speak("Not completely correct. Tell me once again.", self.begin_listening)
            return

        self.output.speak(f"The correct answer is {correct}", self.advance)

    def advance(self) -> None:
        if not self.state.running:
            return
        self.state.retry_used = False
        self.state.attempt = 1
        self.state.transcript = ""
        self._changed()
        if self._advance_timer is not None:
            self._advance_timer.cancel()
        self._advance_timer = self.scheduler.call_later(self.advance_delay, self._advance_expired)

    def _advance_expired(self) -> None:
        self._advance_timer = None
        if not self.state.running:
            return
        self._show_question(next_random_index(len(self.questions), self.state.current_index, self.rng))
