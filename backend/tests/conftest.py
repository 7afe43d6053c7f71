from __future__ import annotations

import os
import tempfile
from typing import Any, Callable, List, Optional

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="voice-practice-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"

from voice_practice.speech import Capture, Results, SpeechInput, SpeechOutput  # noqa: E402


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[..., Any], args: tuple) -> None:
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Timers fire only when a test says so."""

    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self) -> FakeTimer:
        timer = self.pending[0]
        timer.fired = True
        timer.callback(*timer.args)
        return timer


class FakeOutput(SpeechOutput):
    def __init__(self) -> None:
        self.spoken: List[str] = []
        self.pending: Optional[Callable[[], None]] = None
        self.cancels = 0

    def speak(self, text: str, on_done: Optional[Callable[[], None]] = None) -> None:
        self.spoken.append(text)
        self.pending = on_done

    def cancel(self) -> None:
        self.pending = None
        self.cancels += 1

    def finish(self) -> None:
        on_done, self.pending = self.pending, None
        if on_done:
            on_done()

    @property
    def last(self) -> str:
        return self.spoken[-1]


class FakeCapture(Capture):
    def __init__(self, locale: str, interim_results: bool, continuous: bool) -> None:
        super().__init__(locale, interim_results, continuous)
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def emit_start(self) -> None:
        assert self.on_start is not None
        self.on_start()

    def emit_result(self, *texts: str) -> None:
        assert self.on_result is not None
        results: Results = [[text] for text in texts]
        self.on_result(results)

    def emit_end(self) -> None:
        assert self.on_end is not None
        self.on_end()

    def emit_error(self, error: str = "network") -> None:
        assert self.on_error is not None
        self.on_error(error)


class FakeInput(SpeechInput):
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.captures: List[FakeCapture] = []

    def open(self, locale: str, interim_results: bool, continuous: bool) -> FakeCapture:
        capture = FakeCapture(locale, interim_results, continuous)
        self.captures.append(capture)
        return capture

    @property
    def latest(self) -> FakeCapture:
        return self.captures[-1]


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def output() -> FakeOutput:
    return FakeOutput()


@pytest.fixture
def speech_input() -> FakeInput:
    return FakeInput()


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient

    from voice_practice.main import app

    with TestClient(app) as test_client:
        yield test_client
