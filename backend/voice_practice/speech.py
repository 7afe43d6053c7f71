"""
Speech capabilities used by the practice and interview loops.

Synthesis and recognition run in the browser. The server only decides what
to say and when to listen, so the concrete implementations below relay each
call over the WebSocket and route the browser's events back to whoever asked.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

LOG = logging.getLogger("speech")

Send = Callable[[Dict[str, Any]], None]
Results = List[List[str]]


class Capture(ABC):
    """One recognition run, from start() to its end or error event."""

    def __init__(self, locale: str, interim_results: bool, continuous: bool) -> None:
        self.locale = locale
        self.interim_results = interim_results
        self.continuous = continuous
        self.on_start: Optional[Callable[[], None]] = None
        self.on_result: Optional[Callable[[Results], None]] = None
        self.on_end: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...


class SpeechOutput(ABC):
    @abstractmethod
    def speak(self, text: str, on_done: Optional[Callable[[], None]] = None) -> None:
        """Say text, replacing anything still playing; on_done fires when playback finishes."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop playback. The cancelled utterance's on_done never fires."""


class SpeechInput(ABC):
    available: bool = True

    @abstractmethod
    def open(self, locale: str, interim_results: bool, continuous: bool) -> Capture:
        ...


class RelaySpeechOutput(SpeechOutput):
    def __init__(self, send: Send) -> None:
        self._send = send
        self._ids = itertools.count(1)
        self._pending: Optional[Tuple[str, Optional[Callable[[], None]]]] = None

    def speak(self, text: str, on_done: Optional[Callable[[], None]] = None) -> None:
        self.cancel()
        utterance_id = f"u{next(self._ids)}"
        self._pending = (utterance_id, on_done)
        self._send({"type": "speak", "utterance_id": utterance_id, "text": text})

    def cancel(self) -> None:
        if self._pending is None:
            return
        self._pending = None
        self._send({"type": "speech_cancel"})

    @property
    def speaking(self) -> bool:
        return self._pending is not None

    def finished(self, utterance_id: Any) -> None:
        if self._pending is None or self._pending[0] != utterance_id:
            LOG.debug("Ignoring speech_ended for stale utterance %s", utterance_id)
            return
        _, on_done = self._pending
        self._pending = None
        if on_done:
            on_done()


class RelayCapture(Capture):
    def __init__(self, owner: "RelaySpeechInput", capture_id: str, locale: str, interim_results: bool, continuous: bool) -> None:
        super().__init__(locale, interim_results, continuous)
        self.capture_id = capture_id
        self.closed = False
        self._owner = owner

    def start(self) -> None:
        self._owner._attach(self)
        self._owner._send(
            {
                "type": "listen_start",
                "capture_id": self.capture_id,
                "lang": self.locale,
                "interimResults": self.interim_results,
                "continuous": self.continuous,
            }
        )

    def stop(self) -> None:
        if self.closed:
            return
        self._owner._send({"type": "listen_stop", "capture_id": self.capture_id})


class RelaySpeechInput(SpeechInput):
    def __init__(self, send: Send, available: bool = True) -> None:
        self._send = send
        self._ids = itertools.count(1)
        self._active: Optional[RelayCapture] = None
        self.available = available

    def open(self, locale: str, interim_results: bool, continuous: bool) -> Capture:
        return RelayCapture(self, f"c{next(self._ids)}", locale, interim_results, continuous)

    def _attach(self, capture: RelayCapture) -> None:
        if self._active is not None and self._active is not capture:
            # The browser only runs one recognizer; a newer start supersedes the old one.
            self._active.closed = True
        self._active = capture

    def _detach(self, capture: RelayCapture) -> None:
        capture.closed = True
        if self._active is capture:
            self._active = None

    def handle(self, msg_type: str, payload: Dict[str, Any]) -> None:
        capture = self._active
        if capture is None or payload.get("capture_id") != capture.capture_id:
            LOG.debug("Ignoring %s for stale capture %s", msg_type, payload.get("capture_id"))
            return
        if msg_type == "capture_started":
            if capture.on_start:
                capture.on_start()
        elif msg_type == "capture_result":
            if capture.on_result:
                capture.on_result(parse_results(payload.get("results")))
        elif msg_type == "capture_ended":
            self._detach(capture)
            if capture.on_end:
                capture.on_end()
        elif msg_type == "capture_error":
            self._detach(capture)
            if capture.on_error:
                capture.on_error(str(payload.get("error") or "unknown"))


def parse_results(value: Any) -> Results:
    """Accept [[str, ...], ...] or [[{"transcript": str}, ...], ...] from the browser."""
    if not isinstance(value, list):
        return []
    results: Results = []
    for item in value:
        if not isinstance(item, list):
            continue
        alternatives: List[str] = []
        for alt in item:
            if isinstance(alt, dict):
                alt = alt.get("transcript")
            if isinstance(alt, str):
                alternatives.append(alt)
        if alternatives:
            results.append(alternatives)
    return results


CAPTURE_EVENTS = ("capture_started", "capture_result", "capture_ended", "capture_error")


class SpeechRelay:
    """Both relay capabilities for one connection, plus routing of browser events."""

    def __init__(self, send: Send, recognition_available: bool = True) -> None:
        self.output = RelaySpeechOutput(send)
        self.input = RelaySpeechInput(send, available=recognition_available)

    def dispatch(self, payload: Dict[str, Any]) -> bool:
        msg_type = payload.get("type")
        if msg_type == "speech_ended":
            self.output.finished(payload.get("utterance_id"))
            return True
        if msg_type in CAPTURE_EVENTS:
            self.input.handle(msg_type, payload)
            return True
        return False
