"""
Answer checks for scripted voice practice: voice commands, "don't know"
detection, the keyword overlap score and random question selection.
"""

from __future__ import annotations

import random
import re
from typing import List, Optional

MATCH_THRESHOLD = 0.4

DONT_KNOW_PHRASES: List[str] = [
    "i dont know",
    "i don't know",
    "not sure",
    "no idea",
    "skip",
    "dont know",
]

FRIENDLY_REVEAL_LINES: List[str] = [
    "No problem. Let me explain.",
    "That's okay. Here's the answer.",
    "No worries, the correct answer is this.",
]

STOP_SESSION_PHRASES: List[str] = [
    "stop session",
    "stop the session",
    "end session",
    "end practice",
    "stop practice",
    "quit session",
]


def normalize(text: str) -> str:
    return re.sub(r"[^\w\s]", "", (text or "").lower()).strip()


def wants_stop(text: str) -> bool:
    cleaned = normalize(text)
    return any(cleaned == phrase for phrase in STOP_SESSION_PHRASES)


def does_not_know(text: str) -> bool:
    lower = (text or "").lower()
    return any(phrase in lower for phrase in DONT_KNOW_PHRASES)


def answer_keywords(correct: str) -> List[str]:
    return [word for word in re.split(r"\W+", (correct or "").lower()) if len(word) > 2]


def keyword_match(user: str, correct: str) -> float:
    """Fraction of the answer's keywords (longer than two letters) found in the transcript.

    Containment is a plain substring test on the transcript, so "note" counts
    as found inside "notation".
    """
    keywords = answer_keywords(correct)
    if not user or not keywords:
        return 0.0
    matched = [word for word in keywords if word in user]
    return len(matched) / len(keywords)


def random_reveal_line(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(FRIENDLY_REVEAL_LINES)


def next_random_index(count: int, current: Optional[int], rng: Optional[random.Random] = None) -> int:
    if count <= 1:
        return 0
    source = rng or random
    idx = source.randrange(count)
    while idx == current:
        idx = source.randrange(count)
    return idx
