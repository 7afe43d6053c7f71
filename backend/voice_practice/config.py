from __future__ import annotations

import os
from typing import List

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data.db")

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_URL = os.getenv("GROQ_URL", "https://api.groq.com/openai/v1/chat/completions")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
GROQ_TIMEOUT = float(os.getenv("GROQ_TIMEOUT", "20"))

SPEECH_LOCALE = os.getenv("SPEECH_LOCALE", "en-US")

# Seconds.
PRACTICE_SILENCE_TIMEOUT = float(os.getenv("PRACTICE_SILENCE_TIMEOUT", "5.0"))
PRACTICE_ADVANCE_DELAY = float(os.getenv("PRACTICE_ADVANCE_DELAY", "1.2"))
INTERVIEW_SILENCE_TIMEOUT = float(os.getenv("INTERVIEW_SILENCE_TIMEOUT", "6.0"))

INTERVIEW_CONTEXT_MESSAGES = int(os.getenv("INTERVIEW_CONTEXT_MESSAGES", "10"))


def cors_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()] or ["*"]
