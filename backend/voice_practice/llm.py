from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from voice_practice import config

LOG = logging.getLogger("llm")

Message = Dict[str, str]


class ChatCompletionError(RuntimeError):
    """The chat-completion call failed or answered with a non-2xx status."""


def _extract_reply(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""


async def send_interview_message(
    api_key: str,
    messages: List[Message],
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": config.GROQ_MODEL,
        "messages": messages,
        "temperature": 0.7,
        "max_tokens": 800,
    }
    LOG.info("Calling chat completion: model=%s messages=%s", config.GROQ_MODEL, len(messages))
    try:
        if client is not None:
            resp = await client.post(config.GROQ_URL, headers=headers, json=payload)
        else:
            async with httpx.AsyncClient(timeout=config.GROQ_TIMEOUT) as own_client:
                resp = await own_client.post(config.GROQ_URL, headers=headers, json=payload)
    except httpx.HTTPError as exc:
        LOG.warning("Chat completion request failed: %s", exc)
        raise ChatCompletionError(str(exc) or "Groq request failed") from exc

    if not resp.is_success:
        LOG.warning("Chat completion responded with %s: %s", resp.status_code, resp.text[:200])
        raise ChatCompletionError(resp.text or "Groq request failed")

    try:
        data = resp.json()
    except ValueError as exc:
        raise ChatCompletionError("Chat completion returned invalid JSON") from exc
    return _extract_reply(data)
