"""Ollama chat calls for the local oracle transport.

The oracle asks for one JSON object per consultation, so requests default to
``format: json`` and a low temperature. Replies are checked with pydantic:
a reply cut off by the token limit is an error rather than half a JSON
object, and a busy server (HTTP 429/503, queue full) is reported so the
transport can treat it as a rate limit.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, Optional
from urllib import error, request

from pydantic import BaseModel, ValidationError

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
CHAT_ENDPOINT = "/api/chat"
BUSY_STATUS_CODES = frozenset({429, 503})

# Short, mostly deterministic answers; decisions are a handful of fields.
DEFAULT_OPTIONS: Dict[str, Any] = {"temperature": 0.4, "num_predict": 256}


class LocalLLMError(RuntimeError):
    """Raised when a local model invocation fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def busy(self) -> bool:
        """The server refused for load reasons; retrying elsewhere may help."""

        return self.status_code in BUSY_STATUS_CODES


class _ChatMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class _ChatReply(BaseModel):
    model: Optional[str] = None
    message: Optional[_ChatMessage] = None
    done: bool = True
    done_reason: Optional[str] = None


def resolve_base_url(base_url: Optional[str] = None) -> str:
    return (base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL).rstrip("/")


def build_chat_payload(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    json_format: bool = True,
    options: Optional[Dict[str, Any]] = None,
    keep_alive: Optional[str] = None,
) -> Dict[str, Any]:
    """Assemble the ``/api/chat`` request body for one consultation."""

    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()
    if not user_prompt:
        raise LocalLLMError("Cannot call Ollama with an empty user prompt.")

    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.append({"role": "user", "content": user_prompt})

    payload: Dict[str, Any] = {
        "model": llm_model,
        "messages": messages,
        "stream": False,
        "options": {**DEFAULT_OPTIONS, **(options or {})},
    }
    if json_format:
        payload["format"] = "json"
    if keep_alive is not None:
        payload["keep_alive"] = keep_alive
    return payload


def read_chat_reply(raw: str) -> str:
    """Return the assistant text from an ``/api/chat`` response body."""

    try:
        reply = _ChatReply.model_validate_json(raw)
    except ValidationError as exc:
        raise LocalLLMError(f"Ollama returned an unexpected response: {exc.error_count()} issue(s)") from exc

    if reply.done_reason == "length":
        raise LocalLLMError("Ollama stopped at the token limit before finishing the answer.")
    content = reply.message.content.strip() if reply.message else ""
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")
    return content


def _post_chat(payload: Dict[str, Any], base_url: str, timeout: float) -> str:
    url = f"{base_url}{CHAT_ENDPOINT}"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            return resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(
            f"Ollama chat request failed with status {exc.code}: {body or exc.reason}",
            status_code=exc.code,
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc
    except TimeoutError as exc:
        raise LocalLLMError(f"Ollama did not answer within {timeout:g}s") from exc


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: Optional[str] = None,
    timeout: float = 120.0,
    json_format: bool = True,
    options: Optional[Dict[str, Any]] = None,
    keep_alive: Optional[str] = None,
) -> str:
    """Run one chat completion on a local Ollama model in a worker thread."""

    payload = build_chat_payload(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        llm_model=llm_model,
        json_format=json_format,
        options=options,
        keep_alive=keep_alive,
    )
    raw = await asyncio.to_thread(_post_chat, payload, resolve_base_url(base_url), timeout)
    return read_chat_reply(raw)


__all__ = [
    "BUSY_STATUS_CODES",
    "DEFAULT_OLLAMA_BASE_URL",
    "LocalLLMError",
    "build_chat_payload",
    "call_ollama_chat",
    "read_chat_reply",
    "resolve_base_url",
]
