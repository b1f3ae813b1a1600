"""Parsing and validation of oracle output.

Parsing is an explicit tagged result rather than duck typing on the payload:

1. structured: a JSON object (code fences and surrounding prose tolerated)
   that fits ``OracleResponse``
2. lenient: short plain text (under 100 characters, no ``{``) becomes an
   ``idle`` action whose intent is the text itself
3. error: anything else, carrying a ``ResponseParseError``

Chat replies are looser: ``parse_chat_reply`` always yields a line to say.

Validation re-checks every referenced id against the freshest observation and
returns a ``Verdict``; a rejection is a value, never a raised exception.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from json import JSONDecodeError, JSONDecoder
from typing import Any, Dict, Optional

from pydantic import ValidationError

from villagemind.errors import ResponseParseError, ResponseValidationError
from villagemind.schemas import (
    CHARACTER_ACTIONS,
    OBJECT_ACTIONS,
    Action,
    ActionKind,
    ChatReply,
    Observation,
    OracleResponse,
)
from villagemind.world import Capabilities


LENIENT_TEXT_LIMIT = 100
DEFAULT_CHAT_REPLY = "Hmm...."

_KINDS_BY_NAME: Dict[str, ActionKind] = {kind.value.lower(): kind for kind in ActionKind}


class ParseKind(str, Enum):
    STRUCTURED = "structured"
    LENIENT = "lenient"
    ERROR = "error"


@dataclass(frozen=True)
class ParseResult:
    """Tagged outcome of ``parse_response``."""

    kind: ParseKind
    response: Optional[OracleResponse] = None
    error: Optional[ResponseParseError] = None

    @property
    def ok(self) -> bool:
        return self.kind != ParseKind.ERROR


@dataclass(frozen=True)
class Verdict:
    """Either a validated ``Action`` or the reason it was rejected."""

    action: Optional[Action] = None
    rejection: Optional[ResponseValidationError] = None

    @property
    def accepted(self) -> bool:
        return self.action is not None

    @classmethod
    def accept(cls, action: Action) -> "Verdict":
        return cls(action=action)

    @classmethod
    def reject(cls, message: str) -> "Verdict":
        return cls(rejection=ResponseValidationError(message))


def _strip_fences(text: str) -> str:
    if text.startswith("```"):
        lines = [line for line in text.splitlines() if not line.strip().startswith("```")]
        return "\n".join(lines).strip()
    return text


def _extract_json_object(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except JSONDecodeError:
        pass

    start = text.find("{")
    if start < 0:
        return None
    try:
        parsed, _idx = JSONDecoder().raw_decode(text[start:])
    except JSONDecodeError:
        return None
    return parsed


def parse_response(raw: Optional[str]) -> ParseResult:
    """Turn raw oracle text into a tagged ``ParseResult``."""

    if raw is None or not raw.strip():
        return ParseResult(
            kind=ParseKind.ERROR,
            error=ResponseParseError("empty oracle response", raw=raw),
        )

    text = _strip_fences(raw.strip())
    payload = _extract_json_object(text)

    if isinstance(payload, dict):
        try:
            response = OracleResponse.model_validate(payload)
        except ValidationError as exc:
            issues = "; ".join(
                f"{'.'.join(str(part) for part in err.get('loc', ())) or 'root'}: {err.get('msg')}"
                for err in exc.errors(include_url=False)
            )
            return ParseResult(
                kind=ParseKind.ERROR,
                error=ResponseParseError(f"response does not match schema ({issues})", raw=raw),
            )
        return ParseResult(kind=ParseKind.STRUCTURED, response=response)

    if payload is None and len(text) < LENIENT_TEXT_LIMIT and "{" not in text:
        return ParseResult(
            kind=ParseKind.LENIENT,
            response=OracleResponse(action=ActionKind.IDLE.value, intent=text),
        )

    return ParseResult(
        kind=ParseKind.ERROR,
        error=ResponseParseError("response is neither a JSON object nor short text", raw=raw),
    )


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_response(
    response: OracleResponse,
    observation: Optional[Observation],
    capabilities: Optional[Capabilities] = None,
) -> Verdict:
    """Check ``response`` against the freshest observation.

    Any reference the response carries is checked, even when the action kind
    does not need it: objects must be present and interactable, characters
    must be present and alive.
    """

    kind = _KINDS_BY_NAME.get(response.action.strip().lower())
    if kind is None:
        return Verdict.reject(f"unknown action '{response.action}'")

    object_id = _clean(response.object_id)
    target_id = _clean(response.target_id)

    if kind in OBJECT_ACTIONS and object_id is None:
        return Verdict.reject(f"{kind.value} requires object_id")
    if kind in CHARACTER_ACTIONS and target_id is None:
        return Verdict.reject(f"{kind.value} requires target_id")

    if (object_id is not None or target_id is not None) and observation is None:
        return Verdict.reject("no current observation to check references against")

    if object_id is not None:
        found = observation.find_object(object_id)
        if found is None:
            return Verdict.reject(f"object '{object_id}' is not in view")
        if not found.is_interactable:
            return Verdict.reject(f"object '{object_id}' is not interactable")

    if target_id is not None:
        character = observation.find_character(target_id)
        if character is None:
            return Verdict.reject(f"character '{target_id}' is not in view")
        if character.is_dead:
            return Verdict.reject(f"character '{target_id}' is dead")

    if capabilities is not None and not capabilities.supports(kind):
        return Verdict.reject(f"agent cannot perform '{kind.value}'")

    return Verdict.accept(
        Action(
            kind=kind,
            object_id=object_id if kind in OBJECT_ACTIONS else None,
            target_id=target_id if kind in CHARACTER_ACTIONS else None,
            message=_clean(response.message) if kind == ActionKind.CHAT else None,
            rationale=response.intent.strip(),
        )
    )


def parse_chat_reply(raw: Optional[str], *, default: str = DEFAULT_CHAT_REPLY) -> str:
    """Extract the line a character says back from a chat-reply answer.

    A JSON object with a non-empty ``response`` wins; plain text is spoken as
    is; anything else (empty text, JSON without a usable ``response``) gives
    ``default``.
    """

    if raw is None or not raw.strip():
        return default

    text = _strip_fences(raw.strip())
    payload = _extract_json_object(text)
    if payload is None:
        return text if "{" not in text else default
    if not isinstance(payload, dict):
        return default

    try:
        reply = ChatReply.model_validate(payload)
    except ValidationError:
        return default
    return reply.response.strip() or default


__all__ = [
    "DEFAULT_CHAT_REPLY",
    "LENIENT_TEXT_LIMIT",
    "ParseKind",
    "ParseResult",
    "Verdict",
    "parse_chat_reply",
    "parse_response",
    "validate_response",
]
