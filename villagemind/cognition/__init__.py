"""Cognition stack for villagemind.

This package houses the per-agent decision pipeline: scheduling
(cadence), context rendering (context, prompts, renderers), response
checking (validator), behaviour (state_machine) and the fallback policy.
"""

from .cadence import DecisionCadence, DecisionScheduler, ScheduleDecision, Trigger
from .context import ChatReplyContext, DecisionContext, build_chat_reply_context, build_decision_context
from .prompts import PromptLibrary, PromptTemplate, DEFAULT_PROMPTS
from .renderers import render_prompt, RenderedPrompt
from .validator import ParseKind, ParseResult, Verdict, parse_chat_reply, parse_response, validate_response
from .fallback import FALLBACK_INTENT, FallbackPolicy
from .state_machine import ActionStateMachine

__all__ = [
    "DecisionCadence",
    "DecisionScheduler",
    "ScheduleDecision",
    "Trigger",
    "ChatReplyContext",
    "DecisionContext",
    "build_chat_reply_context",
    "build_decision_context",
    "PromptLibrary",
    "PromptTemplate",
    "DEFAULT_PROMPTS",
    "render_prompt",
    "RenderedPrompt",
    "ParseKind",
    "ParseResult",
    "Verdict",
    "parse_chat_reply",
    "parse_response",
    "validate_response",
    "FALLBACK_INTENT",
    "FallbackPolicy",
    "ActionStateMachine",
]
