"""Prompt rendering utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .context import ChatReplyContext, DecisionContext
from .prompts import DEFAULT_PROMPTS, PromptTemplate


@dataclass
class RenderedPrompt:
    system: str
    user: str

    @property
    def text(self) -> str:
        """Single text blob sent to transports that take one prompt."""

        return "\n\n".join(section for section in (self.system, self.user) if section)


def render_prompt(
    template: PromptTemplate | None,
    context: Union[DecisionContext, ChatReplyContext],
    *,
    include_default: bool = True,
) -> RenderedPrompt:
    """Render a prompt template using the supplied context.

    Placeholders use ``{{double_brace}}`` syntax so JSON braces in the
    examples are left alone. Unknown placeholders remain as-is.

    Parameters
    ----------
    template:
        PromptTemplate to render. When ``None`` and ``include_default`` is True,
        the ``decide`` template from ``DEFAULT_PROMPTS`` is used.
    context:
        Decision or chat-reply context assembled by the engine; each supplies
        its own placeholder values.
    include_default:
        Whether to fall back to ``DEFAULT_PROMPTS`` when template is missing.
    """

    if template is None and include_default:
        template = DEFAULT_PROMPTS.get("decide")
    elif template is None:
        raise ValueError("Prompt template not provided and defaults disabled")

    replacements = context.placeholders()

    system = template.system
    user = template.user
    for placeholder, value in replacements.items():
        system = system.replace(placeholder, value)
        user = user.replace(placeholder, value)

    return RenderedPrompt(system=system, user=user)


__all__ = ["RenderedPrompt", "render_prompt"]
