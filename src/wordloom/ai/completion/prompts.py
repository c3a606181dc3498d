"""Prompt text for inline completions and document-level tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

CURSOR_MARKER = "<|cursor|>"
RECENT_WINDOW_CHARS = 300
LOOKAHEAD_CHARS = 50
MIN_SUGGESTION_CHARS = 3

COMPLETION_WORD_TARGETS: Mapping[str, int] = MappingProxyType({"short": 10, "medium": 20, "long": 40})

AUTOCOMPLETE_SYSTEM_MESSAGE = """You are an inline writing assistant that predicts what the author will type next.
Rules:
- Continue the text naturally and logically
- Match the existing writing style and tone
- Output ONLY the continuation text - no explanations, quotes, or meta-commentary
- Keep completions focused and relevant
- If the text seems incomplete, complete the thought
- For code, follow proper syntax and conventions
- For prose, maintain narrative flow and voice"""

CORE_SYSTEM_MESSAGE = """You are a precise writing/editor assistant for any document (blogs, docs, notes, fiction).
Respect the author's style, POV, tense, and constraints.
Output ONLY the prose requested, with no explanations.
When asked to continue or write the "next part", write NEW content that comes after the given text. Never repeat or rewrite existing content."""

_CURSOR_PATTERN = re.compile(re.escape(CURSOR_MARKER))
_INSTRUCTION_ECHO = re.compile(r"^Continue from.*?:", re.MULTILINE)
_PREAMBLE_LINE = re.compile(r"^(?:Here's|Here is|The continuation|Next:).*$", re.MULTILINE)


@dataclass(slots=True, frozen=True)
class TaskPrompt:
    """One document-level operation offered by the assistant."""

    mode: str
    name: str
    instruction: str
    temperature: float
    replaces_selection: bool


TASK_PROMPTS: Mapping[str, TaskPrompt] = MappingProxyType(
    {
        "continue": TaskPrompt(
            mode="continue",
            name="Continue",
            instruction=(
                "Write the NEXT part that comes after the SELECTED passage. Do NOT rewrite or repeat the "
                "selected text. Write 100-200 words of new content that advances the plot, develops "
                "characters, or enhances the narrative. Maintain consistent voice, POV, and tense. Output only "
                "the new continuation."
            ),
            temperature=0.7,
            replaces_selection=False,
        ),
        "revise": TaskPrompt(
            mode="revise",
            name="Revise Selection",
            instruction=(
                "Revise the SELECTED passage for clarity, rhythm, and precision. Preserve meaning, names, tone, "
                "POV, and tense. Output the revised passage ONLY."
            ),
            temperature=0.7,
            replaces_selection=True,
        ),
        "append": TaskPrompt(
            mode="append",
            name="Append to Selection",
            instruction=(
                "Continue the SELECTED passage with 80-180 words that flow naturally. Maintain voice, POV, and "
                "tense. Output continuation ONLY."
            ),
            temperature=0.7,
            replaces_selection=False,
        ),
        "ideas": TaskPrompt(
            mode="ideas",
            name="Generate Ideas",
            instruction=(
                "Based on the SELECTED passage, generate 3-5 creative ideas for how the content could develop "
                "next. Include specific suggestions for plot developments, character arcs, themes, or "
                "directions. Be creative but consistent with the established tone and context."
            ),
            temperature=0.8,
            replaces_selection=False,
        ),
        "summarize": TaskPrompt(
            mode="summarize",
            name="Summarize",
            instruction=(
                "Create a concise summary of the SELECTED passage. Capture the key points, main ideas, and "
                "essential information. Keep the summary clear and well-organized."
            ),
            temperature=0.5,
            replaces_selection=False,
        ),
        "focus": TaskPrompt(
            mode="focus",
            name="Focus & Tighten",
            instruction=(
                "Tighten and clarify the SELECTED passage. Remove unnecessary words, improve sentence structure, "
                "and make the writing more precise and impactful. Preserve the original meaning and tone. Output "
                "the focused passage ONLY."
            ),
            temperature=0.6,
            replaces_selection=True,
        ),
        "enhance": TaskPrompt(
            mode="enhance",
            name="Enhance Details",
            instruction=(
                "Enhance the SELECTED passage by adding vivid details, sensory descriptions, and rich imagery. "
                "Make the writing more engaging and immersive while maintaining the original structure and "
                "meaning. Output the enhanced passage ONLY."
            ),
            temperature=0.8,
            replaces_selection=True,
        ),
        "custom": TaskPrompt(
            mode="custom",
            name="Custom",
            instruction="Improve the SELECTED passage while preserving its original meaning and tone.",
            temperature=0.7,
            replaces_selection=True,
        ),
    }
)

WHOLE_DOCUMENT_CONTINUE = (
    "Write the next part of this document that comes after where it currently ends. Do NOT rewrite existing "
    "content. Write 150-250 words of new content. Maintain consistent voice, POV, and tense."
)


def get_task_prompt(mode: str) -> TaskPrompt:
    try:
        return TASK_PROMPTS[mode]
    except KeyError:
        raise ValueError(f"Unknown assistant mode: {mode!r}") from None


def task_instruction(mode: str, custom_prompt: str | None = None, *, has_selection: bool = True) -> str:
    """Instruction text for *mode*; a custom prompt wins for ``custom``."""

    if mode == "custom" and custom_prompt and custom_prompt.strip():
        return custom_prompt.strip()
    if mode == "continue" and not has_selection:
        return WHOLE_DOCUMENT_CONTINUE
    return get_task_prompt(mode).instruction


def completion_word_target(length: str) -> int:
    return COMPLETION_WORD_TARGETS.get(length, COMPLETION_WORD_TARGETS["medium"])


def build_autocomplete_prompt(
    text_before: str,
    text_after: str,
    *,
    document_context: str = "",
    completion_length: str = "medium",
) -> tuple[str, str]:
    """Return ``(system_message, user_prompt)`` for a ghost-text completion."""

    recent = (text_before or "")[-RECENT_WINDOW_CHARS:]
    upcoming = (text_after or "")[:LOOKAHEAD_CHARS]
    parts: list[str] = []
    if document_context and document_context.strip():
        parts.append(f"Context: {document_context.strip()}\n\n")
    parts.append(recent)
    parts.append(CURSOR_MARKER)
    if upcoming.strip():
        parts.append(upcoming)
    parts.append(f"\n\nContinue from {CURSOR_MARKER} with {completion_word_target(completion_length)} words:")
    return AUTOCOMPLETE_SYSTEM_MESSAGE, "".join(parts)


def clean_completion(raw: str) -> str | None:
    """Strip leaked markers, echoed instructions and wrapping quotes.

    Returns ``None`` when fewer than three characters survive.
    """

    text = (raw or "").strip()
    text = _CURSOR_PATTERN.sub("", text).strip()
    text = _INSTRUCTION_ECHO.sub("", text).strip()
    text = _PREAMBLE_LINE.sub("", text).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        text = text[1:-1].strip()
    if len(text) < MIN_SUGGESTION_CHARS:
        return None
    return text


__all__ = [
    "AUTOCOMPLETE_SYSTEM_MESSAGE",
    "COMPLETION_WORD_TARGETS",
    "CORE_SYSTEM_MESSAGE",
    "CURSOR_MARKER",
    "LOOKAHEAD_CHARS",
    "RECENT_WINDOW_CHARS",
    "TASK_PROMPTS",
    "TaskPrompt",
    "build_autocomplete_prompt",
    "clean_completion",
    "completion_word_target",
    "get_task_prompt",
    "task_instruction",
]
