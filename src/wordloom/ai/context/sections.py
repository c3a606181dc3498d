"""Context inputs, labelled section renderers, and the token budget."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ...services.settings import ContextSettings

DEFAULT_PROJECT_NAME = "My Project"

SECTION_IMMEDIATE = "immediate"
SECTION_SUMMARY = "summary"
SECTION_METADATA = "metadata"
SECTION_SEMANTIC = "semantic"

# Highest priority first; lower sections only get what is left.
SECTION_PRIORITY: tuple[str, ...] = (SECTION_IMMEDIATE, SECTION_SUMMARY, SECTION_METADATA, SECTION_SEMANTIC)

DEFAULT_SECTION_RATIOS: Mapping[str, float] = MappingProxyType(
    {
        SECTION_IMMEDIATE: 0.40,
        SECTION_SUMMARY: 0.25,
        SECTION_METADATA: 0.15,
        SECTION_SEMANTIC: 0.20,
    }
)


@dataclass(slots=True, frozen=True)
class ProjectContext:
    """Project-level guidance shared by every document in a project."""

    name: str = DEFAULT_PROJECT_NAME
    description: str = ""
    genre: str | None = None
    style: str = ""
    audience: str = ""
    constraints: str = ""
    custom_fields: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class DocumentContext:
    """Per-document notes supplied by the author."""

    document_id: str | None = None
    purpose: str = ""
    status: str = "draft"
    notes: str = ""
    custom_fields: Mapping[str, str] = field(default_factory=dict)


def render_project_section(project: ProjectContext | None) -> str:
    if project is None:
        return ""
    parts: list[str] = []
    description = (project.description or "").strip()
    if description:
        parts.append(f"PROJECT: {project.name}\n{description}")
    elif project.name and project.name != DEFAULT_PROJECT_NAME:
        parts.append(f"PROJECT: {project.name}")
    details = _render_fields(project.custom_fields)
    if details:
        parts.append(f"PROJECT DETAILS:\n{details}")
    return "\n\n".join(parts)


def render_document_section(document: DocumentContext | None) -> str:
    if document is None:
        return ""
    parts: list[str] = []
    if document.purpose.strip():
        parts.append(f"DOCUMENT PURPOSE: {document.purpose.strip()}")
    if document.status and document.status != "draft":
        parts.append(f"STATUS: {document.status}")
    if document.notes.strip():
        parts.append(f"DOCUMENT NOTES:\n{document.notes.strip()}")
    details = _render_fields(document.custom_fields)
    if details:
        parts.append(f"DOCUMENT DETAILS:\n{details}")
    return "\n\n".join(parts)


def render_session_section(session_notes: str | None) -> str:
    notes = (session_notes or "").strip()
    return f"SESSION NOTES:\n{notes}" if notes else ""


def render_project_guidelines(project: ProjectContext | None) -> str:
    """Genre/style/audience/constraints lines appended to the system message."""

    if project is None:
        return ""
    lines: list[str] = []
    if project.genre and project.genre != "other":
        lines.append(f"Genre: {project.genre}")
    if project.style:
        lines.append(f"Style: {project.style}")
    if project.audience:
        lines.append(f"Target audience: {project.audience}")
    if project.constraints:
        lines.append(f"Constraints: {project.constraints}")
    return "\n".join(lines)


def _render_fields(values: Mapping[str, str] | None) -> str:
    if not values:
        return ""
    return "\n".join(f"{key}: {value}" for key, value in values.items())


@dataclass(slots=True, frozen=True)
class ContextBudget:
    """Total token limit plus a per-section ceiling.

    Sections missing from ``per_section_limits`` may use the whole remainder.
    """

    total_token_limit: int = 3_000
    per_section_limits: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.total_token_limit < 0:
            raise ValueError("total_token_limit must be non-negative")
        object.__setattr__(self, "per_section_limits", MappingProxyType(dict(self.per_section_limits)))

    @classmethod
    def from_ratios(cls, total_token_limit: int, ratios: Mapping[str, float] | None = None) -> "ContextBudget":
        shares = ratios if ratios is not None else DEFAULT_SECTION_RATIOS
        total = max(0, int(total_token_limit))
        limits = {name: max(0, int(total * float(share))) for name, share in shares.items()}
        return cls(total_token_limit=total, per_section_limits=limits)

    @classmethod
    def from_settings(cls, settings: ContextSettings | None = None) -> "ContextBudget":
        config = settings or ContextSettings()
        return cls.from_ratios(
            config.total_token_limit,
            {
                SECTION_IMMEDIATE: config.immediate_ratio,
                SECTION_SUMMARY: config.summary_ratio,
                SECTION_METADATA: config.metadata_ratio,
                SECTION_SEMANTIC: config.semantic_ratio,
            },
        )

    def section_limit(self, section: str) -> int:
        return int(self.per_section_limits.get(section, self.total_token_limit))

    def allowance(self, section: str, used: int) -> int:
        """Tokens *section* may consume given *used* tokens already spent."""

        remaining = max(0, self.total_token_limit - max(0, used))
        return max(0, min(self.section_limit(section), remaining))

    def as_dict(self) -> dict[str, int]:
        payload = {"total": self.total_token_limit}
        payload.update({name: int(limit) for name, limit in self.per_section_limits.items()})
        return payload


__all__ = [
    "ContextBudget",
    "DEFAULT_PROJECT_NAME",
    "DEFAULT_SECTION_RATIOS",
    "DocumentContext",
    "ProjectContext",
    "SECTION_IMMEDIATE",
    "SECTION_METADATA",
    "SECTION_PRIORITY",
    "SECTION_SEMANTIC",
    "SECTION_SUMMARY",
    "render_document_section",
    "render_project_guidelines",
    "render_project_section",
    "render_session_section",
]
