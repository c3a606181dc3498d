"""Tests for context section renderers and the token budget."""

from __future__ import annotations

import pytest

from wordloom.ai.context.sections import (
    SECTION_IMMEDIATE,
    SECTION_METADATA,
    SECTION_SEMANTIC,
    SECTION_SUMMARY,
    ContextBudget,
    DocumentContext,
    ProjectContext,
    render_document_section,
    render_project_guidelines,
    render_project_section,
    render_session_section,
)
from wordloom.services.settings import ContextSettings


def test_default_budget_splits_total_by_ratio() -> None:
    budget = ContextBudget.from_settings()

    assert budget.total_token_limit == 3000
    assert budget.section_limit(SECTION_IMMEDIATE) == 1200
    assert budget.section_limit(SECTION_SUMMARY) == 750
    assert budget.section_limit(SECTION_METADATA) == 450
    assert budget.section_limit(SECTION_SEMANTIC) == 600
    assert budget.as_dict()["total"] == 3000


def test_allowance_is_clamped_by_remaining_total() -> None:
    budget = ContextBudget(total_token_limit=100, per_section_limits={SECTION_SUMMARY: 60})

    assert budget.allowance(SECTION_SUMMARY, used=0) == 60
    assert budget.allowance(SECTION_SUMMARY, used=70) == 30
    assert budget.allowance(SECTION_SUMMARY, used=150) == 0
    assert budget.allowance("unlisted", used=10) == 90


def test_budget_limits_are_read_only() -> None:
    budget = ContextBudget.from_ratios(1000)

    with pytest.raises(TypeError):
        budget.per_section_limits[SECTION_IMMEDIATE] = 5  # type: ignore[index]


def test_negative_total_is_rejected() -> None:
    with pytest.raises(ValueError):
        ContextBudget(total_token_limit=-1)


def test_budget_follows_context_settings() -> None:
    settings = ContextSettings(total_token_limit=1000, immediate_ratio=0.5, summary_ratio=0.1)

    budget = ContextBudget.from_settings(settings)

    assert budget.section_limit(SECTION_IMMEDIATE) == 500
    assert budget.section_limit(SECTION_SUMMARY) == 100


def test_project_section_skips_default_name() -> None:
    assert render_project_section(None) == ""
    assert render_project_section(ProjectContext()) == ""
    assert render_project_section(ProjectContext(name="Atlas")) == "PROJECT: Atlas"

    rendered = render_project_section(
        ProjectContext(name="Atlas", description="A field guide.", custom_fields={"Setting": "Mars"})
    )

    assert rendered == "PROJECT: Atlas\nA field guide.\n\nPROJECT DETAILS:\nSetting: Mars"


def test_document_section_labels_each_field() -> None:
    rendered = render_document_section(
        DocumentContext(purpose="Chapter draft", status="review", notes="Keep it tense.")
    )

    assert "DOCUMENT PURPOSE: Chapter draft" in rendered
    assert "STATUS: review" in rendered
    assert "DOCUMENT NOTES:\nKeep it tense." in rendered
    assert "STATUS" not in render_document_section(DocumentContext(purpose="x"))


def test_session_and_guidelines() -> None:
    assert render_session_section("  ") == ""
    assert render_session_section("focus on pacing") == "SESSION NOTES:\nfocus on pacing"

    guidelines = render_project_guidelines(
        ProjectContext(genre="fiction", style="terse", audience="adults", constraints="no gore")
    )

    assert guidelines.splitlines() == [
        "Genre: fiction",
        "Style: terse",
        "Target audience: adults",
        "Constraints: no gore",
    ]
    assert render_project_guidelines(ProjectContext(genre="other")) == ""
