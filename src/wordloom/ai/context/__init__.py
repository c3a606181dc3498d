"""Smart context assembly: strategy selection, sections, and budgeting."""

from .assembler import (
    ContextAssembler,
    ContextInspection,
    ImmediateContext,
    SmartContextResult,
    render_system_message,
    render_user_prompt,
)
from .sections import ContextBudget, DocumentContext, ProjectContext
from .strategy import ContentType, ContextStrategy, StrategyPlan, StrategyThresholds, classify_content, select_strategy
from .summary import DocumentSummarizer

__all__ = [
    "ContentType",
    "ContextAssembler",
    "ContextBudget",
    "ContextInspection",
    "ContextStrategy",
    "DocumentContext",
    "DocumentSummarizer",
    "ImmediateContext",
    "ProjectContext",
    "SmartContextResult",
    "StrategyPlan",
    "StrategyThresholds",
    "classify_content",
    "render_system_message",
    "render_user_prompt",
    "select_strategy",
]
