"""CLI helper to inspect how a document would be packed into prompt context."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from ..ai.context.assembler import ContextAssembler
from ..ai.context.sections import DocumentContext, ProjectContext
from ..ai.context.strategy import StrategyThresholds
from ..services.settings import ContextSettings, SettingsStore
from ..utils.logging import setup_logging


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show the context strategy and section token counts for a document.")
    parser.add_argument(
        "--file",
        type=Path,
        help="Document to inspect. Reads stdin when omitted and --text not provided.",
    )
    parser.add_argument("--text", help="Inline document text. Overrides --file when provided.")
    parser.add_argument("--cursor", type=int, help="Cursor offset; defaults to the end of the document.")
    parser.add_argument("--selection-end", type=int, help="End offset of a selection starting at --cursor.")
    parser.add_argument("--genre", help="Project genre used for content classification.")
    parser.add_argument("--purpose", default="", help="Document purpose used for content classification.")
    parser.add_argument("--session-notes", default="", help="Session notes to include in the metadata section.")
    parser.add_argument("--token-limit", type=int, help="Override the total context token limit.")
    parser.add_argument("--short-threshold", type=int, help="Override the short-document threshold (tokens).")
    parser.add_argument("--long-threshold", type=int, help="Override the long-document threshold (tokens).")
    parser.add_argument("--settings", type=Path, help="Settings file to read context limits from.")
    parser.add_argument("--json", action="store_true", help="Emit the inspection as JSON.")
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Write pipeline logs at this level to the wordloom log file.",
    )
    args = parser.parse_args(argv)
    if args.log_level:
        setup_logging(getattr(logging, args.log_level), console=False)

    payload = _load_text(args.text, args.file)
    if not payload:
        print("No input text provided.", file=sys.stderr)
        return 1

    settings = _context_settings(args.settings)
    if args.token_limit is not None:
        settings.total_token_limit = max(1, args.token_limit)
    try:
        thresholds = StrategyThresholds(
            short_doc_max=args.short_threshold or settings.short_doc_threshold,
            long_doc_min=args.long_threshold or settings.long_doc_threshold,
        )
    except ValueError as exc:
        print(f"Invalid thresholds: {exc}", file=sys.stderr)
        return 2

    selection = None
    if args.cursor is not None:
        end = args.selection_end if args.selection_end is not None else args.cursor
        selection = (args.cursor, end)

    assembler = ContextAssembler(settings=settings, thresholds=thresholds)
    result = asyncio.run(
        assembler.build(
            payload,
            project=ProjectContext(genre=args.genre),
            document=DocumentContext(purpose=args.purpose),
            session_notes=args.session_notes,
            selection=selection,
        )
    )
    inspection = result.inspect()

    if args.json:
        json.dump(inspection.as_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    print(f"strategy: {inspection.strategy.value}")
    print(f"content type: {inspection.content_type.value}")
    print(f"document tokens: {inspection.document_tokens}")
    for section, tokens in inspection.section_tokens.items():
        print(f"  {section}: {tokens}")
    print(f"total tokens: {inspection.total_tokens} / {inspection.token_limit}")
    return 0


def _load_text(inline: str | None, path: Path | None) -> str:
    if inline:
        return inline
    if path:
        return path.read_text(encoding="utf-8")
    data = sys.stdin.read()
    return data.strip()


def _context_settings(path: Path | None) -> ContextSettings:
    if path is None:
        return ContextSettings()
    return SettingsStore(path).load().context


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
