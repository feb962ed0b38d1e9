"""Command-line entry points for pdfquiz.

Usage::

    python -m pdfquiz.cli process notes.pdf
    python -m pdfquiz.cli process notes.pdf --json --owner alice
    python -m pdfquiz.cli token alice

``process`` runs the whole pipeline in-process (same components as the
API server, workers included), prints progress to stderr and the
generated questions to stdout.  ``token`` prints a bearer token for the
given owner, for trying the HTTP API locally.

Logs go to stderr; ``--quiet`` (implied by ``--json``) raises the level to
WARNING.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

from pdfquiz.config.loader import load_config
from pdfquiz.config.settings import Settings
from pdfquiz.models.pipeline import ProgressEvent
from pdfquiz.models.question import Question
from pdfquiz.utils.errors import PdfQuizError
from pdfquiz.utils.logging import configure_logging

_LETTERS = "ABCD"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_questions_text(title: str, questions: list[Question]) -> str:
    """Render questions as a numbered, human-readable quiz."""
    sep = "=" * 60
    lines = [sep, f"  {title} -- {len(questions)} questions", sep, ""]
    for number, question in enumerate(questions, start=1):
        lines.append(f"{number}. {question.question}  [{question.difficulty.value}]")
        for index, option in enumerate(question.options):
            marker = "*" if index == question.correct_option_index else " "
            label = _LETTERS[index] if index < len(_LETTERS) else str(index)
            lines.append(f"   {marker} {label}) {option}")
        if question.page_reference:
            lines.append(f"   ({question.page_reference})")
        if question.explanation:
            lines.append(f"   {question.explanation}")
        lines.append("")
    return "\n".join(lines)


def format_questions_json(document_id: str, title: str, questions: list[Question]) -> str:
    return json.dumps(
        {
            "document_id": document_id,
            "title": title,
            "questions": [q.model_dump(mode="json") for q in questions],
        },
        indent=2,
    )


def _print_progress(progress_event: ProgressEvent) -> None:
    print(
        f"[{progress_event.progress:3d}%] {progress_event.status.value:<22} {progress_event.message}",
        file=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _process(path: Path, owner_id: str, json_output: bool, settings: Settings) -> int:
    from pdfquiz.main import build_components, close_components, initialize_components

    if not path.is_file():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1
    data = path.read_bytes()

    components = build_components(settings, load_config(settings=settings))
    await initialize_components(components)
    pipeline = components["pipeline"]
    components["workers"].start()

    try:
        start = time.monotonic()
        document = await pipeline.create_document(
            owner_id=owner_id,
            filename=path.name,
            content_type="application/pdf",
            data=data,
        )
        print(f"Processing: {path.name} ({len(data):,} bytes)", file=sys.stderr)

        final: ProgressEvent | None = None
        async for progress_event in pipeline.subscribe(document.id, owner_id):
            _print_progress(progress_event)
            final = progress_event

        print(f"Done in {time.monotonic() - start:.1f}s", file=sys.stderr)
        if final is None or final.event != "completed":
            error = final.data.get("error", final.message) if final else "no result"
            print(f"Error: processing did not complete: {error}", file=sys.stderr)
            return 1

        questions = await pipeline.get_questions(document.id, owner_id)
        if json_output:
            print(format_questions_json(document.id, document.title, questions))
        else:
            print(format_questions_text(document.title, questions))
        return 0
    except PdfQuizError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_components(components)


def _token(owner_id: str, settings: Settings) -> int:
    from pdfquiz.providers.identity.hmac_identity import HmacIdentityProvider

    if not settings.auth_secret:
        print(
            "Warning: AUTH_SECRET is not set; this token will not verify against a running server.",
            file=sys.stderr,
        )
    print(HmacIdentityProvider(settings=settings).issue(owner_id))
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m pdfquiz.cli",
        description="Turn PDFs into multiple-choice study questions.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Run the full pipeline on a PDF file.")
    process.add_argument("pdf", type=str, help="Path to the PDF file.")
    process.add_argument("--owner", default="cli", help="Owner id to process as (default: cli).")
    process.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print questions as JSON instead of formatted text.",
    )
    process.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors.",
    )

    token = subparsers.add_parser("token", help="Issue a bearer token for an owner id.")
    token.add_argument("owner_id", type=str, help="Owner id to embed in the token.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()

    if args.command == "token":
        configure_logging(log_level="WARNING", stream=sys.stderr)
        return _token(args.owner_id, settings)

    quiet = args.quiet or args.json_output
    configure_logging(
        log_level="WARNING" if quiet else settings.log_level,
        stream=sys.stderr,
    )
    return asyncio.run(_process(Path(args.pdf), args.owner, args.json_output, settings))
