"""
Command-line interface for the exam generator.

Usage:
    python -m exam_generator serve [--host HOST] [--port PORT] [--reload]
    python -m exam_generator render DRAFT.json [OPTIONS]
"""

import argparse
import asyncio
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from exam_generator.config import VERSION, Settings, get_settings
from exam_generator.errors import ExamGeneratorError
from exam_generator.models.exam import ExamKind, ExamRequestParams
from exam_generator.rendering.document import build_exam_document
from exam_generator.services.compiler import compile_document
from exam_generator.services.grading import THRESHOLD_FAMILIES, compute_grade_scale
from exam_generator.services.pipeline import stage_logo
from exam_generator.services.workspace import RunWorkspace
from exam_generator.utils.normalizers import effective_total_points, normalize_exam_draft


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="exam-generator",
        description="Exam Generator CLI - serve the API or render exam drafts locally"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", type=str, default=None, help="Interface (default: HOST from env)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: PORT from env)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    render_parser = subparsers.add_parser(
        "render",
        help="Render a saved exam draft JSON to PDF without calling the model"
    )
    render_parser.add_argument("draft", type=str, help="Path to the exam draft JSON")
    render_parser.add_argument("--subject", "-s", type=str, default="Mathematik", help="Subject (default: Mathematik)")
    render_parser.add_argument("--grade", "-g", type=str, default="", help="Grade label")
    render_parser.add_argument("--topic", "-t", type=str, default="", help="Topic fallback when the draft has no title")
    render_parser.add_argument(
        "--exam-type",
        "-e",
        type=str,
        default="sa",
        help="'ex' for a short test, anything else for a full exam (default: sa)"
    )
    render_parser.add_argument("--output", "-o", type=str, default=None, help="Output PDF (default: DRAFT.pdf)")
    render_parser.add_argument("--tex", action="store_true", help="Also keep the generated .tex next to the PDF")

    return parser


def load_render_settings() -> Settings:
    """Settings for offline rendering; no API key is needed."""
    try:
        return get_settings()
    except ValueError:
        return Settings(test_mode=True)


async def render_command(args: argparse.Namespace) -> int:
    """
    Render a draft JSON file to a PDF.

    Args:
        args: Parsed command-line arguments

    Returns:
        int: Exit code (0 for success, 1 for error)
    """
    draft_path = Path(args.draft)
    if not draft_path.is_file():
        print(f"Error: Draft not found: {draft_path}")
        return 1

    settings = load_render_settings()
    output = Path(args.output) if args.output else draft_path.with_suffix(".pdf")

    try:
        draft = normalize_exam_draft(draft_path.read_text(encoding="utf-8"))
        params = ExamRequestParams(
            subject=args.subject,
            grade_label=args.grade,
            topic=args.topic,
            exam_kind=ExamKind.from_form(args.exam_type),
        )
        scale = compute_grade_scale(
            effective_total_points(draft),
            THRESHOLD_FAMILIES[settings.grade_thresholds],
        )

        with RunWorkspace(settings.work_dir) as workspace:
            document = build_exam_document(
                draft,
                params,
                scale,
                brand_name=settings.brand_name,
                version=VERSION,
                logo_filename=stage_logo(workspace, settings.assets_dir),
                gap_width=settings.gap_width,
            )
            tex_path = workspace.write_text(".tex", document.render())
            if args.tex:
                shutil.copyfile(tex_path, output.with_suffix(".tex"))

            pdf_path = await compile_document(
                tex_path,
                command=settings.latex_command,
                passes=settings.compile_passes,
                timeout_seconds=settings.compile_timeout_seconds,
            )
            output.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(pdf_path, output)

    except ExamGeneratorError as e:
        print(f"Error ({e.error_type}): {e.message}")
        return 1

    print(f"Wrote {output} ({len(draft.tasks)} tasks, {scale.total} points)")
    return 0


def serve_command(args: argparse.Namespace) -> int:
    """Start uvicorn with the FastAPI app."""
    import uvicorn

    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("\nMake sure you have a .env file with:")
        print("  GEMINI_API_KEY=your_api_key")
        print("or set TEST_MODE=true for canned model output.")
        return 1

    uvicorn.run(
        "exam_generator.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Route to command handler
    if args.command == "serve":
        return serve_command(args)
    elif args.command == "render":
        return asyncio.run(render_command(args))
    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
