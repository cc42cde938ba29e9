"""Run the LaTeX compiler against a document source in its own directory.

The compiler's exit status is logged but not trusted: pdflatex exits
non-zero on recoverable warnings while still writing a usable PDF, so the
existence of the artifact is the only success criterion.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from exam_generator.errors import RenderingError

logger = logging.getLogger(__name__)

DEFAULT_PASSES = 2
DEFAULT_TIMEOUT_SECONDS = 60.0
LOG_TAIL_CHARS = 4000


def build_command(command: str, tex_path: Path) -> List[str]:
    return [
        command,
        "-interaction=nonstopmode",
        f"-output-directory={tex_path.parent}",
        str(tex_path),
    ]


async def _run_pass(args: List[str], cwd: Path, timeout_seconds: float) -> Optional[int]:
    """Run one compiler pass; returns the exit code, or None after a timeout."""
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(f"Compiler pass exceeded {timeout_seconds}s and was killed")
        return None
    finally:
        # Timeout or cancellation of the request: the child must not outlive the workspace
        if process.returncode is None:
            process.kill()
            await process.wait()

    if process.returncode != 0:
        output = (stdout or b"").decode("utf-8", errors="replace")
        logger.warning(
            f"Compiler exited with {process.returncode}: {output[-LOG_TAIL_CHARS:]}"
        )
    return process.returncode


def _read_log_tail(log_path: Path) -> str:
    try:
        return log_path.read_text(encoding="utf-8", errors="replace")[-LOG_TAIL_CHARS:]
    except OSError:
        return "<no compiler log>"


async def compile_document(
    tex_path: Path,
    command: str = "pdflatex",
    passes: int = DEFAULT_PASSES,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> Path:
    """
    Compile a LaTeX file and return the path of the produced PDF.

    The second pass resolves forward references such as the total page
    count in the footer. Output goes next to the source file, which lives
    in a directory owned by one request.

    Args:
        tex_path: Document source inside the request workspace
        command: Compiler binary
        passes: Number of compiler runs
        timeout_seconds: Deadline for each pass

    Returns:
        Path to the PDF artifact

    Raises:
        RenderingError: No artifact after all passes, or compiler not found
    """
    args = build_command(command, tex_path)
    pdf_path = tex_path.with_suffix(".pdf")

    for number in range(1, passes + 1):
        try:
            exit_code = await _run_pass(args, tex_path.parent, timeout_seconds)
        except FileNotFoundError as e:
            logger.error(f"Compiler binary {command!r} not found")
            raise RenderingError(f"Compiler binary {command!r} not found") from e
        logger.info(f"Compiler pass {number}/{passes} for {tex_path.name} exited with {exit_code}")
        if exit_code is None:
            # A killed run may leave a truncated PDF behind; never deliver it.
            raise RenderingError(f"Compiler pass {number} for {tex_path.name} timed out")

    if not pdf_path.exists():
        log_tail = _read_log_tail(tex_path.with_suffix(".log"))
        logger.error(f"No PDF produced for {tex_path.name}. Compiler log tail:\n{log_tail}")
        raise RenderingError(f"Compiler produced no artifact for {tex_path.name}")

    return pdf_path
