"""
Request pipeline: upload -> model -> normalize -> render -> compile -> deliver.

Each request runs the stages strictly in order inside its own workspace.
The state of every run is logged as it moves through

    RECEIVED -> VALIDATED -> ANALYZED -> NORMALIZED -> RENDERED -> COMPILED
    -> DELIVERED -> CLEANED

with FAILED reachable from any stage. CLEANED is always the last state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from fastapi import UploadFile
from google import genai

from exam_generator.config import VERSION, Settings
from exam_generator.errors import MalformedModelOutputError, UpstreamError
from exam_generator.models.exam import AnalysisResult, ExamRequestParams, UploadedImage
from exam_generator.rendering.document import build_exam_document
from exam_generator.services.compiler import compile_document
from exam_generator.services.counter import get_counter
from exam_generator.services.file_validator import validate_images
from exam_generator.services.gemini_client import generate_text, get_gemini_client
from exam_generator.services.grading import THRESHOLD_FAMILIES, compute_grade_scale
from exam_generator.services.prompts import (
    ANALYZE_PROMPT,
    build_exam_prompt,
    canned_analysis_response,
    canned_exam_response,
)
from exam_generator.services.workspace import RunWorkspace
from exam_generator.utils.normalizers import (
    effective_total_points,
    normalize_analysis,
    normalize_exam_draft,
)

logger = logging.getLogger(__name__)

LOGO_FILENAME = "logo.png"


def stage_logo(workspace: RunWorkspace, assets_dir: Path) -> Optional[str]:
    """Copy the branding logo into the workspace; None when no logo is shipped."""
    source = assets_dir / LOGO_FILENAME
    if not source.is_file():
        return None
    name = f"logo_{workspace.run_id}.png"
    workspace.copy_in(source, name)
    return name


class RequestState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    ANALYZED = "analyzed"
    NORMALIZED = "normalized"
    RENDERED = "rendered"
    COMPILED = "compiled"
    DELIVERED = "delivered"
    CLEANED = "cleaned"
    FAILED = "failed"


@dataclass
class RunTracker:
    """Records and logs the state transitions of one run."""
    run_id: str
    history: List[RequestState] = field(default_factory=lambda: [RequestState.RECEIVED])

    @property
    def state(self) -> RequestState:
        return self.history[-1]

    def advance(self, state: RequestState) -> None:
        logger.info(f"run {self.run_id}: {self.state.value} -> {state.value}")
        self.history.append(state)

    def fail(self, error: BaseException) -> None:
        logger.warning(
            f"run {self.run_id}: {self.state.value} -> failed ({type(error).__name__}: {error})"
        )
        self.history.append(RequestState.FAILED)


@dataclass
class ExamArtifact:
    """A finished PDF held in memory after its workspace is gone."""
    filename: str
    content: bytes
    run_id: str
    media_type: str = "application/pdf"


class ExamPipeline:
    """Runs /analyze and /generate requests against the configured collaborators."""

    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[Callable[[], genai.Client]] = None,
    ) -> None:
        self.settings = settings
        self.client_factory = client_factory

    async def _store_uploads(
        self,
        workspace: RunWorkspace,
        files: Optional[List[UploadFile]],
        max_count: int,
    ) -> List[UploadedImage]:
        validated = await validate_images(files, max_count, self.settings.max_upload_bytes)
        return [workspace.save_image(content, mime, name) for content, mime, name in validated]

    async def _ask_model(self, prompt: str, images: Sequence[UploadedImage]) -> str:
        return await generate_text(
            (self.client_factory or get_gemini_client)(),
            prompt,
            images,
            model=self.settings.model_name,
            timeout_seconds=self.settings.ai_timeout_seconds,
            json_mode=True,
        )

    async def analyze(self, files: Optional[List[UploadFile]]) -> Tuple[AnalysisResult, Optional[str]]:
        """
        Read subject, grade and topic from the uploaded notes.

        Validation failures propagate. Model failures degrade to an empty
        result plus a public error message so the frontend flow continues.

        Returns:
            Tuple of (analysis, public_error_message_or_None)
        """
        workspace = RunWorkspace(self.settings.work_dir)
        tracker = RunTracker(workspace.run_id)
        try:
            with workspace:
                images = await self._store_uploads(workspace, files, self.settings.max_analyze_images)
                tracker.advance(RequestState.VALIDATED)

                try:
                    if self.settings.test_mode:
                        raw_text = canned_analysis_response()
                    else:
                        raw_text = await self._ask_model(ANALYZE_PROMPT, images)
                    tracker.advance(RequestState.ANALYZED)
                    result = normalize_analysis(raw_text)
                except (UpstreamError, MalformedModelOutputError) as e:
                    tracker.fail(e)
                    return AnalysisResult(), e.public_message
                tracker.advance(RequestState.NORMALIZED)
                tracker.advance(RequestState.DELIVERED)
                return result, None
        except Exception as e:
            tracker.fail(e)
            raise
        finally:
            tracker.advance(RequestState.CLEANED)

    async def generate(
        self,
        files: Optional[List[UploadFile]],
        params: ExamRequestParams,
    ) -> ExamArtifact:
        """
        Produce the exam PDF for one request.

        Raises:
            ExamGeneratorError: Any classified stage failure. The workspace
                is removed before the error propagates.
        """
        workspace = RunWorkspace(self.settings.work_dir)
        tracker = RunTracker(workspace.run_id)
        try:
            with workspace:
                images = await self._store_uploads(workspace, files, self.settings.max_generate_images)
                tracker.advance(RequestState.VALIDATED)

                # Test mode replaces the model answer, not the model client.
                if self.settings.test_mode:
                    raw_text = canned_exam_response(params)
                else:
                    raw_text = await self._ask_model(build_exam_prompt(params), images)
                tracker.advance(RequestState.ANALYZED)

                draft = normalize_exam_draft(raw_text)
                tracker.advance(RequestState.NORMALIZED)

                scale = compute_grade_scale(
                    effective_total_points(draft),
                    THRESHOLD_FAMILIES[self.settings.grade_thresholds],
                )
                document = build_exam_document(
                    draft,
                    params,
                    scale,
                    brand_name=self.settings.brand_name,
                    version=VERSION,
                    logo_filename=stage_logo(workspace, self.settings.assets_dir),
                    gap_width=self.settings.gap_width,
                )
                tex_path = workspace.write_text(".tex", document.render())
                tracker.advance(RequestState.RENDERED)

                pdf_path = await compile_document(
                    tex_path,
                    command=self.settings.latex_command,
                    passes=self.settings.compile_passes,
                    timeout_seconds=self.settings.compile_timeout_seconds,
                )
                tracker.advance(RequestState.COMPILED)

                artifact = ExamArtifact(
                    filename=await asyncio.to_thread(self.download_filename, params),
                    content=pdf_path.read_bytes(),
                    run_id=workspace.run_id,
                )
                tracker.advance(RequestState.DELIVERED)
                return artifact
        except Exception as e:
            tracker.fail(e)
            raise
        finally:
            tracker.advance(RequestState.CLEANED)

    def download_filename(self, params: ExamRequestParams) -> str:
        """Next download name. Blocks on the counter file lock; generate() runs it in a worker thread."""
        number = get_counter(Path(self.settings.counter_path)).next_value()
        return f"{self.settings.brand_name}_{params.exam_kind.policy.file_code}_{number}.pdf"
