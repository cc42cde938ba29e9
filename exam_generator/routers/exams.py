"""
Exam generation API endpoints.

Provides the two upload endpoints used by the frontend: metadata analysis
of notebook photos and generation of the exam PDF.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile

from exam_generator.config import get_settings
from exam_generator.errors import InputValidationError
from exam_generator.middleware.rate_limit import EXAM_UPLOAD_SCOPE, exam_rate_limit, get_limiter
from exam_generator.models.exam import ExamKind, ExamRequestParams
from exam_generator.services.pipeline import ExamPipeline

router = APIRouter(tags=["exams"])
limiter = get_limiter()


def get_pipeline() -> ExamPipeline:
    """Dependency returning a pipeline bound to the current settings."""
    return ExamPipeline(get_settings())


@router.post("/analyze")
@limiter.shared_limit(exam_rate_limit, scope=EXAM_UPLOAD_SCOPE)  # type: ignore[untyped-decorator]
async def analyze_notes(
    request: Request,
    hefteintrag: Optional[List[UploadFile]] = File(None, description="1-3 photos of notebook pages"),
    pipeline: ExamPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """
    Suggest subject, grade and topic for the uploaded notes.

    Returns:
        200: {"fach", "klasse", "thema"} with null for unknown values. When
            the model call fails the fields are null and "error" holds a
            message for the user.
        400: No image, too many images or an invalid file
        413: Image larger than the upload cap
    """
    result, error = await pipeline.analyze(hefteintrag)
    request.state.image_count = len(hefteintrag or [])

    body: Dict[str, Any] = result.model_dump()
    if error:
        body["error"] = error
    return body


@router.post("/generate")
@limiter.shared_limit(exam_rate_limit, scope=EXAM_UPLOAD_SCOPE)  # type: ignore[untyped-decorator]
async def generate_exam(
    request: Request,
    hefteintrag: Optional[List[UploadFile]] = File(None, description="1-5 photos of notebook pages"),
    userFach: Optional[str] = Form(None, description="Subject (required)"),
    userKlasse: Optional[str] = Form(None, description="Grade label, e.g. '9' or '10b'"),
    userThema: Optional[str] = Form(None, description="Topic hint"),
    examType: Optional[str] = Form(None, description="'ex' for a short test, anything else for a full exam"),
    pipeline: ExamPipeline = Depends(get_pipeline),
) -> Response:
    """
    Generate an exam with grading table and answer key as a PDF.

    Returns:
        200: application/pdf attachment named <brand>_<EX|SA>_<n>.pdf
        400: Missing subject, missing or invalid images
        413: Image larger than the upload cap
        500: Document compilation failed
        502: Model unreachable or returned unusable output
        504: Model did not answer in time
    """
    if not userFach or not userFach.strip():
        raise InputValidationError("Bitte ein Fach angeben.")

    params = ExamRequestParams(
        subject=userFach,
        grade_label=userKlasse or "",
        topic=userThema or "",
        exam_kind=ExamKind.from_form(examType),
    )
    artifact = await pipeline.generate(hefteintrag, params)

    request.state.run_id = artifact.run_id
    request.state.exam_kind = params.exam_kind.value
    request.state.image_count = len(hefteintrag or [])
    request.state.pdf_bytes = len(artifact.content)

    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )
