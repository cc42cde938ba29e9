"""
Tests for the request pipeline.

The compiler and the model call are mocked; everything between them
(validation, normalization, rendering, counter, cleanup) runs for real.
"""

import json
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import UploadFile

from exam_generator.config import Settings
from exam_generator.errors import (
    InputValidationError,
    MalformedModelOutputError,
    RenderingError,
    SecurityError,
    UpstreamError,
    UpstreamTimeoutError,
)
from exam_generator.models.exam import ExamKind, ExamRequestParams
from exam_generator.services.pipeline import ExamPipeline, RequestState, RunTracker

JPEG_CONTENT = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64

MODEL_DRAFT = json.dumps({
    "titel": "Schulaufgabe: Optik",
    "hilfsmittel": "Geodreieck",
    "aufgaben": [
        {"anweisung": "Zeichne den Strahlengang.", "loesung": "Skizze", "punkte": 10},
        {"anweisung": "Ergänze.", "inhalt": "Licht breitet sich ___ aus.", "loesung": "geradlinig", "punkte": 5},
    ],
})


def make_upload(content: bytes = JPEG_CONTENT, filename: str = "heft.jpg"):
    file = MagicMock(spec=UploadFile)
    file.filename = filename
    file.read = AsyncMock(return_value=content)
    return file


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        test_mode=True,
        work_dir=tmp_path / "work",
        counter_path=tmp_path / "counter.json",
        static_dir=tmp_path / "static",
    )


@pytest.fixture
def live_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"test_mode": False, "gemini_api_key": "test-key"})


@pytest.fixture(autouse=True)
def mock_magic():
    with patch("exam_generator.services.file_validator.magic.from_buffer", return_value="image/jpeg") as mock:
        yield mock


@pytest.fixture
def mock_compile():
    """Fake compiler that writes a PDF next to the source and records it."""
    sources = []

    async def fake_compile(tex_path: Path, **kwargs) -> Path:
        sources.append(tex_path.read_text(encoding="utf-8"))
        pdf_path = tex_path.with_suffix(".pdf")
        pdf_path.write_bytes(b"%PDF-1.5 fake")
        return pdf_path

    with patch("exam_generator.services.pipeline.compile_document", new=AsyncMock(side_effect=fake_compile)) as mock:
        mock.sources = sources
        yield mock


def workspace_entries(settings: Settings):
    work_dir = Path(settings.work_dir)
    return list(work_dir.iterdir()) if work_dir.exists() else []


PARAMS = ExamRequestParams(subject="Physik", grade_label="8", topic="Licht")


class TestGenerate:
    @pytest.mark.asyncio
    async def test_test_mode_generates_pdf(self, settings, mock_compile):
        with patch("exam_generator.services.pipeline.generate_text") as mock_generate:
            artifact = await ExamPipeline(settings).generate([make_upload()], PARAMS)

        mock_generate.assert_not_called()
        assert artifact.content == b"%PDF-1.5 fake"
        assert artifact.filename == "efectoTEC_SA_1.pdf"
        assert artifact.media_type == "application/pdf"
        assert len(artifact.run_id) == 32
        assert workspace_entries(settings) == []

    @pytest.mark.asyncio
    async def test_model_answer_is_rendered(self, live_settings, mock_compile):
        client_factory = MagicMock(return_value=MagicMock())
        with patch(
            "exam_generator.services.pipeline.generate_text",
            new=AsyncMock(return_value=MODEL_DRAFT),
        ) as mock_generate:
            artifact = await ExamPipeline(live_settings, client_factory).generate([make_upload()], PARAMS)

        client_factory.assert_called_once()
        args, kwargs = mock_generate.call_args
        prompt, images = args[1], args[2]
        assert "Fach Physik, Klasse 8, Thema Licht" in prompt
        assert len(images) == 1 and images[0].mime_type == "image/jpeg"
        assert kwargs["model"] == live_settings.model_name
        assert kwargs["timeout_seconds"] == live_settings.ai_timeout_seconds

        source = mock_compile.sources[0]
        assert r"Thema: \textbf{Optik}" in source
        assert r"Licht breitet sich \luecke{3cm} aus." in source
        assert r"Max. & 10 & 5 & \textbf{15} \\ \hline" in source
        assert artifact.filename == "efectoTEC_SA_1.pdf"
        assert workspace_entries(live_settings) == []

    @pytest.mark.asyncio
    async def test_counter_and_exam_kind_in_filename(self, settings, mock_compile):
        pipeline = ExamPipeline(settings)
        short = PARAMS.model_copy(update={"exam_kind": ExamKind.SHORT_FORM})

        first = await pipeline.generate([make_upload()], PARAMS)
        second = await pipeline.generate([make_upload()], short)

        assert first.filename == "efectoTEC_SA_1.pdf"
        assert second.filename == "efectoTEC_EX_2.pdf"

    @pytest.mark.asyncio
    async def test_counter_runs_off_the_event_loop(self, settings, mock_compile):
        """The counter's file lock may block, so it is taken in a worker thread."""
        threads = []
        counter = MagicMock()
        counter.next_value.side_effect = lambda: threads.append(threading.current_thread()) or 7

        with patch("exam_generator.services.pipeline.get_counter", return_value=counter):
            artifact = await ExamPipeline(settings).generate([make_upload()], PARAMS)

        assert artifact.filename == "efectoTEC_SA_7.pdf"
        assert threads and threads[0] is not threading.current_thread()

    @pytest.mark.asyncio
    async def test_logo_is_staged_when_shipped(self, settings, mock_compile):
        assets = Path(settings.static_dir) / "assets"
        assets.mkdir(parents=True)
        (assets / "logo.png").write_bytes(b"\x89PNG logo")

        artifact = await ExamPipeline(settings).generate([make_upload()], PARAMS)

        assert rf"\includegraphics[width=3.5cm]{{logo_{artifact.run_id}.png}}" in mock_compile.sources[0]

    @pytest.mark.asyncio
    async def test_malformed_model_output(self, live_settings, mock_compile):
        with patch(
            "exam_generator.services.pipeline.generate_text",
            new=AsyncMock(return_value="Gerne! Hier ist die Prüfung: ..."),
        ):
            with pytest.raises(MalformedModelOutputError):
                await ExamPipeline(live_settings, MagicMock()).generate([make_upload()], PARAMS)

        mock_compile.assert_not_called()
        assert workspace_entries(live_settings) == []

    @pytest.mark.asyncio
    async def test_upstream_timeout_propagates(self, live_settings, mock_compile):
        with patch(
            "exam_generator.services.pipeline.generate_text",
            new=AsyncMock(side_effect=UpstreamTimeoutError("too slow")),
        ):
            with pytest.raises(UpstreamTimeoutError):
                await ExamPipeline(live_settings, MagicMock()).generate([make_upload()], PARAMS)

        assert workspace_entries(live_settings) == []

    @pytest.mark.asyncio
    async def test_invalid_upload_never_reaches_model(self, live_settings, mock_compile):
        with patch("exam_generator.services.pipeline.generate_text") as mock_generate:
            with pytest.raises(SecurityError):
                await ExamPipeline(live_settings, MagicMock()).generate(
                    [make_upload(b"%PDF-1.4", "heft.jpg")], PARAMS
                )

        mock_generate.assert_not_called()
        assert workspace_entries(live_settings) == []

    @pytest.mark.asyncio
    async def test_rendering_error_cleans_up(self, settings):
        with patch(
            "exam_generator.services.pipeline.compile_document",
            new=AsyncMock(side_effect=RenderingError("no artifact")),
        ):
            with pytest.raises(RenderingError):
                await ExamPipeline(settings).generate([make_upload()], PARAMS)

        assert workspace_entries(settings) == []
        assert not Path(settings.counter_path).exists()


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_test_mode(self, settings):
        result, error = await ExamPipeline(settings).analyze([make_upload()])

        assert result.model_dump() == {"fach": "Mathe", "klasse": "10", "thema": "Test"}
        assert error is None
        assert workspace_entries(settings) == []

    @pytest.mark.asyncio
    async def test_model_answer(self, live_settings):
        with patch(
            "exam_generator.services.pipeline.generate_text",
            new=AsyncMock(return_value='```json\n{"fach": "Englisch", "klasse": "7", "thema": "Past tense"}\n```'),
        ) as mock_generate:
            result, error = await ExamPipeline(live_settings, MagicMock()).analyze([make_upload()])

        assert result.fach == "Englisch"
        assert error is None
        assert mock_generate.call_args.args[1].startswith("Analysiere")

    @pytest.mark.asyncio
    async def test_upstream_failure_degrades(self, live_settings):
        with patch(
            "exam_generator.services.pipeline.generate_text",
            new=AsyncMock(side_effect=UpstreamError("503 from model")),
        ):
            result, error = await ExamPipeline(live_settings, MagicMock()).analyze([make_upload()])

        assert result.model_dump() == {"fach": None, "klasse": None, "thema": None}
        assert error == UpstreamError.default_public_message
        assert workspace_entries(live_settings) == []

    @pytest.mark.asyncio
    async def test_malformed_output_degrades(self, live_settings):
        with patch(
            "exam_generator.services.pipeline.generate_text",
            new=AsyncMock(return_value="kein JSON"),
        ):
            result, error = await ExamPipeline(live_settings, MagicMock()).analyze([make_upload()])

        assert result.fach is None
        assert error == MalformedModelOutputError.default_public_message

    @pytest.mark.asyncio
    async def test_too_many_images(self, settings):
        uploads = [make_upload() for _ in range(settings.max_analyze_images + 1)]

        with pytest.raises(InputValidationError) as exc_info:
            await ExamPipeline(settings).analyze(uploads)

        assert exc_info.value.status_code == 400
        assert workspace_entries(settings) == []


class TestRunTracker:
    def test_advance_and_fail(self):
        tracker = RunTracker("abc")
        tracker.advance(RequestState.VALIDATED)
        tracker.fail(RuntimeError("x"))
        tracker.advance(RequestState.CLEANED)

        assert tracker.history == [
            RequestState.RECEIVED,
            RequestState.VALIDATED,
            RequestState.FAILED,
            RequestState.CLEANED,
        ]
        assert tracker.state is RequestState.CLEANED
