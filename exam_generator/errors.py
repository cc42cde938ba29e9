"""Error taxonomy for the exam generation pipeline.

Each error carries the HTTP status it maps to and the message that may be
shown to the client. Upstream and rendering failures only ever expose a
generic message; the detailed message is for server logs.
"""

from typing import Optional


class ExamGeneratorError(Exception):
    """Base class for all classified pipeline failures."""

    status_code = 500
    default_public_message = "Interner Fehler bei der Erstellung."

    def __init__(
        self,
        message: str,
        public_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.public_message = public_message or self.default_public_message
        if status_code is not None:
            self.status_code = status_code

    @property
    def error_type(self) -> str:
        return type(self).__name__


class InputValidationError(ExamGeneratorError):
    """Client-caused failure: missing upload, size cap, missing field."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        # Validation messages tell the user what to fix, so they are public.
        super().__init__(message, public_message=message, status_code=status_code)


class SecurityError(InputValidationError):
    """Uploaded content failed the binary signature check."""


class UpstreamError(ExamGeneratorError):
    """The generative model call failed."""

    status_code = 502
    default_public_message = "Die KI ist gerade nicht erreichbar. Bitte erneut versuchen."


class UpstreamTimeoutError(UpstreamError):
    """The generative model did not answer before the deadline."""

    status_code = 504
    default_public_message = "Die KI hat zu lange gebraucht. Bitte erneut versuchen."


class MalformedModelOutputError(ExamGeneratorError):
    """The model answered, but not with the expected structure."""

    status_code = 502
    default_public_message = "Die KI lieferte eine ungültige Antwort. Bitte erneut versuchen."


class RenderingError(ExamGeneratorError):
    """The document compiler produced no artifact."""

    status_code = 500
    default_public_message = "PDF Erstellung fehlgeschlagen."
