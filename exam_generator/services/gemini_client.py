"""Gemini API client initialization and the single model call of a request.

Uses the modern google-genai SDK (not google.generativeai).
"""

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from google import genai
from google.genai import types

from exam_generator.config import get_settings
from exam_generator.errors import UpstreamError, UpstreamTimeoutError
from exam_generator.models.exam import UploadedImage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


def get_gemini_client() -> genai.Client:
    """Initialize and return a Gemini API client.

    The client reads the GEMINI_API_KEY from the application settings.

    Returns:
        genai.Client: Initialized Gemini client ready for API calls.

    Raises:
        ValueError: If GEMINI_API_KEY is not set (only possible in TEST_MODE,
            where no client should be requested).

    Example:
        >>> client = get_gemini_client()
        >>> text = await generate_text(client, "Hallo", [], model="gemini-2.5-flash")
    """
    settings = get_settings()

    if not settings.gemini_api_key:
        raise ValueError(
            "GEMINI_API_KEY not set in environment. "
            "Please set this variable in your .env file or environment."
        )

    return genai.Client(api_key=settings.gemini_api_key)


def image_parts(images: Sequence[UploadedImage]) -> List[types.Part]:
    """Read each stored upload once and wrap it as an inline image part."""
    return [
        types.Part.from_bytes(data=image.path.read_bytes(), mime_type=image.mime_type)
        for image in images
    ]


async def generate_text(
    client: genai.Client,
    prompt: str,
    images: Sequence[UploadedImage],
    model: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    json_mode: bool = True,
) -> str:
    """
    Send prompt and images to the model and return its raw text answer.

    The call races a client-side deadline; the model's answer is not parsed
    here.

    Args:
        client: Gemini API client
        prompt: Instruction text (system prompt plus request context)
        images: Validated uploads to attach as inline parts
        model: Gemini model name
        timeout_seconds: Deadline for the whole call
        json_mode: Ask the model for application/json output

    Returns:
        Raw response text (may be empty)

    Raises:
        UpstreamTimeoutError: The deadline passed before the model answered
        UpstreamError: Any other failure of the SDK call
    """
    contents: List[Any] = [prompt, *image_parts(images)]
    config: Optional[types.GenerateContentConfig] = None
    if json_mode:
        config = types.GenerateContentConfig(response_mime_type="application/json")

    try:
        response = await asyncio.wait_for(
            client.aio.models.generate_content(model=model, contents=contents, config=config),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.warning(f"Gemini call to {model} timed out after {timeout_seconds}s")
        raise UpstreamTimeoutError(f"Model call exceeded {timeout_seconds}s") from e
    except Exception as e:
        logger.error(f"Gemini call to {model} failed: {type(e).__name__}: {e}")
        raise UpstreamError(f"Model call failed: {e}") from e

    return response.text or ""
