"""OpenAI-based vision extraction provider.

Uses Chat Completions with multimodal content parts: images as base64
``image_url`` data URLs, PDFs as ``file`` parts. The reply is expected to be
the bare JSON object requested by the fixed prompt.

Includes retry logic with exponential backoff for transient API errors.
"""

import logging
import os
from typing import Any

import openai
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from invoice_ingest.extraction.base import ExtractionProvider
from invoice_ingest.extraction.prompts import EXTRACTION_PROMPT
from invoice_ingest.extraction.schema import ExtractionResult
from invoice_ingest.shared.config import Settings
from invoice_ingest.shared.errors import ExtractionTransportError
from invoice_ingest.validation.content import PDF

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider using GPT-4o.

    Requires OPENAI_API_KEY environment variable.
    """

    default_model = "gpt-4o"

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: AsyncOpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> AsyncOpenAI:
        api_key = os.getenv("OPENAI_API_KEY")
        if self._client is None or self._client.api_key != api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=self.settings.extraction_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _build_content(
        self, content: bytes, media_type: str, file_name: str
    ) -> list[dict[str, Any]]:
        data_url = f"data:{media_type};base64,{self.encode_content(content)}"
        if media_type == PDF:
            part: dict[str, Any] = {
                "type": "file",
                "file": {"filename": file_name, "file_data": data_url},
            }
        else:
            part = {"type": "image_url", "image_url": {"url": data_url}}
        return [part, {"type": "text", "text": EXTRACTION_PROMPT}]

    async def _create_completion(self, parts: list[dict[str, Any]]) -> Any:
        """Call OpenAI, retrying transient errors with exponential backoff and jitter."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            wait=self.retry_wait,
            reraise=True,
        ):
            with attempt:
                return await self._get_client().chat.completions.create(
                    model=self.model,
                    max_tokens=self.settings.extraction_max_tokens,
                    temperature=0,
                    messages=[{"role": "user", "content": parts}],
                )
        raise RuntimeError("retry loop exited without a result")

    async def extract(self, content: bytes, media_type: str, file_name: str) -> ExtractionResult:
        """Extract invoice fields using OpenAI vision.

        Args:
            content: Raw file bytes
            media_type: Validated MIME type
            file_name: Original file name (sent as the PDF part's filename)

        Returns:
            ExtractionResult, provider='openai'

        Raises:
            ExtractionTransportError: If the API could not be reached or refused the call
        """
        if not self.is_available():
            raise ExtractionTransportError("OPENAI_API_KEY environment variable not set")

        try:
            response = await self._create_completion(
                self._build_content(content, media_type, file_name)
            )
        except openai.APIError as e:
            logger.error(f"OpenAI extraction failed for {file_name}: {e!r}")
            raise ExtractionTransportError(f"Extraction request failed: {e}") from e

        raw_text = ""
        if response.choices:
            raw_text = response.choices[0].message.content or ""
        usage = response.usage
        return self.build_result(
            raw_text,
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
        )
