"""Anthropic Claude vision extraction provider.

Sends the invoice as a base64 ``document`` block (PDF) or ``image`` block
(JPEG, PNG, WebP) followed by the fixed extraction prompt, and reads the
first text block of the reply.

Transient errors (connection, timeout, rate limit, 5xx) are retried with
exponential backoff; the SDK's own retries are disabled so that tenacity is
the single retry layer.
"""

import logging
import os
from typing import Any

import anthropic
from anthropic import AsyncAnthropic
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from invoice_ingest.extraction.base import ExtractionProvider
from invoice_ingest.extraction.prompts import EXTRACTION_PROMPT
from invoice_ingest.extraction.schema import ExtractionResult
from invoice_ingest.shared.config import Settings
from invoice_ingest.shared.errors import ExtractionTransportError
from invoice_ingest.validation.content import PDF

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class AnthropicExtractionProvider(ExtractionProvider):
    """Claude-based extraction provider.

    Requires ANTHROPIC_API_KEY environment variable.
    """

    default_model = "claude-sonnet-4-20250514"

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._client: AsyncAnthropic | None = None

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def is_available(self) -> bool:
        return os.getenv("ANTHROPIC_API_KEY") is not None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=os.getenv("ANTHROPIC_API_KEY"),
                timeout=self.settings.extraction_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _build_content(self, content: bytes, media_type: str) -> list[dict[str, Any]]:
        source = {
            "type": "base64",
            "media_type": media_type,
            "data": self.encode_content(content),
        }
        block_type = "document" if media_type == PDF else "image"
        return [
            {"type": block_type, "source": source},
            {"type": "text", "text": EXTRACTION_PROMPT},
        ]

    async def _create_message(self, blocks: list[dict[str, Any]]) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            wait=self.retry_wait,
            reraise=True,
        ):
            with attempt:
                return await self._get_client().messages.create(
                    model=self.model,
                    max_tokens=self.settings.extraction_max_tokens,
                    messages=[{"role": "user", "content": blocks}],
                )
        raise RuntimeError("retry loop exited without a result")

    async def extract(self, content: bytes, media_type: str, file_name: str) -> ExtractionResult:
        """Extract invoice fields with Claude vision.

        Args:
            content: Raw file bytes
            media_type: Validated MIME type
            file_name: Original file name, used for logging only

        Returns:
            ExtractionResult, possibly with empty fields if the reply was unusable

        Raises:
            ExtractionTransportError: If the API could not be reached or refused the call
        """
        if not self.is_available():
            raise ExtractionTransportError("ANTHROPIC_API_KEY environment variable not set")

        try:
            response = await self._create_message(self._build_content(content, media_type))
        except anthropic.APIError as e:
            logger.error(f"Anthropic extraction failed for {file_name}: {e!r}")
            raise ExtractionTransportError(f"Extraction request failed: {e}") from e

        raw_text = next(
            (block.text for block in response.content if getattr(block, "type", None) == "text"),
            "",
        )
        logger.info(
            f"Extracted {file_name} with {self.model} "
            f"({response.usage.input_tokens} in / {response.usage.output_tokens} out)"
        )
        return self.build_result(
            raw_text,
            tokens_input=response.usage.input_tokens,
            tokens_output=response.usage.output_tokens,
        )
