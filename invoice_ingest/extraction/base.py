"""Abstract base class for vision extraction providers.

Enables switching between extraction providers (Anthropic, OpenAI) while
keeping one contract for the pipeline:

- ``extract`` returns an ``ExtractionResult`` whenever the service answered,
  even if the answer was unusable (empty fields, raw text kept).
- ``extract`` raises ``ExtractionTransportError`` when no answer was obtained
  (network, timeout, auth, rate limits after retries).

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import base64
from abc import ABC, abstractmethod

from tenacity import wait_exponential_jitter
from tenacity.wait import wait_base

from invoice_ingest.extraction.parsing import parse_extraction_response
from invoice_ingest.extraction.schema import ExtractionResult
from invoice_ingest.shared.config import Settings


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Example implementations:
    - AnthropicExtractionProvider: Claude vision (documents and images)
    - OpenAIExtractionProvider: GPT-4o family (images and PDF file parts)
    """

    default_model: str = ""

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.retry_wait: wait_base = wait_exponential_jitter(initial=1, max=20)

    @property
    def model(self) -> str:
        """Model identifier sent with each request."""
        return self.settings.extraction_model or self.default_model

    @abstractmethod
    async def extract(self, content: bytes, media_type: str, file_name: str) -> ExtractionResult:
        """Extract invoice fields from a document or image.

        Args:
            content: Raw file bytes (already validated)
            media_type: Validated MIME type
            file_name: Original file name (metadata only, never part of the prompt)

        Returns:
            ExtractionResult with sanitized fields, token usage and raw reply

        Raises:
            ExtractionTransportError: If the service could not be reached
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured (e.g. API key present).

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'anthropic', 'openai')
        """

    @staticmethod
    def encode_content(content: bytes) -> str:
        return base64.b64encode(content).decode("ascii")

    def build_result(
        self, raw_text: str, tokens_input: int, tokens_output: int
    ) -> ExtractionResult:
        """Parse a raw reply into an ExtractionResult for this provider."""
        return ExtractionResult(
            fields=parse_extraction_response(raw_text),
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            raw_response=raw_text,
            model=self.model,
            provider=self.provider_name,
        )
