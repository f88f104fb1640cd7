"""Selection of the extraction provider named in configuration."""

import logging

from invoice_ingest.extraction.anthropic_provider import AnthropicExtractionProvider
from invoice_ingest.extraction.base import ExtractionProvider
from invoice_ingest.extraction.openai_provider import OpenAIExtractionProvider
from invoice_ingest.shared.config import Settings

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[ExtractionProvider]] = {
    "anthropic": AnthropicExtractionProvider,
    "openai": OpenAIExtractionProvider,
}


def create_extraction_provider(settings: Settings) -> ExtractionProvider:
    """Create the extraction provider named by ``settings.extraction_provider``.

    Providers without credentials are still returned; their calls fail with
    ExtractionTransportError.

    Raises:
        ValueError: If the configured provider is unknown
    """
    name = settings.extraction_provider
    provider_class = PROVIDERS.get(name)
    if provider_class is None:
        raise ValueError(
            f"Unknown extraction provider: '{name}'. Available providers: {', '.join(PROVIDERS)}"
        )

    provider = provider_class(settings)
    logger.info(f"Created extraction provider: {name} (model {provider.model})")
    return provider
