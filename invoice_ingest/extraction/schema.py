"""Invoice data models for vision extraction."""

import datetime as dt

from pydantic import BaseModel, Field


class ExtractedInvoiceFields(BaseModel):
    """Structured fields read from an invoice document.

    Every field is optional: the model may be unable to read it, or the reply
    may have failed sanitization.
    """

    amount: float | None = Field(None, description="Invoice total, positive, 2 decimals")
    date: dt.date | None = Field(None, description="Issue date")
    vendor: str | None = Field(None, description="Issuing company name", max_length=500)
    invoice_number: str | None = Field(None, description="Invoice identifier", max_length=200)

    def is_empty(self) -> bool:
        return (
            self.amount is None
            and self.date is None
            and self.vendor is None
            and self.invoice_number is None
        )


class ExtractionResult(BaseModel):
    """Outcome of one paid extraction call.

    Attributes:
        fields: Sanitized fields (all None when the reply could not be parsed)
        tokens_input: Input tokens billed by the provider
        tokens_output: Output tokens billed by the provider
        raw_response: Text reply as returned, kept for manual review
        model: Model that served the request
        provider: Provider name (e.g. 'anthropic', 'openai')
    """

    fields: ExtractedInvoiceFields
    tokens_input: int = Field(ge=0)
    tokens_output: int = Field(ge=0)
    raw_response: str
    model: str
    provider: str

    @property
    def tokens_used(self) -> int:
        return self.tokens_input + self.tokens_output
