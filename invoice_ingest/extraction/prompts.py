"""Server-defined extraction instruction.

The prompt is a constant. Nothing supplied by the uploader (file name,
declared type, form fields) is ever interpolated into it.
"""

EXTRACTION_PROMPT = """Analyze this invoice and extract the following data. \
Reply ONLY with valid JSON, no additional text:

{
  "amount": <invoice total as a number, using a dot as decimal separator. \
Prefer the amount before VAT if it can be told apart, otherwise the total \
including VAT. null if it cannot be determined>,
  "date": "<issue date in YYYY-MM-DD format. null if it cannot be determined>",
  "vendor": "<name of the supplier/company issuing the invoice. Max 500 \
characters. null if it cannot be determined>",
  "invoiceNumber": "<invoice number. Max 200 characters. null if it cannot be \
determined>"
}

Rules:
- If a field cannot be determined with certainty, use null
- The amount must be a positive number (no minus sign)
- The date must be in ISO format YYYY-MM-DD
- Do not include explanations, only the JSON"""
