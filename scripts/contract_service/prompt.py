"""Analysis prompt template (pure, deterministic)."""
from __future__ import annotations

from .domain import Contract, Document


def _format_value(contract: Contract) -> str:
    value = contract.value
    if not value:
        return "Not specified"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{contract.currency} {value}"


def build_analysis_prompt(contract: Contract, document: Document) -> str:
    return f"""Analyze the following contract and provide a comprehensive assessment:

Contract Name: {contract.name}
Party: {contract.party_name}
Type: {contract.type}
Value: {_format_value(contract)}
Start Date: {contract.start_date or 'Not specified'}
Expiry Date: {contract.expiry_date or 'Not specified'}
Description: {contract.description or 'Not provided'}
Document: {document.original_name} (version {document.version})

Please provide your analysis in the following JSON format:
{{
  "summary": "A comprehensive summary of the contract (2-3 paragraphs)",
  "keyTerms": [
    {{"term": "Term Name", "value": "Term Value", "confidence": 95}}
  ],
  "risks": [
    {{
      "type": "High|Medium|Low",
      "title": "Risk Title",
      "description": "Detailed risk description",
      "clause": "Referenced clause",
      "recommendation": "Suggested action"
    }}
  ],
  "obligations": [
    {{
      "party": "Party Name",
      "obligation": "Obligation description",
      "deadline": "Deadline or timeframe",
      "status": "active|completed|pending"
    }}
  ],
  "clauses": [
    {{
      "category": "Clause Category",
      "status": "standard|review|non-standard",
      "text": "Clause summary"
    }}
  ],
  "confidence": 85
}}

Respond with the JSON object only."""
