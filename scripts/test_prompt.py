#!/usr/bin/env python3
"""Tests for the analysis prompt template."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from contract_service.domain import Contract, Document  # noqa: E402
from contract_service.prompt import build_analysis_prompt  # noqa: E402

DOC = Document(
    document_id="d1",
    contract_id="C1",
    storage_handle="h",
    original_name="msa.pdf",
    mime_type="application/pdf",
    file_size=10,
    checksum="0" * 64,
    version=3,
    is_latest=True,
    uploaded_by="u1",
    created_at_utc="2026-01-01T00:00:00.000000Z",
)


def _value_line(value, currency="USD"):
    prompt = build_analysis_prompt(Contract(contract_id="C1", name="MSA", value=value, currency=currency), DOC)
    return [line for line in prompt.splitlines() if line.startswith("Value:")]


def test_value_formatting():
    assert _value_line(None) == ["Value: Not specified"]
    assert _value_line(0) == ["Value: Not specified"]
    assert _value_line(0.0) == ["Value: Not specified"]
    assert _value_line(50000.0) == ["Value: USD 50000"]
    assert _value_line(1234.5, "EUR") == ["Value: EUR 1234.5"]
    assert _value_line(75000) == ["Value: USD 75000"]


def test_missing_fields_and_document_line():
    prompt = build_analysis_prompt(Contract(contract_id="C1", name="MSA", party_name="Acme"), DOC)
    assert "Contract Name: MSA" in prompt
    assert "Party: Acme" in prompt
    assert "Start Date: Not specified" in prompt
    assert "Expiry Date: Not specified" in prompt
    assert "Description: Not provided" in prompt
    assert "Document: msa.pdf (version 3)" in prompt
    assert prompt.rstrip().endswith("Respond with the JSON object only.")


def test_prompt_is_deterministic():
    c = Contract(contract_id="C1", name="MSA", value=10, start_date="2026-01-01")
    assert build_analysis_prompt(c, DOC) == build_analysis_prompt(c, DOC)
