"""Turn a free-form model reply into a normalized AnalysisResult.

Never raises: a reply without a decodable JSON object yields a degraded result
(empty collections, confidence 0) so the job can still complete.
"""
from __future__ import annotations

import json
import re
import sys
from typing import Any, Dict, List, Optional

from .domain import (
    CLAUSE_STATUSES,
    OBLIGATION_STATUSES,
    RISK_SEVERITIES,
    AnalysisResult,
    ClauseAssessment,
    KeyTerm,
    Obligation,
    Risk,
)

DEGRADED_SUMMARY = "Analysis completed but response parsing failed."
SUMMARY_MAX_CHARS = 20_000

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


def degraded_result() -> AnalysisResult:
    return AnalysisResult(summary=DEGRADED_SUMMARY, confidence=0, degraded=True)


def _strip_fences(text: str) -> str:
    fenced = _FENCE_OPEN_RE.sub("", text)
    return _FENCE_CLOSE_RE.sub("", fenced).strip()


def _extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Find the first balanced { ... } in text using brace-depth counting.
    Respects quoted strings so braces inside strings are ignored.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    obj = json.loads(text[start : i + 1])
                except ValueError:
                    return None
                return obj if isinstance(obj, dict) else None
    return None


def extract_payload(raw: str) -> Optional[Dict[str, Any]]:
    """
    Locate the analysis object in a model reply:
    1. span from the first '{' to the last '}' (handles prose around the object)
    2. first balanced { ... } (handles trailing prose that itself contains braces)
    """
    text = _strip_fences((raw or "").strip())
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        obj = json.loads(text[start : end + 1])
        if isinstance(obj, dict):
            return obj
    except ValueError:
        pass
    return _extract_json_object(text)


# ---------------------------------------------------------------------------
# Field normalization
# ---------------------------------------------------------------------------
def _text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, (dict, list)):
        return json.dumps(v, ensure_ascii=False)
    return str(v).strip()


def _confidence(v: Any) -> int:
    if isinstance(v, bool):
        return 0
    if isinstance(v, str):
        v = v.strip().rstrip("%")
    try:
        n = float(v)
    except (TypeError, ValueError):
        return 0
    if n != n:  # NaN
        return 0
    return int(round(min(100.0, max(0.0, n))))


def _choice(v: Any, allowed: tuple, default: str) -> str:
    key = _text(v).lower().replace("_", "-").replace(" ", "-")
    if key == "nonstandard":
        key = "non-standard"
    for option in allowed:
        if option.lower() == key:
            return option
    return default


def _items(obj: Dict[str, Any], *keys: str) -> List[Dict[str, Any]]:
    raw: Any = None
    for k in keys:
        if k in obj:
            raw = obj[k]
            break
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = []
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def normalize_payload(obj: Dict[str, Any]) -> AnalysisResult:
    key_terms = [
        KeyTerm(
            term=_text(k.get("term")),
            value=_text(k.get("value")),
            confidence=_confidence(k.get("confidence")),
        )
        for k in _items(obj, "keyTerms", "key_terms")
    ]
    risks = [
        Risk(
            severity=_choice(r.get("severity", r.get("type")), RISK_SEVERITIES, "Medium"),
            title=_text(r.get("title")),
            description=_text(r.get("description")),
            clause=_text(r.get("clause")),
            recommendation=_text(r.get("recommendation")),
        )
        for r in _items(obj, "risks")
    ]
    obligations = [
        Obligation(
            party=_text(o.get("party")),
            description=_text(o.get("description", o.get("obligation"))),
            deadline=_text(o.get("deadline")),
            status=_choice(o.get("status"), OBLIGATION_STATUSES, "pending"),
        )
        for o in _items(obj, "obligations")
    ]
    clauses = [
        ClauseAssessment(
            category=_text(c.get("category")),
            status=_choice(c.get("status"), CLAUSE_STATUSES, "review"),
            text=_text(c.get("text")),
        )
        for c in _items(obj, "clauses")
    ]
    return AnalysisResult(
        summary=_text(obj.get("summary"))[:SUMMARY_MAX_CHARS],
        key_terms=key_terms,
        risks=risks,
        obligations=obligations,
        clauses=clauses,
        confidence=_confidence(obj.get("confidence")),
    )


def parse_analysis_reply(raw: str) -> AnalysisResult:
    try:
        obj = extract_payload(raw)
        if obj is None:
            print("[parser] model reply contained no JSON object; using degraded result", file=sys.stderr)
            return degraded_result()
        return normalize_payload(obj)
    except Exception as e:  # the reply is untrusted input; any failure degrades
        print(f"[parser] failed to normalize model reply: {e}", file=sys.stderr)
        return degraded_result()
