"""Pure data models for contract documents and analysis jobs. No pydantic."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

JobStatus = Literal["PROCESSING", "COMPLETED", "FAILED"]
TERMINAL_STATUSES = ("COMPLETED", "FAILED")

ANALYSIS_TYPES = (
    "FULL_ANALYSIS",
    "RISK_ASSESSMENT",
    "KEY_TERMS_EXTRACTION",
    "OBLIGATION_EXTRACTION",
    "CLAUSE_ANALYSIS",
    "SUMMARY_ONLY",
    "COMPARISON",
)
DEFAULT_ANALYSIS_TYPE = "FULL_ANALYSIS"

RISK_SEVERITIES = ("High", "Medium", "Low")
OBLIGATION_STATUSES = ("active", "completed", "pending")
CLAUSE_STATUSES = ("standard", "review", "non-standard")


def _utc_now_z() -> str:
    """UTC ISO8601 string (fixed microsecond precision) ending with Z."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class ServiceError(Exception):
    """Base for errors surfaced to callers of the document and analysis services."""


class NotFound(ServiceError):
    pass


class BadRequest(ServiceError):
    pass


class UpstreamError(ServiceError):
    """Model endpoint failure. status is None for timeouts and connection errors."""

    def __init__(self, status: int | None, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


class IllegalTransition(ServiceError):
    """Raised when something tries to write to a job that is already terminal."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass
class Contract:
    """Contract metadata as read from the contract directory (owned outside the core)."""
    contract_id: str
    name: str
    party_name: str = ""
    type: str = ""
    value: float | None = None
    currency: str = "USD"
    start_date: str | None = None
    expiry_date: str | None = None
    description: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Contract:
        return cls(
            contract_id=d["contract_id"],
            name=d.get("name") or "",
            party_name=d.get("party_name") or "",
            type=d.get("type") or "",
            value=d.get("value"),
            currency=d.get("currency") or "USD",
            start_date=d.get("start_date"),
            expiry_date=d.get("expiry_date"),
            description=d.get("description"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Document:
    """One stored version of a contract's document."""
    document_id: str
    contract_id: str
    storage_handle: str
    original_name: str
    mime_type: str
    file_size: int
    checksum: str
    version: int
    is_latest: bool
    uploaded_by: str
    created_at_utc: str

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Document:
        return cls(
            document_id=d["document_id"],
            contract_id=d["contract_id"],
            storage_handle=d["storage_handle"],
            original_name=d.get("original_name") or "",
            mime_type=d.get("mime_type") or "application/octet-stream",
            file_size=int(d.get("file_size") or 0),
            checksum=d.get("checksum") or "",
            version=int(d["version"]),
            is_latest=bool(d.get("is_latest")),
            uploaded_by=d.get("uploaded_by") or "",
            created_at_utc=d.get("created_at_utc") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_api_dict(self) -> dict[str, Any]:
        """Same as to_dict but without the storage handle (internal only)."""
        d = self.to_dict()
        d.pop("storage_handle", None)
        return d


@dataclass
class KeyTerm:
    term: str = ""
    value: str = ""
    confidence: int = 0


@dataclass
class Risk:
    severity: str = "Medium"
    title: str = ""
    description: str = ""
    clause: str = ""
    recommendation: str = ""


@dataclass
class Obligation:
    party: str = ""
    description: str = ""
    deadline: str = ""
    status: str = "pending"


@dataclass
class ClauseAssessment:
    category: str = ""
    status: str = "review"
    text: str = ""


@dataclass
class AnalysisResult:
    summary: str = ""
    key_terms: list[KeyTerm] = field(default_factory=list)
    risks: list[Risk] = field(default_factory=list)
    obligations: list[Obligation] = field(default_factory=list)
    clauses: list[ClauseAssessment] = field(default_factory=list)
    confidence: int = 0
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AnalysisResult:
        return cls(
            summary=d.get("summary") or "",
            key_terms=[KeyTerm(**k) for k in d.get("key_terms") or []],
            risks=[Risk(**r) for r in d.get("risks") or []],
            obligations=[Obligation(**o) for o in d.get("obligations") or []],
            clauses=[ClauseAssessment(**c) for c in d.get("clauses") or []],
            confidence=int(d.get("confidence") or 0),
            degraded=bool(d.get("degraded")),
        )


@dataclass
class AnalysisJob:
    """Full analysis job record (dict-like for persistence)."""
    job_id: str
    contract_id: str
    document_id: str
    document_version: int
    requested_by: str
    analysis_type: str
    status: JobStatus
    model: str
    created_at_utc: str
    document_name: str = ""
    completed_at_utc: str | None = None
    processing_ms: int | None = None
    result: AnalysisResult | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "contract_id": self.contract_id,
            "document_id": self.document_id,
            "document_version": self.document_version,
            "document_name": self.document_name,
            "requested_by": self.requested_by,
            "analysis_type": self.analysis_type,
            "status": self.status,
            "model": self.model,
            "created_at_utc": self.created_at_utc,
            "completed_at_utc": self.completed_at_utc,
            "processing_ms": self.processing_ms,
            "result": self.result.to_dict() if self.result is not None else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AnalysisJob:
        result = d.get("result")
        return cls(
            job_id=d["job_id"],
            contract_id=d["contract_id"],
            document_id=d["document_id"],
            document_version=int(d.get("document_version") or 0),
            document_name=d.get("document_name") or "",
            requested_by=d.get("requested_by") or "",
            analysis_type=d.get("analysis_type") or DEFAULT_ANALYSIS_TYPE,
            status=d["status"],
            model=d.get("model") or "",
            created_at_utc=d.get("created_at_utc") or "",
            completed_at_utc=d.get("completed_at_utc"),
            processing_ms=d.get("processing_ms"),
            result=AnalysisResult.from_dict(result) if isinstance(result, dict) else None,
            error=d.get("error"),
        )

    def to_api_dict(self) -> dict[str, Any]:
        """Same as to_dict but omit None values."""
        return {k: v for k, v in self.to_dict().items() if v is not None}
