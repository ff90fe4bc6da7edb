"""Protocol interfaces for blob store, document/job stores, contract directory, lock and model client."""
from __future__ import annotations

from typing import Any, BinaryIO, Protocol

from .domain import AnalysisJob, Contract, Document


class BlobStore(Protocol):
    def put(self, data: bytes | BinaryIO, max_bytes: int | None = None) -> str:
        """Store bytes (streamed when given a file object). Returns an opaque handle.
        Raises BadRequest, keeping nothing, once more than max_bytes are read."""
        ...

    def open(self, handle: str) -> BinaryIO:
        """Open a stored blob for reading. Raises FileNotFoundError if missing."""
        ...

    def delete(self, handle: str) -> None:
        """Remove a blob. Raises OSError on failure."""
        ...


class ContractDirectory(Protocol):
    def get(self, contract_id: str) -> Contract | None:
        ...

    def save(self, contract: Contract) -> None:
        ...


class DocumentStore(Protocol):
    def get(self, document_id: str) -> Document | None:
        ...

    def list_for_contract(self, contract_id: str) -> list[Document]:
        """All documents of a contract, highest version first."""
        ...

    def latest_for(self, contract_id: str) -> Document | None:
        ...

    def max_version(self, contract_id: str) -> int:
        """Highest version ever issued for the contract (0 when none)."""
        ...

    def commit_upload(self, contract_id: str, fields: dict[str, Any]) -> Document:
        """Atomically demote the current latest and insert a new latest document."""
        ...

    def commit_delete(self, document_id: str) -> tuple[Document, Document | None]:
        """Atomically delete a document and promote the next latest. Returns (deleted, promoted)."""
        ...


class JobStore(Protocol):
    def create(self, job: AnalysisJob) -> None:
        ...

    def get(self, job_id: str) -> AnalysisJob | None:
        ...

    def finalize(self, job: AnalysisJob) -> None:
        """Persist a terminal job. Raises NotFound / IllegalTransition."""
        ...

    def list_for_contract(self, contract_id: str) -> list[AnalysisJob]:
        ...

    def list_processing(self) -> list[AnalysisJob]:
        ...


class ContractLock(Protocol):
    def acquire(self, contract_id: str, holder: str) -> None:
        """Acquire per-contract lock (blocking with retry). Raises on timeout."""
        ...

    def release(self, contract_id: str) -> None:
        ...

    def clear_if_stale(self, contract_id: str) -> bool:
        """Remove a lock file left behind by a dead holder. Returns True if removed."""
        ...


class ModelClient(Protocol):
    model: str

    def call(self, prompt: str) -> Any:
        """Send one prompt. Returns a ModelReply; raises UpstreamError."""
        ...
