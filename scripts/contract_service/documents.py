"""Document version manager: upload, latest lookup, resolve-for-analysis, delete with promotion.

Keeps one latest document per contract. Upload and delete take the per-contract
lock and hand the store a single demote+insert / delete+promote commit, so no
reader ever sees two (or, while documents remain, zero) latest versions.
"""
from __future__ import annotations

import sys
import uuid
from typing import BinaryIO

from .checksum import digest_stream
from .domain import BadRequest, Document, NotFound
from .ports import BlobStore, ContractDirectory, ContractLock, DocumentStore

ALLOWED_MIME_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def _normalize_mime(mime_type: str | None) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


class DocumentManager:
    def __init__(
        self,
        contracts: ContractDirectory,
        store: DocumentStore,
        blobs: BlobStore,
        contract_lock: ContractLock,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self._contracts = contracts
        self._store = store
        self._blobs = blobs
        self._lock = contract_lock
        self._max_upload_bytes = max_upload_bytes

    def _require_contract(self, contract_id: str) -> None:
        if self._contracts.get(contract_id) is None:
            raise NotFound("Contract not found")

    def upload(
        self,
        contract_id: str,
        uploaded_by: str,
        data: bytes | BinaryIO,
        original_name: str,
        mime_type: str,
    ) -> Document:
        mime_type = _normalize_mime(mime_type)
        if mime_type not in ALLOWED_MIME_TYPES:
            raise BadRequest("Invalid file type. Only PDF and Word documents are allowed.")
        self._require_contract(contract_id)
        if data is None or (isinstance(data, (bytes, bytearray)) and not data):
            raise BadRequest("No file uploaded")
        handle = self._blobs.put(data, max_bytes=self._max_upload_bytes)
        try:
            with self._blobs.open(handle) as f:
                checksum, size = digest_stream(f)
            if size == 0:
                raise BadRequest("No file uploaded")
            fields = {
                "storage_handle": handle,
                "original_name": original_name,
                "mime_type": mime_type,
                "file_size": size,
                "checksum": checksum,
                "uploaded_by": uploaded_by,
            }
            self._lock.acquire(contract_id, f"upload-{uuid.uuid4().hex[:8]}")
            try:
                return self._store.commit_upload(contract_id, fields)
            finally:
                self._lock.release(contract_id)
        except Exception:
            self._delete_blob(handle)
            raise

    def get(self, document_id: str) -> Document:
        doc = self._store.get(document_id)
        if doc is None:
            raise NotFound("Document not found")
        return doc

    def list_for_contract(self, contract_id: str) -> list[Document]:
        self._require_contract(contract_id)
        return self._store.list_for_contract(contract_id)

    def latest_for(self, contract_id: str) -> Document:
        self._require_contract(contract_id)
        doc = self._store.latest_for(contract_id)
        if doc is None:
            raise NotFound("No document found for contract")
        return doc

    def resolve_for_analysis(self, contract_id: str, document_id: str | None = None) -> Document:
        """Exact document (scoped to the contract) when document_id is given, else the latest."""
        self._require_contract(contract_id)
        if document_id:
            doc = self._store.get(document_id)
            if doc is not None and doc.contract_id != contract_id:
                doc = None
        else:
            doc = self._store.latest_for(contract_id)
        if doc is None:
            raise BadRequest("No document found for analysis")
        return doc

    def open_stream(self, document_id: str) -> tuple[Document, BinaryIO]:
        doc = self.get(document_id)
        try:
            stream = self._blobs.open(doc.storage_handle)
        except (FileNotFoundError, IsADirectoryError):
            raise NotFound("Document file not found on disk") from None
        return doc, stream

    def delete(self, document_id: str) -> Document | None:
        """Delete a document; returns the promoted latest (None if nothing was promoted)."""
        doc = self.get(document_id)
        self._lock.acquire(doc.contract_id, f"delete-{document_id}")
        try:
            deleted, promoted = self._store.commit_delete(document_id)
        finally:
            self._lock.release(doc.contract_id)
        self._delete_blob(deleted.storage_handle)
        return promoted

    def _delete_blob(self, handle: str) -> None:
        try:
            self._blobs.delete(handle)
        except OSError as e:
            print(f"[documents] failed to delete blob {handle}: {e}", file=sys.stderr)
