"""Disk-backed blob store, contract directory, document/job stores and per-contract lock."""
from __future__ import annotations

import json
import os
import sys
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable

from .domain import (
    AnalysisJob,
    BadRequest,
    Contract,
    Document,
    IllegalTransition,
    NotFound,
    _utc_now_z,
)

LOCK_RETRY_SEC = 0.05
LOCK_TIMEOUT_SEC = int(os.environ.get("CONTRACT_LOCK_TIMEOUT_SEC", "30"))
LOCK_STALE_SEC = int(os.environ.get("CONTRACT_LOCK_STALE_SEC", "300"))
COPY_CHUNK = 1024 * 1024


def _safe_component(name: str) -> bool:
    """Reject path traversal: no .., no path separators, no empty."""
    if not name or ".." in name or "/" in name or "\\" in name:
        return False
    return True


def _atomic_write_json(path: Path, obj: Any) -> None:
    """Write JSON via tmp file + os.replace. Raises OSError."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{uuid.uuid4().hex[:8]}.tmp")
    try:
        with tmp.open("w") as f:
            json.dump(obj, f, indent=None)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        with path.open() as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError) as e:
        print(f"[contract_store] load skip {path}: {e}", file=sys.stderr)
        return None
    return data if isinstance(data, dict) else None


class _Layout:
    """Paths under the data root:

    contracts/{contract_id}/contract.json
    contracts/{contract_id}/_meta/documents.json
    contracts/{contract_id}/_meta/analyses/{job_id}.json
    contracts/{contract_id}/_meta/locks/contract.lock
    _meta/document_index/{document_id}.json -> {contract_id}
    _meta/job_index/{job_id}.json -> {contract_id}
    blobs/{handle[:2]}/{handle}
    """

    def __init__(self, get_base_path: Callable[[], Path]):
        self._get_base = get_base_path

    def contracts_dir(self) -> Path:
        return self._get_base() / "contracts"

    def contract_dir(self, contract_id: str) -> Path:
        if not _safe_component(contract_id):
            raise NotFound("Contract not found")
        return self.contracts_dir() / contract_id

    def contract_file(self, contract_id: str) -> Path:
        return self.contract_dir(contract_id) / "contract.json"

    def manifest_file(self, contract_id: str) -> Path:
        return self.contract_dir(contract_id) / "_meta" / "documents.json"

    def jobs_dir(self, contract_id: str) -> Path:
        return self.contract_dir(contract_id) / "_meta" / "analyses"

    def lock_file(self, contract_id: str) -> Path:
        return self.contract_dir(contract_id) / "_meta" / "locks" / "contract.lock"

    def index_file(self, kind: str, entity_id: str) -> Path | None:
        if not _safe_component(entity_id):
            return None
        return self._get_base() / "_meta" / kind / f"{entity_id}.json"

    def blob_path(self, handle: str) -> Path:
        if not _safe_component(handle) or len(handle) < 3:
            raise FileNotFoundError(f"invalid blob handle: {handle!r}")
        return self._get_base() / "blobs" / handle[:2] / handle


def _index_get(layout: _Layout, kind: str, entity_id: str) -> str | None:
    path = layout.index_file(kind, entity_id)
    if path is None:
        return None
    data = _read_json(path)
    if not data:
        return None
    return data.get("contract_id") or None


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------
def _copy_capped(src: BinaryIO, dst: BinaryIO, max_bytes: int | None) -> None:
    written = 0
    for b in iter(lambda: src.read(COPY_CHUNK), b""):
        written += len(b)
        if max_bytes is not None and written > max_bytes:
            raise BadRequest(f"File exceeds maximum size of {max_bytes} bytes")
        dst.write(b)


class DiskBlobStore:
    """Opaque byte storage; handles are random ids, never derived from content."""

    def __init__(self, get_base_path: Callable[[], Path]):
        self._layout = _Layout(get_base_path)

    def put(self, data: bytes | BinaryIO, max_bytes: int | None = None) -> str:
        """Store data; BadRequest once more than max_bytes have been read (nothing is kept)."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            if max_bytes is not None and len(data) > max_bytes:
                raise BadRequest(f"File exceeds maximum size of {max_bytes} bytes")
        handle = uuid.uuid4().hex
        path = self._layout.blob_path(handle)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        try:
            with tmp.open("wb") as f:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    f.write(data)
                else:
                    _copy_capped(data, f, max_bytes)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()
        return handle

    def open(self, handle: str) -> BinaryIO:
        return self._layout.blob_path(handle).open("rb")

    def delete(self, handle: str) -> None:
        self._layout.blob_path(handle).unlink()

    def exists(self, handle: str) -> bool:
        try:
            return self._layout.blob_path(handle).is_file()
        except FileNotFoundError:
            return False


# ---------------------------------------------------------------------------
# Contract directory (contract CRUD lives outside the core; this only reads/writes records)
# ---------------------------------------------------------------------------
class DiskContractDirectory:
    def __init__(self, get_base_path: Callable[[], Path]):
        self._layout = _Layout(get_base_path)

    def get(self, contract_id: str) -> Contract | None:
        try:
            path = self._layout.contract_file(contract_id)
        except NotFound:
            return None
        data = _read_json(path)
        if data is None or data.get("contract_id") != contract_id:
            return None
        return Contract.from_dict(data)

    def save(self, contract: Contract) -> None:
        _atomic_write_json(self._layout.contract_file(contract.contract_id), contract.to_dict())


# ---------------------------------------------------------------------------
# Document store: one manifest per contract so demote+insert and delete+promote are one write
# ---------------------------------------------------------------------------
class DiskDocumentStore:
    def __init__(self, get_base_path: Callable[[], Path]):
        self._layout = _Layout(get_base_path)
        self._registry_lock = threading.Lock()
        self._contract_locks: dict[str, threading.Lock] = {}

    def _lock_for(self, contract_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._contract_locks.get(contract_id)
            if lock is None:
                lock = self._contract_locks[contract_id] = threading.Lock()
            return lock

    def _load_manifest(self, contract_id: str) -> dict[str, Any]:
        path = self._layout.manifest_file(contract_id)
        data = _read_json(path)
        if data is None:
            if path.exists():
                # unreadable is not empty
                raise RuntimeError(f"Document manifest for {contract_id} is unreadable: {path}")
            return {"contract_id": contract_id, "last_version": 0, "documents": []}
        data.setdefault("documents", [])
        data.setdefault("last_version", max((d["version"] for d in data["documents"]), default=0))
        return data

    def _save_manifest(self, contract_id: str, manifest: dict[str, Any]) -> None:
        manifest["updated_at_utc"] = _utc_now_z()
        _atomic_write_json(self._layout.manifest_file(contract_id), manifest)

    def get(self, document_id: str) -> Document | None:
        contract_id = _index_get(self._layout, "document_index", document_id)
        if contract_id is None:
            return None
        for d in self._load_manifest(contract_id)["documents"]:
            if d.get("document_id") == document_id:
                return Document.from_dict(d)
        return None

    def list_for_contract(self, contract_id: str) -> list[Document]:
        docs = [Document.from_dict(d) for d in self._load_manifest(contract_id)["documents"]]
        return sorted(docs, key=lambda d: d.version, reverse=True)

    def latest_for(self, contract_id: str) -> Document | None:
        for doc in self.list_for_contract(contract_id):
            if doc.is_latest:
                return doc
        return None

    def max_version(self, contract_id: str) -> int:
        return int(self._load_manifest(contract_id)["last_version"])

    def commit_upload(self, contract_id: str, fields: dict[str, Any]) -> Document:
        """Caller holds the contract lock. Version = last issued + 1."""
        with self._lock_for(contract_id):
            manifest = self._load_manifest(contract_id)
            version = int(manifest["last_version"]) + 1
            for d in manifest["documents"]:
                d["is_latest"] = False
            doc = Document(
                document_id=str(uuid.uuid4()),
                contract_id=contract_id,
                version=version,
                is_latest=True,
                created_at_utc=_utc_now_z(),
                **fields,
            )
            manifest["documents"].append(doc.to_dict())
            manifest["last_version"] = version
            index = self._layout.index_file("document_index", doc.document_id)
            _atomic_write_json(index, {"contract_id": contract_id})
            try:
                self._save_manifest(contract_id, manifest)
            except OSError:
                index.unlink(missing_ok=True)
                raise
        return doc

    def commit_delete(self, document_id: str) -> tuple[Document, Document | None]:
        """Caller holds the contract lock."""
        contract_id = _index_get(self._layout, "document_index", document_id)
        if contract_id is None:
            raise NotFound("Document not found")
        with self._lock_for(contract_id):
            manifest = self._load_manifest(contract_id)
            remaining = [d for d in manifest["documents"] if d.get("document_id") != document_id]
            if len(remaining) == len(manifest["documents"]):
                raise NotFound("Document not found")
            deleted = next(
                Document.from_dict(d) for d in manifest["documents"] if d.get("document_id") == document_id
            )
            promoted: Document | None = None
            if deleted.is_latest and remaining:
                top = max(remaining, key=lambda d: d["version"])
                top["is_latest"] = True
                promoted = Document.from_dict(top)
            manifest["documents"] = remaining
            self._save_manifest(contract_id, manifest)
            index = self._layout.index_file("document_index", document_id)
            if index is not None:
                try:
                    index.unlink(missing_ok=True)
                except OSError as e:
                    print(f"[contract_store] index delete failed {document_id}: {e}", file=sys.stderr)
        return deleted, promoted


# ---------------------------------------------------------------------------
# Job store
# ---------------------------------------------------------------------------
class DiskJobStore:
    """JSON-on-disk analysis job store with a job_id -> contract_id index."""

    def __init__(self, get_base_path: Callable[[], Path]):
        self._layout = _Layout(get_base_path)
        self._lock = threading.Lock()

    def _job_file_path(self, contract_id: str, job_id: str) -> Path:
        return self._layout.jobs_dir(contract_id) / f"{job_id}.json"

    def _load(self, path: Path) -> AnalysisJob | None:
        data = _read_json(path)
        if data is None or "job_id" not in data or "status" not in data:
            return None
        try:
            return AnalysisJob.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            print(f"[job_store] load skip {path}: {e}", file=sys.stderr)
            return None

    def create(self, job: AnalysisJob) -> None:
        index = self._layout.index_file("job_index", job.job_id)
        if index is None:
            raise ValueError(f"invalid job_id: {job.job_id!r}")
        with self._lock:
            _atomic_write_json(index, {"contract_id": job.contract_id})
            _atomic_write_json(self._job_file_path(job.contract_id, job.job_id), job.to_dict())

    def get(self, job_id: str) -> AnalysisJob | None:
        contract_id = _index_get(self._layout, "job_index", job_id)
        if contract_id is None:
            return None
        job = self._load(self._job_file_path(contract_id, job_id))
        if job is None or job.job_id != job_id:
            return None
        return job

    def finalize(self, job: AnalysisJob) -> None:
        if not job.is_terminal:
            raise IllegalTransition(f"finalize requires a terminal status, got {job.status}")
        with self._lock:
            current = self.get(job.job_id)
            if current is None:
                raise NotFound(f"Analysis {job.job_id} no longer exists")
            if current.is_terminal:
                raise IllegalTransition(f"Analysis {job.job_id} is already {current.status}")
            _atomic_write_json(self._job_file_path(job.contract_id, job.job_id), job.to_dict())

    def list_for_contract(self, contract_id: str) -> list[AnalysisJob]:
        jobs_dir = self._layout.jobs_dir(contract_id)
        if not jobs_dir.is_dir():
            return []
        jobs = []
        for p in jobs_dir.iterdir():
            if not p.is_file() or p.suffix != ".json":
                continue
            job = self._load(p)
            if job is not None:
                jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at_utc, reverse=True)

    def list_processing(self) -> list[AnalysisJob]:
        contracts_dir = self._layout.contracts_dir()
        if not contracts_dir.is_dir():
            return []
        out: list[AnalysisJob] = []
        for cdir in contracts_dir.iterdir():
            if not cdir.is_dir():
                continue
            out.extend(j for j in self.list_for_contract(cdir.name) if j.status == "PROCESSING")
        return out


# ---------------------------------------------------------------------------
# Per-contract lock
# ---------------------------------------------------------------------------
class ContractLockImpl:
    """Per-contract file lock under contracts/{contract_id}/_meta/locks/contract.lock.

    A lock file older than stale_after seconds (its acquired_at_utc, else the file
    mtime) is treated as left behind by a dead process and removed.
    """

    def __init__(
        self,
        get_base_path: Callable[[], Path],
        timeout: float = LOCK_TIMEOUT_SEC,
        stale_after: float = LOCK_STALE_SEC,
    ):
        self._layout = _Layout(get_base_path)
        self._timeout = timeout
        self._stale_after = stale_after

    def acquire(self, contract_id: str, holder: str) -> None:
        lock_path = self._layout.lock_file(contract_id)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                try:
                    os.write(fd, json.dumps({"holder": holder, "acquired_at_utc": _utc_now_z()}).encode())
                    os.fsync(fd)
                finally:
                    os.close(fd)
                return
            except FileExistsError:
                if self.clear_if_stale(contract_id):
                    continue
                if time.monotonic() >= deadline:
                    raise RuntimeError(f"Could not acquire contract lock for {contract_id} within {self._timeout}s")
                time.sleep(LOCK_RETRY_SEC)
            except OSError as e:
                raise RuntimeError(f"Could not acquire contract lock: {e}") from e

    def release(self, contract_id: str) -> None:
        lock_path = self._layout.lock_file(contract_id)
        try:
            lock_path.unlink(missing_ok=True)
        except OSError as e:
            print(f"[contract_lock] release failed {lock_path}: {e}", file=sys.stderr)

    def _lock_age_sec(self, lock_path: Path) -> float | None:
        try:
            mtime = lock_path.stat().st_mtime
        except FileNotFoundError:
            return None
        acquired = mtime
        data = _read_json(lock_path)
        if data and data.get("acquired_at_utc"):
            try:
                acquired = datetime.fromisoformat(data["acquired_at_utc"].replace("Z", "+00:00")).timestamp()
            except (TypeError, ValueError):
                acquired = mtime
        return time.time() - acquired

    def clear_if_stale(self, contract_id: str) -> bool:
        """Remove the contract's lock file if it is older than stale_after. Returns True if removed."""
        lock_path = self._layout.lock_file(contract_id)
        age = self._lock_age_sec(lock_path)
        if age is None or age < self._stale_after:
            return False
        print(f"[contract_lock] clearing stale lock {lock_path} (age {int(age)}s)", file=sys.stderr)
        self.release(contract_id)
        return True

    def clear_stale_locks(self) -> list[str]:
        """Startup sweep: clear stale lock files of every contract. Returns contract ids."""
        contracts_dir = self._layout.contracts_dir()
        if not contracts_dir.is_dir():
            return []
        return [
            cdir.name
            for cdir in sorted(contracts_dir.iterdir())
            if cdir.is_dir() and _safe_component(cdir.name) and self.clear_if_stale(cdir.name)
        ]
