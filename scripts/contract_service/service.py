"""Analysis job orchestrator: submit, background finalize, get, list.

State machine: PROCESSING -> COMPLETED | FAILED. submit() persists the
PROCESSING record and returns at once; a daemon thread per job builds the
prompt, calls the model, parses the reply and writes the terminal record once.
"""
from __future__ import annotations

import os
import sys
import threading
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from .domain import (
    ANALYSIS_TYPES,
    DEFAULT_ANALYSIS_TYPE,
    AnalysisJob,
    BadRequest,
    Document,
    NotFound,
    UpstreamError,
    _utc_now_z,
)
from .documents import DocumentManager
from .parser import parse_analysis_reply
from .ports import ContractDirectory, JobStore, ModelClient
from .prompt import build_analysis_prompt

ERROR_TRUNCATE = 4_000


def _truncate(s: str, max_len: int) -> str:
    if not s or len(s) <= max_len:
        return s or ""
    return s[:max_len] + "\n... (truncated)"


@dataclass(frozen=True)
class AnalysisSettings:
    max_attempts: int = 1
    retry_backoff_sec: float = 2.0

    @staticmethod
    def from_env() -> "AnalysisSettings":
        try:
            attempts = int(os.environ.get("ANALYSIS_MAX_ATTEMPTS", "1"))
        except ValueError:
            attempts = 1
        try:
            backoff = float(os.environ.get("ANALYSIS_RETRY_BACKOFF_SEC", "2"))
        except ValueError:
            backoff = 2.0
        return AnalysisSettings(max_attempts=max(1, attempts), retry_backoff_sec=max(0.0, backoff))


class AnalysisService:
    def __init__(
        self,
        documents: DocumentManager,
        contracts: ContractDirectory,
        store: JobStore,
        model_client: ModelClient,
        settings: AnalysisSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._documents = documents
        self._contracts = contracts
        self._store = store
        self._client = model_client
        self._settings = settings or AnalysisSettings()
        self._sleep = sleep
        self._workers: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        contract_id: str,
        document_id: str | None,
        requested_by: str,
        analysis_type: str | None = None,
    ) -> AnalysisJob:
        """Validate and create a PROCESSING job, start its worker, return without waiting."""
        analysis_type = analysis_type or DEFAULT_ANALYSIS_TYPE
        if analysis_type not in ANALYSIS_TYPES:
            raise BadRequest(f"type must be one of {ANALYSIS_TYPES}")
        document = self._documents.resolve_for_analysis(contract_id, document_id)
        job = AnalysisJob(
            job_id=str(uuid.uuid4()),
            contract_id=contract_id,
            document_id=document.document_id,
            document_version=document.version,
            document_name=document.original_name,
            requested_by=requested_by,
            analysis_type=analysis_type,
            status="PROCESSING",
            model=self._client.model,
            created_at_utc=_utc_now_z(),
        )
        self._store.create(job)
        t = threading.Thread(target=self._run_worker, args=(replace(job), document), daemon=True)
        with self._lock:
            self._workers[job.job_id] = t
        t.start()
        return job

    def _call_model(self, prompt: str) -> Any:
        attempt = 1
        while True:
            try:
                return self._client.call(prompt)
            except UpstreamError as e:
                if attempt >= self._settings.max_attempts or not e.retryable:
                    raise
                print(
                    f"[analysis] model call attempt {attempt} failed ({e}); retrying",
                    file=sys.stderr,
                )
                self._sleep(self._settings.retry_backoff_sec * attempt)
                attempt += 1

    def _run_worker(self, job: AnalysisJob, document: Document) -> None:
        started = time.monotonic()
        try:
            contract = self._contracts.get(job.contract_id)
            if contract is None:
                raise NotFound("Contract not found")
            prompt = build_analysis_prompt(contract, document)
            reply = self._call_model(prompt)
            job.result = parse_analysis_reply(reply.text)
            job.model = reply.model or job.model
            job.status = "COMPLETED"
        except Exception as e:
            job.status = "FAILED"
            job.error = _truncate(str(e) or type(e).__name__, ERROR_TRUNCATE)
        job.processing_ms = int((time.monotonic() - started) * 1000)
        job.completed_at_utc = _utc_now_z()
        try:
            self._store.finalize(job)
        except Exception as e:
            print(f"[analysis] finalize failed for {job.job_id}: {e}", file=sys.stderr)
        finally:
            with self._lock:
                self._workers.pop(job.job_id, None)

    def wait(self, job_id: str, timeout: float | None = None) -> AnalysisJob:
        """Block until the job's worker (if any in this process) exits; return the stored job."""
        with self._lock:
            t = self._workers.get(job_id)
        if t is not None:
            t.join(timeout)
        return self.get(job_id)

    def get(self, job_id: str) -> AnalysisJob:
        job = self._store.get(job_id)
        if job is None:
            raise NotFound("Analysis not found")
        return job

    def list_for_contract(self, contract_id: str) -> list[AnalysisJob]:
        """Jobs for a contract, newest first."""
        return self._store.list_for_contract(contract_id)

    def recover_orphaned(self, older_than_sec: float) -> list[str]:
        """
        Mark PROCESSING jobs with no worker in this process and older than the
        threshold as FAILED. Opt-in; never run by submit/get. Returns job ids.
        """
        now = time.time()
        recovered: list[str] = []
        for job in self._store.list_processing():
            with self._lock:
                if job.job_id in self._workers:
                    continue
            try:
                created = _parse_utc_z(job.created_at_utc)
            except ValueError:
                created = 0.0
            if now - created < older_than_sec:
                continue
            job.status = "FAILED"
            job.error = "Recovered after restart: job was PROCESSING but no active worker"
            job.completed_at_utc = _utc_now_z()
            try:
                self._store.finalize(job)
            except Exception as e:
                print(f"[analysis] recovery skipped {job.job_id}: {e}", file=sys.stderr)
                continue
            recovered.append(job.job_id)
        return recovered


def _parse_utc_z(value: str) -> float:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
