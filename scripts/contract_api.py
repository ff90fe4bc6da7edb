#!/usr/bin/env python3
"""
Contract Analysis API: FastAPI service for contract document versions and AI analysis jobs.

Analysis jobs run on daemon threads inside this process and are persisted as JSON
under CONTRACTS_DATA_ROOT, so GET /analyses/{job_id} works across restarts.
Without CLAUDE_API_KEY the model client runs in offline mode (fixed mock reply).

Usage:
  python3 scripts/contract_api.py --host 127.0.0.1 --port 8000
  python3 scripts/contract_api.py --recover-orphans 3600

  Documents: POST /contracts/{contract_id}/documents (multipart "file"), DELETE /documents/{document_id}
  Analyses:  POST /analyses to submit, GET /analyses/{job_id} to poll, GET /contracts/{contract_id}/analyses to list.
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

_scripts_dir = Path(__file__).resolve().parent
if str(_scripts_dir) not in sys.path:
    sys.path.insert(0, str(_scripts_dir))

from contract_service.adapters_disk import (  # noqa: E402
    ContractLockImpl,
    DiskBlobStore,
    DiskContractDirectory,
    DiskDocumentStore,
    DiskJobStore,
)
from contract_service.api_router import create_router  # noqa: E402
from contract_service.documents import MAX_UPLOAD_BYTES as DEFAULT_MAX_UPLOAD_BYTES  # noqa: E402
from contract_service.documents import DocumentManager  # noqa: E402
from contract_service.model_client import ModelClient, ModelConfig  # noqa: E402
from contract_service.service import AnalysisService, AnalysisSettings  # noqa: E402

# ---------------------------------------------------------------------------
# Paths and security (env at load time)
# ---------------------------------------------------------------------------
DATA_ROOT = Path(os.environ.get("CONTRACTS_DATA_ROOT", "./data").strip() or "./data")
_API_KEY = os.environ.get("CONTRACTS_API_KEY", "").strip()
try:
    MAX_UPLOAD_BYTES = int(os.environ.get("CONTRACTS_MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES)))
except ValueError:
    MAX_UPLOAD_BYTES = DEFAULT_MAX_UPLOAD_BYTES


def _get_base_path() -> Path:
    return DATA_ROOT


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
contracts = DiskContractDirectory(_get_base_path)
contract_lock = ContractLockImpl(_get_base_path)
document_manager = DocumentManager(
    contracts=contracts,
    store=DiskDocumentStore(_get_base_path),
    blobs=DiskBlobStore(_get_base_path),
    contract_lock=contract_lock,
    max_upload_bytes=MAX_UPLOAD_BYTES,
)
model_config = ModelConfig.from_env()
analysis_service = AnalysisService(
    documents=document_manager,
    contracts=contracts,
    store=DiskJobStore(_get_base_path),
    model_client=ModelClient(model_config),
    settings=AnalysisSettings.from_env(),
)

if model_config.offline:
    print("[contract_api] CLAUDE_API_KEY not set; analyses use the offline mock model", file=sys.stderr)

# ---------------------------------------------------------------------------
# App and routes
# ---------------------------------------------------------------------------
app = FastAPI(title="Contract Analysis API", description="Contract document versions and AI analysis jobs")


class _SecurityMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key when CONTRACTS_API_KEY is set. /health stays open."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/health":
            return await call_next(request)
        if _API_KEY:
            key = request.headers.get("X-API-Key") or ""
            if key != _API_KEY:
                return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
        return await call_next(request)


app.add_middleware(_SecurityMiddleware)
app.include_router(create_router(document_manager, analysis_service))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main() -> None:
    parser = argparse.ArgumentParser(description="Contract Analysis API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (0.0.0.0 for LAN)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--recover-orphans",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Before serving, mark PROCESSING analyses older than SECONDS as FAILED",
    )
    args = parser.parse_args()
    cleared = contract_lock.clear_stale_locks()
    if cleared:
        print(f"[contract_api] cleared stale contract locks: {', '.join(cleared)}", file=sys.stderr)
    if args.recover_orphans is not None:
        recovered = analysis_service.recover_orphaned(args.recover_orphans)
        print(f"[contract_api] recovered {len(recovered)} orphaned analyses", file=sys.stderr)
    print(f"Starting Contract Analysis API on {args.host}:{args.port} (data root {DATA_ROOT})", flush=True)
    import uvicorn
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
