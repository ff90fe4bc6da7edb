"""FastAPI router for contract documents and analysis jobs."""
from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, File, Header, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from .domain import ANALYSIS_TYPES, DEFAULT_ANALYSIS_TYPE, BadRequest, NotFound

DOWNLOAD_CHUNK = 1024 * 1024
ANONYMOUS_USER = "anonymous"


class CreateAnalysisBody(BaseModel):
    contract_id: str
    document_id: Optional[str] = None
    type: str = Field(DEFAULT_ANALYSIS_TYPE, description=" | ".join(ANALYSIS_TYPES))


def _http_error(e: NotFound | BadRequest) -> HTTPException:
    if isinstance(e, BadRequest):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=404, detail=str(e))


def _iter_stream(stream: Any) -> Iterator[bytes]:
    try:
        for b in iter(lambda: stream.read(DOWNLOAD_CHUNK), b""):
            yield b
    finally:
        stream.close()


def create_router(document_manager: Any, analysis_service: Any) -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def root() -> Dict[str, Any]:
        return {
            "service": "Contract Analysis API",
            "docs": "/docs",
            "health": "/health",
            "documents": "/contracts/{contract_id}/documents",
            "analyses": "/analyses",
        }

    @router.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # -- documents -------------------------------------------------------
    @router.post("/contracts/{contract_id}/documents", status_code=201)
    def upload_document(
        contract_id: str,
        file: UploadFile = File(...),
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        try:
            doc = document_manager.upload(
                contract_id,
                x_user_id or ANONYMOUS_USER,
                file.file,
                file.filename or "upload",
                file.content_type or "",
            )
        except (NotFound, BadRequest) as e:
            raise _http_error(e)
        return doc.to_api_dict()

    @router.get("/contracts/{contract_id}/documents")
    def list_documents(contract_id: str) -> Dict[str, List[Dict[str, Any]]]:
        try:
            docs = document_manager.list_for_contract(contract_id)
        except NotFound as e:
            raise _http_error(e)
        return {"documents": [d.to_api_dict() for d in docs]}

    @router.get("/contracts/{contract_id}/documents/latest")
    def latest_document(contract_id: str) -> Dict[str, Any]:
        try:
            return document_manager.latest_for(contract_id).to_api_dict()
        except NotFound as e:
            raise _http_error(e)

    @router.get("/documents/{document_id}")
    def get_document(document_id: str) -> Dict[str, Any]:
        try:
            return document_manager.get(document_id).to_api_dict()
        except NotFound as e:
            raise _http_error(e)

    @router.get("/documents/{document_id}/download")
    def download_document(document_id: str) -> StreamingResponse:
        try:
            doc, stream = document_manager.open_stream(document_id)
        except NotFound as e:
            raise _http_error(e)
        name = doc.original_name.replace('"', "")
        return StreamingResponse(
            _iter_stream(stream),
            media_type=doc.mime_type,
            headers={
                "Content-Disposition": f'attachment; filename="{name}"',
                "Content-Length": str(doc.file_size),
            },
        )

    @router.delete("/documents/{document_id}")
    def delete_document(document_id: str) -> Dict[str, Any]:
        try:
            promoted = document_manager.delete(document_id)
        except NotFound as e:
            raise _http_error(e)
        out: Dict[str, Any] = {"message": "Document deleted successfully"}
        if promoted is not None:
            out["promoted_document_id"] = promoted.document_id
        return out

    # -- analyses --------------------------------------------------------
    @router.post("/analyses", status_code=202)
    def create_analysis(
        body: CreateAnalysisBody,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        try:
            job = analysis_service.submit(
                body.contract_id,
                body.document_id,
                x_user_id or ANONYMOUS_USER,
                body.type,
            )
        except (NotFound, BadRequest) as e:
            raise _http_error(e)
        out = job.to_api_dict()
        out["status_url"] = f"/analyses/{job.job_id}"
        return out

    @router.get("/analyses/{job_id}")
    def get_analysis(job_id: str) -> Dict[str, Any]:
        try:
            return analysis_service.get(job_id).to_api_dict()
        except NotFound as e:
            raise _http_error(e)

    @router.get("/contracts/{contract_id}/analyses")
    def list_analyses(contract_id: str) -> Dict[str, List[Dict[str, Any]]]:
        try:
            jobs = analysis_service.list_for_contract(contract_id)
        except NotFound as e:
            raise _http_error(e)
        return {"analyses": [j.to_api_dict() for j in jobs]}

    return router
