"""Tests for the HTTP surface: document upload/list/latest/download/delete and analysis submit/poll/list."""
import importlib
import os
import sys
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

PDF = b"%PDF-1.4 master services agreement"


def _load_api():
    scripts_dir = str(Path(__file__).parent)
    if scripts_dir not in sys.path:
        sys.path.insert(0, scripts_dir)
    import contract_api as ca
    importlib.reload(ca)
    return ca


@pytest.fixture(scope="module")
def api(tmp_path_factory):
    os.environ["CONTRACTS_DATA_ROOT"] = str(tmp_path_factory.mktemp("contracts_data"))
    os.environ.pop("CONTRACTS_API_KEY", None)
    os.environ.pop("CLAUDE_API_KEY", None)
    ca = _load_api()
    from contract_service.domain import Contract
    ca.contracts.save(Contract(contract_id="C1", name="MSA", party_name="Acme"))
    ca.contracts.save(Contract(contract_id="C2", name="NDA", party_name="Globex"))
    ca.contracts.save(Contract(contract_id="C3", name="Lease"))
    return ca


@pytest.fixture(scope="module")
def client(api):
    return TestClient(api.app)


def _upload(client, contract_id="C1", data=PDF, name="msa.pdf"):
    return client.post(
        f"/contracts/{contract_id}/documents",
        files={"file": (name, data, "application/pdf")},
        headers={"X-User-Id": "u1"},
    )


def _poll(client, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while True:
        d = client.get(f"/analyses/{job_id}").json()
        if d["status"] != "PROCESSING" or time.monotonic() > deadline:
            return d
        time.sleep(0.05)


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json()["service"] == "Contract Analysis API"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def test_upload_list_latest_download(client):
    r = _upload(client, "C2", b"NDA v1", "nda.pdf")
    assert r.status_code == 201
    v1 = r.json()
    assert v1["version"] == 1
    assert v1["is_latest"] is True
    assert v1["uploaded_by"] == "u1"
    assert v1["file_size"] == len(b"NDA v1")
    assert "storage_handle" not in v1

    v2 = _upload(client, "C2", b"NDA v2", "nda-v2.pdf").json()
    assert v2["version"] == 2

    docs = client.get("/contracts/C2/documents").json()["documents"]
    assert [d["version"] for d in docs] == [2, 1]
    assert [d["is_latest"] for d in docs] == [True, False]

    latest = client.get("/contracts/C2/documents/latest").json()
    assert latest["document_id"] == v2["document_id"]

    assert client.get(f"/documents/{v1['document_id']}").json()["version"] == 1

    dl = client.get(f"/documents/{v2['document_id']}/download")
    assert dl.status_code == 200
    assert dl.content == b"NDA v2"
    assert "nda-v2.pdf" in dl.headers["content-disposition"]


def test_upload_unknown_contract_404(client):
    r = _upload(client, "nope")
    assert r.status_code == 404
    assert r.json()["detail"] == "Contract not found"


def test_upload_empty_file_400(client):
    r = _upload(client, "C1", b"")
    assert r.status_code == 400


def test_upload_unsupported_type_400(client):
    r = client.post(
        "/contracts/C1/documents",
        files={"file": ("page.html", b"<script>", "text/html")},
    )
    assert r.status_code == 400
    assert "Invalid file type" in r.json()["detail"]
    assert client.get("/contracts/C1/documents").json()["documents"] == []


def test_upload_missing_file_422(client):
    r = client.post("/contracts/C1/documents")
    assert r.status_code == 422


def test_not_found_lookups(client):
    assert client.get("/documents/nope").status_code == 404
    assert client.get("/documents/nope/download").status_code == 404
    assert client.delete("/documents/nope").status_code == 404
    assert client.get("/contracts/nope/documents").status_code == 404
    assert client.get("/contracts/nope/documents/latest").status_code == 404


def test_delete_latest_promotes(client):
    v1 = _upload(client, "C3", b"lease v1").json()
    v2 = _upload(client, "C3", b"lease v2").json()
    r = client.delete(f"/documents/{v2['document_id']}")
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Document deleted successfully"
    assert body["promoted_document_id"] == v1["document_id"]
    assert client.get("/contracts/C3/documents/latest").json()["document_id"] == v1["document_id"]

    r = client.delete(f"/documents/{v1['document_id']}")
    assert r.status_code == 200
    assert "promoted_document_id" not in r.json()
    assert client.get("/contracts/C3/documents/latest").status_code == 404
    assert _upload(client, "C3", b"lease v3").json()["version"] == 3


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------

def test_submit_and_poll_analysis(client):
    doc = _upload(client, "C1").json()
    r = client.post("/analyses", json={"contract_id": "C1"}, headers={"X-User-Id": "u1"})
    assert r.status_code == 202
    job = r.json()
    assert job["status"] == "PROCESSING"
    assert job["document_id"] == doc["document_id"]
    assert job["status_url"] == f"/analyses/{job['job_id']}"
    assert "result" not in job

    done = _poll(client, job["job_id"])
    assert done["status"] == "COMPLETED"
    assert done["model"] == "mock"
    assert done["result"]["confidence"] == 50
    assert done["document_version"] == doc["version"]
    assert done["document_name"] == "msa.pdf"

    listed = client.get("/contracts/C1/analyses").json()["analyses"]
    assert listed[0]["job_id"] == job["job_id"]


def test_submit_validation_errors(client):
    r = client.post("/analyses", json={"contract_id": "nope"})
    assert r.status_code == 404
    r = client.post("/analyses", json={"contract_id": "C1", "type": "BOGUS"})
    assert r.status_code == 400
    r = client.post("/analyses", json={"contract_id": "C1", "document_id": "nope"})
    assert r.status_code == 400
    r = client.post("/analyses", json={})
    assert r.status_code == 422


def test_get_unknown_analysis_404(client):
    r = client.get("/analyses/nope")
    assert r.status_code == 404
    assert r.json()["detail"] == "Analysis not found"


# ---------------------------------------------------------------------------
# API key
# ---------------------------------------------------------------------------

def test_api_key_required_when_configured(api):
    os.environ["CONTRACTS_API_KEY"] = "secret"
    try:
        ca = _load_api()
        c = TestClient(ca.app)
        assert c.get("/health").status_code == 200
        assert c.get("/analyses/x").status_code == 401
        assert c.get("/analyses/x", headers={"X-API-Key": "wrong"}).status_code == 401
        assert c.get("/analyses/x", headers={"X-API-Key": "secret"}).status_code == 404
    finally:
        os.environ.pop("CONTRACTS_API_KEY", None)
        _load_api()
