# tests/test_api_metadata_endpoint.py
import pytest
from fastapi.testclient import TestClient

from aimuse.app import app
import aimuse.processors.metadata_generator as mgen


@pytest.fixture
def client():
    return TestClient(app)


@pytest.mark.parametrize("path", ["/api/metadata", "/api/generate-metadata"])
def test_metadata_success(client, path):
    r = client.post(path, json={"prompt": "a cat"})
    assert r.status_code == 200
    j = r.json()
    assert j["tokenURI"].startswith("ipfs://Qm")
    assert j["metadata"]["description"] == "a cat"
    assert j["metadata"]["name"].startswith("AI-Muse #")
    assert {a["trait_type"] for a in j["metadata"]["attributes"]} == {"Created with", "Prompt", "Timestamp"}


@pytest.mark.parametrize("body", [{}, {"prompt": ""}, {"prompt": 42}, {"prompt": ["a"]}])
def test_metadata_bad_prompt(client, body):
    r = client.post("/api/metadata", json=body)
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_VALIDATION"


def test_metadata_non_object_body(client):
    r = client.post("/api/metadata", json=["a cat"])
    assert r.status_code == 400


def test_metadata_generator_failure(client, monkeypatch):
    def broken(prompt):
        raise RuntimeError("generator down")
    monkeypatch.setattr(mgen, "generate_image", broken)
    r = client.post("/api/metadata", json={"prompt": "a cat"})
    assert r.status_code == 500
    assert "generator down" in r.json()["message"]


def test_metadata_ignores_extra_body_fields(client):
    r = client.post("/api/metadata", json={"prompt": "a cat", "style": "noir"})
    assert r.status_code == 200
    assert set(r.json()) == {"tokenURI", "metadata"}
    assert set(r.json()["metadata"]) == {"name", "description", "image", "attributes"}


def test_metadata_routes_document_response_model(client):
    paths = client.get("/openapi.json").json()["paths"]
    for path in ("/api/metadata", "/api/generate-metadata"):
        schema = paths[path]["post"]["responses"]["200"]["content"]["application/json"]["schema"]
        assert schema["$ref"].endswith("/MetadataResponse")
