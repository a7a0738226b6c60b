# tests/test_api_nfts_endpoint.py
"""
Mirror CRUD endpoints against a disposable SQLite DB.
"""
import pytest
from fastapi.testclient import TestClient

from aimuse.app import app
from aimuse import db as dbmod

client = TestClient(app)

OWNER = "0xAbCdEf0123456789aBCdef0123456789AbCdEf01"


def nft_body(token_id=7, **overrides):
    body = {
        "tokenId": token_id,
        "owner": OWNER,
        "prompt": "a cat",
        "tokenURI": "ipfs://QmCat",
        "image": "https://picsum.photos/seed/1/512",
        "name": "AI-Muse #1",
        "description": "a cat",
        "transactionHash": "0xabc",
    }
    body.update(overrides)
    return body


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'api.db'}")
    dbmod.init_db()
    yield


def test_list_requires_owner():
    r = client.get("/api/nfts")
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_VALIDATION"


def test_save_then_list_and_get():
    r = client.post("/api/nfts", json=nft_body(createdAt="2000-01-01T00:00:00Z"))
    assert r.status_code == 200
    assert r.json() == {"success": True}

    r = client.get("/api/nfts", params={"owner": OWNER.lower()})
    assert r.status_code == 200
    nfts = r.json()["nfts"]
    assert len(nfts) == 1
    assert nfts[0]["tokenId"] == 7
    assert nfts[0]["owner"] == OWNER.lower()
    assert nfts[0]["createdAt"].endswith("Z")
    assert not nfts[0]["createdAt"].startswith("2000")

    r = client.get("/api/nfts/7")
    assert r.status_code == 200
    assert r.json()["nft"]["prompt"] == "a cat"


def test_save_names_first_missing_field():
    body = nft_body()
    del body["owner"]
    del body["image"]
    r = client.post("/api/nfts", json=body)
    assert r.status_code == 400
    assert r.json()["message"] == "Missing required field: owner"


def test_save_rejects_non_numeric_token_id():
    r = client.post("/api/nfts", json=nft_body(token_id="seven"))
    assert r.status_code == 400
    assert "tokenId" in r.json()["message"]


def test_save_duplicate_is_conflict():
    assert client.post("/api/nfts", json=nft_body()).status_code == 200
    r = client.post("/api/nfts", json=nft_body(prompt="other"))
    assert r.status_code == 409
    assert r.json()["error_code"] == "E_CONFLICT"
    assert client.get("/api/nfts/7").json()["nft"]["prompt"] == "a cat"


def test_get_invalid_and_missing_token():
    assert client.get("/api/nfts/abc").status_code == 400
    r = client.get("/api/nfts/404")
    assert r.status_code == 404
    assert r.json()["error_code"] == "E_NOT_FOUND"


def test_put_partial_update():
    client.post("/api/nfts", json=nft_body())
    before = client.get("/api/nfts/7").json()["nft"]

    r = client.put("/api/nfts/7", json={"prompt": "a dog", "tokenURI": "ipfs://QmDog", "tokenId": 8})
    assert r.status_code == 200
    assert r.json() == {"success": True}

    after = client.get("/api/nfts/7").json()["nft"]
    assert after["prompt"] == "a dog"
    assert after["tokenURI"] == "ipfs://QmDog"
    assert after["image"] == before["image"]
    assert after["createdAt"] == before["createdAt"]
    assert after["updatedAt"] > before["updatedAt"]
    assert client.get("/api/nfts/8").status_code == 404


def test_put_invalid_and_missing_token():
    assert client.put("/api/nfts/abc", json={"prompt": "x"}).status_code == 400
    r = client.put("/api/nfts/404", json={"prompt": "x"})
    assert r.status_code == 404
    assert client.get("/api/nfts/404").status_code == 404


def test_store_outage_is_503(tmp_path):
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'nope' / 'nope' / 'x.db'}")
    r = client.get("/api/nfts", params={"owner": OWNER})
    assert r.status_code == 503
    assert r.json()["error_code"] == "E_STORE_UNAVAILABLE"


@pytest.mark.parametrize("raw", ["7_0", "+7", "%207%20", "-1", "1e3", str(2**70)])
def test_get_and_put_reject_non_canonical_token_ids(raw):
    client.post("/api/nfts", json=nft_body(token_id=70))
    client.post("/api/nfts", json=nft_body(token_id=7))
    r = client.get(f"/api/nfts/{raw}")
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_VALIDATION"
    assert client.put(f"/api/nfts/{raw}", json={"prompt": "x"}).status_code == 400
    assert client.get("/api/nfts/70").json()["nft"]["prompt"] == "a cat"


def test_save_rejects_token_id_beyond_storable_range():
    r = client.post("/api/nfts", json=nft_body(token_id=2**70))
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_VALIDATION"
    assert "tokenId" in r.json()["message"]
