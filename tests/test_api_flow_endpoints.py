# tests/test_api_flow_endpoints.py
"""
/api/mint, /api/nfts/{id}/regenerate and chain read endpoints with the wallet
and orchestrator patched out.
"""
import datetime
import pytest
from fastapi.testclient import TestClient

from aimuse.app import app
from aimuse import app as app_module
from aimuse import wallet as walletmod
from aimuse.wallet import WalletConnection

orchestrator = app_module.orchestrator
ADDR = "0x1111111111111111111111111111111111111111"

SAMPLE_SUCCESS = {
    "flow_id": "flow-1",
    "flow": "mint",
    "status": "success",
    "stage": "done",
    "tokenId": 7,
    "transactionHash": "0xabc",
    "tokenURI": "ipfs://QmCat",
    "record": {
        "tokenId": 7,
        "owner": ADDR,
        "prompt": "a cat",
        "createdAt": datetime.datetime(2025, 1, 1, 12, 0, 0),
        "updatedAt": datetime.datetime(2025, 1, 1, 12, 0, 0),
    },
    "chain_confirmed": True,
}

SAMPLE_MIRROR_FAILURE = {
    "flow_id": "flow-2",
    "flow": "update",
    "status": "error",
    "stage": "persisting_record",
    "error_code": "E_MIRROR_NOT_UPDATED",
    "chain_confirmed": True,
    "record": {"tokenId": 7, "prompt": "a dog", "transactionHash": "0xdef"},
}


class FakeEth:
    chain_id = 8453
    accounts = [ADDR]


class FakeWeb3:
    eth = FakeEth()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def opened(monkeypatch):
    conns = []

    def fake_open_wallet():
        conn = WalletConnection(FakeWeb3(), address=ADDR, chain_id=8453)
        conns.append(conn)
        return conn

    monkeypatch.setattr(app_module, "open_wallet", fake_open_wallet)
    return conns


def test_mint_returns_flow_result_and_closes_wallet(client, opened, monkeypatch):
    seen = {}

    def fake_mint(prompt, connection):
        seen["prompt"] = prompt
        seen["connection"] = connection
        return SAMPLE_SUCCESS

    monkeypatch.setattr(orchestrator, "mint", fake_mint)
    r = client.post("/api/mint", json={"prompt": "a cat"})
    assert r.status_code == 200
    j = r.json()
    assert j["status"] == "success"
    assert j["tokenId"] == 7
    assert j["record"]["createdAt"] == "2025-01-01T12:00:00.000000Z"
    assert seen["prompt"] == "a cat"
    assert seen["connection"] is opened[0]
    assert opened[0].closed


def test_mint_requires_prompt(client, opened):
    r = client.post("/api/mint", json={})
    assert r.status_code == 400
    assert opened == []


def test_mint_without_wallet_is_503(client, monkeypatch):
    monkeypatch.setattr(walletmod, "CHAIN_RPC_URL", "")
    r = client.post("/api/mint", json={"prompt": "a cat"})
    assert r.status_code == 503
    assert r.json()["error_code"] == "E_WALLET_UNAVAILABLE"


def test_regenerate_reports_mirror_failure(client, opened, monkeypatch):
    calls = []

    def fake_update(token_id, prompt, connection):
        calls.append((token_id, prompt))
        return SAMPLE_MIRROR_FAILURE

    monkeypatch.setattr(orchestrator, "update", fake_update)
    r = client.post("/api/nfts/7/regenerate", json={"prompt": "a dog"})
    assert r.status_code == 200
    j = r.json()
    assert j["error_code"] == "E_MIRROR_NOT_UPDATED"
    assert j["chain_confirmed"] is True
    assert calls == [(7, "a dog")]
    assert opened[0].closed


def test_regenerate_rejects_bad_token_id(client, opened):
    r = client.post("/api/nfts/seven/regenerate", json={"prompt": "a dog"})
    assert r.status_code == 400
    assert opened == []


def test_chain_token_read(client, opened, monkeypatch):
    chain = orchestrator.chain_client
    monkeypatch.setattr(chain, "read_owner", lambda token_id, connection: ADDR)
    monkeypatch.setattr(chain, "read_token_uri", lambda token_id, connection: None)
    r = client.get("/api/chain/tokens/3")
    assert r.status_code == 200
    assert r.json() == {"tokenId": 3, "owner": ADDR, "tokenURI": None}


def test_chain_balance(client, opened, monkeypatch):
    monkeypatch.setattr(orchestrator.chain_client, "read_balance", lambda owner, connection: 4)
    r = client.get("/api/chain/balance", params={"owner": ADDR})
    assert r.status_code == 200
    assert r.json() == {"owner": ADDR, "balance": 4}

    r = client.get("/api/chain/balance", params={"owner": "not-an-address"})
    assert r.status_code == 400
