# aimuse/app.py
import datetime
import re
import time
from typing import Any, Dict, Optional

# Load .env BEFORE any aimuse imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from aimuse import db as dbmod
from aimuse import monitoring
from aimuse import wallet as walletmod
from aimuse.errors import E_INTERNAL, MuseError, NotFoundError, ValidationError
from aimuse.orchestrator import NFTLifecycleOrchestrator
from aimuse.schemas import MetadataResponse, NFTCreate, NFTUpdate, PromptRequest

app = FastAPI(title="AI-Muse NFT API")

# Initialize DB tables on startup
dbmod.init_db()

# instantiate orchestrator once
orchestrator = NFTLifecycleOrchestrator()

REQUIRED_NFT_FIELDS = (
    "tokenId", "owner", "prompt", "tokenURI", "image", "name", "description", "transactionHash",
)

TOKEN_ID_RE = re.compile(r"[0-9]+")


def open_wallet() -> walletmod.WalletConnection:
    """Server-side wallet connection for one flow; the caller closes it."""
    return walletmod.connect_from_env()


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Error helpers
# ---------------------------------------------------------------------------
def _error_response(err: MuseError) -> JSONResponse:
    return JSONResponse(status_code=err.http_status, content=err.to_dict())


def _internal_error(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "error_code": E_INTERNAL,
            "message": "Internal server error",
            "details": {"exception": str(exc)},
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else (first.get("msg") or "Invalid request")
    return _error_response(ValidationError(message))


def _iso(value):
    if isinstance(value, datetime.datetime):
        return value.isoformat(timespec="microseconds") + "Z"
    return value


def _serialize_record(rec: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if rec is None:
        return None
    out = dict(rec)
    for key in ("createdAt", "updatedAt"):
        if key in out:
            out[key] = _iso(out[key])
    return out


def _serialize_flow(resp: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(resp)
    if isinstance(out.get("record"), dict):
        out["record"] = _serialize_record(out["record"])
    return out


def _require_prompt(payload: Dict[str, Any]) -> str:
    try:
        return PromptRequest.model_validate(payload).prompt
    except PydanticValidationError:
        raise ValidationError("Prompt is required and must be a string")


def _parse_token_id(raw: str) -> int:
    # plain decimal digits only; int() would also take "+7", " 7 " and "7_0"
    if not isinstance(raw, str) or not TOKEN_ID_RE.fullmatch(raw):
        raise ValidationError("Invalid token ID")
    token_id = int(raw)
    if token_id > dbmod.MAX_TOKEN_ID:
        raise ValidationError("Invalid token ID")
    return token_id


def _validation_message(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid field {loc}: {first.get('msg')}"


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------
@app.post("/api/metadata", response_model=MetadataResponse)
@app.post("/api/generate-metadata", response_model=MetadataResponse)
async def generate_metadata(payload: Dict[str, Any] = Body(...)):
    """
    POST /api/metadata
    Body: { "prompt": "..." }
    Returns { "tokenURI": "ipfs://...", "metadata": {...} }
    """
    try:
        prompt = _require_prompt(payload)
    except ValidationError as e:
        return _error_response(e)
    monitoring.logger.info("Received /api/metadata request", extra={"prompt_preview": prompt[:200]})
    try:
        result = MetadataResponse(**orchestrator.generate_metadata(prompt))
        return JSONResponse(status_code=200, content=result.model_dump())
    except Exception as e:
        monitoring.logger.exception("Metadata generation failed")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "error_code": E_INTERNAL, "message": f"Failed to generate metadata: {e}"},
        )


# ---------------------------------------------------------------------------
# Mirror records
# ---------------------------------------------------------------------------
@app.get("/api/nfts")
def list_nfts(owner: Optional[str] = Query(None)):
    """GET /api/nfts?owner=0x... newest first."""
    if not owner:
        return _error_response(ValidationError("Owner address is required"))
    try:
        nfts = dbmod.find_by_owner(owner)
        return JSONResponse(status_code=200, content={"nfts": [_serialize_record(n) for n in nfts]})
    except MuseError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in GET /api/nfts")
        return _internal_error(e)


@app.post("/api/nfts")
def save_nft(payload: Dict[str, Any] = Body(...)):
    """
    POST /api/nfts
    Body: full NFT record; createdAt/updatedAt are ignored.
    Also the way to re-persist a record after E_MIRROR_NOT_UPDATED.
    """
    for field in REQUIRED_NFT_FIELDS:
        value = payload.get(field)
        if value is None or value == "":
            return _error_response(ValidationError(f"Missing required field: {field}"))
    try:
        record = NFTCreate(**payload)
    except PydanticValidationError as e:
        return _error_response(ValidationError(_validation_message(e)))
    try:
        dbmod.create_nft(record.model_dump())
        return JSONResponse(status_code=200, content={"success": True})
    except MuseError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in POST /api/nfts")
        return _internal_error(e)


@app.get("/api/nfts/{token_id}")
def get_nft(token_id: str):
    try:
        nft = dbmod.find_by_token_id(_parse_token_id(token_id))
        if nft is None:
            raise NotFoundError("NFT not found")
        return JSONResponse(status_code=200, content={"nft": _serialize_record(nft)})
    except MuseError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in GET /api/nfts/{token_id}")
        return _internal_error(e)


@app.put("/api/nfts/{token_id}")
def update_nft(token_id: str, payload: Dict[str, Any] = Body(...)):
    try:
        tid = _parse_token_id(token_id)
        try:
            updates = {
                k: v for k, v in NFTUpdate(**payload).model_dump(exclude_unset=True).items()
                if v is not None
            }
        except PydanticValidationError as e:
            raise ValidationError(_validation_message(e))
        if dbmod.find_by_token_id(tid) is None:
            raise NotFoundError("NFT not found")
        dbmod.apply_update(tid, updates)
        return JSONResponse(status_code=200, content={"success": True})
    except MuseError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in PUT /api/nfts/{token_id}")
        return _internal_error(e)


# ---------------------------------------------------------------------------
# Flows (server wallet)
# ---------------------------------------------------------------------------
@app.post("/api/mint")
def mint_nft(payload: Dict[str, Any] = Body(...)):
    """
    POST /api/mint
    Body: { "prompt": "..." }
    Runs the full mint flow; the flow result (success or error) is returned with 200.
    """
    try:
        prompt = _require_prompt(payload)
        connection = open_wallet()
    except MuseError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Could not open wallet for /api/mint")
        return _internal_error(e)
    with connection:
        resp = orchestrator.mint(prompt, connection)
    return JSONResponse(status_code=200, content=_serialize_flow(resp))


@app.post("/api/nfts/{token_id}/regenerate")
def regenerate_nft(token_id: str, payload: Dict[str, Any] = Body(...)):
    """
    POST /api/nfts/{token_id}/regenerate
    Body: { "prompt": "..." }
    Runs the update flow for an existing token.
    """
    try:
        tid = _parse_token_id(token_id)
        prompt = _require_prompt(payload)
        connection = open_wallet()
    except MuseError as e:
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Could not open wallet for regenerate")
        return _internal_error(e)
    with connection:
        resp = orchestrator.update(tid, prompt, connection)
    return JSONResponse(status_code=200, content=_serialize_flow(resp))


# ---------------------------------------------------------------------------
# Chain reads
# ---------------------------------------------------------------------------
@app.get("/api/chain/tokens/{token_id}")
def chain_token(token_id: str):
    try:
        tid = _parse_token_id(token_id)
        connection = open_wallet()
    except MuseError as e:
        return _error_response(e)
    with connection:
        chain = orchestrator.chain_client
        content = {
            "tokenId": tid,
            "owner": chain.read_owner(tid, connection),
            "tokenURI": chain.read_token_uri(tid, connection),
        }
    return JSONResponse(status_code=200, content=content)


@app.get("/api/chain/balance")
def chain_balance(owner: Optional[str] = Query(None)):
    if not owner or not Web3.is_address(owner):
        return _error_response(ValidationError("A valid owner address is required"))
    try:
        connection = open_wallet()
    except MuseError as e:
        return _error_response(e)
    with connection:
        balance = orchestrator.chain_client.read_balance(owner, connection)
    return JSONResponse(status_code=200, content={"owner": owner.lower(), "balance": balance})


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
